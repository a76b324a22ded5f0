"""Public observability primitives: structured logging and correlation scopes."""

from spec_coordinator.observability.logging import (
    LoggingConfig,
    SessionLogHandle,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    redact_text,
    setup_session_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "SessionLogHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_text",
    "setup_session_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
