"""Session persistence."""

from spec_coordinator.persistence.session_store import (
    JsonSessionRepository,
    SessionCorruptionError,
    SessionRepository,
    SessionStoreError,
    completed_spec_keys,
)

__all__ = [
    "JsonSessionRepository",
    "SessionCorruptionError",
    "SessionRepository",
    "SessionStoreError",
    "completed_spec_keys",
]
