"""Domain models, identifiers and the run context."""

from __future__ import annotations

from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import (
    Complexity,
    Cycle,
    InvocationOutcome,
    LeadExecution,
    RunConfig,
    Session,
    SessionStatus,
    SpecEntry,
    SpecStatus,
    ValidatorResult,
    Verdict,
    VerdictStatus,
)

__all__ = [
    "Complexity",
    "Cycle",
    "InvocationOutcome",
    "LeadExecution",
    "RunConfig",
    "RunContext",
    "Session",
    "SessionStatus",
    "SpecEntry",
    "SpecStatus",
    "ValidatorResult",
    "Verdict",
    "VerdictStatus",
]
