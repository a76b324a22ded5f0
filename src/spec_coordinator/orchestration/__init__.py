"""Session coordination: per-spec engine, consensus, verdict parsing, prompts and reports."""

from spec_coordinator.orchestration.consensus import (
    ConsensusOutcome,
    evaluate_consensus,
    has_consensus,
)
from spec_coordinator.orchestration.coordinator import (
    Coordinator,
    SessionPlan,
    SessionRequest,
    StartMode,
)
from spec_coordinator.orchestration.engine import (
    RATE_LIMIT_MARKERS,
    Engine,
    has_implementation_files,
    is_rate_limited,
)
from spec_coordinator.orchestration.reports import ReportWriter, render_final_report
from spec_coordinator.orchestration.verdicts import build_feedback, format_finding, parse_verdict

__all__ = [
    "ConsensusOutcome",
    "Coordinator",
    "Engine",
    "RATE_LIMIT_MARKERS",
    "ReportWriter",
    "SessionPlan",
    "SessionRequest",
    "StartMode",
    "build_feedback",
    "evaluate_consensus",
    "format_finding",
    "has_consensus",
    "has_implementation_files",
    "is_rate_limited",
    "parse_verdict",
    "render_final_report",
]
