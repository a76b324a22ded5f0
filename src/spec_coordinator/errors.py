"""Error taxonomy for the coordinator.

Pre-execution errors (graph, roles, sandbox, resume) abort a run before any
tool is invoked. Per-invocation failures are *not* exceptions: the process
runner reports them as tagged results and the engine records them on the spec.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class CoordinatorError(RuntimeError):
    """Base class for all expected coordinator failures."""


class SpecDiscoveryError(CoordinatorError, ValueError):
    """Raised when the specs directory or a spec's front matter is unusable."""


class SpecGraphError(CoordinatorError, ValueError):
    """Base class for dependency-graph failures."""


class UnknownDependencyError(SpecGraphError):
    """Raised when a spec depends on an id no discovered spec declares."""

    def __init__(self, spec_id: str, dependency_id: str) -> None:
        self.spec_id = spec_id
        self.dependency_id = dependency_id
        super().__init__(f"spec {spec_id!r} depends on unknown spec id {dependency_id!r}")


class DuplicateSpecError(SpecGraphError):
    """Raised when two buildable specs declare the same id."""

    def __init__(self, spec_id: str, files: Sequence[str]) -> None:
        self.spec_id = spec_id
        self.files = tuple(files)
        super().__init__(f"spec id {spec_id!r} is declared by more than one file: {', '.join(files)}")


class DependencyCycleError(SpecGraphError):
    """Raised when the spec dependency graph contains a cycle."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Spec dependencies contain at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Spec dependencies contain cycle(s): {preview}{suffix}"
        super().__init__(message)


class RoleAssignmentError(CoordinatorError):
    """Base class for lead/validator resolution failures."""


class ToolUnavailableError(RoleAssignmentError):
    """Raised when an explicitly requested tool was not detected."""

    def __init__(self, tool: str, available: Iterable[str]) -> None:
        self.tool = tool
        self.available = tuple(available)
        listed = ", ".join(self.available) or "none"
        super().__init__(f"requested tool {tool!r} is not available (available: {listed})")


class NoLeadAvailableError(RoleAssignmentError):
    """Raised when none of the preferred lead tools is available."""


class NoValidatorsAvailableError(RoleAssignmentError):
    """Raised when no validator remains once the lead is excluded."""


class SandboxUnavailableError(CoordinatorError):
    """Raised when sandbox mode is requested but docker cannot be run."""


class NothingToResumeError(CoordinatorError):
    """Raised when ``--resume`` finds no persisted session for the directory."""


class ValidatorParseError(ValueError):
    """Raised when validator output cannot be classified as PASS or FAIL."""


__all__ = [
    "CoordinatorError",
    "DependencyCycleError",
    "DuplicateSpecError",
    "NoLeadAvailableError",
    "NoValidatorsAvailableError",
    "NothingToResumeError",
    "RoleAssignmentError",
    "SandboxUnavailableError",
    "SpecDiscoveryError",
    "SpecGraphError",
    "ToolUnavailableError",
    "UnknownDependencyError",
    "ValidatorParseError",
]
