"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from spec_coordinator.constants import SESSION_SCHEMA_VERSION
from spec_coordinator.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_NAME = 512


class SpecStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_SPEC_STATUSES: frozenset[SpecStatus] = frozenset(
    {SpecStatus.COMPLETED, SpecStatus.FAILED, SpecStatus.SKIPPED}
)


class SessionStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class VerdictStatus(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"


class Complexity(StrEnum):
    EASY = "EASY"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class InvocationOutcome(StrEnum):
    """How a tool invocation ended; only ``EXITED`` carries an exit code."""

    EXITED = "exited"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


# ---------------------------------------------------------------------------
# Run configuration snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RunConfig(CanonicalModel):
    """Flat run options consumed by the engine.

    Defaults are deliberately absent: the CLI/config layer supplies every value.
    """

    max_iterations: int
    timeout_minutes: float
    preflight: bool
    preflight_threshold: float
    preflight_iterations: int
    stop_on_failure: bool
    sandbox: bool
    sandbox_image: str
    interactive: bool
    verbose: bool
    heartbeat_seconds: float
    lead_permissions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _as_int(self.max_iterations, "RunConfig.max_iterations", minimum=1)
        if _as_float(self.timeout_minutes, "RunConfig.timeout_minutes") <= 0:
            _fail("RunConfig.timeout_minutes", "must be > 0")
        threshold = _as_float(self.preflight_threshold, "RunConfig.preflight_threshold")
        if not 0.0 <= threshold <= 100.0:
            _fail("RunConfig.preflight_threshold", "must be between 0 and 100")
        _as_int(self.preflight_iterations, "RunConfig.preflight_iterations", minimum=0)
        _as_float(self.heartbeat_seconds, "RunConfig.heartbeat_seconds", minimum=0.0)
        _as_str(self.sandbox_image, "RunConfig.sandbox_image")

    @property
    def timeout_seconds(self) -> float:
        return float(self.timeout_minutes) * 60.0

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RunConfig:
        parsed = _expect_object(
            data,
            "RunConfig",
            required={
                "max_iterations",
                "timeout_minutes",
                "preflight",
                "preflight_threshold",
                "preflight_iterations",
                "stop_on_failure",
                "sandbox",
                "sandbox_image",
                "interactive",
                "verbose",
                "heartbeat_seconds",
            },
            optional={"lead_permissions"},
        )
        return cls(
            max_iterations=_as_int(parsed["max_iterations"], "RunConfig.max_iterations"),
            timeout_minutes=_as_float(parsed["timeout_minutes"], "RunConfig.timeout_minutes"),
            preflight=_as_bool(parsed["preflight"], "RunConfig.preflight"),
            preflight_threshold=_as_float(
                parsed["preflight_threshold"], "RunConfig.preflight_threshold"
            ),
            preflight_iterations=_as_int(
                parsed["preflight_iterations"], "RunConfig.preflight_iterations"
            ),
            stop_on_failure=_as_bool(parsed["stop_on_failure"], "RunConfig.stop_on_failure"),
            sandbox=_as_bool(parsed["sandbox"], "RunConfig.sandbox"),
            sandbox_image=_as_str(parsed["sandbox_image"], "RunConfig.sandbox_image"),
            interactive=_as_bool(parsed["interactive"], "RunConfig.interactive"),
            verbose=_as_bool(parsed["verbose"], "RunConfig.verbose"),
            heartbeat_seconds=_as_float(parsed["heartbeat_seconds"], "RunConfig.heartbeat_seconds"),
            lead_permissions=_as_str_tuple(
                parsed.get("lead_permissions", []), "RunConfig.lead_permissions"
            ),
        )


# ---------------------------------------------------------------------------
# Cycle records (immutable once appended)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Verdict(CanonicalModel):
    status: VerdictStatus
    completeness: float
    gaps: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    error: str | None = None

    def __post_init__(self) -> None:
        _as_enum(VerdictStatus, self.status, "Verdict.status")
        completeness = _as_float(self.completeness, "Verdict.completeness")
        if not 0.0 <= completeness <= 100.0:
            _fail("Verdict.completeness", "must be between 0 and 100")

    @classmethod
    def errored(cls, message: str) -> Verdict:
        return cls(status=VerdictStatus.ERROR, completeness=0.0, error=message)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Verdict:
        parsed = _expect_object(
            data,
            "Verdict",
            required={"status", "completeness"},
            optional={"gaps", "recommendations", "error"},
        )
        return cls(
            status=_as_enum(VerdictStatus, parsed["status"], "Verdict.status"),
            completeness=_as_float(parsed["completeness"], "Verdict.completeness"),
            gaps=_as_str_tuple(parsed.get("gaps", []), "Verdict.gaps"),
            recommendations=_as_str_tuple(
                parsed.get("recommendations", []), "Verdict.recommendations"
            ),
            error=_as_optional_str(parsed.get("error"), "Verdict.error"),
        )


@dataclass(frozen=True, slots=True)
class LeadExecution(CanonicalModel):
    tool: str
    prompt: str
    output: str
    duration_ms: int
    outcome: InvocationOutcome
    exit_code: int | None = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.outcome is InvocationOutcome.EXITED and self.exit_code == 0

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LeadExecution:
        parsed = _expect_object(
            data,
            "LeadExecution",
            required={"tool", "prompt", "output", "duration_ms", "outcome"},
            optional={"exit_code", "attempts"},
        )
        return cls(
            tool=_as_str(parsed["tool"], "LeadExecution.tool", max_len=_MAX_NAME),
            prompt=_as_text(parsed["prompt"], "LeadExecution.prompt"),
            output=_as_text(parsed["output"], "LeadExecution.output"),
            duration_ms=_as_int(parsed["duration_ms"], "LeadExecution.duration_ms", minimum=0),
            outcome=_as_enum(InvocationOutcome, parsed["outcome"], "LeadExecution.outcome"),
            exit_code=_as_optional_int(parsed.get("exit_code"), "LeadExecution.exit_code"),
            attempts=_as_int(parsed.get("attempts", 1), "LeadExecution.attempts", minimum=1),
        )


@dataclass(frozen=True, slots=True)
class ValidatorResult(CanonicalModel):
    tool: str
    output: str
    duration_ms: int
    outcome: InvocationOutcome
    verdict: Verdict
    exit_code: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ValidatorResult:
        parsed = _expect_object(
            data,
            "ValidatorResult",
            required={"tool", "output", "duration_ms", "outcome", "verdict"},
            optional={"exit_code"},
        )
        verdict = parsed["verdict"]
        if not isinstance(verdict, Mapping):
            _fail("ValidatorResult.verdict", "expected object")
        return cls(
            tool=_as_str(parsed["tool"], "ValidatorResult.tool", max_len=_MAX_NAME),
            output=_as_text(parsed["output"], "ValidatorResult.output"),
            duration_ms=_as_int(parsed["duration_ms"], "ValidatorResult.duration_ms", minimum=0),
            outcome=_as_enum(InvocationOutcome, parsed["outcome"], "ValidatorResult.outcome"),
            verdict=Verdict.from_dict(verdict),
            exit_code=_as_optional_int(parsed.get("exit_code"), "ValidatorResult.exit_code"),
        )


@dataclass(frozen=True, slots=True)
class Cycle(CanonicalModel):
    """One lead-then-validators round; ``lead`` is ``None`` for preflight rounds."""

    number: int
    lead: LeadExecution | None
    validations: tuple[ValidatorResult, ...]
    consensus: bool
    feedback: str
    started_at: datetime
    finished_at: datetime

    def __post_init__(self) -> None:
        _as_int(self.number, "Cycle.number", minimum=1)
        if self.finished_at < self.started_at:
            _fail("Cycle.finished_at", "must be >= Cycle.started_at")

    @property
    def mean_completeness(self) -> float:
        scored = [
            item.verdict.completeness
            for item in self.validations
            if item.verdict.status is not VerdictStatus.ERROR
        ]
        if not scored:
            return 0.0
        return sum(scored) / len(scored)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Cycle:
        parsed = _expect_object(
            data,
            "Cycle",
            required={
                "number",
                "lead",
                "validations",
                "consensus",
                "feedback",
                "started_at",
                "finished_at",
            },
        )
        lead_raw = parsed["lead"]
        lead: LeadExecution | None = None
        if lead_raw is not None:
            if not isinstance(lead_raw, Mapping):
                _fail("Cycle.lead", "expected object or null")
            lead = LeadExecution.from_dict(lead_raw)
        validations: list[ValidatorResult] = []
        for index, item in enumerate(_as_sequence(parsed["validations"], "Cycle.validations")):
            if not isinstance(item, Mapping):
                _fail(f"Cycle.validations[{index}]", "expected object")
            validations.append(ValidatorResult.from_dict(item))
        return cls(
            number=_as_int(parsed["number"], "Cycle.number", minimum=1),
            lead=lead,
            validations=tuple(validations),
            consensus=_as_bool(parsed["consensus"], "Cycle.consensus"),
            feedback=_as_text(parsed["feedback"], "Cycle.feedback"),
            started_at=_as_datetime(parsed["started_at"], "Cycle.started_at"),
            finished_at=_as_datetime(parsed["finished_at"], "Cycle.finished_at"),
        )


# ---------------------------------------------------------------------------
# Mutable aggregates
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SpecEntry(CanonicalModel):
    id: str
    name: str
    file_name: str
    path: str
    depends_on: tuple[str, ...] = ()
    context_only: bool = False
    complexity: Complexity = Complexity.MODERATE
    maturity: int = 1
    status: SpecStatus = SpecStatus.PENDING
    cycles: list[Cycle] = field(default_factory=list)
    preflight: list[Cycle] = field(default_factory=list)
    last_error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "SpecEntry.id", max_len=_MAX_NAME)
        self.name = _as_str(self.name, "SpecEntry.name", max_len=_MAX_NAME)
        self.file_name = _as_str(self.file_name, "SpecEntry.file_name", max_len=_MAX_NAME)
        self.depends_on = tuple(dict.fromkeys(self.depends_on))
        self.complexity = _as_enum(Complexity, self.complexity, "SpecEntry.complexity")
        self.maturity = _as_int(self.maturity, "SpecEntry.maturity", minimum=1)
        self.status = _as_enum(SpecStatus, self.status, "SpecEntry.status")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SPEC_STATUSES

    @property
    def last_cycle(self) -> Cycle | None:
        return self.cycles[-1] if self.cycles else None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SpecEntry:
        parsed = _expect_object(
            data,
            "SpecEntry",
            required={"id", "name", "file_name", "path", "status"},
            optional={
                "depends_on",
                "context_only",
                "complexity",
                "maturity",
                "cycles",
                "preflight",
                "last_error",
                "started_at",
                "completed_at",
            },
        )
        return cls(
            id=_as_str(parsed["id"], "SpecEntry.id", max_len=_MAX_NAME),
            name=_as_str(parsed["name"], "SpecEntry.name", max_len=_MAX_NAME),
            file_name=_as_str(parsed["file_name"], "SpecEntry.file_name", max_len=_MAX_NAME),
            path=_as_str(parsed["path"], "SpecEntry.path"),
            depends_on=_as_str_tuple(parsed.get("depends_on", []), "SpecEntry.depends_on"),
            context_only=_as_bool(parsed.get("context_only", False), "SpecEntry.context_only"),
            complexity=_as_enum(
                Complexity, parsed.get("complexity", "MODERATE"), "SpecEntry.complexity"
            ),
            maturity=_as_int(parsed.get("maturity", 1), "SpecEntry.maturity", minimum=1),
            status=_as_enum(SpecStatus, parsed["status"], "SpecEntry.status"),
            cycles=_as_cycles(parsed.get("cycles", []), "SpecEntry.cycles"),
            preflight=_as_cycles(parsed.get("preflight", []), "SpecEntry.preflight"),
            last_error=_as_optional_str(parsed.get("last_error"), "SpecEntry.last_error"),
            started_at=_as_optional_datetime(parsed.get("started_at"), "SpecEntry.started_at"),
            completed_at=_as_optional_datetime(
                parsed.get("completed_at"), "SpecEntry.completed_at"
            ),
        )


@dataclass(slots=True)
class Session(CanonicalModel):
    id: str
    working_directory: str
    specs_directory: str
    specs: list[SpecEntry]
    lead: str
    validators: tuple[str, ...]
    config: RunConfig
    created_at: datetime
    updated_at: datetime
    current_spec_index: int = 0
    status: SessionStatus = SessionStatus.RUNNING
    schema_version: int = SESSION_SCHEMA_VERSION

    def __post_init__(self) -> None:
        try:
            domain_ids.validate_session_id(self.id)
        except ValueError as exc:
            _fail("Session.id", str(exc))
        self.status = _as_enum(SessionStatus, self.status, "Session.status")
        self.current_spec_index = _as_int(
            self.current_spec_index, "Session.current_spec_index", minimum=0
        )
        if self.lead in self.validators:
            _fail("Session.validators", f"lead {self.lead!r} must not also validate")

    @property
    def current_spec(self) -> SpecEntry | None:
        if 0 <= self.current_spec_index < len(self.specs):
            return self.specs[self.current_spec_index]
        return None

    def spec_by_id(self, spec_id: str) -> SpecEntry | None:
        for spec in self.specs:
            if spec.id == spec_id:
                return spec
        return None

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now if now is not None else utc_now()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Session:
        parsed = _expect_object(
            data,
            "Session",
            required={
                "id",
                "working_directory",
                "specs_directory",
                "specs",
                "lead",
                "validators",
                "config",
                "created_at",
                "updated_at",
                "current_spec_index",
                "status",
            },
            optional={"schema_version"},
        )
        specs: list[SpecEntry] = []
        for index, item in enumerate(_as_sequence(parsed["specs"], "Session.specs")):
            if not isinstance(item, Mapping):
                _fail(f"Session.specs[{index}]", "expected object")
            specs.append(SpecEntry.from_dict(item))
        config = parsed["config"]
        if not isinstance(config, Mapping):
            _fail("Session.config", "expected object")
        return cls(
            id=_as_str(parsed["id"], "Session.id"),
            working_directory=_as_str(parsed["working_directory"], "Session.working_directory"),
            specs_directory=_as_str(parsed["specs_directory"], "Session.specs_directory"),
            specs=specs,
            lead=_as_str(parsed["lead"], "Session.lead", max_len=_MAX_NAME),
            validators=_as_str_tuple(parsed["validators"], "Session.validators"),
            config=RunConfig.from_dict(config),
            created_at=_as_datetime(parsed["created_at"], "Session.created_at"),
            updated_at=_as_datetime(parsed["updated_at"], "Session.updated_at"),
            current_spec_index=_as_int(
                parsed["current_spec_index"], "Session.current_spec_index", minimum=0
            ),
            status=_as_enum(SessionStatus, parsed["status"], "Session.status"),
            schema_version=_as_int(
                parsed.get("schema_version", SESSION_SCHEMA_VERSION),
                "Session.schema_version",
                minimum=1,
            ),
        )


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, max_len: int | None = None) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must not be empty")
    if max_len is not None and len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_text(value, path)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_optional_int(value: object, path: str) -> int | None:
    if value is None:
        return None
    return _as_int(value, path)


def _as_float(value: object, path: str, *, minimum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return _as_datetime(value, path)


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    return tuple(
        _as_str(item, f"{path}[{index}]") for index, item in enumerate(_as_sequence(value, path))
    )


def _as_cycles(value: object, path: str) -> list[Cycle]:
    cycles: list[Cycle] = []
    for index, item in enumerate(_as_sequence(value, path)):
        if not isinstance(item, Mapping):
            _fail(f"{path}[{index}]", "expected object")
        cycles.append(Cycle.from_dict(item))
    return cycles


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "CanonicalModel",
    "Complexity",
    "Cycle",
    "InvocationOutcome",
    "JSONScalar",
    "JSONValue",
    "LeadExecution",
    "RunConfig",
    "Session",
    "SessionStatus",
    "SpecEntry",
    "SpecStatus",
    "TERMINAL_SPEC_STATUSES",
    "ValidatorResult",
    "Verdict",
    "VerdictStatus",
    "utc_now",
]
