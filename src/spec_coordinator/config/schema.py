"""
spec-coordinator - configuration schema and validation.

File: src/spec_coordinator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.
- Convert a validated config mapping into the engine's frozen ``RunConfig``.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys so typos surface instead of being silently ignored.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from spec_coordinator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_SPECS_DIR,
    DEFAULT_STATE_DIR,
    LEAD_PREFERENCE,
)
from spec_coordinator.domain.models import RunConfig

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = ("secret", "token", "password", "api_key")

# Config paths that are resolved relative to the working directory.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "specs_dir"),
    ("paths", "state_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class RunSection(TypedDict):
    max_iterations: int
    timeout_minutes: float
    preflight: bool
    preflight_threshold: float
    preflight_iterations: int
    stop_on_failure: bool


class ToolsSection(TypedDict):
    lead: str
    validators: list[str]
    lead_permissions: list[str]


class SandboxSection(TypedDict):
    enabled: bool
    image: str


class OutputSection(TypedDict):
    verbose: bool
    quiet: bool
    interactive: bool
    heartbeat_seconds: float


class PathsSection(TypedDict):
    specs_dir: str
    state_dir: str


class ObservabilitySection(TypedDict):
    log_level: str
    redact_secrets: bool


class CoordinatorConfig(TypedDict):
    meta: MetaConfig
    run: RunSection
    tools: ToolsSection
    sandbox: SandboxSection
    output: OutputSection
    paths: PathsSection
    observability: ObservabilitySection


DEFAULT_CONFIG: Final[CoordinatorConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "run": {
        "max_iterations": 5,
        "timeout_minutes": 10.0,
        "preflight": True,
        "preflight_threshold": 70.0,
        "preflight_iterations": 2,
        "stop_on_failure": False,
    },
    "tools": {
        "lead": "",
        "validators": [],
        "lead_permissions": [],
    },
    "sandbox": {
        "enabled": False,
        "image": "node:20",
    },
    "output": {
        "verbose": False,
        "quiet": False,
        "interactive": False,
        "heartbeat_seconds": 0.0,
    },
    "paths": {
        "specs_dir": DEFAULT_SPECS_DIR,
        "state_dir": DEFAULT_STATE_DIR,
    },
    "observability": {
        "log_level": "INFO",
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_Kind = Literal["int", "float", "bool", "str", "str_list", "tool", "tool_list"]


@dataclass(frozen=True, slots=True)
class _FieldRule:
    kind: _Kind
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] | None = None


_SECTION_RULES: Final[dict[str, dict[str, _FieldRule]]] = {
    "meta": {"schema_version": _FieldRule("int", minimum=1)},
    "run": {
        "max_iterations": _FieldRule("int", minimum=1),
        "timeout_minutes": _FieldRule("float", minimum=0.1),
        "preflight": _FieldRule("bool"),
        "preflight_threshold": _FieldRule("float", minimum=0, maximum=100),
        "preflight_iterations": _FieldRule("int", minimum=0),
        "stop_on_failure": _FieldRule("bool"),
    },
    "tools": {
        "lead": _FieldRule("tool"),
        "validators": _FieldRule("tool_list"),
        "lead_permissions": _FieldRule("str_list"),
    },
    "sandbox": {
        "enabled": _FieldRule("bool"),
        "image": _FieldRule("str"),
    },
    "output": {
        "verbose": _FieldRule("bool"),
        "quiet": _FieldRule("bool"),
        "interactive": _FieldRule("bool"),
        "heartbeat_seconds": _FieldRule("float", minimum=0),
    },
    "paths": {
        "specs_dir": _FieldRule("str"),
        "state_dir": _FieldRule("str"),
    },
    "observability": {
        "log_level": _FieldRule("str", choices=_LOG_LEVELS),
        "redact_secrets": _FieldRule("bool"),
    },
}


def default_config() -> CoordinatorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[ConfigValidationIssue, ...]:
    """Validate a full config mapping and return every issue found."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return issues.items()

    for key in sorted(config):
        if key not in _SECTION_RULES:
            issues.add(str(key), _unknown_key_message(str(key)))

    for section, rules in _SECTION_RULES.items():
        raw = config.get(section)
        if raw is None:
            issues.add(section, "missing required section")
            continue
        if not isinstance(raw, Mapping):
            issues.add(section, f"expected object, got {type(raw).__name__}")
            continue
        _validate_section(raw, section, rules, issues)

    meta = config.get("meta")
    if isinstance(meta, Mapping):
        version = meta.get("schema_version")
        if isinstance(version, int) and version != ConfigSchemaVersion:
            issues.add("meta.schema_version", migration_guidance(version))

    return issues.items()


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    assert isinstance(config, Mapping)  # noqa: S101 - narrowed by validate_config.
    return _deep_copy_mapping(config)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade spec-coord.toml to the current schema"
        )
    return (
        f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
        "upgrade spec-coordinator"
    )


def run_config_from(config: Mapping[str, Any]) -> RunConfig:
    """Build the engine's frozen ``RunConfig`` from a validated config mapping."""

    run = config["run"]
    output = config["output"]
    sandbox = config["sandbox"]
    tools = config["tools"]
    return RunConfig(
        max_iterations=int(run["max_iterations"]),
        timeout_minutes=float(run["timeout_minutes"]),
        preflight=bool(run["preflight"]),
        preflight_threshold=float(run["preflight_threshold"]),
        preflight_iterations=int(run["preflight_iterations"]),
        stop_on_failure=bool(run["stop_on_failure"]),
        sandbox=bool(sandbox["enabled"]),
        sandbox_image=str(sandbox["image"]),
        interactive=bool(output["interactive"]),
        verbose=bool(output["verbose"]),
        heartbeat_seconds=float(output["heartbeat_seconds"]),
        lead_permissions=tuple(tools["lead_permissions"]),
    )


def _validate_section(
    payload: Mapping[str, object],
    path: str,
    rules: Mapping[str, _FieldRule],
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in rules:
            issues.add(_join(path, str(key)), _unknown_key_message(str(key)))
    for key in sorted(rules):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")
            continue
        _CHECKERS[rules[key].kind](payload[key], _join(path, key), rules[key], issues)


def _check_int(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return
    _check_bounds(float(value), path, rule, issues)


def _check_float(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return
    if not math.isfinite(float(value)):
        issues.add(path, "must be finite")
        return
    _check_bounds(float(value), path, rule, issues)


def _check_bounds(value: float, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if rule.minimum is not None and value < rule.minimum:
        issues.add(path, f"must be >= {rule.minimum:g}")
    if rule.maximum is not None and value > rule.maximum:
        issues.add(path, f"must be <= {rule.maximum:g}")


def _check_bool(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if not isinstance(value, bool):
        issues.add(path, f"expected boolean, got {type(value).__name__}")


def _check_str(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return
    if not value.strip():
        issues.add(path, "must not be empty")
        return
    if rule.choices is not None and value.strip().upper() not in rule.choices:
        expected = ", ".join(rule.choices)
        issues.add(path, f"invalid value {value!r}; expected one of: {expected}")


def _check_str_list(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            issues.add(f"{path}[{index}]", "expected non-empty string")


def _check_tool(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return
    if value and value not in LEAD_PREFERENCE:
        issues.add(path, f"unknown tool {value!r}; expected one of: {', '.join(LEAD_PREFERENCE)}")


def _check_tool_list(value: object, path: str, rule: _FieldRule, issues: _IssueCollector) -> None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return
    for index, item in enumerate(value):
        _check_tool(item, f"{path}[{index}]", rule, issues)
        if item == "":
            issues.add(f"{path}[{index}]", "must not be empty")


_CHECKERS: Final[dict[_Kind, Callable[[object, str, _FieldRule, _IssueCollector], None]]] = {
    "int": _check_int,
    "float": _check_float,
    "bool": _check_bool,
    "str": _check_str,
    "str_list": _check_str_list,
    "tool": _check_tool,
    "tool_list": _check_tool_list,
}


def _unknown_key_message(key: str) -> str:
    lowered = key.lower()
    if any(term in lowered for term in _SENSITIVE_KEY_TERMS):
        return "embedded secret values are forbidden; tools manage their own credentials"
    return "unknown field"


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "CoordinatorConfig",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "run_config_from",
    "validate_config",
]
