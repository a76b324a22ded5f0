"""
spec-coordinator - unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior and structured errors.

What this test file should cover
- Built-in defaults validate successfully.
- Unknown keys and invalid types are rejected with actionable paths.
- Embedded secrets are rejected with a dedicated message.
- Schema version mismatches produce migration guidance.
"""

from __future__ import annotations

import pytest

from spec_coordinator.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)

pytestmark = pytest.mark.unit


def _issue_paths(config: object) -> set[str]:
    return {issue.path for issue in validate_config(config)}


def test_defaults_validate_successfully() -> None:
    assert validate_config(default_config()) == ()


def test_default_config_is_a_copy() -> None:
    first = default_config()
    first["run"]["max_iterations"] = 99
    assert default_config()["run"]["max_iterations"] == 5


def test_merge_is_deep_and_leaves_inputs_untouched() -> None:
    base = default_config()
    merged = merge_config(base, {"run": {"max_iterations": 3}})
    assert merged["run"]["max_iterations"] == 3
    assert merged["run"]["preflight"] is True
    assert base["run"]["max_iterations"] == 5


def test_root_must_be_an_object() -> None:
    assert _issue_paths(["not", "a", "mapping"]) == {"<root>"}


def test_unknown_section_and_missing_section() -> None:
    config = merge_config(default_config(), {"budgets": {"max": 1}})
    del config["sandbox"]
    assert _issue_paths(config) == {"budgets", "sandbox"}


@pytest.mark.parametrize(
    ("overlay", "path"),
    [
        ({"run": {"max_iterations": True}}, "run.max_iterations"),
        ({"run": {"timeout_minutes": "ten"}}, "run.timeout_minutes"),
        ({"run": {"timeout_minutes": float("inf")}}, "run.timeout_minutes"),
        ({"run": {"preflight_iterations": -1}}, "run.preflight_iterations"),
        ({"tools": {"validators": ["codex", "cursor"]}}, "tools.validators[1]"),
        ({"tools": {"lead_permissions": ["Edit", ""]}}, "tools.lead_permissions[1]"),
        ({"sandbox": {"image": "  "}}, "sandbox.image"),
        ({"output": {"heartbeat_seconds": -5}}, "output.heartbeat_seconds"),
        ({"observability": {"log_level": "LOUD"}}, "observability.log_level"),
    ],
)
def test_invalid_field_values_are_reported_by_path(
    overlay: dict[str, object], path: str
) -> None:
    assert path in _issue_paths(merge_config(default_config(), overlay))


def test_log_level_is_case_insensitive() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": "debug"}})
    assert validate_config(config) == ()


def test_embedded_secrets_are_rejected() -> None:
    config = merge_config(default_config(), {"tools": {"openai_token": "abc"}})
    (issue,) = validate_config(config)
    assert issue.path == "tools.openai_token"
    assert "embedded secret values are forbidden" in issue.message


def test_assert_valid_config_renders_every_issue() -> None:
    config = merge_config(
        default_config(), {"run": {"max_iterations": 0, "preflight_threshold": 101}}
    )
    with pytest.raises(ConfigValidationError) as error:
        assert_valid_config(config)
    rendered = str(error.value)
    assert "- run.max_iterations: must be >= 1" in rendered
    assert "- run.preflight_threshold: must be <= 100" in rendered


def test_schema_version_mismatch_has_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})
    (issue,) = validate_config(config)
    assert issue.path == "meta.schema_version"
    assert "upgrade spec-coordinator" in issue.message
    assert "older than supported" in migration_guidance(0)
