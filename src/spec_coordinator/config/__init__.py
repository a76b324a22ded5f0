"""
spec-coordinator config package public API.

File: src/spec_coordinator/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.
- Support loading from ``spec-coord.toml`` + ``SPEC_COORD_`` env overrides.
"""

from spec_coordinator.config.loader import (
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from spec_coordinator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    CoordinatorConfig,
    assert_valid_config,
    default_config,
    run_config_from,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "CoordinatorConfig",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "run_config_from",
    "validate_config",
]
