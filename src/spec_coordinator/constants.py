"""Stable constants shared across the coordinator packages."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
SESSION_SCHEMA_VERSION: Final[int] = 1

# Project-local state layout (relative to the working directory).
DEFAULT_STATE_DIR: Final[str] = ".ai-coord"
DEFAULT_SPECS_DIR: Final[str] = "specs"
SESSIONS_DIRNAME: Final[str] = "sessions"
REPORTS_DIRNAME: Final[str] = "reports"
LOGS_DIRNAME: Final[str] = "logs"
SESSION_POINTER_FILENAME: Final[str] = "session"
DEFAULT_CONFIG_FILE: Final[str] = "spec-coord.toml"

# Hard-coded lead preference; also the deterministic detection order.
LEAD_PREFERENCE: Final[tuple[str, ...]] = ("claude", "codex", "gemini")

# Files matching this prefix are background context, never built.
CONTEXT_SPEC_PREFIX: Final[str] = "system-"

# Directories never treated as implementation artifacts or prompt context.
IGNORED_TREE_DIRS: Final[frozenset[str]] = frozenset(
    {
        ".git",
        ".ai-coord",
        ".venv",
        "__pycache__",
        "node_modules",
        "dist",
        "build",
        "specs",
        "data",
    }
)

DEFAULT_CLEAN_AGE_DAYS: Final[int] = 30

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "CONTEXT_SPEC_PREFIX",
    "DEFAULT_CLEAN_AGE_DAYS",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_SPECS_DIR",
    "DEFAULT_STATE_DIR",
    "IGNORED_TREE_DIRS",
    "LEAD_PREFERENCE",
    "LOGS_DIRNAME",
    "REPORTS_DIRNAME",
    "SESSIONS_DIRNAME",
    "SESSION_POINTER_FILENAME",
    "SESSION_SCHEMA_VERSION",
]
