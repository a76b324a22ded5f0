"""Per-tool command lines for the supported AI coding CLIs.

File: src/spec_coordinator/tools/definitions.py

Purpose
- Describe how each CLI (claude, codex, gemini) is invoked as lead or validator.
- Validators get read-only tool allowances; leads run with full write access.

Security
- Validator argv never grants write permissions.
- Prompts are passed as the final argv element, never through a shell.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from spec_coordinator.constants import LEAD_PREFERENCE


class ToolRole(enum.StrEnum):
    LEAD = "lead"
    VALIDATOR = "validator"


_READ_ONLY_TOOLS: Final[str] = "View,Read,Grep,Glob,LS"


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Static invocation metadata for one CLI tool."""

    name: str
    command: str
    lead_args: tuple[str, ...]
    validator_args: tuple[str, ...]
    requires_tty: bool = False

    def build_args(
        self,
        role: ToolRole,
        prompt: str,
        *,
        interactive: bool = False,
        lead_permissions: Sequence[str] = (),
    ) -> list[str]:
        """Return argv (without the command) for one invocation."""
        if interactive:
            return [prompt]
        if role is ToolRole.LEAD and lead_permissions and self.name == "claude":
            return ["--allowedTools", ",".join(lead_permissions), "-p", prompt]
        base = self.lead_args if role is ToolRole.LEAD else self.validator_args
        return [*base, prompt]


TOOL_DEFINITIONS: Final[dict[str, ToolDefinition]] = {
    "claude": ToolDefinition(
        name="claude",
        command="claude",
        lead_args=("--dangerously-skip-permissions", "-p", "--output-format", "json"),
        validator_args=("--allowedTools", _READ_ONLY_TOOLS, "-p", "--output-format", "json"),
    ),
    "codex": ToolDefinition(
        name="codex",
        command="codex",
        lead_args=("exec", "--color", "never", "--full-auto", "--json"),
        validator_args=("exec", "--color", "never", "--json"),
        requires_tty=True,
    ),
    "gemini": ToolDefinition(
        name="gemini",
        command="gemini",
        lead_args=("--output-format", "json"),
        validator_args=("--output-format", "json", "--allowed-tools", _READ_ONLY_TOOLS),
    ),
}

KNOWN_TOOLS: Final[tuple[str, ...]] = LEAD_PREFERENCE


def get_tool_definition(name: str) -> ToolDefinition:
    try:
        return TOOL_DEFINITIONS[name]
    except KeyError as exc:
        raise ValueError(f"unsupported tool {name!r}; expected one of {list(KNOWN_TOOLS)}") from exc


__all__ = [
    "KNOWN_TOOLS",
    "TOOL_DEFINITIONS",
    "ToolDefinition",
    "ToolRole",
    "get_tool_definition",
]
