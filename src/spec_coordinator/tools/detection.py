"""Detection of locally installed AI coding CLIs.

File: src/spec_coordinator/tools/detection.py

Purpose
- Resolve each known CLI on the run context's PATH.
- Return structured metadata (path, version) for role assignment and the ``tools`` command.

Security
- Detection is offline; it only runs ``<binary> --version`` locally.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from spec_coordinator.tools.definitions import KNOWN_TOOLS, get_tool_definition

_VERSION_TIMEOUT_SECONDS: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class DetectedTool:
    """Metadata about a detected CLI tool."""

    name: str
    binary_path: str
    version: str | None


def detect_tool(name: str, env: Mapping[str, str]) -> DetectedTool | None:
    """Detect a single CLI tool by name.

    The version field may be None if --version fails or times out.
    """
    command = get_tool_definition(name).command
    path = shutil.which(command, path=env.get("PATH", ""))
    if path is None:
        return None
    return DetectedTool(name=name, binary_path=path, version=_get_version(path, env))


def detect_available_tools(env: Mapping[str, str]) -> list[DetectedTool]:
    """Detect all known tools in lead-preference order."""
    found: list[DetectedTool] = []
    for name in KNOWN_TOOLS:
        info = detect_tool(name, env)
        if info is not None:
            found.append(info)
    return found


def _get_version(binary_path: str, env: Mapping[str, str]) -> str | None:
    try:
        result = subprocess.run(
            [binary_path, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT_SECONDS,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip().splitlines()[0]
    return None


__all__ = ["DetectedTool", "detect_available_tools", "detect_tool"]
