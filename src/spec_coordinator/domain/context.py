"""Explicit execution context threaded through every engine call."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO


@dataclass(frozen=True, slots=True)
class RunContext:
    """Environment, working directory and output sink for one run.

    The engine and runner never consult ``os.environ``, ``os.getcwd()`` or
    ``sys.stdout`` on their own; tests build a context with fakes instead.
    """

    cwd: Path
    env: Mapping[str, str] = field(default_factory=dict)
    output: TextIO = field(default=sys.stdout)
    output_is_tty: bool = False
    quiet: bool = False

    @classmethod
    def from_process(cls, cwd: Path | str | None = None, *, quiet: bool = False) -> RunContext:
        """Capture the current process environment once, at the CLI boundary."""

        stream = sys.stdout
        isatty = getattr(stream, "isatty", None)
        return cls(
            cwd=Path(cwd if cwd is not None else os.getcwd()).resolve(),
            env=dict(os.environ),
            output=stream,
            output_is_tty=bool(isatty()) if callable(isatty) else False,
            quiet=quiet,
        )

    def emit(self, line: str = "") -> None:
        """Write one progress line to the output sink unless quiet."""

        if self.quiet:
            return
        self.output.write(line + "\n")
        self.output.flush()

    def write_raw(self, text: str) -> None:
        """Forward raw tool output (verbose streaming); ignores ``quiet``."""

        self.output.write(text)
        self.output.flush()


__all__ = ["RunContext"]
