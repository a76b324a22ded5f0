"""Output rendering for spec-coordinator CLI commands.

File: src/spec_coordinator/ui/render.py

Purpose
- Provide a thin rendering layer for plain-text CLI output.
- Render sessions, plans and detected tools the same way across commands.

Functional requirements
- Output is deterministic plain text; no dependency beyond the standard library.
- All methods write to the configured stream so tests can capture output.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

from spec_coordinator.orchestration.reports import final_completeness, remaining_gaps

if TYPE_CHECKING:
    from collections.abc import Sequence

    from spec_coordinator.domain.models import Session, SpecEntry
    from spec_coordinator.tools.detection import DetectedTool


class CLIRenderer:
    """Thin CLI output renderer producing clean, deterministic plain text."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def blank(self) -> None:
        self._print("")

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._print(f"\n{title}")

    def warning(self, text: str) -> None:
        self._print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._print(f"  {_pad(list(headers))}")
        self._print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._print(f"  {_pad(list(row))}")

    def next_steps(self, steps: Sequence[str]) -> None:
        """Print actionable next-step hints."""

        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            self._print(f"  $ {step}")

    def ok(self, label: str) -> None:
        self._print(f"  OK  {label}")

    def fail(self, label: str) -> None:
        self._print(f"  FAIL  {label}")

    # Domain views ---------------------------------------------------------

    def tools(self, detected: Sequence[DetectedTool]) -> None:
        rows = [
            (tool.name, tool.version or "(unknown)", tool.binary_path) for tool in detected
        ]
        if not rows:
            self.text("No AI tools detected on PATH.")
            return
        self.table(("Tool", "Version", "Path"), rows, title="Detected tools:")

    def spec_table(self, specs: Sequence[SpecEntry], *, title: str | None = None) -> None:
        rows = [
            (
                str(index),
                spec.file_name,
                spec.id,
                "context" if spec.context_only else str(spec.status),
                str(spec.complexity),
                str(spec.maturity),
                ", ".join(spec.depends_on) or "-",
            )
            for index, spec in enumerate(specs, start=1)
        ]
        self.table(
            ("#", "File", "Id", "Status", "Complexity", "Maturity", "Depends on"),
            rows,
            title=title,
        )

    def session_summary(self, session: Session, *, full: bool = False) -> None:
        buildable = [spec for spec in session.specs if not spec.context_only]
        counts: dict[str, int] = {}
        for spec in buildable:
            counts[str(spec.status)] = counts.get(str(spec.status), 0) + 1

        self.kv("Session", session.id)
        self.kv("Status", session.status)
        self.kv("Lead", session.lead)
        self.kv("Validators", ", ".join(session.validators))
        self.kv("Created", session.created_at.isoformat())
        self.kv("Updated", session.updated_at.isoformat())
        self.kv("Specs", " ".join(f"{key}={counts[key]}" for key in sorted(counts)) or "none")
        current = session.current_spec
        if current is not None:
            self.kv("Current spec", current.file_name)

        rows = [
            (
                spec.file_name,
                str(spec.status),
                str(len(spec.cycles)),
                f"{round(final_completeness(spec))}%",
            )
            for spec in buildable
        ]
        self.table(("Spec", "Status", "Cycles", "Completeness"), rows, title="Specs:")

        if not full:
            return
        for spec in buildable:
            gaps = remaining_gaps(spec)
            if not gaps and not spec.last_error:
                continue
            self.section(f"{spec.file_name}:")
            if gaps:
                self.items(gaps)
            elif spec.last_error:
                self.items(spec.last_error.splitlines())

    def _print(self, line: str) -> None:
        print(line, file=self._stream)


def create_renderer(*, verbose: bool = False, stream: TextIO | None = None) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
