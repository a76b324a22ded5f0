"""Markdown transcripts per invocation and the final session report."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Final

from spec_coordinator.domain.ids import safe_slug
from spec_coordinator.domain.models import Cycle, Session, SpecEntry, SpecStatus
from spec_coordinator.utils.fs import atomic_write

REPORT_HISTORY_LIMIT: Final[int] = 6
REPORT_HISTORY_MAX_CHARS: Final[int] = 8000

_INVOCATION_REPORT_RE: Final[re.Pattern[str]] = re.compile(
    r"^ses-[0-9A-Za-z]+-(?P<slug>.+)-(?:cycle|preflight)-\d+-[^/]+\.md$"
)


class ReportWriter:
    """Writes report files under ``<state_dir>/reports``."""

    def __init__(self, reports_dir: Path) -> None:
        self._reports_dir = reports_dir

    @property
    def reports_dir(self) -> Path:
        return self._reports_dir

    def lead_report_path(self, session_id: str, spec_id: str, cycle: int, tool: str) -> Path:
        return self._reports_dir / f"{session_id}-{safe_slug(spec_id)}-cycle-{cycle}-{tool}-lead.md"

    def validator_report_path(
        self, session_id: str, spec_id: str, cycle: int, tool: str, *, preflight: bool = False
    ) -> Path:
        stage = "preflight" if preflight else "cycle"
        return self._reports_dir / f"{session_id}-{safe_slug(spec_id)}-{stage}-{cycle}-{tool}.md"

    def final_report_path(self, session_id: str) -> Path:
        return self._reports_dir / f"{session_id}-report.md"

    def write_lead(
        self, session_id: str, spec_id: str, cycle: int, tool: str, output: str
    ) -> Path:
        path = self.lead_report_path(session_id, spec_id, cycle, tool)
        self._write(path, output if output.strip() else "No output captured.")
        return path

    def write_validation(
        self,
        session_id: str,
        spec_id: str,
        cycle: int,
        tool: str,
        output: str,
        *,
        preflight: bool = False,
    ) -> Path:
        path = self.validator_report_path(session_id, spec_id, cycle, tool, preflight=preflight)
        self._write(path, output if output.strip() else "No output captured.")
        return path

    def write_final(self, session: Session) -> Path:
        path = self.final_report_path(session.id)
        self._write(path, render_final_report(session))
        return path

    def existing_validator_reports(
        self, session_id: str, spec_id: str, cycle: int, tools: Iterable[str]
    ) -> list[Path]:
        """Validator transcripts of ``cycle`` in this session, in validator order."""
        if cycle < 1:
            return []
        paths = (self.validator_report_path(session_id, spec_id, cycle, tool) for tool in tools)
        return [path for path in paths if path.is_file()]

    def recent_summaries(
        self,
        spec_id: str,
        *,
        limit: int = REPORT_HISTORY_LIMIT,
        max_chars: int = REPORT_HISTORY_MAX_CHARS,
    ) -> str:
        """Newest lead/validator transcripts for ``spec_id`` across all sessions."""
        if limit < 1 or not self._reports_dir.is_dir():
            return ""
        slug = safe_slug(spec_id)
        candidates: list[tuple[float, str, Path]] = []
        for path in self._reports_dir.glob("*.md"):
            match = _INVOCATION_REPORT_RE.match(path.name)
            if match is None or match.group("slug") != slug:
                continue
            try:
                candidates.append((path.stat().st_mtime, path.name, path))
            except OSError:
                continue
        candidates.sort(reverse=True)

        summaries: list[str] = []
        for _, name, path in candidates[:limit]:
            try:
                content = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError):
                continue
            summaries.append(f"# {name}\n{content[:max_chars]}")
        return "\n\n".join(summaries)

    def _write(self, path: Path, text: str) -> None:
        self._reports_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(path, text if text.endswith("\n") else text + "\n")


def render_final_report(session: Session) -> str:
    lines = [
        "# Spec Coordinator Report",
        "",
        f"Session: {session.id}",
        f"Status: {session.status}",
        f"Working Directory: {session.working_directory}",
        "",
        f"Lead: {session.lead}",
        f"Validators: {', '.join(session.validators)}",
        "",
        "## Specs",
    ]
    buildable = [spec for spec in session.specs if not spec.context_only]
    for spec in buildable:
        lines.extend(_render_spec(spec))

    completed = sum(1 for spec in buildable if spec.status is SpecStatus.COMPLETED)
    failed = sum(1 for spec in buildable if spec.status is SpecStatus.FAILED)
    skipped = sum(1 for spec in buildable if spec.status is SpecStatus.SKIPPED)
    rate = round(completed / max(len(buildable), 1) * 100)
    lines.extend(
        [
            "## Summary",
            f"- Total specs: {len(buildable)}",
            f"- Completed specs: {completed}",
            f"- Failed specs: {failed}",
            f"- Skipped specs: {skipped}",
            f"- Success rate: {rate}%",
            "",
        ]
    )
    return "\n".join(lines)


def final_completeness(spec: SpecEntry) -> float:
    last = _last_round(spec)
    return last.mean_completeness if last is not None else 0.0


def remaining_gaps(spec: SpecEntry) -> list[str]:
    last = _last_round(spec)
    if last is None:
        return []
    return [gap for item in last.validations for gap in item.verdict.gaps]


def _render_spec(spec: SpecEntry) -> list[str]:
    cycles = len(spec.cycles)
    lines = [
        f"### {spec.name} ({spec.file_name})",
        f"- Status: {spec.status}",
        f"- Complexity: {spec.complexity}",
        f"- Maturity: {spec.maturity}",
        f"- Cycles: {cycles}",
        f"- Preflight rounds: {len(spec.preflight)}",
        f"- Final completeness: {round(final_completeness(spec))}%",
    ]
    if spec.status is not SpecStatus.COMPLETED:
        gaps = remaining_gaps(spec)
        if gaps:
            lines.append("- Gap analysis:")
            lines.extend(f"  - {gap}" for gap in gaps)
        elif spec.last_error:
            lines.append(f"- Last error: {spec.last_error.splitlines()[0]}")
    lines.append("")
    return lines


def _last_round(spec: SpecEntry) -> Cycle | None:
    if spec.cycles:
        return spec.cycles[-1]
    if spec.preflight:
        return spec.preflight[-1]
    return None


__all__ = ["ReportWriter", "final_completeness", "remaining_gaps", "render_final_report"]
