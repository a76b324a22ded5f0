"""Shared builders and stub runners for spec-coordinator tests."""

from __future__ import annotations

import io
import json
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

from spec_coordinator.domain import ids
from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import InvocationOutcome, RunConfig, Session, SpecEntry
from spec_coordinator.tools.runner import InvocationResult

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

_BASE_CONFIG = RunConfig(
    max_iterations=5,
    timeout_minutes=10.0,
    preflight=False,
    preflight_threshold=70.0,
    preflight_iterations=2,
    stop_on_failure=False,
    sandbox=False,
    sandbox_image="node:20",
    interactive=False,
    verbose=False,
    heartbeat_seconds=0.0,
)


def make_run_config(**overrides: object) -> RunConfig:
    return replace(_BASE_CONFIG, **overrides)  # type: ignore[arg-type]


def make_context(cwd: Path, *, env: dict[str, str] | None = None) -> RunContext:
    return RunContext(cwd=cwd.resolve(), env=env or {"PATH": ""}, output=io.StringIO())


def captured(context: RunContext) -> str:
    stream = context.output
    assert isinstance(stream, io.StringIO)
    return stream.getvalue()


def write_spec(
    specs_dir: Path,
    file_name: str,
    *,
    spec_id: str,
    name: str | None = None,
    depends_on: Iterable[str] = (),
    complexity: str = "MODERATE",
    maturity: int = 3,
    body: str = "Build it.",
) -> Path:
    specs_dir.mkdir(parents=True, exist_ok=True)
    deps = list(depends_on)
    lines = [
        "---",
        f"id: {spec_id}",
        f"name: {name or spec_id.replace('-', ' ').title()}",
        f"complexity: {complexity}",
        f"maturity: {maturity}",
    ]
    if deps:
        lines.append("depends_on:")
        lines.extend(f"  - {dep}" for dep in deps)
    lines.extend(["---", "", f"# {name or spec_id}", "", body, ""])
    path = specs_dir / file_name
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def verdict_json(
    status: str = "PASS",
    completeness: float = 95,
    findings: Iterable[dict[str, str]] = (),
) -> str:
    return json.dumps(
        {
            "response_block": {
                "completeness": completeness,
                "status": status,
                "findings": list(findings),
                "recommendations": [],
            }
        }
    )


def exited(output: str = "", exit_code: int = 0, duration_ms: int = 10) -> InvocationResult:
    return InvocationResult(
        outcome=InvocationOutcome.EXITED,
        output=output,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def timed_out(output: str = "", duration_ms: int = 600_000) -> InvocationResult:
    return InvocationResult(
        outcome=InvocationOutcome.TIMEOUT, output=output, duration_ms=duration_ms
    )


def spawn_failed(output: str = "failed to start: No such file") -> InvocationResult:
    return InvocationResult(outcome=InvocationOutcome.SPAWN_FAILED, output=output, duration_ms=1)


Responder = Callable[[str], InvocationResult]


@dataclass(slots=True)
class Call:
    role: str
    tool: str
    prompt: str


@dataclass(slots=True)
class StubRunner:
    """ToolRunner double: scripted results per (role, tool), falling back to defaults."""

    lead_default: InvocationResult = field(default_factory=lambda: exited("implemented"))
    validator_default: InvocationResult = field(default_factory=lambda: exited(verdict_json()))
    calls: list[Call] = field(default_factory=list)
    _scripts: dict[tuple[str, str], deque[InvocationResult | Responder]] = field(
        default_factory=lambda: defaultdict(deque)
    )

    def script(self, role: str, tool: str, *results: InvocationResult | Responder) -> StubRunner:
        self._scripts[(role, tool)].extend(results)
        return self

    async def run_lead(self, tool: str, prompt: str, context: RunContext) -> InvocationResult:
        return self._next("lead", tool, prompt, self.lead_default)

    async def run_validator(
        self, tool: str, prompt: str, context: RunContext
    ) -> InvocationResult:
        return self._next("validator", tool, prompt, self.validator_default)

    def calls_for(self, role: str, tool: str | None = None) -> list[Call]:
        return [
            call
            for call in self.calls
            if call.role == role and (tool is None or call.tool == tool)
        ]

    def _next(
        self, role: str, tool: str, prompt: str, default: InvocationResult
    ) -> InvocationResult:
        self.calls.append(Call(role=role, tool=tool, prompt=prompt))
        queue = self._scripts.get((role, tool))
        if not queue:
            return default
        item = queue.popleft()
        return item(prompt) if callable(item) else item


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self._now = start

    def __call__(self) -> datetime:
        current = self._now
        self._now = current + timedelta(seconds=1)
        return current


def make_session(
    cwd: Path,
    specs: Iterable[SpecEntry] = (),
    *,
    session_id: str | None = None,
    lead: str = "claude",
    validators: tuple[str, ...] = ("codex",),
    when: datetime = BASE_TIME,
    **overrides: object,
) -> Session:
    session = Session(
        id=session_id or ids.generate_session_id(),
        working_directory=str(cwd),
        specs_directory=str(cwd / "specs"),
        specs=list(specs),
        lead=lead,
        validators=validators,
        config=make_run_config(),
        created_at=when,
        updated_at=when,
    )
    for name, value in overrides.items():
        setattr(session, name, value)
    return session


def make_spec(spec_id: str, *, file_name: str | None = None, **overrides: object) -> SpecEntry:
    name = file_name or f"{spec_id}.md"
    return SpecEntry(
        id=spec_id,
        name=spec_id.replace("-", " ").title(),
        file_name=name,
        path=f"specs/{name}",
        **overrides,  # type: ignore[arg-type]
    )
