"""Unit tests for session coordination: ordering, resume, stop-on-failure and reports."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import SessionStatus, SpecStatus
from spec_coordinator.errors import NothingToResumeError, NoValidatorsAvailableError
from spec_coordinator.orchestration.coordinator import Coordinator, SessionRequest, StartMode
from spec_coordinator.tools.detection import DetectedTool

from support import (
    StepClock,
    StubRunner,
    captured,
    exited,
    make_context,
    make_run_config,
    verdict_json,
    write_spec,
)

pytestmark = pytest.mark.unit


def _detector(*names: str):
    def detect(env: Mapping[str, str]) -> Sequence[DetectedTool]:
        return [DetectedTool(name=name, binary_path=f"/usr/bin/{name}", version="1.0") for name in names]

    return detect


def _coordinator(
    context: RunContext, runner: StubRunner, *tools: str
) -> Coordinator:
    return Coordinator(
        context,
        runner_factory=lambda config: runner,
        detect_tools=_detector(*(tools or ("claude", "codex"))),
        clock=StepClock(),
    )


def _auth_and_dashboard(project: Path) -> Path:
    specs_dir = project / "specs"
    write_spec(specs_dir, "feature-dashboard.md", spec_id="feat-dashboard", depends_on=["feat-auth"])
    write_spec(specs_dir, "feature-auth.md", spec_id="feat-auth")
    return specs_dir


@pytest.mark.asyncio
async def test_end_to_end_builds_specs_in_dependency_order(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    context = make_context(tmp_path)
    runner = StubRunner()
    coordinator = _coordinator(context, runner)

    status = await coordinator.run_session(specs_dir, make_run_config(), SessionRequest())

    assert status is SessionStatus.COMPLETED
    session = coordinator.last_session
    assert session is not None
    assert [spec.id for spec in session.specs] == ["feat-auth", "feat-dashboard"]
    assert all(spec.status is SpecStatus.COMPLETED for spec in session.specs)
    assert [len(spec.cycles) for spec in session.specs] == [1, 1]
    assert session.current_spec_index == 2

    lead_calls = runner.calls_for("lead")
    assert "Target spec: specs/feature-auth.md" in lead_calls[0].prompt
    assert "Target spec: specs/feature-dashboard.md" in lead_calls[1].prompt

    assert coordinator.repository.pointer() is None
    assert coordinator.last_report_path is not None
    report = coordinator.last_report_path.read_text(encoding="utf-8")
    assert "- Completed specs: 2" in report
    assert "- Success rate: 100%" in report


@pytest.mark.asyncio
async def test_resume_without_a_session_fails_before_any_tool_runs(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    runner = StubRunner()
    coordinator = _coordinator(make_context(tmp_path), runner)

    with pytest.raises(NothingToResumeError):
        await coordinator.run_session(
            specs_dir, make_run_config(), SessionRequest(mode=StartMode.RESUME)
        )
    assert runner.calls == []


@pytest.mark.asyncio
async def test_role_errors_abort_before_a_session_is_created(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    runner = StubRunner()
    coordinator = _coordinator(make_context(tmp_path), runner, "claude")

    with pytest.raises(NoValidatorsAvailableError):
        await coordinator.run_session(specs_dir, make_run_config(), SessionRequest())
    assert runner.calls == []
    assert not (tmp_path / ".ai-coord").exists()


@pytest.mark.asyncio
async def test_stop_on_failure_aborts_and_auto_mode_resumes(tmp_path: Path) -> None:
    specs_dir = tmp_path / "specs"
    write_spec(specs_dir, "feature-a.md", spec_id="feat-a")
    write_spec(specs_dir, "feature-b.md", spec_id="feat-b")
    context = make_context(tmp_path)
    failing = StubRunner(validator_default=exited(verdict_json("FAIL", 20)))

    first = _coordinator(context, failing)
    status = await first.run_session(
        specs_dir, make_run_config(max_iterations=1, stop_on_failure=True), SessionRequest()
    )

    assert status is SessionStatus.ABORTED
    aborted = first.last_session
    assert aborted is not None
    assert [spec.status for spec in aborted.specs] == [SpecStatus.FAILED, SpecStatus.PENDING]
    assert first.repository.pointer() == aborted.id

    passing = StubRunner()
    second = _coordinator(context, passing)
    status = await second.run_session(specs_dir, make_run_config(), SessionRequest())

    resumed = second.last_session
    assert resumed is not None
    assert resumed.id == aborted.id
    assert status is SessionStatus.FAILED
    assert [spec.status for spec in resumed.specs] == [SpecStatus.FAILED, SpecStatus.COMPLETED]
    assert len(resumed.specs[0].cycles) == 1
    assert len(passing.calls_for("lead")) == 1
    assert f"Resuming session {aborted.id}" in captured(context)


@pytest.mark.asyncio
async def test_start_over_ignores_a_resumable_session(tmp_path: Path) -> None:
    specs_dir = tmp_path / "specs"
    write_spec(specs_dir, "feature-a.md", spec_id="feat-a")
    context = make_context(tmp_path)
    failing = StubRunner(validator_default=exited(verdict_json("FAIL", 20)))
    first = _coordinator(context, failing)
    await first.run_session(
        specs_dir, make_run_config(max_iterations=1, stop_on_failure=True), SessionRequest()
    )
    assert first.last_session is not None

    second = _coordinator(context, StubRunner())
    status = await second.run_session(
        specs_dir, make_run_config(), SessionRequest(mode=StartMode.FRESH)
    )

    assert status is SessionStatus.COMPLETED
    assert second.last_session is not None
    assert second.last_session.id != first.last_session.id


@pytest.mark.asyncio
async def test_new_session_preflights_specs_completed_in_an_earlier_session(
    tmp_path: Path,
) -> None:
    specs_dir = tmp_path / "specs"
    write_spec(specs_dir, "feature-a.md", spec_id="feat-a")
    context = make_context(tmp_path)
    first = _coordinator(context, StubRunner())
    assert await first.run_session(specs_dir, make_run_config(), SessionRequest()) is (
        SessionStatus.COMPLETED
    )

    runner = StubRunner()
    second = _coordinator(context, runner)
    status = await second.run_session(
        specs_dir, make_run_config(preflight=True), SessionRequest(mode=StartMode.FRESH)
    )

    assert status is SessionStatus.COMPLETED
    session = second.last_session
    assert session is not None
    assert len(session.specs[0].preflight) == 1
    assert session.specs[0].cycles == []
    assert runner.calls_for("lead") == []
    assert "feature-a.md: preflight passed, lead skipped" in captured(context)


@pytest.mark.asyncio
async def test_filtered_specs_are_skipped_but_kept(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    runner = StubRunner()
    coordinator = _coordinator(make_context(tmp_path), runner)

    status = await coordinator.run_session(
        specs_dir, make_run_config(), SessionRequest(include=("feature-auth.md",))
    )

    assert status is SessionStatus.COMPLETED
    session = coordinator.last_session
    assert session is not None
    assert [spec.status for spec in session.specs] == [SpecStatus.COMPLETED, SpecStatus.SKIPPED]
    assert len(runner.calls_for("lead")) == 1


@pytest.mark.asyncio
async def test_context_specs_inform_prompts_and_are_never_built(tmp_path: Path) -> None:
    specs_dir = tmp_path / "specs"
    write_spec(specs_dir, "system-architecture.md", spec_id="arch")
    write_spec(specs_dir, "feature-auth.md", spec_id="feat-auth", depends_on=["arch"])
    runner = StubRunner()
    coordinator = _coordinator(make_context(tmp_path), runner)

    status = await coordinator.run_session(specs_dir, make_run_config(), SessionRequest())

    assert status is SessionStatus.COMPLETED
    session = coordinator.last_session
    assert session is not None
    assert session.specs[0].context_only is True
    assert session.specs[0].status is SpecStatus.SKIPPED
    assert session.specs[0].cycles == []
    (lead_call,) = runner.calls_for("lead")
    assert "system-architecture.md" in lead_call.prompt


@pytest.mark.asyncio
async def test_low_maturity_specs_emit_a_warning(tmp_path: Path) -> None:
    specs_dir = tmp_path / "specs"
    write_spec(specs_dir, "feature-draft.md", spec_id="draft", maturity=1)
    context = make_context(tmp_path)

    await _coordinator(context, StubRunner()).run_session(
        specs_dir, make_run_config(), SessionRequest()
    )

    assert "feature-draft.md maturity 1 is below the recommended minimum (3)" in captured(context)


@pytest.mark.asyncio
async def test_interrupt_saves_the_session_as_aborted(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)

    def interrupt(prompt: str):
        raise asyncio.CancelledError

    runner = StubRunner().script("lead", "claude", interrupt)
    coordinator = _coordinator(make_context(tmp_path), runner)

    with pytest.raises(asyncio.CancelledError):
        await coordinator.run_session(specs_dir, make_run_config(), SessionRequest())

    session = coordinator.last_session
    assert session is not None
    stored = coordinator.repository.load(session.id)
    assert stored is not None
    assert stored.status is SessionStatus.ABORTED
    assert stored.specs[0].status is SpecStatus.IN_PROGRESS
    assert coordinator.repository.pointer() == session.id


@pytest.mark.asyncio
async def test_validation_only_runs_validators_without_a_lead(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    runner = StubRunner()
    coordinator = _coordinator(make_context(tmp_path), runner)

    status = await coordinator.run_validation_only(specs_dir, make_run_config(), SessionRequest())

    assert status is SessionStatus.COMPLETED
    session = coordinator.last_session
    assert session is not None
    assert all(len(spec.cycles) == 1 and spec.cycles[0].lead is None for spec in session.specs)
    assert runner.calls_for("lead") == []
    assert coordinator.repository.pointer() is None
    assert coordinator.last_report_path is not None and coordinator.last_report_path.exists()


def test_plan_session_orders_specs_and_assigns_roles(tmp_path: Path) -> None:
    specs_dir = _auth_and_dashboard(tmp_path)
    coordinator = _coordinator(make_context(tmp_path), StubRunner(), "codex", "gemini", "claude")

    plan = coordinator.plan_session(specs_dir, SessionRequest(exclude=("feature-dashboard.md",)))

    assert [spec.id for spec in plan.specs] == ["feat-auth", "feat-dashboard"]
    assert [spec.id for spec in plan.buildable] == ["feat-auth"]
    assert plan.lead == "claude"
    assert plan.validators == ("codex", "gemini")
