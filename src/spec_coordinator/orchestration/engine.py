"""
spec-coordinator - per-spec iteration engine

File: src/spec_coordinator/orchestration/engine.py

Purpose
- Drive one spec through lead/validate cycles until validator consensus or the
  iteration budget is exhausted.
- Run validator-only preflight rounds against an existing tree.

Functional requirements
- A lead non-zero exit is retried once; a rate-limited lead is replaced by the next
  available tool without consuming a cycle.
- A lead spawn failure or timeout is a failed cycle: no validators run and the
  failure text becomes the next cycle's feedback.
- Validators run concurrently; unparsable output gets one format-recovery retry,
  then counts as an ERROR verdict.
- Every appended Cycle is persisted immediately.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Collection, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Final

from spec_coordinator.constants import IGNORED_TREE_DIRS
from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import (
    Cycle,
    InvocationOutcome,
    LeadExecution,
    RunConfig,
    Session,
    SpecEntry,
    SpecStatus,
    ValidatorResult,
    Verdict,
    VerdictStatus,
    utc_now,
)
from spec_coordinator.errors import ValidatorParseError
from spec_coordinator.observability import correlation_scope, redact_text
from spec_coordinator.orchestration.consensus import evaluate_consensus
from spec_coordinator.orchestration.prompts import (
    build_format_recovery_prompt,
    build_lead_prompt,
    build_validation_prompt,
    read_codebase_content,
    summarize_codebase,
)
from spec_coordinator.orchestration.reports import ReportWriter
from spec_coordinator.orchestration.verdicts import build_feedback, parse_verdict
from spec_coordinator.persistence.session_store import SessionRepository
from spec_coordinator.tools.roles import next_lead_candidate, reassign_lead
from spec_coordinator.tools.runner import InvocationResult, ToolRunner
from spec_coordinator.utils.fs import list_tree_files

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS: Final[tuple[str, ...]] = (
    "limit reached",
    "rate limit",
    "quota",
    "too many requests",
)
# Successful outputs longer than this are real work, not a rate-limit notice.
_RATE_LIMIT_SCAN_CHARS: Final[int] = 500


def is_rate_limited(result: InvocationResult) -> bool:
    if result.outcome is InvocationOutcome.SPAWN_FAILED:
        return False
    text = result.output.strip()
    if result.succeeded and len(text) > _RATE_LIMIT_SCAN_CHARS:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def has_implementation_files(context: RunContext) -> bool:
    return bool(list_tree_files(context.cwd, ignored_dirs=IGNORED_TREE_DIRS, limit=1))


class Engine:
    """Runs cycles for one session; owns no state beyond its collaborators."""

    def __init__(
        self,
        *,
        runner: ToolRunner,
        repository: SessionRepository,
        reports: ReportWriter,
        context: RunContext,
        spec_contents: Mapping[str, str],
        available_tools: Sequence[str],
        previously_completed: Collection[str] = frozenset(),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._runner = runner
        self._repository = repository
        self._reports = reports
        self._context = context
        self._spec_contents = dict(spec_contents)
        self._available_tools = tuple(available_tools)
        self._previously_completed = frozenset(previously_completed)
        self._clock = clock

    async def drive_spec(self, spec: SpecEntry, session: Session, config: RunConfig) -> SpecStatus:
        """Run ``spec`` to a terminal status and return it."""
        if spec.is_terminal:
            return spec.status

        with correlation_scope(spec_id=spec.id):
            spec.status = SpecStatus.IN_PROGRESS
            if spec.started_at is None:
                spec.started_at = self._clock()
            self._persist(session)

            if self._already_accepted(spec, config):
                self._finish(spec, session, SpecStatus.COMPLETED)
                self._context.emit(f"  {spec.file_name}: already accepted, nothing to run")
                logger.info("spec %s resumed with an accepted round; marking completed", spec.id)
                return spec.status

            if await self.run_preflight(spec, session, config):
                self._finish(spec, session, SpecStatus.COMPLETED)
                self._context.emit(f"  {spec.file_name}: preflight passed, lead skipped")
                return spec.status

            while len(spec.cycles) < config.max_iterations:
                cycle = await self.run_cycle(spec, session, config)
                if cycle.consensus:
                    self._finish(spec, session, SpecStatus.COMPLETED)
                    self._context.emit(
                        f"  {spec.file_name}: consensus reached after {cycle.number} cycle(s)"
                    )
                    return spec.status

            last = spec.last_cycle
            spec.last_error = (
                last.feedback if last is not None and last.feedback else "iteration budget exhausted"
            )
            self._finish(spec, session, SpecStatus.FAILED)
            self._context.emit(
                f"  {spec.file_name}: no consensus after {len(spec.cycles)} cycle(s)"
            )
            logger.warning("spec %s failed after %d cycles", spec.id, len(spec.cycles))
            return spec.status

    async def run_cycle(self, spec: SpecEntry, session: Session, config: RunConfig) -> Cycle:
        """Run one lead-then-validators round, append it to ``spec.cycles`` and persist."""
        number = len(spec.cycles) + 1
        with correlation_scope(cycle=number):
            started_at = self._clock()
            self._context.emit(
                f"Cycle {number}/{config.max_iterations}: {session.lead} implementing {spec.file_name}"
            )
            prompt = build_lead_prompt(
                spec_ref=self._spec_ref(spec),
                spec_content=self._spec_contents.get(spec.id, ""),
                context_docs=self._context_docs(session),
                feedback=self._previous_feedback(spec),
                codebase_summary=summarize_codebase(self._context.cwd),
                previous_reports=self._previous_reports(spec, session, number),
                report_history=self._reports.recent_summaries(spec.id),
            )
            lead, rate_limited = await self._run_lead(spec, session, prompt, number)

            if rate_limited or not lead.succeeded:
                feedback = _lead_failure_message(lead, rate_limited=rate_limited)
                self._context.emit(f"  lead {lead.tool} failed: {feedback.splitlines()[0]}")
                cycle = Cycle(
                    number=number,
                    lead=lead,
                    validations=(),
                    consensus=False,
                    feedback=feedback,
                    started_at=started_at,
                    finished_at=max(self._clock(), started_at),
                )
            else:
                validations = await self.validate(spec, session, number)
                cycle = self._record_round(number, lead, validations, started_at)

            spec.cycles.append(cycle)
            self._persist(session)
            return cycle

    async def run_preflight(self, spec: SpecEntry, session: Session, config: RunConfig) -> bool:
        """Validator-only rounds against an existing tree; True means the spec already passes."""
        if not config.preflight or spec.cycles:
            return False
        if not (self._was_completed_before(spec) or has_implementation_files(self._context)):
            return False

        for number in range(len(spec.preflight) + 1, config.preflight_iterations + 1):
            with correlation_scope(cycle=f"preflight-{number}"):
                self._context.emit(
                    f"Preflight {number}/{config.preflight_iterations}: validating {spec.file_name}"
                )
                started_at = self._clock()
                validations = await self.validate(spec, session, number, preflight=True)
                round_ = self._record_round(number, None, validations, started_at)
                spec.preflight.append(round_)
                self._persist(session)

                if _preflight_passed(round_, config):
                    logger.info(
                        "preflight passed for %s (mean completeness %.1f)",
                        spec.id,
                        round_.mean_completeness,
                    )
                    return True
        return False

    async def run_validation_round(
        self, spec: SpecEntry, session: Session, config: RunConfig
    ) -> Cycle:
        """Single validator-only cycle used by validation-only sessions."""
        with correlation_scope(spec_id=spec.id, cycle=len(spec.cycles) + 1):
            spec.status = SpecStatus.IN_PROGRESS
            spec.started_at = spec.started_at or self._clock()
            started_at = self._clock()
            number = len(spec.cycles) + 1
            self._context.emit(f"Validating {spec.file_name}")
            validations = await self.validate(spec, session, number)
            cycle = self._record_round(number, None, validations, started_at)
            spec.cycles.append(cycle)
            if cycle.consensus:
                self._finish(spec, session, SpecStatus.COMPLETED)
            else:
                spec.last_error = cycle.feedback or "validators did not reach consensus"
                self._finish(spec, session, SpecStatus.FAILED)
            return cycle

    async def validate(
        self,
        spec: SpecEntry,
        session: Session,
        number: int,
        *,
        preflight: bool = False,
    ) -> tuple[ValidatorResult, ...]:
        prompt = build_validation_prompt(
            spec_ref=self._spec_ref(spec),
            spec_content=self._spec_contents.get(spec.id, ""),
            context_docs=self._context_docs(session),
            codebase_content=read_codebase_content(self._context.cwd),
        )
        results = await asyncio.gather(
            *(
                self._run_validator(tool, prompt, session, spec, number, preflight=preflight)
                for tool in session.validators
            )
        )
        return tuple(results)

    async def _run_lead(
        self, spec: SpecEntry, session: Session, prompt: str, number: int
    ) -> tuple[LeadExecution, bool]:
        """Run the lead with one retry and rate-limit fallback; flag an unresolved rate limit."""
        tried: list[str] = []
        rate_limited = False
        tool = session.lead
        while True:
            with correlation_scope(tool=tool):
                result = await self._runner.run_lead(tool, prompt, self._context)
                attempts = 1
                if (
                    result.outcome is InvocationOutcome.EXITED
                    and result.exit_code != 0
                    and not is_rate_limited(result)
                ):
                    logger.warning("lead %s exited with %s; retrying once", tool, result.exit_code)
                    result = await self._runner.run_lead(tool, prompt, self._context)
                    attempts = 2

            if is_rate_limited(result):
                tried.append(tool)
                candidate = next_lead_candidate(self._available_tools, tried)
                if candidate is not None:
                    roles = reassign_lead(candidate, session.validators, self._available_tools)
                    self._context.emit(f"  lead {tool} rate limited; switching to {candidate}")
                    logger.warning("lead %s rate limited; switching to %s", tool, candidate)
                    session.lead = roles.lead
                    session.validators = roles.validators
                    self._persist(session)
                    tool = candidate
                    continue
                logger.error("lead %s rate limited and no other lead is available", tool)
                rate_limited = True
            break

        self._reports.write_lead(session.id, spec.id, number, tool, redact_text(result.output))
        execution = LeadExecution(
            tool=tool,
            prompt=prompt,
            output=result.output,
            duration_ms=result.duration_ms,
            outcome=result.outcome,
            exit_code=result.exit_code,
            attempts=attempts,
        )
        return execution, rate_limited

    async def _run_validator(
        self,
        tool: str,
        prompt: str,
        session: Session,
        spec: SpecEntry,
        number: int,
        *,
        preflight: bool,
    ) -> ValidatorResult:
        with correlation_scope(tool=tool):
            result = await self._runner.run_validator(tool, prompt, self._context)
            verdict = self._classify(result)
            if verdict is None:
                logger.info("validator %s output unparsable; sending format recovery prompt", tool)
                result = await self._runner.run_validator(
                    tool, build_format_recovery_prompt(prompt), self._context
                )
                verdict = self._classify(result)
                if verdict is None:
                    verdict = Verdict.errored(
                        "validator output missing required JSON response format after format recovery"
                    )

            self._reports.write_validation(
                session.id, spec.id, number, tool, redact_text(result.output), preflight=preflight
            )
            self._context.emit(f"  {tool}: {_describe_verdict(verdict)}")
            return ValidatorResult(
                tool=tool,
                output=result.output,
                duration_ms=result.duration_ms,
                outcome=result.outcome,
                verdict=verdict,
                exit_code=result.exit_code,
            )

    @staticmethod
    def _classify(result: InvocationResult) -> Verdict | None:
        """Verdict for ``result``, or ``None`` when the output needs format recovery."""
        if result.outcome is not InvocationOutcome.EXITED:
            return Verdict.errored(f"validator {result.describe()}")
        try:
            return parse_verdict(result.output)
        except ValidatorParseError as exc:
            logger.debug("validator output rejected: %s", exc)
            return None

    def _record_round(
        self,
        number: int,
        lead: LeadExecution | None,
        validations: tuple[ValidatorResult, ...],
        started_at: datetime,
    ) -> Cycle:
        outcome = evaluate_consensus(item.verdict.status for item in validations)
        feedback = build_feedback(validations) or _error_feedback(validations)
        logger.info(
            "round %d: passed=%d failed=%d errored=%d consensus=%s",
            number,
            outcome.passed,
            outcome.failed,
            outcome.errored,
            outcome.reached,
        )
        return Cycle(
            number=number,
            lead=lead,
            validations=validations,
            consensus=outcome.reached,
            feedback="" if outcome.reached else feedback,
            started_at=started_at,
            finished_at=max(self._clock(), started_at),
        )

    def _finish(self, spec: SpecEntry, session: Session, status: SpecStatus) -> None:
        spec.status = status
        spec.completed_at = self._clock()
        if status is SpecStatus.COMPLETED:
            spec.last_error = None
        self._persist(session)

    def _persist(self, session: Session) -> None:
        session.touch(self._clock())
        self._repository.save(session)

    def _already_accepted(self, spec: SpecEntry, config: RunConfig) -> bool:
        """True when the persisted history already ends in an accepted round."""
        if spec.cycles:
            return spec.cycles[-1].consensus
        if spec.preflight and config.preflight:
            return _preflight_passed(spec.preflight[-1], config)
        return False

    def _was_completed_before(self, spec: SpecEntry) -> bool:
        return spec.id in self._previously_completed or spec.file_name in self._previously_completed

    def _previous_reports(self, spec: SpecEntry, session: Session, number: int) -> list[str]:
        paths = self._reports.existing_validator_reports(
            session.id, spec.id, number - 1, session.validators
        )
        cwd = self._context.cwd
        return [Path(os.path.relpath(path.resolve(), cwd)).as_posix() for path in paths]

    def _previous_feedback(self, spec: SpecEntry) -> str:
        if spec.cycles:
            return spec.cycles[-1].feedback
        if spec.preflight:
            return spec.preflight[-1].feedback
        return ""

    def _spec_ref(self, spec: SpecEntry) -> str:
        try:
            return Path(spec.path).resolve().relative_to(self._context.cwd).as_posix()
        except ValueError:
            return spec.path

    @staticmethod
    def _context_docs(session: Session) -> list[str]:
        return [spec.file_name for spec in session.specs if spec.context_only]


def _lead_failure_message(lead: LeadExecution, *, rate_limited: bool = False) -> str:
    if rate_limited:
        head = f"Lead tool {lead.tool} is rate limited and no other lead is available."
    elif lead.outcome is InvocationOutcome.TIMEOUT:
        head = f"Lead tool {lead.tool} timed out after {lead.duration_ms / 1000:.0f}s."
    elif lead.outcome is InvocationOutcome.SPAWN_FAILED:
        head = f"Lead tool {lead.tool} could not be started."
    else:
        head = (
            f"Lead tool {lead.tool} exited with code {lead.exit_code} "
            f"after {lead.attempts} attempt(s)."
        )
    tail = redact_text(lead.output.strip())
    if len(tail) > 500:
        tail = tail[:500] + "...(truncated)"
    return f"{head}\nOutput:\n{tail}" if tail else head


def _preflight_passed(round_: Cycle, config: RunConfig) -> bool:
    scored = [item for item in round_.validations if item.verdict.status is not VerdictStatus.ERROR]
    return round_.consensus or (
        bool(scored) and round_.mean_completeness >= config.preflight_threshold
    )


def _error_feedback(validations: Sequence[ValidatorResult]) -> str:
    errored = [item for item in validations if item.verdict.status is VerdictStatus.ERROR]
    if not errored:
        return ""
    lines = ["Validators returned no usable verdict:"]
    lines.extend(f"- {item.tool}: {item.verdict.error or 'unknown error'}" for item in errored)
    return "\n".join(lines)


def _describe_verdict(verdict: Verdict) -> str:
    if verdict.status is VerdictStatus.ERROR:
        return f"ERROR ({verdict.error})"
    return f"{verdict.status} ({verdict.completeness:.0f}%, {len(verdict.gaps)} gap(s))"


__all__ = ["Engine", "RATE_LIMIT_MARKERS", "has_implementation_files", "is_rate_limited"]
