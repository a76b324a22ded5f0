"""
spec-coordinator - session coordinator

File: src/spec_coordinator/orchestration/coordinator.py

Purpose
- Sequence ordered specs through the Engine for one session, one spec at a time.
- Resolve start mode (auto, resume, fresh), roles, persistence and the final report.

Functional requirements
- All pre-execution failures (discovery, graph, roles, sandbox, resume) raise before
  any tool is invoked.
- stop-on-failure aborts the session after the first failed spec; remaining specs stay
  pending so the session can be resumed.
- Interrupts persist the session as aborted before propagating.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Collection, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final

from spec_coordinator.constants import DEFAULT_STATE_DIR, LOGS_DIRNAME, REPORTS_DIRNAME
from spec_coordinator.domain import ids
from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import (
    RunConfig,
    Session,
    SessionStatus,
    SpecEntry,
    SpecStatus,
    utc_now,
)
from spec_coordinator.errors import NothingToResumeError
from spec_coordinator.observability import (
    correlation_scope,
    setup_session_logging,
    shutdown_logging,
)
from spec_coordinator.orchestration.engine import Engine
from spec_coordinator.orchestration.reports import ReportWriter
from spec_coordinator.persistence.session_store import (
    JsonSessionRepository,
    SessionRepository,
    completed_spec_keys,
)
from spec_coordinator.planning.spec_graph import order_specs
from spec_coordinator.specs.discovery import LoadedSpec, load_specs
from spec_coordinator.tools.detection import DetectedTool, detect_available_tools
from spec_coordinator.tools.roles import RoleAssignment, assign_roles, normalize_resumed_roles
from spec_coordinator.tools.runner import CliToolRunner, ToolRunner, ensure_sandbox_available

logger = logging.getLogger(__name__)

_RECOMMENDED_MIN_MATURITY: Final[int] = 3
_RESUMABLE_STATUSES: Final[frozenset[SessionStatus]] = frozenset(
    {SessionStatus.RUNNING, SessionStatus.ABORTED}
)


class StartMode(enum.StrEnum):
    AUTO = "auto"
    RESUME = "resume"
    FRESH = "fresh"


@dataclass(frozen=True, slots=True)
class SessionRequest:
    """Per-invocation choices that are not part of the persisted RunConfig."""

    mode: StartMode = StartMode.AUTO
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    lead: str | None = None
    validators: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class SessionPlan:
    specs: tuple[SpecEntry, ...]
    lead: str
    validators: tuple[str, ...]
    tools: tuple[DetectedTool, ...]

    @property
    def buildable(self) -> tuple[SpecEntry, ...]:
        return tuple(
            spec
            for spec in self.specs
            if not spec.context_only and spec.status is not SpecStatus.SKIPPED
        )


class Coordinator:
    """Runs sessions for one working directory."""

    def __init__(
        self,
        context: RunContext,
        *,
        state_dir: Path | None = None,
        repository: SessionRepository | None = None,
        runner_factory: Callable[[RunConfig], ToolRunner] = CliToolRunner,
        detect_tools: Callable[[Mapping[str, str]], Sequence[DetectedTool]] = detect_available_tools,
        observability: Mapping[str, object] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._context = context
        self._state_dir = state_dir if state_dir is not None else context.cwd / DEFAULT_STATE_DIR
        self._repository = repository or JsonSessionRepository(self._state_dir)
        self._reports = ReportWriter(self._state_dir / REPORTS_DIRNAME)
        self._runner_factory = runner_factory
        self._detect_tools = detect_tools
        self._observability = observability
        self._clock = clock
        self.last_session: Session | None = None
        self.last_report_path: Path | None = None

    @property
    def repository(self) -> SessionRepository:
        return self._repository

    def plan_session(self, specs_dir: Path, request: SessionRequest) -> SessionPlan:
        """Dry run: discovery, ordering and roles without creating a session."""
        loaded = self._load(specs_dir, request)
        ordered = order_specs([item.entry for item in loaded])
        tools = tuple(self._detect_tools(self._context.env))
        roles = assign_roles([tool.name for tool in tools], request.lead, request.validators)
        return SessionPlan(
            specs=tuple(ordered), lead=roles.lead, validators=roles.validators, tools=tools
        )

    async def run_session(
        self, specs_dir: Path, config: RunConfig, request: SessionRequest
    ) -> SessionStatus:
        """Build every selected spec in dependency order and return the final status."""
        loaded = self._load(specs_dir, request)
        ordered = order_specs([item.entry for item in loaded])
        if config.sandbox:
            ensure_sandbox_available(self._context.env)
        available = [tool.name for tool in self._detect_tools(self._context.env)]

        session, resumed = self._resolve_session(specs_dir, ordered, available, config, request)
        self.last_session = session
        self._repository.set_pointer(session.id)
        self._repository.save(session)

        previously_completed = (
            frozenset() if resumed else completed_spec_keys(self._repository, exclude=session.id)
        )
        engine = self._engine(loaded, available, config, previously_completed)
        with self._session_logging(session):
            self._warn_low_maturity(session)
            self._emit_start(session)
            try:
                await self._drive(engine, session, config)
            except (KeyboardInterrupt, asyncio.CancelledError):
                session.status = SessionStatus.ABORTED
                self._save(session)
                self.last_report_path = self._reports.write_final(session)
                logger.warning("session %s interrupted; saved as aborted", session.id)
                raise

            if session.status is not SessionStatus.ABORTED:
                session.status = _final_status(session)
            self._save(session)
            self.last_report_path = self._reports.write_final(session)
            if session.status is SessionStatus.COMPLETED:
                self._repository.clear_pointer()
            logger.info("session %s finished with status %s", session.id, session.status)
            self._context.emit(f"Session {session.id}: {session.status}")
            self._context.emit(f"Report: {self.last_report_path}")
            return session.status

    async def run_validation_only(
        self, specs_dir: Path, config: RunConfig, request: SessionRequest
    ) -> SessionStatus:
        """One validator round per selected spec, with no lead; recorded as its own session."""
        loaded = self._load(specs_dir, request)
        ordered = order_specs([item.entry for item in loaded])
        if config.sandbox:
            ensure_sandbox_available(self._context.env)
        available = [tool.name for tool in self._detect_tools(self._context.env)]
        roles = assign_roles(available, request.lead, request.validators)

        session = self._new_session(specs_dir, ordered, roles, config)
        self.last_session = session
        self._repository.save(session)

        engine = self._engine(loaded, available, config)
        with self._session_logging(session):
            self._emit_start(session)
            try:
                for index, spec in enumerate(session.specs):
                    session.current_spec_index = index
                    if spec.is_terminal:
                        continue
                    await engine.run_validation_round(spec, session, config)
                session.current_spec_index = len(session.specs)
            except (KeyboardInterrupt, asyncio.CancelledError):
                session.status = SessionStatus.ABORTED
                self._save(session)
                raise
            session.status = _final_status(session)
            self._save(session)
            self.last_report_path = self._reports.write_final(session)
            self._context.emit(f"Validation {session.id}: {session.status}")
            self._context.emit(f"Report: {self.last_report_path}")
            return session.status

    async def _drive(self, engine: Engine, session: Session, config: RunConfig) -> None:
        _advance_cursor(session)
        self._save(session)
        while session.current_spec is not None:
            spec = session.current_spec
            status = await engine.drive_spec(spec, session, config)
            _advance_cursor(session)
            self._save(session)
            if status is SpecStatus.FAILED and config.stop_on_failure:
                session.status = SessionStatus.ABORTED
                self._context.emit(f"Stopping: {spec.file_name} failed and stop-on-failure is set")
                return

    def _resolve_session(
        self,
        specs_dir: Path,
        ordered: list[SpecEntry],
        available: Sequence[str],
        config: RunConfig,
        request: SessionRequest,
    ) -> tuple[Session, bool]:
        """The session to drive, and whether it was resumed from disk."""
        existing = None
        if request.mode is not StartMode.FRESH:
            pointer = self._repository.pointer()
            existing = self._repository.load(pointer) if pointer is not None else None
            if request.mode is StartMode.RESUME and existing is None:
                raise NothingToResumeError(
                    f"no session to resume in {self._state_dir} (run without --resume to start one)"
                )
            if (
                request.mode is StartMode.AUTO
                and existing is not None
                and existing.status not in _RESUMABLE_STATUSES
            ):
                existing = None

        if existing is not None:
            roles = normalize_resumed_roles(existing.lead, existing.validators, available)
            if (roles.lead, roles.validators) != (existing.lead, existing.validators):
                self._context.emit(
                    f"Roles updated for resume: lead {roles.lead}, "
                    f"validators {', '.join(roles.validators)}"
                )
            existing.lead = roles.lead
            existing.validators = roles.validators
            existing.config = config
            existing.status = SessionStatus.RUNNING
            existing.touch(self._clock())
            self._context.emit(f"Resuming session {existing.id}")
            return existing, True

        roles = assign_roles(available, request.lead, request.validators)
        return self._new_session(specs_dir, ordered, roles, config), False

    def _new_session(
        self,
        specs_dir: Path,
        ordered: list[SpecEntry],
        roles: RoleAssignment,
        config: RunConfig,
    ) -> Session:
        for spec in ordered:
            if spec.context_only:
                spec.status = SpecStatus.SKIPPED
        now = self._clock()
        return Session(
            id=ids.generate_session_id(),
            working_directory=str(self._context.cwd),
            specs_directory=str(specs_dir),
            specs=list(ordered),
            lead=roles.lead,
            validators=roles.validators,
            config=config,
            created_at=now,
            updated_at=now,
        )

    def _engine(
        self,
        loaded: Sequence[LoadedSpec],
        available: Sequence[str],
        config: RunConfig,
        previously_completed: Collection[str] = frozenset(),
    ) -> Engine:
        return Engine(
            runner=self._runner_factory(config),
            repository=self._repository,
            reports=self._reports,
            context=self._context,
            spec_contents={
                item.entry.id: item.content for item in loaded if not item.entry.context_only
            },
            available_tools=available,
            previously_completed=previously_completed,
            clock=self._clock,
        )

    def _load(self, specs_dir: Path, request: SessionRequest) -> list[LoadedSpec]:
        return load_specs(specs_dir, include=request.include, exclude=request.exclude)

    def _save(self, session: Session) -> None:
        session.touch(self._clock())
        self._repository.save(session)

    def _session_logging(self, session: Session) -> AbstractContextManager[None]:
        return _session_logging(session.id, self._observability, self._state_dir / LOGS_DIRNAME)

    def _warn_low_maturity(self, session: Session) -> None:
        for spec in session.specs:
            if spec.is_terminal or spec.context_only:
                continue
            if spec.maturity < _RECOMMENDED_MIN_MATURITY:
                self._context.emit(
                    f"Warning: {spec.file_name} maturity {spec.maturity} is below the "
                    f"recommended minimum ({_RECOMMENDED_MIN_MATURITY})"
                )

    def _emit_start(self, session: Session) -> None:
        pending = [spec for spec in session.specs if not spec.is_terminal]
        self._context.emit(f"Session {session.id}")
        self._context.emit(f"Lead: {session.lead}")
        self._context.emit(f"Validators: {', '.join(session.validators)}")
        self._context.emit(f"Specs to process: {len(pending)}")


@contextmanager
def _session_logging(
    session_id: str, observability: Mapping[str, object] | None, log_dir: Path
) -> Iterator[None]:
    """Bind structured logging and the session correlation id for one session."""
    handle = (
        setup_session_logging(observability, session_id=session_id, log_dir=log_dir)
        if observability is not None
        else None
    )
    try:
        with correlation_scope(session_id=session_id):
            yield
    finally:
        if handle is not None:
            shutdown_logging(handle)


def _advance_cursor(session: Session) -> None:
    index = session.current_spec_index
    while index < len(session.specs) and session.specs[index].is_terminal:
        index += 1
    session.current_spec_index = index


def _final_status(session: Session) -> SessionStatus:
    if any(spec.status is SpecStatus.FAILED for spec in session.specs):
        return SessionStatus.FAILED
    if all(spec.is_terminal for spec in session.specs):
        return SessionStatus.COMPLETED
    return SessionStatus.ABORTED


__all__ = [
    "Coordinator",
    "SessionPlan",
    "SessionRequest",
    "StartMode",
]
