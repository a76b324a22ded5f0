"""
spec-coordinator - session persistence

File: src/spec_coordinator/persistence/session_store.py

Purpose
- Persist Session aggregates as one JSON file per session id and track the
  "current session" pointer for resume.

Layout
- ``<state_dir>/sessions/<session_id>.json``: canonical Session JSON.
- ``<state_dir>/session``: the pointed-to session id, one line.

Non-functional requirements
- Every write is atomic (temp file, fsync, ``os.replace``) so a crash never
  leaves a truncated session file.
- Single writer per working directory; no locking is attempted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from spec_coordinator.constants import SESSION_POINTER_FILENAME, SESSIONS_DIRNAME
from spec_coordinator.domain import ids
from spec_coordinator.domain.models import Session, SpecStatus
from spec_coordinator.errors import CoordinatorError
from spec_coordinator.utils.fs import atomic_write

logger = logging.getLogger(__name__)


class SessionStoreError(CoordinatorError):
    """Base class for session persistence errors."""


class SessionCorruptionError(SessionStoreError):
    """Raised when a persisted session file cannot be decoded."""


class SessionRepository(Protocol):
    def load(self, session_id: str) -> Session | None: ...

    def save(self, session: Session) -> None: ...

    def pointer(self) -> str | None: ...

    def set_pointer(self, session_id: str) -> None: ...

    def clear_pointer(self) -> None: ...

    def list_sessions(self) -> list[Session]: ...


class JsonSessionRepository:
    """File-backed SessionRepository rooted at a project's state directory."""

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)
        self._sessions_dir = self._state_dir / SESSIONS_DIRNAME
        self._pointer_path = self._state_dir / SESSION_POINTER_FILENAME

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def path_for(self, session_id: str) -> Path:
        ids.validate_session_id(session_id)
        return self._sessions_dir / f"{session_id}.json"

    def load(self, session_id: str) -> Session | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SessionStoreError(f"unable to read session file {path}: {exc}") from exc
        try:
            return Session.from_json(raw)
        except ValueError as exc:
            raise SessionCorruptionError(f"session file {path} is not valid: {exc}") from exc

    def save(self, session: Session) -> None:
        path = self.path_for(session.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, session.to_json(indent=2) + "\n")
        except OSError as exc:
            raise SessionStoreError(f"unable to write session file {path}: {exc}") from exc
        logger.debug("saved session %s (status=%s)", session.id, session.status)

    def pointer(self) -> str | None:
        if not self._pointer_path.exists():
            return None
        try:
            value = self._pointer_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise SessionStoreError(f"unable to read session pointer: {exc}") from exc
        if not value:
            return None
        try:
            ids.validate_session_id(value)
        except ValueError:
            logger.warning("ignoring malformed session pointer %r", value)
            return None
        return value

    def set_pointer(self, session_id: str) -> None:
        ids.validate_session_id(session_id)
        self._state_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(self._pointer_path, session_id + "\n")

    def clear_pointer(self) -> None:
        self._pointer_path.unlink(missing_ok=True)

    def list_sessions(self) -> list[Session]:
        """Return readable sessions, newest first; corrupt files are skipped."""
        if not self._sessions_dir.is_dir():
            return []
        sessions: list[Session] = []
        for path in sorted(self._sessions_dir.glob("ses-*.json")):
            try:
                loaded = self.load(path.stem)
            except (SessionStoreError, ValueError) as exc:
                logger.warning("skipping unreadable session file %s: %s", path.name, exc)
                continue
            if loaded is not None:
                sessions.append(loaded)
        sessions.sort(key=lambda item: (item.updated_at, item.id), reverse=True)
        return sessions

    def latest(self) -> Session | None:
        sessions = self.list_sessions()
        return sessions[0] if sessions else None

    def current(self) -> Session | None:
        """Return the pointed-to session, if the pointer and its file both exist."""
        session_id = self.pointer()
        if session_id is None:
            return None
        return self.load(session_id)


def completed_spec_keys(
    repository: SessionRepository, *, exclude: str | None = None
) -> frozenset[str]:
    """Spec ids and file names completed in any stored session other than ``exclude``."""
    keys: set[str] = set()
    for session in repository.list_sessions():
        if session.id == exclude:
            continue
        for spec in session.specs:
            if spec.status is SpecStatus.COMPLETED:
                keys.update((spec.id, spec.file_name))
    return frozenset(keys)


__all__ = [
    "JsonSessionRepository",
    "SessionCorruptionError",
    "SessionRepository",
    "SessionStoreError",
    "completed_spec_keys",
]
