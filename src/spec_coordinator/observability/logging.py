"""Per-session JSON-lines logging with correlation fields and secret redaction.

Records are handed to a ``QueueListener`` thread so tool subprocess pumping
never blocks on disk writes. Each session gets ``<log_dir>/<session_id>/coordinator.jsonl``.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

_REDACTED: Final[str] = "***REDACTED***"
_LOG_FILENAME: Final[str] = "coordinator.jsonl"
_ROOT_LOGGER: Final[str] = "spec_coordinator"

_SECRET_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
)
_SECRET_TEXT_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*[^\s,;]+"),
        rf"\1\2{_REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {_REDACTED}"),
    (re.compile(r"\bsk-ant-[A-Za-z0-9_-]{12,}\b"), _REDACTED),
    (re.compile(r"\bsk-[A-Za-z0-9]{12,}\b"), _REDACTED),
    (re.compile(r"\bAIza[0-9A-Za-z_-]{30,}\b"), _REDACTED),
)

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "spec_coordinator_correlation", default=()
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE: SessionLogHandle | None = None
_ATEXIT_REGISTERED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = _ROOT_LOGGER
    level: int | str = "INFO"
    redact: bool = True


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Copies the caller's correlation scope onto the record before it changes threads."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = dict(_CORRELATION.get())
        return super().prepare(record)


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redact: bool) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean(record.getMessage()),
            "session_id": self._session_id,
        }
        event.update(getattr(record, "correlation", None) or {})

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._clean(extras)
        if record.exc_info:
            event["exception"] = self._clean(self.formatException(record.exc_info))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _clean(self, value: object) -> object:
        return _redact(value) if self._redact else value


class SessionLogHandle:
    """An active session log: the configured logger, its file and the listener thread."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: logging.Handler,
        file_handler: logging.Handler,
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._file_handler = file_handler
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    def close(self) -> None:
        """Stop the listener after it drains the queue, then close the file. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.logger.removeHandler(self._queue_handler)
            self._listener.stop()
            self._queue_handler.close()
            self._file_handler.close()


def setup_session_logging(
    observability: Mapping[str, object] | None,
    *,
    session_id: str,
    log_dir: Path | str,
) -> SessionLogHandle:
    """Start logging for ``session_id`` using the ``[observability]`` config table."""
    settings = dict(observability or {})
    level = settings.get("log_level", "INFO")
    return setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=log_dir,
            level=level if isinstance(level, (int, str)) else "INFO",
            redact=bool(settings.get("redact_secrets", True)),
        )
    )


def setup_structured_logging(config: LoggingConfig) -> SessionLogHandle:
    """Route ``config.logger_name`` to a JSON-lines file; replaces any active session log."""
    session_id = config.session_id.strip()
    if not session_id:
        raise ValueError("session_id must not be empty")
    level = _level(config.level)
    shutdown_logging()

    log_path = Path(config.base_log_dir) / session_id / _LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(_JsonLineFormatter(session_id=session_id, redact=config.redact))

    records: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = _CorrelatingQueueHandler(records)
    listener = logging.handlers.QueueListener(records, file_handler)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(queue_handler)
    listener.start()

    handle = SessionLogHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        file_handler=file_handler,
        listener=listener,
    )
    global _ACTIVE, _ATEXIT_REGISTERED
    with _ACTIVE_LOCK:
        _ACTIVE = handle
        if not _ATEXIT_REGISTERED:
            atexit.register(shutdown_logging)
            _ATEXIT_REGISTERED = True
    return handle


def shutdown_logging(handle: SessionLogHandle | None = None) -> None:
    """Close ``handle`` (default: the active session log)."""
    global _ACTIVE
    with _ACTIVE_LOCK:
        target = handle if handle is not None else _ACTIVE
        if target is _ACTIVE:
            _ACTIVE = None
    if target is not None:
        target.close()


def get_active_logging_handle() -> SessionLogHandle | None:
    with _ACTIVE_LOCK:
        return _ACTIVE


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | int | None) -> Iterator[None]:
    """Bind correlation fields for records logged in this scope; ``None`` unbinds a key."""
    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
            continue
        text = str(value).strip()
        if not text:
            raise ValueError(f"correlation value for {key!r} must not be empty")
        state[key] = text
    token = _CORRELATION.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def redact_text(text: str) -> str:
    """Mask secret-looking substrings in free text such as tool output."""
    for pattern, replacement in _SECRET_TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact(value: object, key: str | None = None) -> object:
    if key is not None and any(term in key.lower() for term in _SECRET_KEY_TERMS):
        return _REDACTED
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, list):
        return [_redact(item) for item in value]
    if isinstance(value, dict):
        return {name: _redact(item, name) for name, item in value.items()}
    return value


def _jsonable(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (Path, datetime)):
        return str(value)
    return repr(value)


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


__all__ = [
    "LoggingConfig",
    "SessionLogHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_text",
    "setup_session_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
