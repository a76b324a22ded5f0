"""Session identifiers and filename-safe slugs.

Session ids are ``ses-<ULID>``: the ULID's millisecond prefix makes ids sort by
creation time, which the store relies on to find the latest session.
"""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
SESSION_ID_PREFIX: Final[str] = "ses"

_SESSION_ID_RE: Final[re.Pattern[str]] = re.compile(
    rf"^{SESSION_ID_PREFIX}-[{CROCKFORD_BASE32_ALPHABET}]{{{ULID_LENGTH}}}$"
)
_UNSAFE_SLUG_CHARS: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_-]")

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {ts_ms}"
        )
    raw = (secrets.token_bytes if randbytes is None else randbytes)(ULID_RANDOM_BYTES)
    if len(raw) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return _encode_crockford_base32((ts_ms << 80) | int.from_bytes(raw, "big"), ULID_LENGTH)


def generate_session_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return f"{SESSION_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_session_id(id_str: str) -> None:
    """Raise ``ValueError`` unless ``id_str`` is a ``ses-<ULID>`` identifier."""
    if not isinstance(id_str, str):
        raise ValueError(f"session id must be a string, got {type(id_str).__name__}")
    if _SESSION_ID_RE.fullmatch(id_str) is None:
        raise ValueError(f"session id must look like '{SESSION_ID_PREFIX}-<ULID>' (got {id_str!r})")


def short_id(id_str: str) -> str:
    """Return the last 8 characters of an ID for compact display."""
    if len(id_str) < 8:
        raise ValueError("id must be at least 8 characters")
    return id_str[-8:]


def safe_slug(value: str) -> str:
    """Make ``value`` safe for use inside a report filename."""
    return _UNSAFE_SLUG_CHARS.sub("_", value) or "_"


def _encode_crockford_base32(value: int, length: int) -> str:
    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


__all__ = [
    "SESSION_ID_PREFIX",
    "ULID_LENGTH",
    "generate_session_id",
    "generate_ulid",
    "safe_slug",
    "short_id",
    "validate_session_id",
]
