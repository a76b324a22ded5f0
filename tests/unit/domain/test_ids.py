"""Unit tests for session id helpers."""

from __future__ import annotations

import pytest

from spec_coordinator.domain import ids

pytestmark = pytest.mark.unit


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


def test_generate_ulid_no_collision() -> None:
    generated = {ids.generate_ulid() for _ in range(5_000)}
    assert len(generated) == 5_000


def test_ulid_charset_and_length() -> None:
    value = ids.generate_ulid(timestamp_ms=123_456, randbytes=_ff_bytes)
    assert len(value) == ids.ULID_LENGTH
    assert all(char in ids.CROCKFORD_BASE32_ALPHABET for char in value)


def test_ulids_sort_by_timestamp() -> None:
    earlier = ids.generate_ulid(timestamp_ms=1_000, randbytes=_ff_bytes)
    later = ids.generate_ulid(timestamp_ms=1_001, randbytes=_zero_bytes)
    assert earlier < later


def test_ulid_timestamp_bounds() -> None:
    assert ids.generate_ulid(timestamp_ms=0, randbytes=_zero_bytes) == "0" * 26
    ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS, randbytes=_ff_bytes)
    with pytest.raises(ValueError, match="timestamp_ms out of range"):
        ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS + 1)
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ulid(randbytes=lambda size: b"\x00")


def test_session_ids_validate() -> None:
    session_id = ids.generate_session_id(timestamp_ms=42, randbytes=_zero_bytes)
    assert session_id.startswith("ses-")
    ids.validate_session_id(session_id)


@pytest.mark.parametrize(
    "value",
    ["", "ses-", "run-" + "0" * 26, "ses-" + "0" * 25, "ses-" + "I" * 26, "ses-" + "0" * 26 + "/"],
)
def test_invalid_session_ids_are_rejected(value: str) -> None:
    with pytest.raises(ValueError, match="session id must look like"):
        ids.validate_session_id(value)


def test_short_id_and_safe_slug() -> None:
    assert ids.short_id("ses-0123456789ABCDEF") == "89ABCDEF"
    with pytest.raises(ValueError):
        ids.short_id("short")
    assert ids.safe_slug("feat/auth v2") == "feat_auth_v2"
    assert ids.safe_slug("") == "_"
