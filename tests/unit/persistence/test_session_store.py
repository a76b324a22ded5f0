"""Session repository tests: atomic JSON files, the resume pointer and listing."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from spec_coordinator.domain import ids
from spec_coordinator.domain.models import SessionStatus, SpecStatus
from spec_coordinator.persistence.session_store import (
    JsonSessionRepository,
    SessionCorruptionError,
    completed_spec_keys,
)

from support import BASE_TIME, make_session, make_spec

pytestmark = pytest.mark.unit


def test_save_then_load_preserves_the_session(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path / ".ai-coord")
    session = make_session(
        tmp_path,
        [make_spec("feat-auth", status=SpecStatus.COMPLETED), make_spec("feat-ui", depends_on=("feat-auth",))],
        current_spec_index=1,
    )

    repo.save(session)

    path = repo.path_for(session.id)
    assert path == tmp_path / ".ai-coord" / "sessions" / f"{session.id}.json"
    assert json.loads(path.read_text(encoding="utf-8"))["id"] == session.id
    assert repo.load(session.id) == session
    assert not list(path.parent.glob("*.tmp"))


def test_load_unknown_session_returns_none(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    assert repo.load(ids.generate_session_id()) is None


def test_session_ids_are_validated_before_touching_disk(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    with pytest.raises(ValueError, match="ses-<ULID>"):
        repo.path_for("../../etc/passwd")


def test_corrupt_session_file_raises(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    session_id = ids.generate_session_id()
    repo.sessions_dir.mkdir(parents=True)
    repo.path_for(session_id).write_text("{not json", encoding="utf-8")

    with pytest.raises(SessionCorruptionError):
        repo.load(session_id)


def test_pointer_lifecycle(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path / "state")
    session = make_session(tmp_path)
    repo.save(session)

    assert repo.pointer() is None
    assert repo.current() is None

    repo.set_pointer(session.id)
    assert repo.pointer() == session.id
    assert repo.current() == session

    repo.clear_pointer()
    repo.clear_pointer()
    assert repo.pointer() is None


def test_malformed_pointer_is_ignored(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    (tmp_path / "session").write_text("not-a-session\n", encoding="utf-8")
    assert repo.pointer() is None


def test_dangling_pointer_has_no_current_session(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    repo.set_pointer(ids.generate_session_id())
    assert repo.current() is None


def test_list_sessions_newest_first_and_skips_corrupt_files(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    older = make_session(tmp_path, when=BASE_TIME, status=SessionStatus.COMPLETED)
    newer = make_session(tmp_path, when=BASE_TIME + timedelta(hours=1))
    repo.save(older)
    repo.save(newer)
    (repo.sessions_dir / f"{ids.generate_session_id()}.json").write_text("[]", encoding="utf-8")

    assert [session.id for session in repo.list_sessions()] == [newer.id, older.id]
    assert repo.latest() == newer


def test_completed_spec_keys_cover_ids_and_file_names_of_other_sessions(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path)
    earlier = make_session(
        tmp_path,
        [
            make_spec("feat-auth", file_name="feature-auth.md", status=SpecStatus.COMPLETED),
            make_spec("feat-ui", status=SpecStatus.FAILED),
        ],
    )
    current = make_session(tmp_path, [make_spec("feat-api", status=SpecStatus.COMPLETED)])
    repo.save(earlier)
    repo.save(current)

    keys = completed_spec_keys(repo, exclude=current.id)

    assert keys == frozenset({"feat-auth", "feature-auth.md"})
    assert "feat-api" in completed_spec_keys(repo)


def test_empty_state_dir_lists_nothing(tmp_path: Path) -> None:
    repo = JsonSessionRepository(tmp_path / "absent")
    assert repo.list_sessions() == []
    assert repo.latest() is None


@given(
    statuses=st.lists(st.sampled_from(list(SpecStatus)), min_size=1, max_size=6),
    index=st.integers(min_value=0, max_value=6),
)
@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_saved_sessions_reload_identically(
    tmp_path: Path, statuses: list[SpecStatus], index: int
) -> None:
    repo = JsonSessionRepository(tmp_path / "prop")
    specs = [make_spec(f"spec-{n}", status=status) for n, status in enumerate(statuses)]
    session = make_session(tmp_path, specs, current_spec_index=index)

    repo.save(session)

    assert repo.load(session.id) == session
