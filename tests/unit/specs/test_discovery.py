"""Unit tests for spec discovery and front matter parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from spec_coordinator.domain.models import Complexity, SpecStatus
from spec_coordinator.errors import SpecDiscoveryError
from spec_coordinator.specs.discovery import (
    discover_spec_files,
    extract_front_matter,
    is_selected,
    load_spec,
    load_specs,
)

from support import write_spec

pytestmark = pytest.mark.unit


def test_discovers_markdown_files_sorted_by_name(tmp_path: Path) -> None:
    for name in ("b.md", "a.md", "notes.txt"):
        (tmp_path / name).write_text("x", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "c.md").write_text("x", encoding="utf-8")

    assert [path.name for path in discover_spec_files(tmp_path)] == ["a.md", "b.md"]


def test_missing_directory_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(SpecDiscoveryError, match="not found"):
        discover_spec_files(tmp_path / "specs")


def test_file_instead_of_directory_is_an_error(tmp_path: Path) -> None:
    target = tmp_path / "specs"
    target.write_text("", encoding="utf-8")
    with pytest.raises(SpecDiscoveryError, match="not a directory"):
        discover_spec_files(target)


def test_load_spec_parses_front_matter(tmp_path: Path) -> None:
    path = write_spec(
        tmp_path,
        "feature-auth.md",
        spec_id="feat-auth",
        name="Authentication",
        depends_on=["arch", "arch", "db"],
        complexity="high",
        maturity=4,
        body="Users can log in.",
    )

    loaded = load_spec(path)

    assert loaded is not None
    entry = loaded.entry
    assert entry.id == "feat-auth"
    assert entry.name == "Authentication"
    assert entry.file_name == "feature-auth.md"
    assert entry.depends_on == ("arch", "db")
    assert entry.complexity is Complexity.HIGH
    assert entry.maturity == 4
    assert entry.context_only is False
    assert entry.status is SpecStatus.PENDING
    assert "Users can log in." in loaded.content


def test_depends_on_accepts_a_single_string_and_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "feature.md"
    path.write_text(
        "---\nid: feat\nname: Feature\ncomplexity: EASY\nmaturity: 2\ndependsOn: base\n---\n",
        encoding="utf-8",
    )
    loaded = load_spec(path)
    assert loaded is not None
    assert loaded.entry.depends_on == ("base",)


def test_unknown_complexity_defaults_to_moderate(tmp_path: Path) -> None:
    loaded = load_spec(write_spec(tmp_path, "f.md", spec_id="f", complexity="EXTREME"))
    assert loaded is not None
    assert loaded.entry.complexity is Complexity.MODERATE


def test_system_prefix_marks_context_only(tmp_path: Path) -> None:
    loaded = load_spec(write_spec(tmp_path, "system-architecture.md", spec_id="arch"))
    assert loaded is not None
    assert loaded.entry.context_only is True


@pytest.mark.parametrize(
    "content",
    [
        "# Just a heading\n",
        "---\nid: x\nname: X\n",
        "---\n- a\n- b\n---\n",
        "---\nid: x\nname: X\ncomplexity: EASY\n---\n",
        "---\nid: ''\nname: X\ncomplexity: EASY\nmaturity: 3\n---\n",
    ],
)
def test_unusable_front_matter_is_ignored(tmp_path: Path, content: str) -> None:
    path = tmp_path / "spec.md"
    path.write_text(content, encoding="utf-8")
    assert load_spec(path) is None


def test_malformed_yaml_names_the_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.md"
    path.write_text("---\nid: [unclosed\nname: X\n---\n", encoding="utf-8")
    with pytest.raises(SpecDiscoveryError, match="broken.md"):
        load_spec(path)


@pytest.mark.parametrize("maturity", ["high", "0"])
def test_invalid_maturity_is_an_error(tmp_path: Path, maturity: str) -> None:
    path = tmp_path / "feature.md"
    path.write_text(
        f"---\nid: f\nname: F\ncomplexity: EASY\nmaturity: {maturity}\n---\n", encoding="utf-8"
    )
    with pytest.raises(SpecDiscoveryError, match="feature.md"):
        load_spec(path)


def test_byte_order_mark_is_tolerated() -> None:
    assert extract_front_matter("\ufeff---\nid: x\n---\nbody") == "id: x"


def test_load_specs_marks_filtered_specs_skipped(tmp_path: Path) -> None:
    write_spec(tmp_path, "feature-auth.md", spec_id="auth")
    write_spec(tmp_path, "feature-billing.md", spec_id="billing")
    write_spec(tmp_path, "system-arch.md", spec_id="arch")
    (tmp_path / "README.md").write_text("# Specs\n", encoding="utf-8")

    loaded = load_specs(tmp_path, include=["feature-a*"])

    statuses = {item.entry.file_name: item.entry.status for item in loaded}
    assert statuses == {
        "feature-auth.md": SpecStatus.PENDING,
        "feature-billing.md": SpecStatus.SKIPPED,
        "system-arch.md": SpecStatus.PENDING,
    }


@pytest.mark.parametrize(
    ("include", "exclude", "expected"),
    [
        ((), (), True),
        (("feature-*.md",), (), True),
        (("other.md",), (), False),
        ((), ("feature-auth.md",), False),
        (("feature-*",), ("*-auth.md",), False),
        (("",), ("",), True),
    ],
)
def test_is_selected(include: tuple[str, ...], exclude: tuple[str, ...], expected: bool) -> None:
    assert is_selected("feature-auth.md", include, exclude) is expected
