"""Unit tests for prompt construction and codebase summaries."""

from __future__ import annotations

from pathlib import Path

import pytest

from spec_coordinator.orchestration.prompts import (
    CONTENT_FILE_MAX_BYTES,
    build_format_recovery_prompt,
    build_lead_prompt,
    build_validation_prompt,
    read_codebase_content,
    summarize_codebase,
)

pytestmark = pytest.mark.unit


def _project(root: Path) -> Path:
    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    (root / "README.md").write_text("# App\n", encoding="utf-8")
    (root / "specs").mkdir()
    (root / "specs" / "feature.md").write_text("spec", encoding="utf-8")
    (root / ".ai-coord").mkdir()
    (root / ".ai-coord" / "session").write_text("ses", encoding="utf-8")
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.js").write_text("x", encoding="utf-8")
    return root


def test_summary_lists_project_files_only(tmp_path: Path) -> None:
    assert summarize_codebase(_project(tmp_path)).splitlines() == ["README.md", "src/app.py"]


def test_summary_of_an_empty_project(tmp_path: Path) -> None:
    assert summarize_codebase(tmp_path) == "(no implementation files yet)"


def test_content_skips_binary_and_oversized_files(tmp_path: Path) -> None:
    root = _project(tmp_path)
    (root / "blob.bin").write_bytes(b"\x00\x01\x02")
    (root / "huge.txt").write_text("a" * (CONTENT_FILE_MAX_BYTES + 1), encoding="utf-8")

    content = read_codebase_content(root)

    assert "# src/app.py\nprint('hi')" in content
    assert "# README.md" in content
    assert "blob.bin" not in content
    assert "huge.txt" not in content
    assert "dep.js" not in content


def test_first_lead_prompt_has_no_gap_section() -> None:
    prompt = build_lead_prompt(
        spec_ref="specs/feature-auth.md",
        spec_content="Users log in.",
        context_docs=[],
        feedback="",
        codebase_summary="(no implementation files yet)",
    )
    assert prompt.startswith("You are implementing a feature")
    assert "Target spec: specs/feature-auth.md" in prompt
    assert "TARGET SPEC CONTENT:\nUsers log in." in prompt
    assert "VALIDATOR GAPS" not in prompt
    assert "Use any relevant supporting specs" in prompt
    assert "Previous validation reports" not in prompt
    assert "PREVIOUS REPORT CONTENT" not in prompt
    assert "for context.\n\nTARGET SPEC CONTENT:" in prompt


def test_follow_up_lead_prompt_carries_feedback_and_context() -> None:
    prompt = build_lead_prompt(
        spec_ref="specs/feature-auth.md",
        spec_content="Users log in.",
        context_docs=["system-arch.md", "system-db.md"],
        feedback="- codex: missing logout",
        codebase_summary="src/app.py",
    )
    assert prompt.startswith("You are continuing implementation")
    assert prompt.endswith("VALIDATOR GAPS TO RESOLVE:\n- codex: missing logout")
    assert "used for context: system-arch.md, system-db.md." in prompt


def test_follow_up_lead_prompt_includes_report_history_before_the_spec() -> None:
    prompt = build_lead_prompt(
        spec_ref="specs/feature-auth.md",
        spec_content="Users log in.",
        context_docs=[],
        feedback="- codex: missing logout",
        codebase_summary="src/app.py",
        previous_reports=[".ai-coord/reports/a-codex.md", ".ai-coord/reports/a-gemini.md"],
        report_history="# a-codex.md\nFAIL 60%",
    )
    assert (
        "for context.\n\n"
        "Previous validation reports:\n"
        "- .ai-coord/reports/a-codex.md\n"
        "- .ai-coord/reports/a-gemini.md\n\n"
        "PREVIOUS REPORT CONTENT (most recent first):\n"
        "# a-codex.md\nFAIL 60%\n\n"
        "TARGET SPEC CONTENT:\nUsers log in."
    ) in prompt
    assert prompt.endswith("VALIDATOR GAPS TO RESOLVE:\n- codex: missing logout")


def test_validation_prompt_demands_the_response_block() -> None:
    prompt = build_validation_prompt(
        spec_ref="specs/feature-auth.md",
        spec_content="Users log in.",
        context_docs=[],
        codebase_content="# src/app.py\n...",
    )
    assert '"response_block"' in prompt
    assert '"status": "PASS" | "FAIL"' in prompt
    assert "IMPLEMENTATION (current codebase):\n# src/app.py" in prompt
    assert prompt.endswith("Do not include any other text or markdown.")


def test_format_recovery_appends_to_the_original_prompt() -> None:
    recovered = build_format_recovery_prompt("original prompt")
    assert recovered.startswith("original prompt\n\nFORMAT RECOVERY:")
