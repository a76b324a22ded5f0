"""
spec-coordinator - CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Exercise `python -m spec_coordinator` end to end against stub AI CLIs placed on PATH.
- Verify exit codes, command output signals, and persistent session/report side effects.
"""

from __future__ import annotations

import json
import os
import stat
import subprocess
import sys
from pathlib import Path

import pytest

from support import write_spec

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

pytestmark = pytest.mark.integration

_PASSING_VERDICT = (
    '{"response_block": {"completeness": 96, "status": "PASS", '
    '"findings": [], "recommendations": []}}'
)


def _stub_tool(bin_dir: Path, name: str, body: str) -> Path:
    bin_dir.mkdir(parents=True, exist_ok=True)
    script = bin_dir / name
    script.write_text(
        "#!/bin/sh\n"
        'if [ "$1" = "--version" ]; then\n'
        f'  echo "{name} 1.0.0"\n'
        "  exit 0\n"
        "fi\n"
        f"{body}\n",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def _stub_tools(root: Path, *, with_validator: bool = True) -> Path:
    bin_dir = root / "fake-bin"
    _stub_tool(bin_dir, "claude", "echo 'implemented the feature'")
    if with_validator:
        _stub_tool(bin_dir, "gemini", f"echo '{_PASSING_VERDICT}'")
    return bin_dir


def _run_cli(
    repo_root: Path,
    *args: str,
    path: Path | None = None,
    extra_env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    env = {
        key: value for key, value in os.environ.items() if not key.startswith("SPEC_COORD_")
    }
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    # Tool detection only ever sees the stub directory.
    env["PATH"] = str(path) if path is not None else str(repo_root / "no-tools")
    env.update(extra_env or {})
    return subprocess.run(
        [sys.executable, "-m", "spec_coordinator", *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _two_specs(root: Path) -> None:
    specs = root / "specs"
    write_spec(specs, "feature-dashboard.md", spec_id="feat-dashboard", depends_on=["feat-auth"])
    write_spec(specs, "feature-auth.md", spec_id="feat-auth")


def test_init_creates_starter_files_and_refuses_to_overwrite(tmp_path: Path) -> None:
    first = _run_cli(tmp_path, "init")
    assert first.returncode == 0, first.stderr
    assert (tmp_path / "specs" / "example-feature.md").is_file()
    assert (tmp_path / "spec-coord.toml").is_file()
    assert "created specs/example-feature.md" in first.stdout
    assert "$ spec-coord run" in first.stdout

    second = _run_cli(tmp_path, "init")
    assert second.returncode == 1
    assert "already exists" in second.stderr

    forced = _run_cli(tmp_path, "init", "--force")
    assert forced.returncode == 0, forced.stderr
    assert "kept existing spec-coord.toml" in forced.stdout


def test_specs_lists_in_dependency_order(tmp_path: Path) -> None:
    _two_specs(tmp_path)

    completed = _run_cli(tmp_path, "specs")

    assert completed.returncode == 0, completed.stderr
    assert "Specs (dependency order):" in completed.stdout
    assert completed.stdout.index("feature-auth.md") < completed.stdout.index(
        "feature-dashboard.md"
    )


def test_config_prints_effective_json_with_env_overrides(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "config", extra_env={"SPEC_COORD_RUN_MAX_ITERATIONS": "3"}
    )

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["run"]["max_iterations"] == 3
    assert payload["paths"]["specs_dir"] == str((tmp_path / "specs").resolve())


def test_missing_explicit_config_file_is_a_config_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "config", "--config", str(tmp_path / "absent.toml"))

    assert completed.returncode == 2
    assert completed.stderr.startswith("error:")


def test_status_without_session(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "status")

    assert completed.returncode == 0, completed.stderr
    assert "No session found in .ai-coord" in completed.stdout


def test_clean_without_state(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "clean")

    assert completed.returncode == 0, completed.stderr
    assert "No sessions to clean." in completed.stdout


def test_tools_reports_detected_clis_and_default_roles(tmp_path: Path) -> None:
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "tools", path=bin_dir)

    assert completed.returncode == 0, completed.stderr
    assert "claude 1.0.0" in completed.stdout
    assert "gemini 1.0.0" in completed.stdout
    assert "Lead: claude" in completed.stdout
    assert "Validators: gemini" in completed.stdout


def test_tools_warns_when_fewer_than_two_are_installed(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "tools")

    assert completed.returncode == 0, completed.stderr
    assert "No AI tools detected on PATH." in completed.stdout
    assert "Warning:" in completed.stdout


def test_dry_run_shows_plan_without_creating_state(tmp_path: Path) -> None:
    _two_specs(tmp_path)
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "run", "--dry-run", path=bin_dir)

    assert completed.returncode == 0, completed.stderr
    assert "Lead: claude" in completed.stdout
    assert "Validators: gemini" in completed.stdout
    assert "Specs to build: 2" in completed.stdout
    assert not (tmp_path / ".ai-coord").exists()


def test_run_without_specs_dir_is_a_config_error(tmp_path: Path) -> None:
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "run", path=bin_dir)

    assert completed.returncode == 2
    assert "error:" in completed.stderr
    assert "not found" in completed.stderr


def test_dependency_cycle_is_a_config_error(tmp_path: Path) -> None:
    specs = tmp_path / "specs"
    write_spec(specs, "a.md", spec_id="a", depends_on=["b"])
    write_spec(specs, "b.md", spec_id="b", depends_on=["a"])
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "run", path=bin_dir)

    assert completed.returncode == 2
    assert "error:" in completed.stderr


def test_run_with_a_single_tool_is_a_tool_error(tmp_path: Path) -> None:
    _two_specs(tmp_path)
    bin_dir = _stub_tools(tmp_path, with_validator=False)

    completed = _run_cli(tmp_path, "run", path=bin_dir)

    assert completed.returncode == 3
    assert "error:" in completed.stderr
    assert not (tmp_path / ".ai-coord" / "sessions").exists()


def test_resume_without_session_is_a_config_error(tmp_path: Path) -> None:
    _two_specs(tmp_path)
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "run", "--resume", path=bin_dir)

    assert completed.returncode == 2
    assert "error:" in completed.stderr


@pytest.mark.smoke
def test_full_run_completes_then_status_and_clean(tmp_path: Path) -> None:
    _two_specs(tmp_path)
    bin_dir = _stub_tools(tmp_path)

    completed = _run_cli(tmp_path, "run", path=bin_dir)

    assert completed.returncode == 0, completed.stdout + completed.stderr
    assert "Lead: claude" in completed.stdout
    assert ": completed" in completed.stdout
    state_dir = tmp_path / ".ai-coord"
    sessions = sorted((state_dir / "sessions").glob("ses-*.json"))
    assert len(sessions) == 1
    saved = json.loads(sessions[0].read_text(encoding="utf-8"))
    assert saved["status"] == "completed"
    assert [spec["status"] for spec in saved["specs"]] == ["completed", "completed"]
    assert (state_dir / "reports" / f"{saved['id']}-report.md").is_file()
    assert not (state_dir / "session").exists()

    status = _run_cli(tmp_path, "status")
    assert status.returncode == 0, status.stderr
    assert f"Session: {saved['id']}" in status.stdout
    assert "Status: completed" in status.stdout

    cleaned = _run_cli(tmp_path, "clean", "--all")
    assert cleaned.returncode == 0, cleaned.stderr
    assert not state_dir.exists()
