"""Command-line interface router for spec-coordinator."""

from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from spec_coordinator.config import dump_effective_config, load_config, run_config_from
from spec_coordinator.constants import (
    DEFAULT_CLEAN_AGE_DAYS,
    DEFAULT_CONFIG_FILE,
    LOGS_DIRNAME,
    REPORTS_DIRNAME,
    SESSIONS_DIRNAME,
)
from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import SessionStatus
from spec_coordinator.errors import RoleAssignmentError
from spec_coordinator.orchestration import Coordinator, ReportWriter, SessionRequest, StartMode
from spec_coordinator.persistence import JsonSessionRepository
from spec_coordinator.planning import order_specs
from spec_coordinator.specs import load_specs
from spec_coordinator.tools import assign_roles, detect_available_tools
from spec_coordinator.ui.render import CLIRenderer, create_renderer
from spec_coordinator.utils.fs import atomic_write, is_within, prune_files_older_than

EXAMPLE_SPEC_FILENAME: Final[str] = "example-feature.md"
EXAMPLE_SPEC: Final[str] = """---
id: example-feature
name: Example Feature
version: 1.0.0
complexity: EASY
maturity: 3
---

# Example Feature

Describe your feature here.

## Acceptance criteria

- [ ] The feature does what this spec says.
"""

STARTER_CONFIG: Final[str] = """# spec-coordinator configuration. CLI flags and SPEC_COORD_* variables override these values.

[run]
max_iterations = 5
timeout_minutes = 10.0
preflight = true
preflight_threshold = 70.0
preflight_iterations = 2
stop_on_failure = false

[tools]
# lead = "claude"
# validators = ["codex", "gemini"]
lead_permissions = []

[sandbox]
enabled = false
image = "node:20"

[output]
verbose = false
quiet = false
heartbeat_seconds = 0.0

[paths]
specs_dir = "specs"
state_dir = ".ai-coord"
"""


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="spec-coord",
        description=(
            "spec-coordinator: build a project spec by spec with AI coding CLIs.\n\n"
            "Common workflows:\n"
            "  spec-coord init              Create specs/ with an example spec\n"
            "  spec-coord run               Build every spec in dependency order\n"
            "  spec-coord run --resume      Continue the last session\n"
            "  spec-coord status            Show the current session\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--cwd",
        default=".",
        help="Project directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help=f"Path to TOML config (default: ./{DEFAULT_CONFIG_FILE} if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Stream tool output and show detailed progress.",
    )

    selection = argparse.ArgumentParser(add_help=False)
    selection.add_argument(
        "--specs",
        dest="include",
        nargs="+",
        default=None,
        metavar="GLOB",
        help="Only build spec files matching these globs (comma-separated lists accepted).",
    )
    selection.add_argument(
        "--exclude",
        nargs="+",
        default=None,
        metavar="GLOB",
        help="Skip spec files matching these globs.",
    )
    selection.add_argument(
        "--specs-dir",
        default=None,
        help="Specs directory (default: paths.specs_dir, i.e. ./specs).",
    )
    selection.add_argument("--lead", default=None, help="Force the lead tool (claude|codex|gemini).")
    selection.add_argument(
        "--validators",
        nargs="+",
        default=None,
        metavar="TOOL",
        help="Validator tools (comma-separated lists accepted).",
    )
    selection.add_argument(
        "--timeout", type=float, default=None, help="Per-invocation timeout in minutes."
    )
    selection.add_argument(
        "--sandbox", action="store_true", default=False, help="Run tools inside a docker container."
    )
    selection.add_argument(
        "--heartbeat",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Verbose heartbeat interval in seconds (0 disables).",
    )
    selection.add_argument(
        "--quiet", action="store_true", default=False, help="Suppress progress output."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common, selection],
        help="Build specs with lead/validator cycles",
        description=(
            "Build each selected spec in dependency order until validators agree.\n\n"
            "Examples:\n"
            "  spec-coord run\n"
            "  spec-coord run --specs 'feature-*.md' --max-iterations 3\n"
            "  spec-coord run --lead codex --validators claude gemini\n"
            "  spec-coord run --resume\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--max-iterations", type=int, default=None, help="Cycle budget per spec (default: 5)."
    )
    run_parser.add_argument(
        "--preflight-threshold",
        type=float,
        default=None,
        help="Mean completeness (0-100) at which preflight skips the lead (default: 70).",
    )
    run_parser.add_argument(
        "--preflight-iterations",
        type=int,
        default=None,
        help="Maximum preflight validation rounds (default: 2).",
    )
    run_parser.add_argument(
        "--no-preflight",
        action="store_true",
        default=False,
        help="Skip preflight validation of existing code.",
    )
    start = run_parser.add_mutually_exclusive_group()
    start.add_argument(
        "--resume", action="store_true", default=False, help="Resume the last session."
    )
    start.add_argument(
        "--start-over",
        action="store_true",
        default=False,
        help="Ignore previous session state and start fresh.",
    )
    run_parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        default=False,
        help="Abort the session after the first failed spec.",
    )
    run_parser.add_argument(
        "--lead-permissions",
        nargs="+",
        default=None,
        metavar="PERMISSION",
        help="Allowed tool permissions for the lead (claude only).",
    )
    run_parser.add_argument(
        "--interactive",
        action="store_true",
        default=False,
        help="Attach tools to the terminal instead of capturing output.",
    )
    run_parser.add_argument(
        "--dry-run", action="store_true", default=False, help="List the plan and exit."
    )
    run_parser.set_defaults(handler=_cmd_run)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common, selection],
        help="Validate existing code against specs without a lead",
        description="Run one validator round per selected spec and write a report.",
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    # tools ---------------------------------------------------------------
    tools_parser = subparsers.add_parser(
        "tools", parents=[common], help="Show detected AI tools and default roles"
    )
    tools_parser.set_defaults(handler=_cmd_tools)

    # specs ---------------------------------------------------------------
    specs_parser = subparsers.add_parser(
        "specs", parents=[common], help="List specs in dependency order"
    )
    specs_parser.add_argument("--specs-dir", default=None, help="Specs directory.")
    specs_parser.set_defaults(handler=_cmd_specs)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show the current or latest session"
    )
    status_parser.add_argument(
        "--full", action="store_true", default=False, help="Include remaining gaps per spec."
    )
    status_parser.set_defaults(handler=_cmd_status)

    # init ----------------------------------------------------------------
    init_parser = subparsers.add_parser(
        "init", parents=[common], help="Create specs/ with an example spec and a starter config"
    )
    init_parser.add_argument(
        "--force", action="store_true", default=False, help="Recreate specs/ if it exists."
    )
    init_parser.set_defaults(handler=_cmd_init)

    # clean ---------------------------------------------------------------
    clean_parser = subparsers.add_parser(
        "clean", parents=[common], help="Remove old sessions, reports and logs"
    )
    clean_parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_CLEAN_AGE_DAYS,
        help=f"Remove state files older than N days (default: {DEFAULT_CLEAN_AGE_DAYS}).",
    )
    clean_parser.add_argument(
        "--all", action="store_true", default=False, help="Remove the whole state directory."
    )
    clean_parser.set_defaults(handler=_cmd_clean)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective configuration as JSON"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, _run_overrides(args))
    context = RunContext.from_process(working_dir, quiet=bool(config["output"]["quiet"]))
    coordinator = Coordinator(
        context,
        state_dir=Path(config["paths"]["state_dir"]),
        observability=config["observability"],
    )
    specs_dir = Path(config["paths"]["specs_dir"])
    request = _session_request(args, config)

    if _flag(args, "dry_run"):
        plan = coordinator.plan_session(specs_dir, request)
        renderer = _get_renderer(args)
        renderer.spec_table(plan.specs, title="Specs (dependency order):")
        renderer.section("Roles:")
        renderer.kv("  Lead", plan.lead)
        renderer.kv("  Validators", ", ".join(plan.validators))
        renderer.blank()
        renderer.kv("Specs to build", len(plan.buildable))
        return 0

    status = asyncio.run(coordinator.run_session(specs_dir, run_config_from(config), request))
    return 0 if status is SessionStatus.COMPLETED else 1


def _cmd_validate(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, _common_run_overrides(args))
    context = RunContext.from_process(working_dir, quiet=bool(config["output"]["quiet"]))
    coordinator = Coordinator(
        context,
        state_dir=Path(config["paths"]["state_dir"]),
        observability=config["observability"],
    )
    status = asyncio.run(
        coordinator.run_validation_only(
            Path(config["paths"]["specs_dir"]),
            run_config_from(config),
            _session_request(args, config),
        )
    )
    return 0 if status is SessionStatus.COMPLETED else 1


def _cmd_tools(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    context = RunContext.from_process(working_dir)
    detected = detect_available_tools(context.env)

    renderer = _get_renderer(args)
    renderer.tools(detected)
    try:
        roles = assign_roles([tool.name for tool in detected])
    except RoleAssignmentError as exc:
        renderer.blank()
        renderer.warning(str(exc))
        return 0
    renderer.section("Default roles:")
    renderer.kv("  Lead", roles.lead)
    renderer.kv("  Validators", ", ".join(roles.validators))
    return 0


def _cmd_specs(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    overrides = {"paths.specs_dir": getattr(args, "specs_dir", None)}
    config = _load_effective_config(args, working_dir, overrides)
    loaded = load_specs(Path(config["paths"]["specs_dir"]))
    ordered = order_specs([item.entry for item in loaded])

    renderer = _get_renderer(args)
    if not ordered:
        renderer.text("No specs found.")
        return 0

    session = JsonSessionRepository(Path(config["paths"]["state_dir"])).current()
    if session is not None:
        for spec in ordered:
            known = session.spec_by_id(spec.id)
            if known is not None and not spec.context_only:
                spec.status = known.status
    renderer.spec_table(ordered, title="Specs (dependency order):")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, {})
    state_dir = Path(config["paths"]["state_dir"])
    repository = JsonSessionRepository(state_dir)

    renderer = _get_renderer(args)
    session = repository.current() or repository.latest()
    if session is None:
        renderer.text(f"No session found in {_display_path(state_dir, working_dir)}")
        renderer.next_steps(["spec-coord run"])
        return 0

    renderer.session_summary(session, full=_flag(args, "full"))
    report = ReportWriter(state_dir / REPORTS_DIRNAME).final_report_path(session.id)
    if report.exists():
        renderer.blank()
        renderer.kv("Report", _display_path(report, working_dir))

    history = [item for item in repository.list_sessions() if item.id != session.id]
    if history:
        renderer.section("Previous sessions:")
        renderer.items(
            [f"{item.id}: {item.status} ({item.updated_at.isoformat()})" for item in history]
        )
    if session.status in (SessionStatus.RUNNING, SessionStatus.ABORTED):
        renderer.next_steps(["spec-coord run --resume"])
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    specs_dir = working_dir / "specs"
    renderer = _get_renderer(args)

    if specs_dir.exists():
        if not _flag(args, "force"):
            raise CLIError(
                f"{_display_path(specs_dir, working_dir)} already exists (use --force to recreate it)",
                exit_code=1,
            )
        shutil.rmtree(specs_dir)
    specs_dir.mkdir(parents=True)
    atomic_write(specs_dir / EXAMPLE_SPEC_FILENAME, EXAMPLE_SPEC)
    renderer.ok(f"created {_display_path(specs_dir / EXAMPLE_SPEC_FILENAME, working_dir)}")

    config_file = working_dir / DEFAULT_CONFIG_FILE
    if config_file.exists():
        renderer.text(f"  kept existing {DEFAULT_CONFIG_FILE}")
    else:
        atomic_write(config_file, STARTER_CONFIG)
        renderer.ok(f"created {DEFAULT_CONFIG_FILE}")

    renderer.next_steps(["spec-coord tools", "spec-coord specs", "spec-coord run"])
    return 0


def _cmd_clean(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, {})
    state_dir = Path(config["paths"]["state_dir"])
    renderer = _get_renderer(args)

    if not state_dir.exists():
        renderer.text("No sessions to clean.")
        return 0

    if _flag(args, "all"):
        if not is_within(state_dir, working_dir) or state_dir.resolve() == working_dir:
            raise CLIError(
                f"refusing to delete state directory outside the project: {state_dir}",
                exit_code=2,
            )
        shutil.rmtree(state_dir)
        renderer.kv("Removed", _display_path(state_dir, working_dir))
        return 0

    days = getattr(args, "days", DEFAULT_CLEAN_AGE_DAYS)
    if not isinstance(days, int) or days < 0:
        raise CLIError("--days must be a non-negative integer", exit_code=2)
    max_age = days * 86400.0
    now = time.time()

    removed: list[Path] = []
    removed.extend(
        prune_files_older_than(state_dir / SESSIONS_DIRNAME, max_age_seconds=max_age, now=now)
    )
    removed.extend(
        prune_files_older_than(state_dir / REPORTS_DIRNAME, max_age_seconds=max_age, now=now)
    )
    logs_dir = state_dir / LOGS_DIRNAME
    if logs_dir.is_dir():
        for session_logs in sorted(logs_dir.iterdir()):
            if not session_logs.is_dir():
                continue
            removed.extend(
                prune_files_older_than(session_logs, max_age_seconds=max_age, now=now)
            )
            if not any(session_logs.iterdir()):
                session_logs.rmdir()

    repository = JsonSessionRepository(state_dir)
    pointer = repository.pointer()
    if pointer is not None and not repository.path_for(pointer).exists():
        repository.clear_pointer()

    if not removed:
        renderer.text("No sessions to clean.")
        return 0
    renderer.kv("Removed files", len(removed))
    if renderer.verbose:
        renderer.items([_display_path(path, working_dir) for path in removed])
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, {})
    _get_renderer(args).text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _working_dir(args: argparse.Namespace) -> Path:
    raw = getattr(args, "cwd", None) or "."
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"working directory is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(
    args: argparse.Namespace, working_dir: Path, overrides: Mapping[str, object]
) -> dict[str, Any]:
    merged: dict[str, object] = dict(overrides)
    if _flag(args, "verbose"):
        merged["output.verbose"] = True
    return load_config(
        getattr(args, "config_path", None),
        working_dir=working_dir,
        cli_overrides=merged,
    )


def _common_run_overrides(args: argparse.Namespace) -> dict[str, object]:
    return {
        "paths.specs_dir": getattr(args, "specs_dir", None),
        "run.timeout_minutes": getattr(args, "timeout", None),
        "sandbox.enabled": True if _flag(args, "sandbox") else None,
        "output.heartbeat_seconds": getattr(args, "heartbeat", None),
        "output.quiet": True if _flag(args, "quiet") else None,
    }


def _run_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides = _common_run_overrides(args)
    permissions = getattr(args, "lead_permissions", None)
    overrides.update(
        {
            "run.max_iterations": getattr(args, "max_iterations", None),
            "run.preflight_threshold": getattr(args, "preflight_threshold", None),
            "run.preflight_iterations": getattr(args, "preflight_iterations", None),
            "run.preflight": False if _flag(args, "no_preflight") else None,
            "run.stop_on_failure": True if _flag(args, "stop_on_failure") else None,
            "tools.lead_permissions": list(_split_csv(permissions)) if permissions else None,
            "output.interactive": True if _flag(args, "interactive") else None,
        }
    )
    return overrides


def _session_request(args: argparse.Namespace, config: Mapping[str, Any]) -> SessionRequest:
    mode = StartMode.AUTO
    if _flag(args, "resume"):
        mode = StartMode.RESUME
    elif _flag(args, "start_over"):
        mode = StartMode.FRESH

    tools = config["tools"]
    lead = getattr(args, "lead", None) or tools["lead"] or None
    validators_arg = getattr(args, "validators", None)
    validators = _split_csv(validators_arg) if validators_arg else tuple(tools["validators"])
    return SessionRequest(
        mode=mode,
        include=_split_csv(getattr(args, "include", None) or ()),
        exclude=_split_csv(getattr(args, "exclude", None) or ()),
        lead=lead,
        validators=validators or None,
    )


def _split_csv(values: Sequence[str]) -> tuple[str, ...]:
    """Flatten ``["a,b", "c"]`` into ``("a", "b", "c")``."""

    items: list[str] = []
    for value in values:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return tuple(dict.fromkeys(items))


def _display_path(path: Path, working_dir: Path) -> str:
    try:
        return path.resolve().relative_to(working_dir).as_posix()
    except ValueError:
        return path.as_posix()


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
