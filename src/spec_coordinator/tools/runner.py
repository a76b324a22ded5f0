"""Process runner for AI tool invocations.

File: src/spec_coordinator/tools/runner.py

Purpose
- Execute one external tool invocation under a timeout, optional TTY shim and optional
  docker sandbox, returning a tagged InvocationResult.
- Adapt lead/validator prompts into argv through ``tools.definitions``.

Behavior
- stdout and stderr are merged; stdin is inherited only in interactive mode.
- The child runs in its own session so timeouts can signal the whole process group
  (SIGTERM, then SIGKILL after a grace period).
- Spawn failures and timeouts are result tags, never exceptions.

Security
- Never passes prompts through a shell; the TTY shim receives a shell-quoted argv.
- Never logs tool output or environment values.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final, Protocol

from spec_coordinator.domain.context import RunContext
from spec_coordinator.domain.models import InvocationOutcome, RunConfig
from spec_coordinator.errors import SandboxUnavailableError
from spec_coordinator.tools.definitions import ToolRole, get_tool_definition

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES: Final[int] = 8192
_KILL_GRACE_SECONDS: Final[float] = 2.0
_DRAIN_SECONDS: Final[float] = 1.0
_EXIT_POLL_SECONDS: Final[float] = 0.05
_DOCKER_CHECK_TIMEOUT_SECONDS: Final[float] = 10.0
_SANDBOX_WORKDIR: Final[str] = "/workspace"


@dataclass(frozen=True, slots=True)
class InvocationRequest:
    tool: str
    role: ToolRole
    command: str
    args: tuple[str, ...]
    timeout_seconds: float
    requires_tty: bool = False


@dataclass(frozen=True, slots=True)
class InvocationResult:
    """Tagged outcome of one invocation; ``exit_code`` is set only for ``EXITED``."""

    outcome: InvocationOutcome
    output: str
    duration_ms: int
    exit_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is InvocationOutcome.EXITED and self.exit_code == 0

    def describe(self) -> str:
        if self.outcome is InvocationOutcome.TIMEOUT:
            return f"timed out after {self.duration_ms / 1000:.1f}s"
        if self.outcome is InvocationOutcome.SPAWN_FAILED:
            return f"failed to start: {self.output.strip()[:200]}"
        return f"exited with code {self.exit_code}"


@dataclass(frozen=True, slots=True)
class LaunchMode:
    tty_wrap: bool
    sandbox: bool
    interactive: bool


def resolve_launch_mode(
    *,
    requires_tty: bool,
    output_is_tty: bool,
    sandbox: bool,
    interactive: bool,
) -> LaunchMode:
    """Decide once how an invocation is launched.

    The ``script`` shim is only needed when the tool insists on a terminal and
    our own output is not one. Sandbox and interactive runs never use it.
    """
    tty_wrap = requires_tty and not output_is_tty and not sandbox and not interactive
    return LaunchMode(tty_wrap=tty_wrap, sandbox=sandbox, interactive=interactive)


def build_command(
    request: InvocationRequest,
    mode: LaunchMode,
    *,
    cwd: str,
    sandbox_image: str,
    output_is_tty: bool,
    platform: str | None = None,
) -> list[str]:
    """Return the full argv for ``request`` under ``mode``."""
    argv = [request.command, *request.args]

    if mode.sandbox:
        docker = ["docker", "run", "--rm"]
        if mode.interactive:
            docker.append("-i")
            if output_is_tty:
                docker.append("-t")
        docker.extend(["-v", f"{cwd}:{_SANDBOX_WORKDIR}", "-w", _SANDBOX_WORKDIR, sandbox_image])
        return [*docker, *argv]

    if mode.tty_wrap:
        resolved_platform = platform if platform is not None else sys.platform
        if resolved_platform.startswith("linux"):
            return ["script", "-q", "-e", "-c", shlex.join(argv), "/dev/null"]
        return ["script", "-q", "/dev/null", *argv]

    return argv


class ProcessRunner:
    """Runs one invocation to completion, timeout, or spawn failure."""

    def __init__(
        self,
        *,
        sandbox: bool = False,
        sandbox_image: str = "node:20",
        interactive: bool = False,
        verbose: bool = False,
        heartbeat_seconds: float = 0.0,
        kill_grace_seconds: float = _KILL_GRACE_SECONDS,
    ) -> None:
        self._sandbox = sandbox
        self._sandbox_image = sandbox_image
        self._interactive = interactive
        self._verbose = verbose
        self._heartbeat_seconds = heartbeat_seconds
        self._kill_grace_seconds = kill_grace_seconds

    @classmethod
    def from_run_config(cls, config: RunConfig) -> ProcessRunner:
        return cls(
            sandbox=config.sandbox,
            sandbox_image=config.sandbox_image,
            interactive=config.interactive,
            verbose=config.verbose,
            heartbeat_seconds=config.heartbeat_seconds,
        )

    async def run(self, request: InvocationRequest, context: RunContext) -> InvocationResult:
        mode = resolve_launch_mode(
            requires_tty=request.requires_tty,
            output_is_tty=context.output_is_tty,
            sandbox=self._sandbox,
            interactive=self._interactive,
        )
        argv = build_command(
            request,
            mode,
            cwd=str(context.cwd),
            sandbox_image=self._sandbox_image,
            output_is_tty=context.output_is_tty,
        )
        start = time.perf_counter()

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=None if mode.interactive else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(context.cwd),
                env=dict(context.env),
                start_new_session=sys.platform != "win32",
            )
        except OSError as exc:
            logger.warning("spawn failed for %s (%s): %s", request.tool, request.role, exc)
            return InvocationResult(
                outcome=InvocationOutcome.SPAWN_FAILED,
                output=f"failed to start {argv[0]}: {exc}",
                duration_ms=_elapsed_ms(start),
            )

        logger.info(
            "started %s as %s pid=%s tty_wrap=%s sandbox=%s",
            request.tool,
            request.role,
            proc.pid,
            mode.tty_wrap,
            mode.sandbox,
        )
        if self._verbose:
            context.emit(
                f"[process] {request.tool} ({request.role}) pid={proc.pid}: {format_argv(argv)}"
            )

        chunks: list[bytes] = []

        async def _pump() -> None:
            assert proc.stdout is not None  # noqa: S101
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                chunks.append(chunk)
                if self._verbose:
                    context.write_raw(chunk.decode("utf-8", errors="replace"))

        heartbeat = self._start_heartbeat(request, context, start)
        pump = asyncio.create_task(_pump())
        try:
            await asyncio.wait_for(_wait_for_exit(proc), timeout=request.timeout_seconds)
        except TimeoutError:
            await _cancel(pump)
            await self._terminate_group(proc)
            chunks.extend(await _drain(proc))
            logger.warning(
                "%s (%s) timed out after %.1fs", request.tool, request.role, request.timeout_seconds
            )
            return InvocationResult(
                outcome=InvocationOutcome.TIMEOUT,
                output=_decode(chunks),
                duration_ms=_elapsed_ms(start),
            )
        except asyncio.CancelledError:
            await _cancel(pump)
            await self._terminate_group(proc)
            raise
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat

        # A descendant may still hold stdout open after the tool itself exits.
        done, _ = await asyncio.wait({pump}, timeout=_DRAIN_SECONDS)
        if not done:
            logger.info("%s (%s) left stdout open after exit", request.tool, request.role)
            await _cancel(pump)
        exit_code = proc.returncode if proc.returncode is not None else 0
        logger.info("%s (%s) exited with code %s", request.tool, request.role, exit_code)
        return InvocationResult(
            outcome=InvocationOutcome.EXITED,
            output=_decode(chunks),
            duration_ms=_elapsed_ms(start),
            exit_code=exit_code,
        )

    def _start_heartbeat(
        self, request: InvocationRequest, context: RunContext, start: float
    ) -> asyncio.Task[None] | None:
        if not self._verbose or self._heartbeat_seconds <= 0:
            return None

        async def _beat() -> None:
            while True:
                await asyncio.sleep(self._heartbeat_seconds)
                elapsed = time.perf_counter() - start
                context.emit(f"[heartbeat] {request.tool} ({request.role}) running {elapsed:.0f}s")

        return asyncio.create_task(_beat())

    async def _terminate_group(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        if proc.returncode is not None:
            return
        if sys.platform == "win32":
            proc.kill()
            await proc.wait()
            return

        _signal_group(proc.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_seconds)
        except TimeoutError:
            _signal_group(proc.pid, signal.SIGKILL)
            await proc.wait()


class ToolRunner(Protocol):
    """Seam between the engine and real processes; tests substitute stubs."""

    async def run_lead(self, tool: str, prompt: str, context: RunContext) -> InvocationResult: ...

    async def run_validator(
        self, tool: str, prompt: str, context: RunContext
    ) -> InvocationResult: ...


class CliToolRunner:
    """ToolRunner backed by the real CLIs through a ProcessRunner."""

    def __init__(self, config: RunConfig, process_runner: ProcessRunner | None = None) -> None:
        self._config = config
        self._process_runner = process_runner or ProcessRunner.from_run_config(config)

    async def run_lead(self, tool: str, prompt: str, context: RunContext) -> InvocationResult:
        return await self._process_runner.run(self._request(tool, ToolRole.LEAD, prompt), context)

    async def run_validator(
        self, tool: str, prompt: str, context: RunContext
    ) -> InvocationResult:
        return await self._process_runner.run(
            self._request(tool, ToolRole.VALIDATOR, prompt), context
        )

    def _request(self, tool: str, role: ToolRole, prompt: str) -> InvocationRequest:
        definition = get_tool_definition(tool)
        args = definition.build_args(
            role,
            prompt,
            interactive=self._config.interactive,
            lead_permissions=self._config.lead_permissions,
        )
        return InvocationRequest(
            tool=tool,
            role=role,
            command=definition.command,
            args=tuple(args),
            timeout_seconds=self._config.timeout_seconds,
            requires_tty=definition.requires_tty,
        )


def ensure_sandbox_available(env: Mapping[str, str]) -> str:
    """Return the docker binary path or raise SandboxUnavailableError."""
    docker = shutil.which("docker", path=env.get("PATH", ""))
    if docker is None:
        raise SandboxUnavailableError("sandbox mode requires docker, but it was not found on PATH")
    try:
        completed = subprocess.run(
            [docker, "version", "--format", "{{.Server.Version}}"],
            capture_output=True,
            text=True,
            timeout=_DOCKER_CHECK_TIMEOUT_SECONDS,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        raise SandboxUnavailableError(f"docker is not usable: {exc}") from exc
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout).strip()[:200] or f"exit code {completed.returncode}"
        raise SandboxUnavailableError(f"docker daemon is not reachable: {detail}")
    return docker


def format_argv(argv: Sequence[str], *, max_arg_length: int = 60) -> str:
    """Shell-quoted argv for display, eliding long prompt arguments."""
    shown = [
        arg if len(arg) <= max_arg_length else f"{arg[:max_arg_length]}...({len(arg)} chars)"
        for arg in argv
    ]
    return shlex.join(shown)


def _signal_group(pid: int, sig: signal.Signals) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(pid, sig)


async def _wait_for_exit(proc: asyncio.subprocess.Process) -> int:
    """Return once the child exits, without waiting for its stdout to close."""
    while proc.returncode is None:
        await asyncio.sleep(_EXIT_POLL_SECONDS)
    return proc.returncode


async def _cancel(task: asyncio.Task[None]) -> None:
    if task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def _drain(proc: asyncio.subprocess.Process) -> list[bytes]:
    if proc.stdout is None:
        return []
    try:
        rest = await asyncio.wait_for(proc.stdout.read(), timeout=_DRAIN_SECONDS)
    except (TimeoutError, ValueError):
        return []
    return [rest] if rest else []


def _decode(chunks: Sequence[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


__all__ = [
    "CliToolRunner",
    "InvocationRequest",
    "InvocationResult",
    "LaunchMode",
    "ProcessRunner",
    "ToolRunner",
    "build_command",
    "ensure_sandbox_available",
    "format_argv",
    "resolve_launch_mode",
]
