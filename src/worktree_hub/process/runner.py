"""Async runner for external commands."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Mapping, Sequence

from ..cancellation import CancellationToken
from ..errors import CommandTimeoutError, OperationCancelled, SpawnError
from .utils import sanitize_environment, shell_quote_preview

logger = logging.getLogger(__name__)

SpawnCallback = Callable[[int], Awaitable[None]]


@dataclass(slots=True)
class ProcessResult:
    """Holds the outcome of a finished command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    cwd: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True, frozen=True)
class CommandSpec:
    """One step of a command sequence."""

    cwd: Path
    command: str
    args: tuple[str, ...] = ()


class ProcessHandle:
    """Handle on a background command, or a chain of commands run one after another.

    ``kill()`` fires the handle's cancellation token; the runner kills whichever
    process is current and ``wait()`` raises ``OperationCancelled``.
    """

    def __init__(self, label: str, token: CancellationToken) -> None:
        self.label = label
        self.token = token
        self._process: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task[ProcessResult] | None = None
        self._callbacks: list[Callable[["ProcessHandle"], None]] = []

    def _attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    def _bind(self, task: asyncio.Task[ProcessResult]) -> None:
        self._task = task
        task.add_done_callback(self._notify)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def kill(self) -> None:
        self.token.cancel(f"{self.label} killed")

    async def wait(self) -> ProcessResult:
        if self._task is None:
            raise RuntimeError("Process handle was never started")
        return await asyncio.shield(self._task)

    def add_done_callback(self, callback: Callable[["ProcessHandle"], None]) -> None:
        """Register a completion notification; fires immediately if already done."""

        if self.done:
            callback(self)
        else:
            self._callbacks.append(callback)

    def _notify(self, task: asyncio.Task[ProcessResult]) -> None:
        if not task.cancelled():
            # Marks the exception as retrieved; wait() re-raises it for callers.
            task.exception()
        for callback in self._callbacks:
            try:
                callback(self)
            except Exception:  # pragma: no cover - callbacks are host code
                logger.exception("Process completion callback failed", extra={"label": self.label})
        self._callbacks.clear()


def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a process together with the children it spawned."""

    if process.returncode is not None:
        return
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    with suppress(ProcessLookupError):
        process.kill()


class ProcessRunner:
    """Launch external commands asynchronously and capture their output."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._extra_env = dict(env or {})

    @staticmethod
    def _resolve_executable(command: str) -> str:
        if os.sep in command:
            candidate = Path(command)
            if candidate.exists() and candidate.is_file():
                return str(candidate)
            raise SpawnError(command, f"executable not found at {candidate}")

        binary = shutil.which(command)
        if binary is None:
            raise SpawnError(command, "executable not found on PATH")
        return binary

    def _environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(self._extra_env)
        if env:
            merged.update(env)
        return sanitize_environment(merged)

    async def run(
        self,
        cwd: Path | str,
        command: str,
        args: Sequence[str] = (),
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """Run a command to completion. A non-zero exit is returned, not raised."""

        process, argv = await self._spawn(cwd, command, tuple(args), env=env, token=token)
        return await self._collect(process, argv, cwd, token=token, timeout=timeout)

    async def run_shell(
        self,
        cwd: Path | str,
        command_line: str,
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """Run a shell command line in ``cwd``."""

        if token is not None:
            token.raise_if_cancelled(command_line)
        workdir = Path(cwd)
        if not workdir.is_dir():
            raise SpawnError(command_line, f"working directory {workdir} does not exist")
        try:
            process = await asyncio.create_subprocess_shell(
                command_line,
                cwd=str(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(env),
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnError(command_line, str(exc)) from exc
        return await self._collect(process, (command_line,), cwd, token=token, timeout=timeout)

    async def start(
        self,
        cwd: Path | str,
        command: str,
        args: Sequence[str] = (),
        *,
        token: CancellationToken | None = None,
    ) -> ProcessHandle:
        """Spawn a command in the background and return its handle immediately."""

        return await self.start_sequence([CommandSpec(Path(cwd), command, tuple(args))], token=token)

    async def start_sequence(
        self,
        steps: Iterable[CommandSpec],
        *,
        token: CancellationToken | None = None,
        label: str | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> ProcessHandle:
        """Run ``steps`` one after another in the background, stopping at the first failure.

        The first step is spawned before returning, so a missing executable is
        reported to the caller right away. The handle resolves to the result of
        the last step that ran.

        ``on_spawn`` is awaited with the pid of every later step before that step
        is collected; the first pid is available from the handle.
        """

        specs = list(steps)
        if not specs:
            raise ValueError("start_sequence requires at least one step")
        token = token or CancellationToken()
        handle = ProcessHandle(label or specs[0].command, token)
        first = specs[0]
        process, argv = await self._spawn(first.cwd, first.command, first.args, token=token)
        handle._attach(process)
        handle._bind(asyncio.create_task(self._drive(handle, process, argv, specs, on_spawn)))
        return handle

    async def _drive(
        self,
        handle: ProcessHandle,
        process: asyncio.subprocess.Process,
        argv: tuple[str, ...],
        specs: list[CommandSpec],
        on_spawn: SpawnCallback | None = None,
    ) -> ProcessResult:
        result = await self._collect(process, argv, specs[0].cwd, token=handle.token)
        for spec in specs[1:]:
            if not result.ok:
                break
            process, argv = await self._spawn(spec.cwd, spec.command, spec.args, token=handle.token)
            handle._attach(process)
            if on_spawn is not None:
                try:
                    await on_spawn(process.pid)
                except BaseException:
                    _terminate(process)
                    raise
            result = await self._collect(process, argv, spec.cwd, token=handle.token)
        return result

    async def _spawn(
        self,
        cwd: Path | str,
        command: str,
        args: tuple[str, ...],
        *,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> tuple[asyncio.subprocess.Process, tuple[str, ...]]:
        if token is not None:
            token.raise_if_cancelled(command)
        workdir = Path(cwd)
        if not workdir.is_dir():
            raise SpawnError(command, f"working directory {workdir} does not exist")
        executable = self._resolve_executable(command)
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=str(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(env),
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnError(command, str(exc)) from exc
        argv = (command, *args)
        logger.debug(
            "Spawned process",
            extra={"pid": process.pid, "command": shell_quote_preview(argv), "cwd": str(workdir)},
        )
        return process, argv

    async def _collect(
        self,
        process: asyncio.subprocess.Process,
        argv: tuple[str, ...],
        cwd: Path | str,
        *,
        token: CancellationToken | None,
        timeout: float | None = None,
    ) -> ProcessResult:
        communicate = asyncio.ensure_future(process.communicate())
        waiters: set[asyncio.Future] = {communicate}
        cancelled: asyncio.Future | None = None
        if token is not None:
            cancelled = asyncio.ensure_future(token.wait())
            waiters.add(cancelled)
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            _terminate(process)
            communicate.cancel()
            raise
        finally:
            if cancelled is not None:
                cancelled.cancel()

        if communicate not in done:
            _terminate(process)
            with suppress(Exception):
                await communicate
            if token is not None and token.cancelled:
                logger.info("Killed cancelled process", extra={"command": shell_quote_preview(argv)})
                raise OperationCancelled(f"{argv[0]} cancelled")
            raise CommandTimeoutError(shell_quote_preview(argv), timeout or 0)

        stdout_bytes, stderr_bytes = communicate.result()
        return ProcessResult(
            args=argv,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            cwd=str(cwd),
        )


class FakeProcessRunner(ProcessRunner):
    """Test double that replays canned results and records invocations."""

    def __init__(self, responses: Iterable[ProcessResult | BaseException] | None = None) -> None:
        super().__init__()
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, str, tuple[str, ...]]] = []

    async def run(  # type: ignore[override]
        self,
        cwd: Path | str,
        command: str,
        args: Sequence[str] = (),
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        self._invocations.append((str(cwd), command, tuple(args)))
        if token is not None:
            token.raise_if_cancelled(command)
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return ProcessResult(args=(command, *args), returncode=0, stdout="", stderr="", cwd=str(cwd))

    async def run_shell(  # type: ignore[override]
        self,
        cwd: Path | str,
        command_line: str,
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        return await self.run(cwd, "sh", ("-c", command_line), token=token)

    async def start_sequence(  # type: ignore[override]
        self,
        steps: Iterable[CommandSpec],
        *,
        token: CancellationToken | None = None,
        label: str | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> ProcessHandle:
        specs = list(steps)
        token = token or CancellationToken()
        handle = ProcessHandle(label or specs[0].command, token)

        async def drive() -> ProcessResult:
            result = ProcessResult(args=(), returncode=0, stdout="", stderr="")
            for spec in specs:
                result = await self.run(spec.cwd, spec.command, spec.args, token=token)
                if not result.ok:
                    break
            return result

        handle._bind(asyncio.create_task(drive()))
        return handle

    @property
    def invocations(self) -> list[tuple[str, str, tuple[str, ...]]]:
        return self._invocations


__all__ = [
    "CommandSpec",
    "FakeProcessRunner",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "SpawnCallback",
]
