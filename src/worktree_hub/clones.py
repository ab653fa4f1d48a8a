"""Background clone lifecycle: queued -> cloning -> ready | failed, or cancelled."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable

from .cancellation import CancellationToken
from .errors import OperationCancelled, PathConflictError, RepoCommandError, SpawnError, WorktreeHubError
from .git import RepositoryOperations
from .process import ProcessHandle, ProcessRunner
from .registry import RepositoryRegistry, normalize_path
from .storage import CloneState, ErrorDetail, Repository

logger = logging.getLogger(__name__)

_TERMINAL = {CloneState.READY, CloneState.FAILED, CloneState.CANCELLED}


class CloneHandle:
    """Caller-facing handle on one clone; returned before the clone finishes."""

    def __init__(self, path: str, url: str) -> None:
        self.path = path
        self.url = url
        self.token = CancellationToken()
        self.history: list[CloneState] = []
        self._repository: Repository | None = None
        self._settled = asyncio.Event()
        self._subscribers: list[Callable[["CloneHandle", CloneState], None]] = []
        self._task: asyncio.Task[Repository] | None = None

    @property
    def state(self) -> CloneState | None:
        return self.history[-1] if self.history else None

    @property
    def repository(self) -> Repository | None:
        return self._repository

    @property
    def done(self) -> bool:
        return self._settled.is_set()

    def subscribe(self, callback: Callable[["CloneHandle", CloneState], None]) -> None:
        """Receive every state transition from now on."""

        self._subscribers.append(callback)

    def cancel(self) -> None:
        """Request cancellation; the running git process is killed."""

        self.token.cancel("clone cancelled")

    async def wait(self) -> Repository:
        await self._settled.wait()
        assert self._repository is not None
        return self._repository

    def _advance(self, state: CloneState, repository: Repository) -> None:
        self.history.append(state)
        self._repository = repository
        for callback in list(self._subscribers):
            try:
                callback(self, state)
            except Exception:  # pragma: no cover - subscribers are host code
                logger.exception("Clone subscriber failed", extra={"path": self.path})
        if state in _TERMINAL:
            self._settled.set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "url": self.url,
            "state": self.state.value if self.state else None,
            "history": [state.value for state in self.history],
        }


class CloneLifecycle:
    """Start, track and cancel background clones, keeping the registry in step."""

    def __init__(
        self,
        registry: RepositoryRegistry,
        runner: ProcessRunner,
        *,
        executable: str = "git",
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._executable = executable
        self._active: dict[str, CloneHandle] = {}

    def _operations(self, path: str) -> RepositoryOperations:
        return RepositoryOperations(path, self._runner, executable=self._executable)

    async def start(self, url: str, target: Path | str) -> CloneHandle:
        """Begin cloning ``url`` into ``target`` and return without waiting for it.

        Raises ``PathConflictError`` before creating any state when ``target``
        exists or another clone of it is queued or running.
        """

        path = normalize_path(target)
        if Path(path).exists():
            raise PathConflictError(path)
        if path in self._active:
            raise PathConflictError(path, "a clone is already in progress")

        handle = CloneHandle(path, url)
        self._active[path] = handle
        try:
            queued = await self._registry.add(Repository(path=path, remote_url=url, state=CloneState.QUEUED))
        except PathConflictError:
            self._active.pop(path, None)
            raise
        handle._advance(CloneState.QUEUED, queued)

        async def record_pid(pid: int) -> None:
            # Each step runs in its own session; reconciliation checks the live one.
            await self._registry.update(path, pid=pid)

        operations = self._operations(path)
        try:
            process = await operations.clone_init(url, token=handle.token, on_spawn=record_pid)
        except PathConflictError:
            # The directory appeared after the precondition check; leave no trace.
            self._active.pop(path, None)
            await self._registry.update(path, state=CloneState.FAILED)
            await self._registry.remove(path)
            raise
        except OperationCancelled:
            await self._settle(handle, CloneState.CANCELLED)
            return handle
        except SpawnError as exc:
            logger.error("git could not be launched", extra={"path": path, "error": str(exc)})
            await self._settle(handle, CloneState.FAILED, error=ErrorDetail.from_error(exc))
            raise

        cloning = await self._registry.update(path, state=CloneState.CLONING, pid=process.pid, handle=process)
        handle._advance(CloneState.CLONING, cloning)
        handle._task = asyncio.create_task(self._monitor(handle, process, operations))
        return handle

    async def _monitor(
        self, handle: CloneHandle, process: ProcessHandle, operations: RepositoryOperations
    ) -> Repository:
        try:
            result = await process.wait()
            if not result.ok:
                error = RepoCommandError(result.args[1:], result.returncode, result.stderr)
                return await self._settle(handle, CloneState.FAILED, error=ErrorDetail.from_error(error))
            branch = await operations.finish_clone(token=handle.token)
            remote = await operations.remote_url(token=handle.token)
            return await self._settle(
                handle,
                CloneState.READY,
                branch=branch,
                remote_url=remote or handle.url,
            )
        except OperationCancelled:
            return await self._settle(handle, CloneState.CANCELLED)
        except WorktreeHubError as exc:
            return await self._settle(handle, CloneState.FAILED, error=ErrorDetail.from_error(exc))
        except Exception as exc:  # pragma: no cover - an entry must not stay stuck in cloning
            logger.exception("Clone monitor crashed", extra={"path": handle.path})
            detail = ErrorDetail(type=type(exc).__name__, message=str(exc))
            return await self._settle(handle, CloneState.FAILED, error=detail)

    async def _settle(self, handle: CloneHandle, state: CloneState, **changes: Any) -> Repository:
        changes.setdefault("error", None)
        try:
            repository = await self._registry.update(handle.path, state=state, pid=None, **changes)
        finally:
            self._active.pop(handle.path, None)
        handle._advance(state, repository)
        logger.info(
            "Clone settled",
            extra={"path": handle.path, "state": state.value, "history": [item.value for item in handle.history]},
        )
        return repository

    def active(self, path: Path | str) -> CloneHandle | None:
        return self._active.get(normalize_path(path))

    def handles(self) -> list[CloneHandle]:
        return list(self._active.values())

    async def cancel(self, path: Path | str) -> Repository | None:
        """Cancel a queued or running clone and wait for it to settle.

        The partially created directory is left in place.
        """

        key = normalize_path(path)
        handle = self._active.get(key)
        if handle is not None:
            handle.cancel()
            return await handle.wait()

        repository = self._registry.get(key)
        if repository is not None and repository.state.active:
            # Entry outlived its lifecycle; nothing is running for it any more.
            return await self._registry.update(key, state=CloneState.CANCELLED, pid=None)
        return repository

    async def wait_all(self) -> list[Repository]:
        return list(await asyncio.gather(*(handle.wait() for handle in self.handles())))


__all__ = ["CloneHandle", "CloneLifecycle"]
