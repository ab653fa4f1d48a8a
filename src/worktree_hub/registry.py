"""Persisted registry of known repositories and their clone lifecycle state."""

from __future__ import annotations

import logging
import os
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .errors import BusyError, PathConflictError, ReconciliationError
from .process import ProcessHandle
from .storage import (
    CloneState,
    ErrorDetail,
    KeyedLocks,
    Repository,
    read_json_document,
    write_json_document,
)

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1


def normalize_path(path: Path | str) -> str:
    """Return the absolute, user-expanded form used as the registry key."""

    return str(Path(path).expanduser().resolve())


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _kill_process_group(pid: int) -> None:
    """Kill the session a clone step was started in; its pid is the group id."""

    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError) as exc:
        logger.warning("Could not stop orphaned clone process", extra={"pid": pid, "error": str(exc)})


def looks_like_fetched_repository(path: Path) -> bool:
    """True when ``path`` holds a git repository whose fetch got as far as writing remote refs."""

    git_dir = path / ".git"
    if not (git_dir / "HEAD").is_file():
        return False
    remotes = git_dir / "refs" / "remotes"
    if remotes.is_dir() and any(item.is_file() for item in remotes.rglob("*")):
        return True
    packed = git_dir / "packed-refs"
    if packed.is_file():
        return "refs/remotes/" in packed.read_text(encoding="utf-8", errors="replace")
    return False


def read_head_branch(path: Path) -> str | None:
    head = path / ".git" / "HEAD"
    try:
        content = head.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    prefix = "ref: refs/heads/"
    return content[len(prefix) :] if content.startswith(prefix) else None


def read_registry_file(state_file: Path) -> list[Repository]:
    """Parse the registry file as written, without reconciling anything."""

    document = read_json_document(Path(state_file), {"repositories": {}})
    raw_entries = document.get("repositories") if isinstance(document, dict) else None
    repositories: list[Repository] = []
    for key, payload in (raw_entries or {}).items():
        try:
            repositories.append(Repository.model_validate(payload))
        except ValidationError as exc:
            logger.warning("Skipping malformed registry entry", extra={"key": key, "error": str(exc)})
    return repositories


class RepositoryRegistry:
    """Authoritative path -> Repository mapping backed by a JSON state file.

    Mutations for one path are serialized by a per-path lock; the whole file is
    rewritten atomically after every change.
    """

    def __init__(
        self,
        state_file: Path,
        *,
        pid_alive: Callable[[int], bool] | None = None,
        kill_process: Callable[[int], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(state_file)
        self._pid_alive = pid_alive or _pid_alive
        self._kill_process = kill_process or _kill_process_group
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, Repository] = {}
        self._handles: dict[str, ProcessHandle] = {}
        self._locks = KeyedLocks()

    @property
    def state_file(self) -> Path:
        return self._path

    def load(self) -> list[Repository]:
        """Load persisted entries and reconcile clones interrupted by a restart.

        Returns the entries whose state was changed by reconciliation.
        """

        entries: dict[str, Repository] = {}
        reconciled: list[Repository] = []
        for repo in read_registry_file(self._path):
            if repo.state.active:
                repo = self._reconcile(repo)
                reconciled.append(repo)
            entries[repo.path] = repo

        self._entries = entries
        self._handles.clear()
        if reconciled:
            self._save()
        logger.debug(
            "Loaded repository registry",
            extra={"count": len(entries), "reconciled": len(reconciled)},
        )
        return reconciled

    def _reconcile(self, repo: Repository) -> Repository:
        path = Path(repo.path)
        now = self._clock()
        if repo.pid is not None and self._pid_alive(repo.pid):
            # Orphaned by the restart.
            self._kill_process(repo.pid)
            reason = f"clone process {repo.pid} was still running after a restart and was stopped"
        elif looks_like_fetched_repository(path):
            logger.info("Reconciled interrupted clone as ready", extra={"path": repo.path})
            return repo.model_copy(
                update={
                    "state": CloneState.READY,
                    "pid": None,
                    "error": None,
                    "branch": read_head_branch(path),
                    "updated_at": now,
                }
            )
        elif not path.exists():
            reason = "target directory is missing"
        else:
            reason = "directory has no fetched repository data"

        error = ReconciliationError(repo.path, reason)
        logger.warning("Reconciled interrupted clone as failed", extra={"path": repo.path, "reason": reason})
        return repo.model_copy(
            update={
                "state": CloneState.FAILED,
                "pid": None,
                "error": ErrorDetail.from_error(error),
                "updated_at": now,
            }
        )

    def _save(self) -> None:
        write_json_document(
            self._path,
            {
                "version": REGISTRY_VERSION,
                "repositories": {key: repo.to_dict() for key, repo in self._entries.items()},
            },
        )

    async def add(self, repo: Repository, *, handle: ProcessHandle | None = None) -> Repository:
        """Insert or replace ``repo``; refuses while another clone of the path is active."""

        async with self._locks(repo.path):
            existing = self._entries.get(repo.path)
            if existing is not None and existing.state.active:
                raise PathConflictError(repo.path, f"a clone is already {existing.state.value}")
            self._entries[repo.path] = repo
            self._set_handle(repo, handle)
            self._save()
        return repo

    async def update(self, path: str, *, handle: ProcessHandle | None = None, **changes: Any) -> Repository:
        """Apply a lifecycle transition to an existing entry."""

        async with self._locks(path):
            current = self._entries.get(path)
            if current is None:
                raise KeyError(path)
            changes.setdefault("updated_at", self._clock())
            repo = current.model_copy(update=changes)
            self._entries[path] = repo
            self._set_handle(repo, handle or self._handles.get(path))
            self._save()
        return repo

    async def remove(self, path: str) -> Repository | None:
        """Forget ``path``. The directory on disk is never touched."""

        async with self._locks(path):
            current = self._entries.get(path)
            if current is None:
                return None
            if current.state.active:
                raise BusyError(path, current.state.value)
            del self._entries[path]
            self._handles.pop(path, None)
            self._save()
        logger.info("Removed repository from registry", extra={"path": path})
        return current

    def _set_handle(self, repo: Repository, handle: ProcessHandle | None) -> None:
        if handle is not None and repo.state is CloneState.CLONING:
            self._handles[repo.path] = handle
        else:
            self._handles.pop(repo.path, None)

    def get(self, path: str) -> Repository | None:
        return self._entries.get(path)

    def list(self) -> list[Repository]:
        return sorted(self._entries.values(), key=lambda repo: repo.path)

    def handle(self, path: str) -> ProcessHandle | None:
        return self._handles.get(path)


__all__ = [
    "RepositoryRegistry",
    "looks_like_fetched_repository",
    "normalize_path",
    "read_head_branch",
    "read_registry_file",
]
