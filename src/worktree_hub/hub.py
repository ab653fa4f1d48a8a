"""Host-facing facade wiring the registry, clones, setup automation and file search."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .cancellation import CancellationToken
from .clones import CloneHandle, CloneLifecycle
from .config import WorktreeHubSettings
from .errors import BusyError, PathConflictError, RepoCommandError
from .files import RecentFilesStore, TrackedFileIndex, TrackedFileSet
from .git import RepositoryOperations, WorktreeEntry, repository_name_from_url
from .process import ProcessRunner
from .registry import RepositoryRegistry, normalize_path
from .setup import SetupReport, WorktreeConfigStore, most_recent_worktree
from .setup.store import ProgressCallback
from .storage import CloneState, Repository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorktreeSetupResult:
    """A freshly created worktree and the report of its setup run (None when skipped)."""

    worktree: WorktreeEntry
    report: SetupReport | None
    recent_worktree_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.report is None or self.report.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "worktree": self.worktree.to_dict(),
            "recent_worktree_path": self.recent_worktree_path,
            "setup": self.report.to_dict() if self.report is not None else None,
        }


class WorktreeHub:
    def __init__(self, settings: WorktreeHubSettings, runner: ProcessRunner | None = None) -> None:
        self.settings = settings
        self.runner = runner or ProcessRunner()
        self.registry = RepositoryRegistry(settings.registry_path)
        self.clones = CloneLifecycle(self.registry, self.runner, executable=settings.git_path)
        self.setup = WorktreeConfigStore(
            self.runner,
            filename=settings.setup_config_filename,
            timeout=settings.setup_command_timeout,
        )
        self.files = TrackedFileIndex(self.operations)
        self.recent = RecentFilesStore(settings.recent_files_path, limit=settings.recent_files_limit)

    def operations(self, path: Path | str) -> RepositoryOperations:
        return RepositoryOperations(path, self.runner, executable=self.settings.git_path)

    def load(self) -> list[Repository]:
        """Load the registry; returns the entries reconciled after a restart."""

        return self.registry.load()

    def _require_idle(self, path: str) -> None:
        repo = self.registry.get(path)
        if repo is not None and repo.state.active:
            raise BusyError(path, repo.state.value)

    # Repositories -----------------------------------------------------------------

    def default_clone_target(self, url: str, parent: Path | str) -> Path:
        return Path(parent).expanduser() / repository_name_from_url(url)

    async def start_clone(
        self, url: str, target: Path | str | None = None, *, parent: Path | str | None = None
    ) -> CloneHandle:
        """Start a background clone; ``target`` defaults to ``parent/<name from url>``."""

        if target is None:
            if parent is None:
                raise ValueError("Either target or parent is required")
            target = self.default_clone_target(url, parent)
        return await self.clones.start(url, target)

    def list_repositories(self) -> list[Repository]:
        return self.registry.list()

    def get_repository(self, path: Path | str) -> Repository | None:
        return self.registry.get(normalize_path(path))

    async def cancel_clone(self, path: Path | str) -> Repository | None:
        return await self.clones.cancel(path)

    async def remove_repository(self, path: Path | str) -> Repository | None:
        """Forget a repository. Files on disk are left alone."""

        key = normalize_path(path)
        removed = await self.registry.remove(key)
        if removed is not None:
            self.files.invalidate(key)
            await self.recent.clear(key)
        return removed

    async def add_repository(self, path: Path | str) -> Repository:
        """Register an existing local repository as ``ready``."""

        key = normalize_path(path)
        self._require_idle(key)
        operations = self.operations(key)
        if not await operations.is_repository():
            raise PathConflictError(key, "not a git repository")
        existing = self.registry.get(key)
        repo = Repository(
            path=key,
            remote_url=await operations.remote_url(),
            branch=await operations.current_branch(),
            state=CloneState.READY,
        )
        if existing is not None:
            repo = repo.model_copy(update={"created_at": existing.created_at})
        added = await self.registry.add(repo)
        logger.info("Registered repository", extra={"path": key, "branch": added.branch})
        return added

    # Worktrees and setup ----------------------------------------------------------

    def get_setup_commands(self, project: Path | str) -> list[str]:
        return self.setup.get(normalize_path(project))

    async def save_setup_commands(self, project: Path | str, commands: Iterable[str]) -> list[str]:
        config = await self.setup.save(normalize_path(project), commands)
        return list(config.setup_worktree)

    async def create_worktree_and_run_setup(
        self,
        project: Path | str,
        worktree_path: Path | str,
        branch: str,
        *,
        base: str | None = None,
        run_setup: bool = True,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> WorktreeSetupResult:
        """Add a worktree and run the project's setup commands inside it.

        A failing setup command is reported in the result; the worktree is kept.
        """

        key = normalize_path(project)
        self._require_idle(key)
        operations = self.operations(key)
        entry = await operations.add_worktree(worktree_path, branch, base=base, token=token)
        if not run_setup:
            return WorktreeSetupResult(worktree=entry, report=None)

        recent = most_recent_worktree(await operations.list_worktrees(token=token), exclude=entry.path)
        report = await self.setup.run_setup(key, entry.path, recent, token=token, on_progress=on_progress)
        return WorktreeSetupResult(worktree=entry, report=report, recent_worktree_path=recent)

    async def list_worktrees(self, project: Path | str, *, with_status: bool = True) -> list[WorktreeEntry]:
        """List the project's worktrees, flagging those with uncommitted changes."""

        key = normalize_path(project)
        self._require_idle(key)
        entries = await self.operations(key).list_worktrees()
        if with_status:
            await asyncio.gather(*(self._mark_dirty(entry) for entry in entries))
        return entries

    async def _mark_dirty(self, entry: WorktreeEntry) -> None:
        if entry.bare or entry.prunable or not Path(entry.path).is_dir():
            return
        try:
            entry.dirty = await self.operations(entry.path).is_dirty()
        except RepoCommandError as exc:
            logger.warning("Could not read worktree status", extra={"path": entry.path, "error": str(exc)})

    async def remove_worktree(self, project: Path | str, worktree_path: Path | str, *, force: bool = False) -> None:
        key = normalize_path(project)
        await self.operations(key).remove_worktree(worktree_path, force=force)
        logger.info("Removed worktree", extra={"repository": key, "path": str(worktree_path)})

    # Files ------------------------------------------------------------------------

    async def search_tracked_files(self, repo: Path | str, query: str) -> list[str]:
        key = normalize_path(repo)
        self._require_idle(key)
        return await self.files.search(key, query)

    async def refresh_tracked_files(
        self, repo: Path | str, *, token: CancellationToken | None = None
    ) -> TrackedFileSet | None:
        key = normalize_path(repo)
        self._require_idle(key)
        return await self.files.refresh(key, token=token)

    async def record_file_selection(self, repo: Path | str, file_path: str) -> list[str]:
        return await self.recent.record(normalize_path(repo), file_path)

    def recent_files(self, repo: Path | str) -> list[str]:
        """Recently selected files, dropping any no longer tracked once the index is built."""

        key = normalize_path(repo)
        paths = self.recent.get(key)
        cached = self.files.cached(key)
        if cached is None:
            return paths
        tracked = set(cached.paths)
        return [path for path in paths if path in tracked]

    async def clear_recent_files(self, repo: Path | str) -> None:
        await self.recent.clear(normalize_path(repo))

    async def aclose(self, *, cancel_clones: bool = True) -> list[Repository]:
        """Settle outstanding clones, cancelling them unless told to wait."""

        if cancel_clones:
            for handle in self.clones.handles():
                handle.cancel()
        return await self.clones.wait_all()


__all__ = ["WorktreeHub", "WorktreeSetupResult"]
