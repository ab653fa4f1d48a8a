"""Typed git operations over a single repository path."""

from __future__ import annotations

import logging
from pathlib import Path

from ..cancellation import CancellationToken
from ..errors import PathConflictError, RepoCommandError, WorktreeConflictError
from ..process import CommandSpec, ProcessHandle, ProcessResult, ProcessRunner, SpawnCallback
from .parsing import (
    RepositoryStatus,
    WorktreeEntry,
    parse_status_porcelain,
    parse_tracked_files,
    parse_worktree_porcelain,
)

logger = logging.getLogger(__name__)


class RepositoryOperations:
    """Run git commands against ``path`` and translate exit codes into typed outcomes."""

    def __init__(self, path: Path | str, runner: ProcessRunner, *, executable: str = "git") -> None:
        self.path = Path(path)
        self._runner = runner
        self._executable = executable

    async def _probe(self, *args: str, token: CancellationToken | None = None) -> ProcessResult:
        return await self._runner.run(self.path, self._executable, args, token=token)

    async def _git(self, *args: str, token: CancellationToken | None = None) -> ProcessResult:
        result = await self._probe(*args, token=token)
        if not result.ok:
            raise RepoCommandError(args, result.returncode, result.stderr)
        return result

    async def clone_init(
        self,
        url: str,
        *,
        token: CancellationToken | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> ProcessHandle:
        """Start ``init`` + ``remote add`` + ``fetch`` in the background.

        The target must not exist; this never writes into an existing directory.
        ``on_spawn`` receives the pid of the ``remote add`` and ``fetch`` steps.
        """

        if self.path.exists():
            raise PathConflictError(str(self.path))
        parent = self.path.parent
        parent.mkdir(parents=True, exist_ok=True)

        steps = [
            CommandSpec(parent, self._executable, ("init", "--quiet", str(self.path))),
            CommandSpec(self.path, self._executable, ("remote", "add", "origin", url)),
            CommandSpec(self.path, self._executable, ("fetch", "--prune", "origin")),
        ]
        logger.info("Starting clone", extra={"url": url, "path": str(self.path)})
        return await self._runner.start_sequence(steps, token=token, label=f"clone {url}", on_spawn=on_spawn)

    async def finish_clone(
        self, remote: str = "origin", *, token: CancellationToken | None = None
    ) -> str | None:
        """Check out the remote's default branch after a fetch and return the current branch."""

        branch = await self.default_remote_branch(remote, token=token)
        if branch is not None:
            await self._git("checkout", "--quiet", "-B", branch, "--track", f"{remote}/{branch}", token=token)
        return await self.current_branch(token=token)

    async def default_remote_branch(
        self, remote: str = "origin", *, token: CancellationToken | None = None
    ) -> str | None:
        # set-head fails on an empty remote; the symbolic-ref lookup below then reports None.
        await self._probe("remote", "set-head", remote, "--auto", token=token)
        result = await self._probe("symbolic-ref", "--short", "-q", f"refs/remotes/{remote}/HEAD", token=token)
        if not result.ok:
            return None
        ref = result.stdout.strip()
        prefix = f"{remote}/"
        return ref[len(prefix) :] if ref.startswith(prefix) else ref or None

    async def fetch(self, remote: str = "origin", *, token: CancellationToken | None = None) -> None:
        await self._git("fetch", "--prune", remote, token=token)

    async def list_tracked_files(self, *, token: CancellationToken | None = None) -> list[str]:
        result = await self._git("-c", "core.quotepath=off", "ls-files", token=token)
        return parse_tracked_files(result.stdout)

    async def list_worktrees(self, *, token: CancellationToken | None = None) -> list[WorktreeEntry]:
        result = await self._git("worktree", "list", "--porcelain", token=token)
        return parse_worktree_porcelain(result.stdout)

    async def branch_exists(self, branch: str, *, token: CancellationToken | None = None) -> bool:
        result = await self._probe("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", token=token)
        if result.returncode in (0, 1):
            return result.ok
        raise RepoCommandError(result.args[1:], result.returncode, result.stderr)

    async def add_worktree(
        self,
        path: Path | str,
        branch: str,
        *,
        base: str | None = None,
        token: CancellationToken | None = None,
    ) -> WorktreeEntry:
        """Create a worktree at ``path`` on ``branch``, creating the branch from ``base`` if needed."""

        target = Path(path).expanduser()
        if target.exists():
            raise WorktreeConflictError(str(target))

        if await self.branch_exists(branch, token=token):
            args: tuple[str, ...] = ("worktree", "add", str(target), branch)
        else:
            args = ("worktree", "add", "-b", branch, str(target))
            if base:
                args += (base,)
        await self._git(*args, token=token)
        logger.info("Added worktree", extra={"repository": str(self.path), "path": str(target), "branch": branch})

        resolved = str(target.resolve())
        for entry in await self.list_worktrees(token=token):
            if str(Path(entry.path).resolve()) == resolved:
                return entry
        return WorktreeEntry(path=resolved, branch=branch)

    async def remove_worktree(
        self, path: Path | str, *, force: bool = False, token: CancellationToken | None = None
    ) -> None:
        args: tuple[str, ...] = ("worktree", "remove")
        if force:
            args += ("--force",)
        await self._git(*args, str(path), token=token)

    async def current_branch(self, *, token: CancellationToken | None = None) -> str | None:
        """Return the checked-out branch, or None when HEAD is detached."""

        result = await self._probe("symbolic-ref", "--short", "-q", "HEAD", token=token)
        if result.ok:
            return result.stdout.strip() or None
        if result.returncode == 1:
            return None
        raise RepoCommandError(result.args[1:], result.returncode, result.stderr)

    async def status(self, *, token: CancellationToken | None = None) -> RepositoryStatus:
        result = await self._git("status", "--porcelain", token=token)
        return RepositoryStatus(
            branch=await self.current_branch(token=token),
            entries=parse_status_porcelain(result.stdout),
        )

    async def is_dirty(self, *, token: CancellationToken | None = None) -> bool:
        result = await self._git("status", "--porcelain", token=token)
        return bool(result.stdout.strip())

    async def remote_url(self, remote: str = "origin", *, token: CancellationToken | None = None) -> str | None:
        result = await self._probe("remote", "get-url", remote, token=token)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def is_repository(self, *, token: CancellationToken | None = None) -> bool:
        if not self.path.is_dir():
            return False
        result = await self._probe("rev-parse", "--git-dir", token=token)
        return result.ok


__all__ = ["RepositoryOperations"]
