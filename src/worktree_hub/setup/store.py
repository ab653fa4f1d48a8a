"""Persisted per-project setup commands and their sequential execution."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

import yaml
from pydantic import ValidationError

from ..cancellation import CancellationToken
from ..errors import CommandTimeoutError, ConfigParseError, OperationCancelled, PartialSetupFailure, SpawnError
from ..git import WorktreeEntry
from ..process import ProcessRunner
from ..storage import KeyedLocks, atomic_write_text
from .models import SetupCommandResult, SetupReport, WorktreeConfig

logger = logging.getLogger(__name__)

RECENT_WORKTREE_PLACEHOLDER = "$RECENT_WORKTREE_PATH"

ProgressCallback = Callable[[str, int, int, str], None]


def substitute_placeholders(command: str, recent_worktree_path: str | None) -> str:
    """Replace ``$RECENT_WORKTREE_PATH``; left untouched when there is no other worktree."""

    if not recent_worktree_path:
        return command
    return command.replace(RECENT_WORKTREE_PLACEHOLDER, recent_worktree_path)


def most_recent_worktree(worktrees: Iterable[WorktreeEntry], exclude: Path | str | None = None) -> str | None:
    """Pick the most recently modified non-bare worktree other than ``exclude``."""

    excluded = str(Path(exclude).resolve()) if exclude else None
    best_path: str | None = None
    best_mtime = -1.0
    for worktree in worktrees:
        if worktree.bare or str(Path(worktree.path).resolve()) == excluded:
            continue
        try:
            mtime = Path(worktree.path).stat().st_mtime
        except OSError:
            mtime = 0.0
        if mtime > best_mtime:
            best_path, best_mtime = worktree.path, mtime
    return best_path


class WorktreeConfigStore:
    """Reads, saves and runs the ``setup-worktree`` commands stored in each project."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        filename: str = ".worktree-setup.yml",
        timeout: float | None = 30.0,
    ) -> None:
        self._runner = runner
        self._filename = filename
        self._timeout = timeout
        self._locks = KeyedLocks()

    def config_path(self, project: Path | str) -> Path:
        return Path(project) / self._filename

    def load(self, project: Path | str) -> WorktreeConfig:
        """Load the project's config, raising ``ConfigParseError`` when it is malformed."""

        path = self.config_path(project)
        if not path.exists():
            return WorktreeConfig()
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigParseError(str(path), str(exc)) from exc

        if document is None:
            return WorktreeConfig()
        if not isinstance(document, dict):
            raise ConfigParseError(str(path), "expected a mapping at the top level")
        try:
            return WorktreeConfig.model_validate(document)
        except ValidationError as exc:
            raise ConfigParseError(str(path), str(exc)) from exc

    def get(self, project: Path | str) -> list[str]:
        """Return the setup commands, or an empty list when unset or unreadable."""

        try:
            return list(self.load(project).setup_worktree)
        except ConfigParseError as exc:
            logger.warning("Ignoring malformed worktree config", extra={"path": exc.path, "reason": exc.reason})
            return []

    async def save(self, project: Path | str, commands: Iterable[str]) -> WorktreeConfig:
        """Atomically replace the project's setup commands, keeping any other keys."""

        command_list = list(commands)
        for command in command_list:
            if not isinstance(command, str):
                raise TypeError("Setup commands must be strings")

        path = self.config_path(project)
        async with self._locks(str(path)):
            try:
                current = self.load(project)
            except ConfigParseError:
                current = WorktreeConfig()
            updated = current.model_copy(update={"setup_worktree": command_list})
            atomic_write_text(
                path,
                yaml.safe_dump(
                    updated.to_document(),
                    sort_keys=False,
                    allow_unicode=True,
                    default_flow_style=False,
                ),
            )
        logger.info("Saved worktree setup commands", extra={"path": str(path), "count": len(command_list)})
        return updated

    async def run_setup(
        self,
        project: Path | str,
        worktree: Path | str,
        recent_worktree_path: str | None = None,
        *,
        commands: Iterable[str] | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SetupReport:
        """Run setup commands one at a time inside ``worktree``, stopping at the first failure.

        Later commands usually depend on earlier ones, so nothing runs after a
        failing command. The failure is reported, not raised.
        """

        pending = self.get(project) if commands is None else list(commands)
        total = len(pending)
        env = {"RECENT_WORKTREE_PATH": recent_worktree_path} if recent_worktree_path else None
        results: list[SetupCommandResult] = []

        for index, raw_command in enumerate(pending):
            command = substitute_placeholders(raw_command, recent_worktree_path)
            if on_progress is not None:
                on_progress("start", index, total, command)
            try:
                result = await self._runner.run_shell(
                    worktree, command, token=token, timeout=self._timeout, env=env
                )
            except (SpawnError, CommandTimeoutError, OperationCancelled) as exc:
                outcome = SetupCommandResult(command=command, index=index, returncode=None, error=str(exc))
            else:
                outcome = SetupCommandResult(
                    command=command,
                    index=index,
                    returncode=result.returncode,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    error=None if result.ok else (result.stderr.strip() or f"exit code {result.returncode}"),
                )
            results.append(outcome)

            if not outcome.ok:
                failure = PartialSetupFailure(
                    command=command,
                    index=index,
                    detail=outcome.error or "",
                    executed=len(results),
                    total=total,
                    exit_code=outcome.returncode,
                )
                logger.warning(
                    "Setup command failed",
                    extra={"worktree": str(worktree), "command": command, "index": index, "total": total},
                )
                if on_progress is not None:
                    on_progress("failed", index, total, command)
                return SetupReport(executed=len(results), total=total, results=results, failure=failure)

            if on_progress is not None:
                on_progress("completed", index, total, command)

        logger.info("Setup commands completed", extra={"worktree": str(worktree), "count": total})
        return SetupReport(executed=len(results), total=total, results=results)


__all__ = [
    "RECENT_WORKTREE_PLACEHOLDER",
    "WorktreeConfigStore",
    "most_recent_worktree",
    "substitute_placeholders",
]
