"""Tool registration for the worktree-hub MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..errors import WorktreeHubError
from ..hub import WorktreeHub

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    start_clone: Any
    list_repositories: Any
    cancel_clone: Any
    remove_repository: Any
    add_repository: Any
    get_setup_commands: Any
    save_setup_commands: Any
    create_worktree: Any
    list_worktrees: Any
    search_files: Any
    refresh_files: Any
    record_file_selection: Any
    recent_files: Any
    clear_recent_files: Any


def _failure(context: Context | None, tool: str, exc: WorktreeHubError) -> dict[str, Any]:
    payload = exc.to_dict()
    _emit_log(context, "warning", f"{tool} failed", extra={"tool": tool, "error": payload})
    return {"ok": False, "error": payload}


def register_tools(server: FastMCP, *, hub: WorktreeHub) -> ToolHandles:
    """Register worktree-hub's MCP tools on the server."""

    async def _start_clone(
        url: str,
        target: str | None = None,
        parent: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start cloning ``url`` in the background and return immediately."""

        if target is None and parent is None:
            return {"ok": False, "error": {"type": "ValueError", "message": "Provide target or parent"}}
        try:
            handle = await hub.start_clone(url, target, parent=parent)
        except WorktreeHubError as exc:
            return _failure(context, "start_clone", exc)
        _emit_log(context, "info", "Clone started", extra={"url": url, "path": handle.path})
        repository = handle.repository
        return {
            "ok": True,
            "clone": handle.to_dict(),
            "repository": repository.to_dict() if repository is not None else None,
        }

    async def _list_repositories(context: Context | None = None) -> dict[str, Any]:
        repositories = [repo.to_dict() for repo in hub.list_repositories()]
        _emit_log(context, "debug", "Listing repositories", extra={"count": len(repositories)})
        return {"ok": True, "repositories": repositories}

    async def _cancel_clone(path: str, context: Context | None = None) -> dict[str, Any]:
        try:
            repository = await hub.cancel_clone(path)
        except WorktreeHubError as exc:
            return _failure(context, "cancel_clone", exc)
        if repository is None:
            return {"ok": False, "error": {"type": "NotFound", "message": f"Unknown repository: {path}"}}
        _emit_log(context, "info", "Clone cancelled", extra={"path": repository.path, "state": repository.state.value})
        return {"ok": True, "repository": repository.to_dict()}

    async def _remove_repository(path: str, context: Context | None = None) -> dict[str, Any]:
        try:
            removed = await hub.remove_repository(path)
        except WorktreeHubError as exc:
            return _failure(context, "remove_repository", exc)
        return {"ok": True, "removed": removed.to_dict() if removed is not None else None}

    async def _add_repository(path: str, context: Context | None = None) -> dict[str, Any]:
        try:
            repository = await hub.add_repository(path)
        except WorktreeHubError as exc:
            return _failure(context, "add_repository", exc)
        return {"ok": True, "repository": repository.to_dict()}

    async def _get_setup_commands(project: str, context: Context | None = None) -> dict[str, Any]:
        return {"ok": True, "project": project, "commands": hub.get_setup_commands(project)}

    async def _save_setup_commands(
        project: str, commands: list[str], context: Context | None = None
    ) -> dict[str, Any]:
        try:
            saved = await hub.save_setup_commands(project, commands)
        except WorktreeHubError as exc:
            return _failure(context, "save_setup_commands", exc)
        _emit_log(context, "info", "Saved setup commands", extra={"project": project, "count": len(saved)})
        return {"ok": True, "project": project, "commands": saved}

    async def _create_worktree(
        project: str,
        worktree_path: str,
        branch: str,
        base: str | None = None,
        run_setup: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a worktree and run the project's setup commands in it."""

        try:
            result = await hub.create_worktree_and_run_setup(
                project, worktree_path, branch, base=base, run_setup=run_setup
            )
        except WorktreeHubError as exc:
            return _failure(context, "create_worktree", exc)
        level = "info" if result.ok else "warning"
        _emit_log(
            context,
            level,
            "Worktree created",
            extra={"path": result.worktree.path, "branch": branch, "setup_ok": result.ok},
        )
        return result.to_dict()

    async def _list_worktrees(project: str, context: Context | None = None) -> dict[str, Any]:
        try:
            entries = await hub.list_worktrees(project)
        except WorktreeHubError as exc:
            return _failure(context, "list_worktrees", exc)
        return {"ok": True, "worktrees": [entry.to_dict() for entry in entries]}

    async def _search_files(repository: str, query: str, context: Context | None = None) -> dict[str, Any]:
        """Fuzzy search tracked files; an empty query lists recent files instead."""

        try:
            if not query.strip():
                return {"ok": True, "recent": True, "files": hub.recent_files(repository)}
            files = await hub.search_tracked_files(repository, query)
        except WorktreeHubError as exc:
            return _failure(context, "search_files", exc)
        _emit_log(context, "debug", "Searched tracked files", extra={"query": query, "count": len(files)})
        return {"ok": True, "recent": False, "files": files}

    async def _refresh_files(repository: str, context: Context | None = None) -> dict[str, Any]:
        try:
            file_set = await hub.refresh_tracked_files(repository)
        except WorktreeHubError as exc:
            return _failure(context, "refresh_files", exc)
        if file_set is None:
            return {"ok": True, "superseded": True}
        return {
            "ok": True,
            "superseded": False,
            "count": len(file_set.paths),
            "refreshed_at": file_set.refreshed_at.isoformat(),
        }

    async def _record_file_selection(
        repository: str, file_path: str, context: Context | None = None
    ) -> dict[str, Any]:
        recent = await hub.record_file_selection(repository, file_path)
        return {"ok": True, "files": recent}

    async def _recent_files(repository: str, context: Context | None = None) -> dict[str, Any]:
        return {"ok": True, "files": hub.recent_files(repository)}

    async def _clear_recent_files(repository: str, context: Context | None = None) -> dict[str, Any]:
        await hub.clear_recent_files(repository)
        _emit_log(context, "info", "Cleared recent files", extra={"repository": repository})
        return {"ok": True}

    tool_start_clone = server.tool(
        name="start_clone",
        description=(
            "Clone a git repository in the background. Provide a target path, or a parent "
            "directory to clone into a folder named after the repository. Returns at once "
            "with the clone's queued state."
        ),
    )(_start_clone)

    tool_list_repositories = server.tool(
        name="list_repositories",
        description="List known repositories with their clone state, branch and last error.",
    )(_list_repositories)

    tool_cancel_clone = server.tool(
        name="cancel_clone",
        description="Cancel a queued or running clone. The partial directory is left on disk.",
    )(_cancel_clone)

    tool_remove_repository = server.tool(
        name="remove_repository",
        description="Forget a repository without deleting its files. Refused while a clone is active.",
    )(_remove_repository)

    tool_add_repository = server.tool(
        name="add_repository",
        description="Register an existing local git repository.",
    )(_add_repository)

    tool_get_setup = server.tool(
        name="get_setup_commands",
        description="Return the setup commands run when a worktree is created for a project.",
    )(_get_setup_commands)

    tool_save_setup = server.tool(
        name="save_setup_commands",
        description=(
            "Replace the project's worktree setup commands. $RECENT_WORKTREE_PATH expands to "
            "the most recently used other worktree."
        ),
    )(_save_setup_commands)

    tool_create_worktree = server.tool(
        name="create_worktree",
        description=(
            "Create a worktree for a branch (creating the branch from base when missing) and "
            "run the project's setup commands inside it, stopping at the first failure."
        ),
    )(_create_worktree)

    tool_list_worktrees = server.tool(
        name="list_worktrees",
        description="List a project's worktrees with branch and uncommitted-change flags.",
    )(_list_worktrees)

    tool_search_files = server.tool(
        name="search_files",
        description="Fuzzy search a repository's tracked files by name (at most 60 results).",
    )(_search_files)

    tool_refresh_files = server.tool(
        name="refresh_files",
        description="Rebuild the tracked-file index of a repository.",
    )(_refresh_files)

    tool_record_selection = server.tool(
        name="record_file_selection",
        description="Remember that a file was opened so it appears first among recent files.",
    )(_record_file_selection)

    tool_recent_files = server.tool(
        name="recent_files",
        description="List recently selected files for a repository.",
    )(_recent_files)

    tool_clear_recent = server.tool(
        name="clear_recent_files",
        description="Clear the recent-files list of a repository.",
    )(_clear_recent_files)

    return ToolHandles(
        start_clone=tool_start_clone,
        list_repositories=tool_list_repositories,
        cancel_clone=tool_cancel_clone,
        remove_repository=tool_remove_repository,
        add_repository=tool_add_repository,
        get_setup_commands=tool_get_setup,
        save_setup_commands=tool_save_setup,
        create_worktree=tool_create_worktree,
        list_worktrees=tool_list_worktrees,
        search_files=tool_search_files,
        refresh_files=tool_refresh_files,
        record_file_selection=tool_record_selection,
        recent_files=tool_recent_files,
        clear_recent_files=tool_clear_recent,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when available, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        log_method = getattr(ctx_logger, level, None) if ctx_logger is not None else None
        if callable(log_method):
            log_method(message, extra=payload)
            return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
