"""FastMCP server bootstrap for worktree-hub."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import WorktreeHubSettings, get_settings
from .errors import CommandTimeoutError, SpawnError
from .hub import WorktreeHub
from .process import ProcessRunner
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the worktree-hub server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def probe_git(runner: ProcessRunner, settings: WorktreeHubSettings) -> dict[str, Any]:
    """Run ``git --version`` once and describe the outcome."""

    metadata: dict[str, Any] = {"path": settings.git_path, "available": False, "version": None, "error": None}
    try:
        result = _run_sync(runner.run(Path.cwd(), settings.git_path, ("--version",), timeout=10.0))
    except (SpawnError, CommandTimeoutError) as exc:
        metadata["error"] = str(exc)
        logging.getLogger(__name__).error("git is unavailable", extra={"error": str(exc)})
        return metadata

    if result.ok:
        metadata["available"] = True
        metadata["version"] = result.stdout.strip()
    else:
        metadata["error"] = result.stderr.strip() or f"git --version exited with {result.returncode}"
    return metadata


def create_server(
    settings: Optional[WorktreeHubSettings] = None,
    runner: ProcessRunner | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the hub's tools and a status resource."""

    settings = settings or get_settings()
    hub = WorktreeHub(settings, runner)
    reconciled = hub.load()
    git_metadata = probe_git(hub.runner, settings)

    server = FastMCP(
        name="worktree-hub",
        version=__version__,
        instructions=(
            "worktree-hub clones git repositories in the background, creates worktrees and "
            "runs each project's setup commands in them, and fuzzy searches tracked files."
        ),
    )

    handles = register_tools(server, hub=hub)

    @server.resource(
        "resource://worktree-hub/status",
        name="worktree_hub_status",
        title="worktree-hub Status",
        description="Provides the current runtime status for the worktree-hub server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        state_counts: dict[str, int] = {}
        for repo in hub.list_repositories():
            state_counts[repo.state.value] = state_counts.get(repo.state.value, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "git": git_metadata,
            "registry": {
                "path": str(settings.registry_path),
                "count": sum(state_counts.values()),
                "state_counts": state_counts,
                "reconciled_at_startup": [repo.path for repo in reconciled],
            },
            "clones": [handle.to_dict() for handle in hub.clones.handles()],
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "hub", hub)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the worktree-hub MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching worktree-hub server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "git_available": getattr(server, "git_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
