"""worktree-hub diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from worktree_hub.config import WorktreeHubSettings
from worktree_hub.errors import ConfigParseError, WorktreeHubError
from worktree_hub.files import TrackedFileIndex
from worktree_hub.git import RepositoryOperations
from worktree_hub.process import ProcessRunner
from worktree_hub.registry import normalize_path, read_registry_file
from worktree_hub.setup import WorktreeConfigStore
from worktree_hub.storage import Repository


def load_repositories(settings: WorktreeHubSettings) -> list[Repository]:
    return read_registry_file(settings.registry_path.expanduser())


def cmd_repos(args: argparse.Namespace) -> None:
    settings = WorktreeHubSettings()
    repositories = load_repositories(settings)
    if args.state:
        repositories = [repo for repo in repositories if repo.state.value == args.state]
    if args.json:
        print(json.dumps([repo.to_dict() for repo in repositories], indent=2))
        return
    for repo in repositories:
        suffix = f" ({repo.error.message})" if repo.error is not None else ""
        print(f"{repo.path} [{repo.state.value}] {repo.branch or '-'}{suffix}")


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = WorktreeHubSettings()
    repositories = load_repositories(settings)
    state_counts: dict[str, int] = {}
    for repo in repositories:
        state_counts[repo.state.value] = state_counts.get(repo.state.value, 0) + 1
    metrics = {
        "registry_path": str(settings.registry_path),
        "repositories_total": len(repositories),
        "state_counts": state_counts,
        "failed": [repo.path for repo in repositories if repo.error is not None],
    }
    print(json.dumps(metrics, indent=2))


def cmd_setup(args: argparse.Namespace) -> None:
    settings = WorktreeHubSettings()
    store = WorktreeConfigStore(ProcessRunner(), filename=settings.setup_config_filename)
    try:
        config = store.load(Path(args.project))
    except ConfigParseError as exc:
        print(f"Invalid setup config: {exc.reason}")
        raise SystemExit(1)
    print(json.dumps({"path": str(store.config_path(args.project)), "commands": config.setup_worktree}, indent=2))


def cmd_search(args: argparse.Namespace) -> None:
    settings = WorktreeHubSettings()
    runner = ProcessRunner()
    index = TrackedFileIndex(
        lambda path: RepositoryOperations(path, runner, executable=settings.git_path),
        result_limit=args.limit,
    )
    try:
        matches = asyncio.run(index.search(normalize_path(args.repository), args.query))
    except WorktreeHubError as exc:
        print(f"Search failed: {exc}")
        raise SystemExit(1)
    for match in matches:
        print(match)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="worktree-hub diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_repos = sub.add_parser("repos", help="List registered repositories")
    p_repos.add_argument("--json", action="store_true", help="Output JSON")
    p_repos.add_argument(
        "--state",
        choices=["queued", "cloning", "ready", "failed", "cancelled"],
        help="Only show repositories in this state",
    )
    p_repos.set_defaults(func=cmd_repos)

    p_metrics = sub.add_parser("metrics", help="Show repository counts by clone state")
    p_metrics.set_defaults(func=cmd_metrics)

    p_setup = sub.add_parser("setup", help="Show a project's worktree setup commands")
    p_setup.add_argument("project")
    p_setup.set_defaults(func=cmd_setup)

    p_search = sub.add_parser("search", help="Fuzzy search tracked files in a repository")
    p_search.add_argument("repository")
    p_search.add_argument("query")
    p_search.add_argument("--limit", type=int, default=60, help="Maximum number of results")
    p_search.set_defaults(func=cmd_search)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
