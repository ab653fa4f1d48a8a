from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from worktree_hub.errors import BusyError, PathConflictError
from worktree_hub.registry import RepositoryRegistry, looks_like_fetched_repository, read_registry_file
from worktree_hub.storage import CloneState, KeyedLocks, Repository


def _fake_fetched_repo(path: Path, branch: str = "main") -> None:
    git_dir = path / ".git"
    (git_dir / "refs" / "remotes" / "origin").mkdir(parents=True)
    (git_dir / "HEAD").write_text(f"ref: refs/heads/{branch}\n", encoding="utf-8")
    (git_dir / "refs" / "remotes" / "origin" / branch).write_text("0" * 40 + "\n", encoding="utf-8")


def _write_registry(state_file: Path, *repos: Repository) -> None:
    state_file.parent.mkdir(parents=True, exist_ok=True)
    state_file.write_text(
        json.dumps({"version": 1, "repositories": {repo.path: repo.to_dict() for repo in repos}}),
        encoding="utf-8",
    )


def test_entries_persist_across_instances(tmp_path: Path) -> None:
    state_file = tmp_path / "state" / "repositories.json"
    registry = RepositoryRegistry(state_file)
    repo = Repository(path=str(tmp_path / "app"), remote_url="https://example.com/app.git", branch="main")

    asyncio.run(registry.add(repo))

    reloaded = RepositoryRegistry(state_file)
    assert reloaded.load() == []
    assert [entry.path for entry in reloaded.list()] == [repo.path]
    assert reloaded.get(repo.path).remote_url == "https://example.com/app.git"


def test_add_refuses_while_clone_active(tmp_path: Path) -> None:
    registry = RepositoryRegistry(tmp_path / "repositories.json")
    path = str(tmp_path / "app")

    async def scenario() -> None:
        await registry.add(Repository(path=path, state=CloneState.CLONING))
        await registry.add(Repository(path=path, state=CloneState.QUEUED))

    with pytest.raises(PathConflictError):
        asyncio.run(scenario())


def test_add_replaces_settled_entry(tmp_path: Path) -> None:
    registry = RepositoryRegistry(tmp_path / "repositories.json")
    path = str(tmp_path / "app")

    async def scenario() -> Repository:
        await registry.add(Repository(path=path, state=CloneState.FAILED))
        return await registry.add(Repository(path=path, state=CloneState.QUEUED))

    assert asyncio.run(scenario()).state is CloneState.QUEUED
    assert len(registry.list()) == 1


def test_remove_active_entry_is_busy(tmp_path: Path) -> None:
    registry = RepositoryRegistry(tmp_path / "repositories.json")
    path = str(tmp_path / "app")

    async def scenario() -> None:
        await registry.add(Repository(path=path, state=CloneState.QUEUED))
        await registry.remove(path)

    with pytest.raises(BusyError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.state == "queued"
    assert registry.get(path) is not None


def test_remove_keeps_directory(tmp_path: Path) -> None:
    registry = RepositoryRegistry(tmp_path / "repositories.json")
    directory = tmp_path / "app"
    directory.mkdir()
    (directory / "file.txt").write_text("keep me", encoding="utf-8")

    async def scenario():
        await registry.add(Repository(path=str(directory)))
        removed = await registry.remove(str(directory))
        missing = await registry.remove(str(directory))
        return removed, missing

    removed, missing = asyncio.run(scenario())

    assert removed.path == str(directory)
    assert missing is None
    assert (directory / "file.txt").read_text(encoding="utf-8") == "keep me"
    assert read_registry_file(tmp_path / "repositories.json") == []


def test_update_unknown_path_raises_key_error(tmp_path: Path) -> None:
    registry = RepositoryRegistry(tmp_path / "repositories.json")

    with pytest.raises(KeyError):
        asyncio.run(registry.update(str(tmp_path / "nope"), state=CloneState.READY))


def test_load_reconciles_fetched_clone_as_ready(tmp_path: Path) -> None:
    directory = tmp_path / "app"
    _fake_fetched_repo(directory, branch="develop")
    state_file = tmp_path / "repositories.json"
    _write_registry(state_file, Repository(path=str(directory), state=CloneState.CLONING, pid=999_999))

    registry = RepositoryRegistry(state_file, pid_alive=lambda pid: False)
    reconciled = registry.load()

    assert [repo.state for repo in reconciled] == [CloneState.READY]
    repo = registry.get(str(directory))
    assert repo.branch == "develop"
    assert repo.pid is None
    assert read_registry_file(state_file)[0].state is CloneState.READY


def test_load_reconciles_missing_directory_as_failed(tmp_path: Path) -> None:
    state_file = tmp_path / "repositories.json"
    path = str(tmp_path / "gone")
    _write_registry(state_file, Repository(path=path, state=CloneState.QUEUED))

    registry = RepositoryRegistry(state_file, pid_alive=lambda pid: False)
    registry.load()

    repo = registry.get(path)
    assert repo.state is CloneState.FAILED
    assert repo.error.type == "ReconciliationError"
    assert repo.error.details["reason"] == "target directory is missing"


def test_load_fails_entry_whose_process_is_still_alive(tmp_path: Path) -> None:
    directory = tmp_path / "app"
    _fake_fetched_repo(directory)
    state_file = tmp_path / "repositories.json"
    _write_registry(state_file, Repository(path=str(directory), state=CloneState.CLONING, pid=4242))

    killed: list[int] = []
    registry = RepositoryRegistry(state_file, pid_alive=lambda pid: pid == 4242, kill_process=killed.append)
    registry.load()

    repo = registry.get(str(directory))
    assert repo.state is CloneState.FAILED
    assert "still running" in repo.error.message
    assert killed == [4242]
    assert repo.pid is None


def test_load_fails_directory_without_fetched_data(tmp_path: Path) -> None:
    directory = tmp_path / "app"
    (directory / ".git").mkdir(parents=True)
    (directory / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    state_file = tmp_path / "repositories.json"
    _write_registry(state_file, Repository(path=str(directory), state=CloneState.CLONING))

    registry = RepositoryRegistry(state_file)
    registry.load()

    assert registry.get(str(directory)).state is CloneState.FAILED


def test_load_skips_malformed_entries(tmp_path: Path) -> None:
    state_file = tmp_path / "repositories.json"
    good = Repository(path=str(tmp_path / "good"))
    state_file.write_text(
        json.dumps({"repositories": {"bad": {"path": "relative/path"}, good.path: good.to_dict()}}),
        encoding="utf-8",
    )

    registry = RepositoryRegistry(state_file)
    registry.load()

    assert [repo.path for repo in registry.list()] == [good.path]


def test_corrupt_registry_file_loads_empty(tmp_path: Path) -> None:
    state_file = tmp_path / "repositories.json"
    state_file.write_text("{not json", encoding="utf-8")

    registry = RepositoryRegistry(state_file)

    assert registry.load() == []
    assert registry.list() == []


def test_packed_refs_count_as_fetched(tmp_path: Path) -> None:
    git_dir = tmp_path / ".git"
    git_dir.mkdir()
    (git_dir / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (git_dir / "packed-refs").write_text("abc refs/remotes/origin/main\n", encoding="utf-8")

    assert looks_like_fetched_repository(tmp_path)
    assert not looks_like_fetched_repository(tmp_path / "missing")


def test_keyed_locks_are_released_after_use() -> None:
    locks = KeyedLocks()

    async def scenario() -> int:
        first = locks("a")
        async with first:
            assert locks("a") is first
            held = len(locks)
        del first
        return held

    held = asyncio.run(scenario())

    assert held == 1
    assert len(locks) == 0
