from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from worktree_hub.errors import PathConflictError, RepoCommandError, WorktreeConflictError
from worktree_hub.git import RepositoryOperations, repository_name_from_url
from worktree_hub.git.parsing import parse_status_porcelain, parse_worktree_porcelain
from worktree_hub.process import FakeProcessRunner, ProcessResult, ProcessRunner

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _result(*args: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> ProcessResult:
    return ProcessResult(args=("git", *args), returncode=returncode, stdout=stdout, stderr=stderr)


def test_list_tracked_files_splits_lines(tmp_path: Path) -> None:
    fake = FakeProcessRunner([_result(stdout="README.md\nsrc/app.py\n\n")])
    ops = RepositoryOperations(tmp_path, fake)

    files = asyncio.run(ops.list_tracked_files())

    assert files == ["README.md", "src/app.py"]
    assert fake.invocations == [(str(tmp_path), "git", ("-c", "core.quotepath=off", "ls-files"))]


def test_empty_repository_has_no_tracked_files(tmp_path: Path) -> None:
    ops = RepositoryOperations(tmp_path, FakeProcessRunner([_result(stdout="")]))

    assert asyncio.run(ops.list_tracked_files()) == []


def test_non_zero_exit_raises_repo_command_error(tmp_path: Path) -> None:
    fake = FakeProcessRunner([_result(returncode=128, stderr="fatal: not a git repository\n")])
    ops = RepositoryOperations(tmp_path, fake)

    with pytest.raises(RepoCommandError) as excinfo:
        asyncio.run(ops.list_worktrees())

    error = excinfo.value
    assert error.exit_code == 128
    assert error.args_ == ("worktree", "list", "--porcelain")
    assert "not a git repository" in error.stderr
    assert error.to_dict()["type"] == "RepoCommandError"


def test_clone_init_refuses_existing_path(tmp_path: Path) -> None:
    fake = FakeProcessRunner()
    ops = RepositoryOperations(tmp_path, fake)

    with pytest.raises(PathConflictError):
        asyncio.run(ops.clone_init("https://example.com/app.git"))
    assert fake.invocations == []


def test_clone_init_runs_init_remote_and_fetch(tmp_path: Path) -> None:
    fake = FakeProcessRunner()
    target = tmp_path / "clones" / "app"
    ops = RepositoryOperations(target, fake)

    async def scenario():
        handle = await ops.clone_init("https://example.com/app.git")
        return await handle.wait()

    result = asyncio.run(scenario())

    assert result.ok
    assert (tmp_path / "clones").is_dir()
    assert [invocation[2] for invocation in fake.invocations] == [
        ("init", "--quiet", str(target)),
        ("remote", "add", "origin", "https://example.com/app.git"),
        ("fetch", "--prune", "origin"),
    ]
    assert fake.invocations[0][0] == str(tmp_path / "clones")


def test_add_worktree_refuses_existing_path(tmp_path: Path) -> None:
    fake = FakeProcessRunner()
    existing = tmp_path / "wt"
    existing.mkdir()

    with pytest.raises(WorktreeConflictError):
        asyncio.run(RepositoryOperations(tmp_path, fake).add_worktree(existing, "feature"))
    assert fake.invocations == []


def test_add_worktree_creates_missing_branch_from_base(tmp_path: Path) -> None:
    target = tmp_path / "wt"
    porcelain = f"worktree {tmp_path}\nHEAD abc\nbranch refs/heads/main\n\nworktree {target}\nHEAD def\nbranch refs/heads/feature\n"
    fake = FakeProcessRunner(
        [
            _result(returncode=1),  # show-ref: branch missing
            _result(),
            _result(stdout=porcelain),
        ]
    )

    entry = asyncio.run(RepositoryOperations(tmp_path, fake).add_worktree(target, "feature", base="main"))

    assert fake.invocations[1][2] == ("worktree", "add", "-b", "feature", str(target), "main")
    assert entry.branch == "feature"
    assert entry.head == "def"


def test_current_branch_detached_is_none(tmp_path: Path) -> None:
    fake = FakeProcessRunner([_result(returncode=1)])

    assert asyncio.run(RepositoryOperations(tmp_path, fake).current_branch()) is None


def test_parse_worktree_porcelain() -> None:
    output = (
        "worktree /repo\nbare\n\n"
        "worktree /repo/main\nHEAD 1111\nbranch refs/heads/main\n\n"
        "worktree /repo/hotfix\nHEAD 2222\ndetached\nlocked reason\n"
    )

    entries = parse_worktree_porcelain(output)

    assert [entry.path for entry in entries] == ["/repo", "/repo/main", "/repo/hotfix"]
    assert entries[0].bare
    assert entries[1].branch == "main"
    assert entries[2].detached and entries[2].locked and entries[2].branch is None


def test_parse_status_porcelain() -> None:
    entries = parse_status_porcelain(" M src/app.py\n?? notes.txt\n")

    assert [(entry.code, entry.path) for entry in entries] == [(" M", "src/app.py"), ("??", "notes.txt")]


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/org/app.git", "app"),
        ("git@github.com:org/tool.git", "tool"),
        ("https://example.com/org/lib/", "lib"),
        ("", "repository"),
    ],
)
def test_repository_name_from_url(url: str, expected: str) -> None:
    assert repository_name_from_url(url) == expected


@requires_git
def test_worktree_round_trip_with_real_git(tmp_path: Path, git_repo: Path) -> None:
    ops = RepositoryOperations(git_repo, ProcessRunner())
    target = tmp_path / "feature-wt"

    async def scenario():
        entry = await ops.add_worktree(target, "feature")
        worktrees = await ops.list_worktrees()
        (target / "scratch.txt").write_text("x", encoding="utf-8")
        status = await RepositoryOperations(target, ProcessRunner()).status()
        main_dirty = await ops.is_dirty()
        await ops.remove_worktree(target, force=True)
        return entry, worktrees, status, main_dirty

    entry, worktrees, status, main_dirty = asyncio.run(scenario())

    assert entry.branch == "feature"
    assert Path(entry.path).resolve() == target.resolve()
    assert {wt.branch for wt in worktrees} == {"main", "feature"}
    assert status.dirty and status.branch == "feature"
    assert not main_dirty
    assert not target.exists()


@requires_git
def test_repository_probes_with_real_git(tmp_path: Path, git_repo: Path) -> None:
    ops = RepositoryOperations(git_repo, ProcessRunner())

    assert asyncio.run(ops.is_repository())
    assert asyncio.run(ops.current_branch()) == "main"
    assert asyncio.run(ops.branch_exists("main"))
    assert not asyncio.run(ops.branch_exists("nope"))
    assert asyncio.run(ops.remote_url()) is None
    assert not asyncio.run(RepositoryOperations(tmp_path / "absent", ProcessRunner()).is_repository())
