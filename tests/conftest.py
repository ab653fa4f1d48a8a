from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from worktree_hub.config import WorktreeHubSettings


def _git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "-c", "init.defaultBranch=main", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout


@pytest.fixture
def git():
    return _git


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on ``main`` with two committed files."""

    repo = tmp_path / "project"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    (repo / "README.md").write_text("# project\n", encoding="utf-8")
    (repo / "src").mkdir()
    (repo / "src" / "worktree.ts").write_text("export {}\n", encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "initial")
    return repo


@pytest.fixture
def bare_remote(tmp_path: Path, git_repo: Path) -> Path:
    remote = tmp_path / "remote.git"
    _git(tmp_path, "clone", "--quiet", "--bare", str(git_repo), str(remote))
    return remote


@pytest.fixture
def settings(tmp_path: Path) -> WorktreeHubSettings:
    return WorktreeHubSettings(state_dir=tmp_path / "state", setup_command_timeout=5.0)
