from __future__ import annotations

import json
from pathlib import Path

from worktree_hub.config import WorktreeHubSettings
from worktree_hub.errors import SpawnError
from worktree_hub.process import FakeProcessRunner, ProcessResult
from worktree_hub.server import create_server
from worktree_hub.storage import CloneState, Repository


def test_create_server_reports_git_version(settings: WorktreeHubSettings) -> None:
    runner = FakeProcessRunner(
        [ProcessResult(args=("git", "--version"), returncode=0, stdout="git version 2.45.1\n", stderr="")]
    )

    server = create_server(settings, runner=runner)

    assert server.git_metadata["available"] is True
    assert server.git_metadata["version"] == "git version 2.45.1"
    assert runner.invocations[0][1:] == ("git", ("--version",))
    assert server.hub.runner is runner


def test_create_server_survives_missing_git(settings: WorktreeHubSettings) -> None:
    runner = FakeProcessRunner([SpawnError("git", "executable not found on PATH")])

    server = create_server(settings, runner=runner)

    assert server.git_metadata["available"] is False
    assert "executable not found" in server.git_metadata["error"]


def test_create_server_reconciles_registry(settings: WorktreeHubSettings, tmp_path: Path) -> None:
    orphan = Repository(path=str(tmp_path / "gone"), state=CloneState.CLONING)
    settings.registry_path.parent.mkdir(parents=True, exist_ok=True)
    settings.registry_path.write_text(
        json.dumps({"version": 1, "repositories": {orphan.path: orphan.to_dict()}}),
        encoding="utf-8",
    )

    server = create_server(settings, runner=FakeProcessRunner())

    repo = server.hub.registry.get(orphan.path)
    assert repo.state is CloneState.FAILED
    assert repo.error.type == "ReconciliationError"
