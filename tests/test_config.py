from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from worktree_hub.config import WorktreeHubSettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GIT_PATH", "WORKTREE_HUB_SETUP_FILE", "WORKTREE_HUB_SETUP_TIMEOUT", "WORKTREE_HUB_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = WorktreeHubSettings(_env_file=None)

    assert settings.git_path == "git"
    assert settings.setup_config_filename == ".worktree-setup.yml"
    assert settings.setup_command_timeout == 30.0
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GIT_PATH", "/opt/git/bin/git")
    monkeypatch.setenv("WORKTREE_HUB_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("WORKTREE_HUB_RECENT_FILES_LIMIT", "5")
    monkeypatch.setenv("WORKTREE_HUB_LOG_LEVEL", "debug")

    settings = WorktreeHubSettings(_env_file=None)

    assert settings.git_path == "/opt/git/bin/git"
    assert settings.registry_path == tmp_path / "repositories.json"
    assert settings.recent_files_path == tmp_path / "recent-files.json"
    assert settings.recent_files_limit == 5
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("WORKTREE_HUB_LOG_LEVEL", "loud"),
        ("WORKTREE_HUB_SETUP_FILE", "nested/setup.yml"),
        ("WORKTREE_HUB_SETUP_TIMEOUT", "0"),
        ("WORKTREE_HUB_RECENT_FILES_LIMIT", "0"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        WorktreeHubSettings(_env_file=None)


def test_get_settings_resolves_state_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WORKTREE_HUB_STATE_DIR", str(tmp_path / "nested" / ".." / "state"))
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.state_dir == (tmp_path / "state").resolve()
