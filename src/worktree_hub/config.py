"""Configuration management for worktree-hub."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorktreeHubSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    git_path: str = Field(default="git", validation_alias="GIT_PATH")
    state_dir: Path = Field(
        default=Path("~/.local/state/worktree-hub"), validation_alias="WORKTREE_HUB_STATE_DIR"
    )
    setup_config_filename: str = Field(
        default=".worktree-setup.yml", validation_alias="WORKTREE_HUB_SETUP_FILE"
    )
    setup_command_timeout: float = Field(
        default=30.0, validation_alias="WORKTREE_HUB_SETUP_TIMEOUT"
    )
    recent_files_limit: int = Field(default=20, validation_alias="WORKTREE_HUB_RECENT_FILES_LIMIT")
    log_level: str = Field(default="INFO", validation_alias="WORKTREE_HUB_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WORKTREE_HUB_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("setup_config_filename")
    @classmethod
    def _validate_setup_filename(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or "/" in normalized:
            raise ValueError("WORKTREE_HUB_SETUP_FILE must be a bare file name")
        return normalized

    @field_validator("setup_command_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("WORKTREE_HUB_SETUP_TIMEOUT must be > 0")
        return value

    @field_validator("recent_files_limit")
    @classmethod
    def _validate_recent_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("WORKTREE_HUB_RECENT_FILES_LIMIT must be >= 1")
        return value

    @property
    def registry_path(self) -> Path:
        return self.state_dir / "repositories.json"

    @property
    def recent_files_path(self) -> Path:
        return self.state_dir / "recent-files.json"


@lru_cache(maxsize=1)
def get_settings() -> WorktreeHubSettings:
    """Return cached settings instance."""

    settings = WorktreeHubSettings()
    settings.state_dir = settings.state_dir.expanduser().resolve()
    return settings


__all__ = ["WorktreeHubSettings", "get_settings"]
