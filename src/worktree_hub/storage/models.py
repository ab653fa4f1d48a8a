"""Data models for persistent tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..errors import WorktreeHubError


class CloneState(str, Enum):
    QUEUED = "queued"
    CLONING = "cloning"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def active(self) -> bool:
        return self in (CloneState.QUEUED, CloneState.CLONING)


class ErrorDetail(BaseModel):
    """Serialized form of the error that moved a repository to ``failed``."""

    type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: WorktreeHubError) -> "ErrorDetail":
        payload = error.to_dict()
        return cls(
            type=payload.pop("type"),
            message=payload.pop("message"),
            details=payload,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Repository(BaseModel):
    """A known repository, keyed by its absolute path."""

    path: str = Field(..., description="Absolute filesystem path; the registry key.")
    remote_url: str | None = Field(default=None, description="Remote configured at clone time.")
    state: CloneState = Field(default=CloneState.READY)
    error: ErrorDetail | None = Field(default=None, description="Present only when state is failed.")
    branch: str | None = Field(default=None, description="Checked-out branch after hydration.")
    pid: int | None = Field(default=None, description="Pid of the running clone step while cloning.")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("path")
    @classmethod
    def _require_absolute(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized.startswith("/"):
            raise ValueError("Repository path must be absolute")
        return normalized.rstrip("/") or "/"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


__all__ = ["CloneState", "ErrorDetail", "Repository"]
