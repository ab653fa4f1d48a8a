"""Worktree setup configuration and run reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import PartialSetupFailure


class WorktreeConfig(BaseModel):
    """Per-project automation run whenever a new worktree is created."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    setup_worktree: list[str] = Field(
        default_factory=list,
        alias="setup-worktree",
        description="Shell commands run in order inside the new worktree.",
    )

    @field_validator("setup_worktree", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise ValueError("setup-worktree must be a list of command strings")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(slots=True)
class SetupCommandResult:
    command: str
    index: int
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "index": self.index,
            "returncode": self.returncode,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass(slots=True)
class SetupReport:
    """Outcome of a setup run: how many commands ran and the first failure, if any."""

    executed: int
    total: int
    results: list[SetupCommandResult] = field(default_factory=list)
    failure: PartialSetupFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise self.failure

    def to_dict(self) -> dict[str, Any]:
        return {
            "executed": self.executed,
            "total": self.total,
            "ok": self.ok,
            "results": [result.to_dict() for result in self.results],
            "failure": self.failure.to_dict() if self.failure is not None else None,
        }


__all__ = ["SetupCommandResult", "SetupReport", "WorktreeConfig"]
