"""Error taxonomy shared by every worktree-hub component."""

from __future__ import annotations

from typing import Any, Sequence


class WorktreeHubError(RuntimeError):
    """Base class for all worktree-hub errors."""

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error into a payload the host layer can render."""

        return {"type": type(self).__name__, "message": str(self), **self.details()}


class SpawnError(WorktreeHubError):
    """Raised when an executable cannot be located or launched."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Unable to launch '{command}': {reason}")
        self.command = command
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"command": self.command, "reason": self.reason}


class RepoCommandError(WorktreeHubError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, args: Sequence[str], exit_code: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.args_ = tuple(args)
        self.exit_code = exit_code
        self.stderr = stderr

    def details(self) -> dict[str, Any]:
        return {"args": list(self.args_), "exit_code": self.exit_code, "stderr": self.stderr}


class PathConflictError(WorktreeHubError):
    """Raised when a clone target already exists or is already being cloned."""

    def __init__(self, path: str, reason: str = "path already exists") -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason}


class WorktreeConflictError(WorktreeHubError):
    """Raised when a worktree would be created on an existing path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Worktree path already exists: {path}")
        self.path = path

    def details(self) -> dict[str, Any]:
        return {"path": self.path}


class BusyError(WorktreeHubError):
    """Raised when a registry entry is mutated while its clone is still active."""

    def __init__(self, path: str, state: str) -> None:
        super().__init__(f"Repository {path} is {state}; cancel the clone first")
        self.path = path
        self.state = state

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "state": self.state}


class PartialSetupFailure(WorktreeHubError):
    """Describes the first failing setup command of a worktree setup run."""

    def __init__(
        self,
        *,
        command: str,
        index: int,
        detail: str,
        executed: int,
        total: int,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(f"Setup command {index + 1}/{total} failed ({command}): {detail}")
        self.command = command
        self.index = index
        self.detail = detail
        self.executed = executed
        self.total = total
        self.exit_code = exit_code

    def details(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "index": self.index,
            "detail": self.detail,
            "executed": self.executed,
            "total": self.total,
            "exit_code": self.exit_code,
        }


class ConfigParseError(WorktreeHubError):
    """Raised when a persisted worktree config file cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid worktree config {path}: {reason}")
        self.path = path
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason}


class ReconciliationError(WorktreeHubError):
    """Describes a registry entry left orphaned by a previous process."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Clone of {path} did not survive restart: {reason}")
        self.path = path
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason}


class OperationCancelled(WorktreeHubError):
    """Raised when a cancellation token fires during a long-running call."""


class CommandTimeoutError(WorktreeHubError):
    """Raised when a command exceeds its timeout and is killed."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"Command timed out after {timeout:g} seconds: {command}")
        self.command = command
        self.timeout = timeout

    def details(self) -> dict[str, Any]:
        return {"command": self.command, "timeout": self.timeout}


__all__ = [
    "BusyError",
    "CommandTimeoutError",
    "ConfigParseError",
    "OperationCancelled",
    "PartialSetupFailure",
    "PathConflictError",
    "ReconciliationError",
    "RepoCommandError",
    "SpawnError",
    "WorktreeConflictError",
    "WorktreeHubError",
]
