"""Worktree setup automation."""

from .models import SetupCommandResult, SetupReport, WorktreeConfig
from .store import (
    RECENT_WORKTREE_PLACEHOLDER,
    WorktreeConfigStore,
    most_recent_worktree,
    substitute_placeholders,
)

__all__ = [
    "RECENT_WORKTREE_PLACEHOLDER",
    "SetupCommandResult",
    "SetupReport",
    "WorktreeConfig",
    "WorktreeConfigStore",
    "most_recent_worktree",
    "substitute_placeholders",
]
