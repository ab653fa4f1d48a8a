"""Worktree management core: background clones, setup automation and tracked-file search."""

__version__ = "0.1.0"

__all__ = ["__version__"]
