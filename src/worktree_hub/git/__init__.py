"""git command wrappers."""

from .operations import RepositoryOperations
from .parsing import RepositoryStatus, StatusEntry, WorktreeEntry, repository_name_from_url

__all__ = [
    "RepositoryOperations",
    "RepositoryStatus",
    "StatusEntry",
    "WorktreeEntry",
    "repository_name_from_url",
]
