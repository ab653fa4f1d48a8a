"""Tracked-file indexing, fuzzy search and recent files."""

from .fuzzy import SEARCH_RESULT_LIMIT, FuzzyMatch, rank, score
from .index import TrackedFileIndex, TrackedFileSet
from .recent import RecentFilesStore

__all__ = [
    "FuzzyMatch",
    "RecentFilesStore",
    "SEARCH_RESULT_LIMIT",
    "TrackedFileIndex",
    "TrackedFileSet",
    "rank",
    "score",
]
