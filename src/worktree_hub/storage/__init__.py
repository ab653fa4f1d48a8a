"""Storage abstractions for worktree-hub."""

from .files import KeyedLocks, atomic_write_text, read_json_document, write_json_document
from .models import CloneState, ErrorDetail, Repository

__all__ = [
    "CloneState",
    "ErrorDetail",
    "KeyedLocks",
    "Repository",
    "atomic_write_text",
    "read_json_document",
    "write_json_document",
]
