"""Per-repository recently selected files, persisted as JSON."""

from __future__ import annotations

import logging
from pathlib import Path

from ..storage import KeyedLocks, read_json_document, write_json_document

logger = logging.getLogger(__name__)


class RecentFilesStore:
    """Bounded most-recent-first file lists keyed by repository path."""

    def __init__(self, state_file: Path, *, limit: int = 20) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._path = Path(state_file)
        self._limit = limit
        self._locks = KeyedLocks()
        self._entries: dict[str, list[str]] = self._load()

    def _load(self) -> dict[str, list[str]]:
        document = read_json_document(self._path, {})
        raw = document.get("repositories") if isinstance(document, dict) else None
        entries: dict[str, list[str]] = {}
        for repository, paths in (raw or {}).items():
            if not isinstance(paths, list) or not all(isinstance(item, str) for item in paths):
                logger.warning("Skipping malformed recent-files entry", extra={"repository": repository})
                continue
            entries[repository] = paths[: self._limit]
        return entries

    def _save(self) -> None:
        write_json_document(self._path, {"repositories": self._entries})

    def get(self, repository: str) -> list[str]:
        return list(self._entries.get(repository, []))

    async def record(self, repository: str, file_path: str) -> list[str]:
        """Move ``file_path`` to the front of the repository's list."""

        async with self._locks(repository):
            remaining = [item for item in self._entries.get(repository, []) if item != file_path]
            updated = [file_path, *remaining][: self._limit]
            self._entries[repository] = updated
            self._save()
        return list(updated)

    async def clear(self, repository: str) -> None:
        async with self._locks(repository):
            if self._entries.pop(repository, None) is not None:
                self._save()


__all__ = ["RecentFilesStore"]
