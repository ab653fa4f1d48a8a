"""Cached tracked-file listings with latest-wins refreshes and fuzzy search."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..cancellation import CancellationToken
from ..errors import OperationCancelled
from ..git import RepositoryOperations
from .fuzzy import SEARCH_RESULT_LIMIT, normalize_query, rank

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TrackedFileSet:
    repository: str
    paths: tuple[str, ...]
    refreshed_at: datetime


class TrackedFileIndex:
    """Per-repository tracked-file cache.

    Sets are rebuilt wholesale. Starting a refresh cancels the one in flight for
    the same repository, and a superseded refresh never overwrites the cache.
    """

    def __init__(
        self,
        operations: Callable[[str], RepositoryOperations],
        *,
        result_limit: int = SEARCH_RESULT_LIMIT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._operations = operations
        self._result_limit = result_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sets: dict[str, TrackedFileSet] = {}
        self._generation: dict[str, int] = defaultdict(int)
        self._inflight: dict[str, tuple[CancellationToken, asyncio.Task[TrackedFileSet | None]]] = {}

    def cached(self, repository: str) -> TrackedFileSet | None:
        return self._sets.get(repository)

    def _launch(
        self, repository: str, parent: CancellationToken | None = None
    ) -> asyncio.Task[TrackedFileSet | None]:
        previous = self._inflight.get(repository)
        if previous is not None:
            previous[0].cancel("superseded by a newer refresh")
        self._generation[repository] += 1
        token = CancellationToken()
        if parent is not None:
            parent.link(token)
        task = asyncio.create_task(self._build(repository, self._generation[repository], token, parent))
        self._inflight[repository] = (token, task)
        return task

    async def _build(
        self,
        repository: str,
        generation: int,
        token: CancellationToken,
        parent: CancellationToken | None = None,
    ) -> TrackedFileSet | None:
        try:
            paths = await self._operations(repository).list_tracked_files(token=token)
        except OperationCancelled:
            if generation != self._generation[repository]:
                logger.debug("Dropped superseded file index refresh", extra={"repository": repository})
                return None
            raise
        finally:
            if parent is not None:
                parent.unlink(token)
            current = self._inflight.get(repository)
            if current is not None and current[0] is token:
                del self._inflight[repository]

        if generation != self._generation[repository]:
            logger.debug("Dropped superseded file index refresh", extra={"repository": repository})
            return None
        file_set = TrackedFileSet(repository=repository, paths=tuple(paths), refreshed_at=self._clock())
        self._sets[repository] = file_set
        logger.debug("Indexed tracked files", extra={"repository": repository, "count": len(paths)})
        return file_set

    async def refresh(
        self, repository: str, *, token: CancellationToken | None = None
    ) -> TrackedFileSet | None:
        """Rebuild the set for ``repository``; returns None if a newer refresh superseded this one."""

        return await asyncio.shield(self._launch(repository, token))

    async def files(self, repository: str) -> tuple[str, ...]:
        """Return the cached set, building it on first use."""

        while repository not in self._sets:
            inflight = self._inflight.get(repository)
            task = inflight[1] if inflight is not None else self._launch(repository)
            await asyncio.shield(task)
        return self._sets[repository].paths

    def invalidate(self, repository: str) -> None:
        self._sets.pop(repository, None)
        inflight = self._inflight.pop(repository, None)
        if inflight is not None:
            self._generation[repository] += 1
            inflight[0].cancel("index invalidated")

    async def search(self, repository: str, query: str) -> list[str]:
        """Fuzzy-match ``query`` against file names; a blank query returns nothing."""

        if not normalize_query(query):
            return []
        paths = await self.files(repository)
        return [match.path for match in rank(query, paths, limit=self._result_limit)]


__all__ = ["TrackedFileIndex", "TrackedFileSet"]
