"""Fuzzy filename matching for tracked-file search.

A query matches a name when its characters appear in order in the name, with
up to ``len(query) // 3`` query characters allowed to be missing. Matches are
ranked by how many query characters were found, then by alignment quality:
consecutive runs, hits on word boundaries, exact/prefix/substring matches,
and shorter names.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Callable, Iterable

SEARCH_RESULT_LIMIT = 60

_MATCH = 1.0
_BOUNDARY = 2.0
_CONSECUTIVE = 1.5
_SEPARATORS = set("-_. /")

_NEG = (-1, 0.0)


@dataclass(slots=True, frozen=True)
class FuzzyMatch:
    path: str
    index: int
    matched: int
    quality: float

    def sort_key(self) -> tuple[int, float, int]:
        return (-self.matched, -self.quality, self.index)


def allowed_misses(query: str) -> int:
    return len(query) // 3


def normalize_query(query: str) -> str:
    return "".join(query.lower().split())


def _boundaries(name: str) -> set[int]:
    positions = {0}
    for index in range(1, len(name)):
        previous, current = name[index - 1], name[index]
        if previous in _SEPARATORS:
            positions.add(index)
        elif current.isupper() and previous.islower():
            positions.add(index)
        elif current.isdigit() and not previous.isdigit():
            positions.add(index)
    return positions


def _align(query: str, name: str) -> tuple[int, float]:
    """Best (matched characters, bonus) alignment of ``query`` as a gapped subsequence of ``name``."""

    lowered = name.lower()
    boundaries = _boundaries(name)
    width = len(name) + 1
    # best[j]: best alignment of query[:i] within name[:j]; ending[j]: same but query[i-1] sits on name[j-1].
    best = [(0, 0.0)] * width
    ending = [_NEG] * width
    for char in query:
        next_best = [(0, 0.0)] * width
        next_ending = [_NEG] * width
        for j in range(1, width):
            if lowered[j - 1] == char:
                bonus = _MATCH + (_BOUNDARY if (j - 1) in boundaries else 0.0)
                fresh = (best[j - 1][0] + 1, best[j - 1][1] + bonus)
                chained = _NEG
                if ending[j - 1][0] >= 0:
                    chained = (ending[j - 1][0] + 1, ending[j - 1][1] + bonus + _CONSECUTIVE)
                next_ending[j] = max(fresh, chained)
            next_best[j] = max(next_best[j - 1], best[j], next_ending[j])
        best, ending = next_best, next_ending
    return best[-1]


def score(query: str, name: str) -> tuple[int, float] | None:
    """Return ``(matched, quality)`` for ``name`` or None when it does not match ``query``."""

    needle = normalize_query(query)
    if not needle:
        return None
    lowered = name.lower()
    required = len(needle) - allowed_misses(needle)
    if sum(1 for char in needle if char in lowered) < required:
        return None

    matched, quality = _align(needle, name)
    if matched == 0 or matched < required:
        return None

    stem = posixpath.splitext(lowered)[0]
    if lowered == needle:
        quality += 10.0
    elif stem == needle:
        quality += 8.0
    elif lowered.startswith(needle):
        quality += 6.0
    elif needle in lowered:
        quality += 4.0
    quality -= len(name) * 0.05
    return matched, quality


def rank(
    query: str,
    paths: Iterable[str],
    *,
    key: Callable[[str], str] = posixpath.basename,
    limit: int = SEARCH_RESULT_LIMIT,
) -> list[FuzzyMatch]:
    """Rank ``paths`` against ``query``; blank queries match nothing."""

    if not normalize_query(query):
        return []
    matches: list[FuzzyMatch] = []
    for index, path in enumerate(paths):
        result = score(query, key(path))
        if result is not None:
            matches.append(FuzzyMatch(path=path, index=index, matched=result[0], quality=result[1]))
    matches.sort(key=FuzzyMatch.sort_key)
    return matches[:limit]


__all__ = ["FuzzyMatch", "SEARCH_RESULT_LIMIT", "allowed_misses", "rank", "score"]
