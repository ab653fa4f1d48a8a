"""Parsers for git command output."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class WorktreeEntry:
    path: str
    head: str | None = None
    branch: str | None = None
    bare: bool = False
    detached: bool = False
    locked: bool = False
    prunable: bool = False
    dirty: bool | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "head": self.head,
            "branch": self.branch,
            "bare": self.bare,
            "detached": self.detached,
            "locked": self.locked,
            "prunable": self.prunable,
            "dirty": self.dirty,
        }


@dataclass(slots=True)
class StatusEntry:
    code: str
    path: str


@dataclass(slots=True)
class RepositoryStatus:
    branch: str | None
    entries: list[StatusEntry] = field(default_factory=list)

    @property
    def dirty(self) -> bool:
        return bool(self.entries)


def parse_tracked_files(output: str) -> list[str]:
    """Split newline-delimited ``ls-files`` output, keeping git's order."""

    return [line for line in output.splitlines() if line.strip()]


def parse_worktree_porcelain(output: str) -> list[WorktreeEntry]:
    """Parse ``git worktree list --porcelain``."""

    entries: list[WorktreeEntry] = []
    for block in output.strip().split("\n\n"):
        entry: WorktreeEntry | None = None
        for line in block.splitlines():
            if line.startswith("worktree "):
                entry = WorktreeEntry(path=line[len("worktree ") :])
            elif entry is None:
                continue
            elif line.startswith("HEAD "):
                entry.head = line[len("HEAD ") :]
            elif line.startswith("branch "):
                ref = line[len("branch ") :]
                entry.branch = ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else ref
            elif line == "bare":
                entry.bare = True
            elif line == "detached":
                entry.detached = True
            elif line.startswith("locked"):
                entry.locked = True
            elif line.startswith("prunable"):
                entry.prunable = True
        if entry is not None:
            entries.append(entry)
    return entries


def parse_status_porcelain(output: str) -> list[StatusEntry]:
    """Parse ``git status --porcelain`` (v1) lines."""

    entries: list[StatusEntry] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        entries.append(StatusEntry(code=line[:2], path=line[3:]))
    return entries


def repository_name_from_url(url: str) -> str:
    """Derive a directory name from a clone URL (``git@host:org/app.git`` -> ``app``)."""

    trimmed = url.strip().rstrip("/")
    if trimmed.endswith(".git"):
        trimmed = trimmed[: -len(".git")]
    name = trimmed.replace(":", "/").rsplit("/", 1)[-1]
    return name or "repository"


__all__ = [
    "RepositoryStatus",
    "StatusEntry",
    "WorktreeEntry",
    "parse_status_porcelain",
    "parse_tracked_files",
    "parse_worktree_porcelain",
    "repository_name_from_url",
]
