"""Explicit cancellation tokens threaded through long-running calls."""

from __future__ import annotations

import asyncio

from .errors import OperationCancelled


class CancellationToken:
    """One-shot cancellation signal checked at every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._linked: list["CancellationToken"] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for other in self._linked:
            other.cancel(reason)
        self._linked.clear()

    def link(self, other: "CancellationToken") -> None:
        """Cancel ``other`` whenever this token is cancelled."""

        if self._event.is_set():
            other.cancel(self._reason)
        else:
            self._linked.append(other)

    def unlink(self, other: "CancellationToken") -> None:
        """Stop cascading to ``other``, typically once its work has finished."""

        if other in self._linked:
            self._linked.remove(other)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        if self._event.is_set():
            suffix = f": {self._reason}" if self._reason else ""
            raise OperationCancelled(f"{what} cancelled{suffix}")


__all__ = ["CancellationToken"]
