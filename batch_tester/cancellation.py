"""Shared cancellation signal for one batch run.

Every suspension point of a run (network I/O, inter-test delays, retry
backoff) goes through ``guard`` or ``sleep`` so an external abort wakes it.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Optional, TypeVar

from batch_tester.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "batch aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self.reason or "batch aborted")

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless cancellation fires first; then cancel it and raise."""
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        work = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work
        if work.cancelled():
            self.raise_if_cancelled()
        return work.result()

    async def sleep(self, ms: float) -> None:
        if ms <= 0:
            self.raise_if_cancelled()
            return
        await self.guard(asyncio.sleep(ms / 1000))
