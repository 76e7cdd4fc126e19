from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class CancelledByCaller(Exception):
    """Raised when work is abandoned because its token was cancelled."""


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and one run.

    The token is bound lazily to the running loop, so it can be created outside
    of a coroutine and cancelled from any thread.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is None or self._loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._event.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledByCaller(self._reason)

    async def wait(self) -> None:
        if self._event is None:
            self._loop = asyncio.get_running_loop()
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The losing side is cancelled and drained; a token win raises
        ``CancelledByCaller``.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _drain(work)
            raise
        finally:
            watcher.cancel()
        if work.done():
            return work.result()
        await _drain(work)
        raise CancelledByCaller(self._reason)


async def _drain(task: "asyncio.Future[Any]") -> None:
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()
