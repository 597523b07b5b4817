"""Cancellation token shared by a run and whoever may abort it."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunCancelled(Exception):
    """The run's token fired while an awaitable was in flight."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class CancelToken:
    """One-shot cancellation flag with an awaitable side.

    ``cancel`` may be called from any coroutine on the run's event loop,
    or from another thread through ``loop.call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info("Run cancellation requested: %s", reason)
        for callback in self._callbacks:
            callback(reason)

    def on_cancel(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self._reason)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins, the in-flight work is cancelled and
        :class:`RunCancelled` is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelled(self._reason)
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        await asyncio.wait({work})
        if not work.cancelled() and work.exception() is not None:
            logger.debug("Work failed after cancellation: %r", work.exception())
        raise RunCancelled(self._reason)
