"""Cancellable timers for the voice session.

The session never sleeps inline: every delay (listening timeout, listener
restart backoff) is a timer handle that can be cancelled by a later
transition. Tests substitute a manual implementation to control firing order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class _AsyncioTimerHandle:
    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class AsyncioTimers:
    """Timers backed by the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> _AsyncioTimerHandle:
        loop = asyncio.get_running_loop()
        timer = _AsyncioTimerHandle()

        def _fire() -> None:
            if timer.cancelled:
                return
            task = loop.create_task(self._run(callback))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        timer._handle = loop.call_later(delay, _fire)
        return timer

    @staticmethod
    async def _run(callback: TimerCallback) -> None:
        try:
            await callback()
        except Exception as exc:
            logger.error("Timer callback %r failed: %s", callback, exc)
