"""Asyncio-backed implementation of the Scheduler protocol.

Restart delays, feed rechecks, the retry sweep and periodic update checks are
all timer-driven. They are expressed against the Scheduler protocol so the
production loop and the tests' manual clock are interchangeable.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable
from typing import override

from kiosk_resilience.types.protocols import TimerCallback

logger = logging.getLogger(__name__)


class AsyncioTimer:
    """Cancellable handle for a pending loop callback or a periodic task."""

    def __init__(self, name: str) -> None:
        self.name: str = name
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[object] | None = None
        self._cancelled: bool = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None and not self._task.done():
            _ = self._task.cancel()

    @override
    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "armed"
        return f"<AsyncioTimer {self.name} {state}>"


class AsyncioScheduler:
    """Scheduler running callbacks on the current asyncio event loop.

    Tasks spawned for coroutine callbacks are tracked so they are not garbage
    collected mid-flight and can be cancelled together on shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()
        self._timers: set[AsyncioTimer] = set()

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: TimerCallback) -> AsyncioTimer:
        loop = asyncio.get_running_loop()
        timer = AsyncioTimer(_callback_name(callback))

        def fire() -> None:
            self._timers.discard(timer)
            if timer.cancelled:
                return
            try:
                result = callback()
            except Exception:
                logger.exception("Timer callback %s failed", timer.name)
                return
            # Cancelling a fired timer must not cancel the callback it started
            if inspect.isawaitable(result):
                _ = self._spawn(result, timer.name)

        timer._handle = loop.call_later(max(delay, 0.0), fire)  # pyright: ignore[reportPrivateUsage]
        self._timers.add(timer)
        return timer

    def call_every(self, interval: float, callback: TimerCallback) -> AsyncioTimer:
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)

        timer = AsyncioTimer(_callback_name(callback))

        async def run_periodically() -> None:
            while not timer.cancelled:
                await asyncio.sleep(interval)
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        _ = await result
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Periodic callback %s failed", timer.name)

        timer._task = self._spawn(run_periodically(), timer.name)  # pyright: ignore[reportPrivateUsage]
        self._timers.add(timer)
        return timer

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    def cancel_all(self) -> None:
        """Cancel every outstanding timer and background task."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            _ = task.cancel()

    def _spawn(self, awaitable: Awaitable[object], name: str) -> asyncio.Task[object]:
        task: asyncio.Task[object] = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(finished: asyncio.Task[object]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error("Background task %s failed: %s", name, exc, exc_info=exc)

        task.add_done_callback(done)
        return task


def _callback_name(callback: object) -> str:
    return getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None) or repr(callback)
