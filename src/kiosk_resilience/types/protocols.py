"""Protocol definitions for collaborator interfaces.

This module defines structural subtyping protocols for everything the
resilience core consumes but does not own: the kiosk window, device
cleanup, update transport, region lookup, operator notifications and the
timer abstraction. Implementations are selected once at startup and
injected; nothing branches on the runtime environment per call.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from kiosk_resilience.types.models import (
    DisplayEvent,
    ErrorLogEntry,
    Feed,
    Notification,
    UpdateCheckOutcome,
)

type DisplayEventHandler = Callable[[DisplayEvent], Awaitable[None]]
type TimerCallback = Callable[[], Awaitable[object] | object]


class TimerHandle(Protocol):
    """Handle to a scheduled one-shot or periodic callback."""

    def cancel(self) -> None:
        """Cancel the timer. Idempotent."""
        ...

    @property
    def cancelled(self) -> bool:
        """True once ``cancel`` has been called."""
        ...


class Scheduler(Protocol):
    """Clock and timer abstraction.

    All restart delays, retry backoff, sweeps and periodic checks go through
    this interface so tests can fast-forward time deterministically.
    """

    def now(self) -> float:
        """Return a monotonic timestamp in seconds."""
        ...

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds.

        Coroutine results are awaited in a background task.
        """
        ...

    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        ...

    async def sleep(self, delay: float) -> None:
        """Suspend the caller for ``delay`` seconds."""
        ...


@runtime_checkable
class DisplayPort(Protocol):
    """Kiosk window/process owned exclusively by the supervisor."""

    async def create(self) -> None:
        """Create the window (or spawn the UI process)."""
        ...

    async def show(self) -> None:
        """Show the window; returning normally confirms a successful display.

        Raises:
            DisplayError: If the window cannot be shown
        """
        ...

    def set_fullscreen(self, enabled: bool) -> None:
        """Acquire or release exclusive full-screen placement."""
        ...

    async def destroy(self) -> None:
        """Tear the window down without emitting crash or close events."""
        ...

    def subscribe(self, handler: DisplayEventHandler) -> None:
        """Register the sink for crash, hang and close events."""
        ...


class HardwareCleanup(Protocol):
    """Device cleanup hook awaited once before an admin-authorized exit.

    Must be idempotent and should not raise.
    """

    async def cleanup(self) -> None: ...


class InputInterceptor(Protocol):
    """Global input interception (system shortcut suppression)."""

    def arm(self) -> None: ...

    def disarm(self) -> None: ...


class Heartbeat(Protocol):
    """Periodic liveness signal while the kiosk is running."""

    async def beat(self, status: dict[str, object]) -> None: ...


class UpdateTransport(Protocol):
    """Update-check mechanism whose endpoint the feed manager selects."""

    def apply_feed(self, feed: Feed) -> None:
        """Point subsequent checks at ``feed``."""
        ...

    async def check(self) -> UpdateCheckOutcome:
        """Check the applied feed for a newer release.

        Returns:
            AVAILABLE or NOT_AVAILABLE outcome

        Raises:
            Exception: Any transport or protocol failure
        """
        ...


class HealthProbe(Protocol):
    """Lightweight reachability check for a feed. Never raises."""

    async def probe(self, feed: Feed) -> bool: ...


class RegionResolver(Protocol):
    """Operator region lookup (ISO 3166 alpha-2 country code)."""

    async def resolve(self) -> str: ...


class OperatorNotifier(Protocol):
    """Operator-facing notification sink.

    For modal notifications, the returned awaitable completes when the
    operator dismisses the notification.
    """

    async def notify(self, notification: Notification) -> None: ...


class ErrorCollector(Protocol):
    """Remote collector receiving mirrored error log entries."""

    async def submit(self, entry: ErrorLogEntry) -> None: ...
