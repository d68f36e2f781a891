"""Fake collaborators for supervisor, feed manager and error log tests."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from kiosk_resilience.errors import DisplayError
from kiosk_resilience.types import (
    DisplayEvent,
    DisplayEventHandler,
    ErrorLogEntry,
    Feed,
    Notification,
    UpdateCheckOutcome,
)


class FakeDisplay:
    """In-memory DisplayPort recording every call."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fullscreen: bool = False
        self.fullscreen_at_create: list[bool] = []
        self.alive: bool = False
        self.handler: DisplayEventHandler | None = None
        self.fail_create: int = 0
        self.fail_show: int = 0
        self.on_create: DisplayEvent | None = None
        self.create_gate: asyncio.Event | None = None

    @property
    def created(self) -> int:
        return self.calls.count("create")

    async def create(self) -> None:
        self.calls.append("create")
        self.fullscreen_at_create.append(self.fullscreen)
        if self.create_gate is not None:
            _ = await self.create_gate.wait()
        if self.fail_create > 0:
            self.fail_create -= 1
            raise DisplayError("window could not be created")
        self.alive = True
        if self.on_create is not None:
            event, self.on_create = self.on_create, None
            await self.emit(event)

    async def show(self) -> None:
        self.calls.append("show")
        if self.fail_show > 0:
            self.fail_show -= 1
            raise DisplayError("window could not be shown")

    def set_fullscreen(self, enabled: bool) -> None:
        self.calls.append(f"fullscreen:{enabled}")
        self.fullscreen = enabled

    async def destroy(self) -> None:
        self.calls.append("destroy")
        self.alive = False

    def subscribe(self, handler: DisplayEventHandler) -> None:
        self.handler = handler

    async def emit(self, event: DisplayEvent) -> None:
        assert self.handler is not None
        await self.handler(event)


class RecordingNotifier:
    """OperatorNotifier that records notifications, optionally failing."""

    def __init__(self, *, fail: bool = False) -> None:
        self.notifications: list[Notification] = []
        self.fail: bool = fail
        self.dismiss: asyncio.Event | None = None

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self.dismiss is not None:
            _ = await self.dismiss.wait()
        if self.fail:
            raise ConnectionError("notification channel unavailable")


class RecordingCollector:
    """ErrorCollector that records entries, optionally failing."""

    def __init__(self, *, fail: bool = False) -> None:
        self.entries: list[ErrorLogEntry] = []
        self.fail: bool = fail

    async def submit(self, entry: ErrorLogEntry) -> None:
        if self.fail:
            raise ConnectionError("collector unreachable")
        self.entries.append(entry)


class FrozenClock:
    """Settable wall clock for error log timestamps."""

    def __init__(self, start: datetime) -> None:
        self.current: datetime = start

    def __call__(self) -> datetime:
        return self.current


class FakeInterceptor:
    def __init__(self) -> None:
        self.armed: bool = False
        self.arm_count: int = 0

    def arm(self) -> None:
        self.armed = True
        self.arm_count += 1

    def disarm(self) -> None:
        self.armed = False


class FakeCleanup:
    def __init__(self, *, delay: float = 0.0, error: Exception | None = None) -> None:
        self.calls: int = 0
        self.delay: float = delay
        self.error: Exception | None = error

    async def cleanup(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


class FakeHeartbeat:
    def __init__(self) -> None:
        self.beats: list[dict[str, object]] = []

    async def beat(self, status: dict[str, object]) -> None:
        self.beats.append(status)


@dataclass
class FakeTransport:
    """UpdateTransport returning scripted outcomes or raising scripted errors."""

    applied: list[str] = field(default_factory=list)
    script: deque[UpdateCheckOutcome | BaseException] = field(default_factory=deque)
    default: UpdateCheckOutcome | BaseException = field(
        default_factory=lambda: UpdateCheckOutcome.not_available("1.0.0")
    )
    checks: int = 0

    def apply_feed(self, feed: Feed) -> None:
        self.applied.append(feed.name)

    async def check(self) -> UpdateCheckOutcome:
        self.checks += 1
        result = self.script.popleft() if self.script else self.default
        if isinstance(result, BaseException):
            raise result
        return result


@dataclass
class FakeProbe:
    """HealthProbe answering from a name -> healthy map."""

    health: dict[str, bool] = field(default_factory=dict)
    raising: set[str] = field(default_factory=set)
    probed: list[str] = field(default_factory=list)

    async def probe(self, feed: Feed) -> bool:
        self.probed.append(feed.name)
        if feed.name in self.raising:
            raise RuntimeError(f"probe exploded for {feed.name}")
        return self.health.get(feed.name, True)


class FakeRegionResolver:
    def __init__(self, region: str | None = None, error: Exception | None = None) -> None:
        self.region: str | None = region
        self.error: Exception | None = error

    async def resolve(self) -> str:
        if self.error is not None:
            raise self.error
        assert self.region is not None
        return self.region


def make_feeds(*names: str, regions: dict[str, str] | None = None) -> list[Feed]:
    """Feeds with ascending priority in the given order."""
    regions = regions or {}
    return [
        Feed(
            name=name,
            priority=index,
            endpoint={"url": f"https://{name}.example.com/kiosk/"},
            health_check_url=f"https://{name}.example.com/health",
            region=regions.get(name),
        )
        for index, name in enumerate(names)
    ]
