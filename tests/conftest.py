"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from datetime import UTC, datetime

import pytest

from kiosk_resilience.core.retry import ErrorLog, RetryEngine
from kiosk_resilience.utils.logging import clear_correlation_id
from tests.fixtures.manual_scheduler import ManualScheduler
from tests.fixtures.resilience_mocks import (
    FakeDisplay,
    FakeInterceptor,
    FrozenClock,
    RecordingCollector,
    RecordingNotifier,
)


@pytest.fixture(autouse=True)
def reset_correlation_id() -> Iterator[None]:
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def display() -> FakeDisplay:
    return FakeDisplay()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def collector() -> RecordingCollector:
    return RecordingCollector()


@pytest.fixture
def interceptor() -> FakeInterceptor:
    return FakeInterceptor()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
async def error_log(
    notifier: RecordingNotifier, collector: RecordingCollector, clock: FrozenClock
) -> AsyncIterator[ErrorLog]:
    log = ErrorLog(notifier=notifier, collector=collector, time_source=clock)
    yield log
    await log.wait_pending()


@pytest.fixture
def retry_engine(error_log: ErrorLog, scheduler: ManualScheduler) -> RetryEngine:
    return RetryEngine(error_log=error_log, scheduler=scheduler)
