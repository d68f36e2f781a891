"""Tests for update feed selection and failover."""

from __future__ import annotations

import asyncio

import pytest

from kiosk_resilience.core.feeds import FeedManager
from kiosk_resilience.errors import UpdateCheckError
from kiosk_resilience.types import Feed, UpdateCheckOutcome
from tests.fixtures.manual_scheduler import ManualScheduler, settle
from tests.fixtures.resilience_mocks import FakeProbe, FakeRegionResolver, FakeTransport, make_feeds

NETWORK_ERROR = ConnectionError("connect ECONNREFUSED 10.0.0.1:443")


def make_manager(
    feeds: list[Feed],
    scheduler: ManualScheduler,
    *,
    transport: FakeTransport | None = None,
    prober: FakeProbe | None = None,
    **kwargs: object,
) -> FeedManager:
    kwargs.setdefault("locale_fallback", lambda: "UNKNOWN")
    return FeedManager(
        feeds,
        transport=transport or FakeTransport(),
        prober=prober or FakeProbe(),
        scheduler=scheduler,
        **kwargs,  # pyright: ignore[reportArgumentType]
    )


class GatedProbe(FakeProbe):
    """Probe that blocks until the test opens the gate."""

    def __init__(self, health: dict[str, bool]) -> None:
        super().__init__(health=health)
        self.gate: asyncio.Event = asyncio.Event()

    async def probe(self, feed: Feed) -> bool:
        _ = await self.gate.wait()
        return await super().probe(feed)


class GatedTransport(FakeTransport):
    """Transport whose checks block until the test opens the gate."""

    def __init__(self, default: UpdateCheckOutcome | BaseException) -> None:
        super().__init__(default=default)
        self.gate: asyncio.Event = asyncio.Event()

    async def check(self) -> UpdateCheckOutcome:
        _ = await self.gate.wait()
        return await super().check()


@pytest.mark.unit
class TestConstruction:
    def test_requires_feeds(self, scheduler: ManualScheduler) -> None:
        with pytest.raises(ValueError):
            _ = make_manager([], scheduler)

    def test_requires_positive_max_retries(self, scheduler: ManualScheduler) -> None:
        with pytest.raises(ValueError):
            _ = make_manager(make_feeds("a"), scheduler, max_retries=0)

    def test_feeds_sorted_by_priority(self, scheduler: ManualScheduler) -> None:
        feeds = [Feed(name="mirror", priority=5), Feed(name="primary", priority=1), Feed(name="backup", priority=5)]

        manager = make_manager(feeds, scheduler)

        assert [feed.name for feed in manager.feeds] == ["primary", "mirror", "backup"]


@pytest.mark.unit
class TestInitialize:
    """Test cases for initial feed selection."""

    async def test_selects_first_healthy_feed(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        prober = FakeProbe(health={"primary": False, "mirror": False, "backup": True})
        manager = make_manager(
            make_feeds("primary", "mirror", "backup"), scheduler, transport=transport, prober=prober
        )

        await manager.initialize()

        assert manager.current_index == 2
        assert manager.retry_count == 0
        assert transport.applied == ["backup"]

    async def test_falls_back_to_first_feed_when_none_healthy(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(health={"primary": False, "mirror": False})
        manager = make_manager(make_feeds("primary", "mirror"), scheduler, prober=prober)

        await manager.initialize()

        assert manager.current_index == 0

    async def test_probe_exception_counts_as_unhealthy(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(raising={"primary"})
        manager = make_manager(make_feeds("primary", "mirror"), scheduler, prober=prober)

        await manager.initialize()

        assert manager.current_index == 1
        assert manager.get_status().health == {"primary": False, "mirror": True}

    async def test_regional_feed_preferred(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(
            make_feeds("primary", "mirror", "china", regions={"china": "CN"}),
            scheduler,
            region_resolver=FakeRegionResolver(region="cn"),
        )

        await manager.initialize()

        assert manager.region == "CN"
        assert manager.current_feed.name == "china"

    async def test_resolver_failure_uses_locale_guess(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(
            make_feeds("primary", "vienna", regions={"vienna": "AT"}),
            scheduler,
            region_resolver=FakeRegionResolver(error=TimeoutError("lookup timed out")),
            locale_fallback=lambda: "AT",
        )

        await manager.initialize()

        assert manager.region == "AT"
        assert manager.current_feed.name == "vienna"

    async def test_unmatched_region_keeps_priority_choice(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(
            make_feeds("primary", "china", regions={"china": "CN"}),
            scheduler,
            region_resolver=FakeRegionResolver(region="DE"),
        )

        await manager.initialize()

        assert manager.current_feed.name == "primary"


@pytest.mark.unit
class TestFailover:
    """Test cases for retry counting and failover."""

    async def test_retries_then_fails_over_to_next_healthy_feed(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        prober = FakeProbe(health={"a": True, "b": False, "c": True})
        manager = make_manager(make_feeds("a", "b", "c"), scheduler, transport=transport, prober=prober)
        await manager.initialize()

        await manager.on_update_check_error(NETWORK_ERROR)
        await manager.on_update_check_error(NETWORK_ERROR)
        assert manager.retry_count == 2
        assert manager.current_index == 0

        await manager.on_update_check_error(NETWORK_ERROR)

        assert manager.current_feed.name == "c"
        assert manager.retry_count == 0
        assert transport.applied == ["a", "c"]

    async def test_failover_wraps_around(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(health={"a": True, "b": True, "c": True})
        manager = make_manager(make_feeds("a", "b", "c"), scheduler, prober=prober, max_retries=1)
        await manager.initialize()
        assert manager.switch_to_feed(2) is True

        await manager.on_update_check_error(NETWORK_ERROR)

        assert manager.current_feed.name == "a"

    async def test_all_candidates_unhealthy_selects_last_probed(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(health={"a": True, "b": False, "c": False})
        manager = make_manager(make_feeds("a", "b", "c"), scheduler, prober=prober, max_retries=1)
        await manager.initialize()
        prober.probed.clear()

        await manager.on_update_check_error(NETWORK_ERROR)

        assert prober.probed == ["b", "c"]
        assert manager.current_feed.name == "c"
        assert manager.retry_count == 0

    async def test_single_feed_stays_put(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(make_feeds("only"), scheduler, max_retries=1)
        await manager.initialize()

        await manager.on_update_check_error(NETWORK_ERROR)

        assert manager.current_index == 0
        assert manager.retry_count == 0

    async def test_non_retryable_error_resets_count_without_recheck(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(make_feeds("a", "b"), scheduler)
        await manager.initialize()
        await manager.on_update_check_error(NETWORK_ERROR)
        assert len(scheduler.active_timers) == 1

        await manager.on_update_check_error(UpdateCheckError("a", "HTTP 503", status=503))

        assert manager.retry_count == 0
        assert manager.current_index == 0

    async def test_success_resets_retry_count(self, scheduler: ManualScheduler) -> None:
        manager = make_manager(make_feeds("a", "b"), scheduler)
        await manager.initialize()
        await manager.on_update_check_error(NETWORK_ERROR)
        await manager.on_update_check_error(NETWORK_ERROR)

        manager.on_update_check_success()

        assert manager.retry_count == 0

    async def test_errors_during_failover_are_ignored(self, scheduler: ManualScheduler) -> None:
        prober = GatedProbe(health={"a": True, "b": True})
        manager = make_manager(make_feeds("a", "b"), scheduler, prober=prober, max_retries=2)
        prober.gate.set()
        await manager.initialize()
        prober.gate.clear()

        await manager.on_update_check_error(NETWORK_ERROR)
        failover = asyncio.create_task(manager.on_update_check_error(NETWORK_ERROR))
        await settle()

        await manager.on_update_check_error(NETWORK_ERROR)
        assert manager.retry_count <= manager.max_retries

        prober.gate.set()
        await failover

        assert manager.current_feed.name == "b"
        assert manager.retry_count == 0


@pytest.mark.unit
class TestCheckForUpdates:
    """Test cases for the timer-driven check flow."""

    async def test_rechecks_then_fails_over_then_recovers(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport(default=NETWORK_ERROR)
        manager = make_manager(make_feeds("a", "b"), scheduler, transport=transport)
        await manager.initialize()

        outcome = await manager.check_for_updates()
        assert outcome is not None
        assert outcome.error is NETWORK_ERROR
        assert manager.retry_count == 1

        await scheduler.advance(5.0)
        assert manager.retry_count == 2

        await scheduler.advance(5.0)
        assert manager.current_feed.name == "b"
        assert manager.retry_count == 0

        transport.default = UpdateCheckOutcome.available("2.0.0")
        await scheduler.advance(2.0)

        assert transport.checks == 4
        assert manager.retry_count == 0
        assert scheduler.active_timers == []

    async def test_check_timeout_counts_as_retryable(self, scheduler: ManualScheduler) -> None:
        class SlowTransport(FakeTransport):
            async def check(self) -> UpdateCheckOutcome:
                await asyncio.sleep(5)
                return UpdateCheckOutcome.not_available()

        manager = make_manager(make_feeds("a", "b"), scheduler, transport=SlowTransport(), check_timeout=0.01)
        await manager.initialize()

        outcome = await manager.check_for_updates()
        assert outcome is not None

        assert isinstance(outcome.error, TimeoutError)
        assert manager.retry_count == 1

    async def test_start_arms_initial_and_periodic_checks(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        manager = make_manager(make_feeds("a"), scheduler, transport=transport)

        await manager.start()
        await scheduler.advance(30.0)
        assert transport.checks == 1

        await scheduler.advance(6 * 60 * 60.0)
        assert transport.checks == 2

        manager.stop()
        assert scheduler.active_timers == []

    async def test_stop_cancels_pending_recheck(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport(default=NETWORK_ERROR)
        manager = make_manager(make_feeds("a", "b"), scheduler, transport=transport)
        await manager.start()
        _ = await manager.check_for_updates()

        manager.stop()
        await scheduler.advance(60.0)

        assert transport.checks == 1

    async def test_check_failing_after_stop_arms_nothing(self, scheduler: ManualScheduler) -> None:
        transport = GatedTransport(default=NETWORK_ERROR)
        manager = make_manager(make_feeds("a", "b"), scheduler, transport=transport, max_retries=1)
        await manager.start()
        in_flight = asyncio.create_task(manager.check_for_updates())
        await settle()

        manager.stop()
        transport.gate.set()
        _ = await in_flight
        await scheduler.advance(600.0)

        assert transport.checks == 1
        assert manager.retry_count == 0
        assert manager.current_feed.name == "a"
        assert scheduler.active_timers == []

    async def test_check_after_stop_is_skipped(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        manager = make_manager(make_feeds("a"), scheduler, transport=transport)
        await manager.start()
        manager.stop()

        assert await manager.check_for_updates() is None
        assert transport.checks == 0

    async def test_restart_after_stop_resumes_checks(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        manager = make_manager(make_feeds("a"), scheduler, transport=transport)
        await manager.start()
        manager.stop()

        await manager.start()
        await scheduler.advance(30.0)

        assert transport.checks == 1

    async def test_overlapping_checks_count_once(self, scheduler: ManualScheduler) -> None:
        transport = GatedTransport(default=NETWORK_ERROR)
        manager = make_manager(make_feeds("a", "b"), scheduler, transport=transport)
        await manager.initialize()
        first = asyncio.create_task(manager.check_for_updates())
        await settle()

        assert await manager.check_for_updates() is None

        transport.gate.set()
        outcome = await first

        assert outcome is not None
        assert outcome.error is NETWORK_ERROR
        assert transport.checks == 1
        assert manager.retry_count == 1


@pytest.mark.unit
class TestOperatorControls:
    async def test_switch_to_feed(self, scheduler: ManualScheduler) -> None:
        transport = FakeTransport()
        manager = make_manager(make_feeds("a", "b"), scheduler, transport=transport)
        await manager.initialize()
        await manager.on_update_check_error(NETWORK_ERROR)

        assert manager.switch_to_feed(1) is True

        assert manager.current_feed.name == "b"
        assert manager.retry_count == 0
        assert transport.applied[-1] == "b"
        assert scheduler.active_timers == []

    @pytest.mark.parametrize("index", [-1, 2, 10])
    async def test_switch_to_invalid_feed(self, scheduler: ManualScheduler, index: int) -> None:
        manager = make_manager(make_feeds("a", "b"), scheduler)
        await manager.initialize()

        assert manager.switch_to_feed(index) is False
        assert manager.current_index == 0

    async def test_refresh_all_feed_health_keeps_selection(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(health={"a": True, "b": True})
        manager = make_manager(make_feeds("a", "b"), scheduler, prober=prober)
        await manager.initialize()
        prober.health["a"] = False

        health = await manager.refresh_all_feed_health()

        assert health == {"a": False, "b": True}
        assert manager.current_index == 0

    async def test_status_snapshot(self, scheduler: ManualScheduler) -> None:
        prober = FakeProbe(health={"a": True, "b": False})
        manager = make_manager(make_feeds("a", "b"), scheduler, prober=prober)
        await manager.initialize()

        status = manager.get_status().to_dict()

        assert status["current_feed"] == "a"
        assert status["total_feeds"] == 2
        assert status["retry_count"] == 0
        assert status["max_retries"] == 3
        assert status["health_checks"] == {"a": True, "b": False}
        assert [feed["active"] for feed in status["feeds"]] == [True, False]  # pyright: ignore[reportGeneralTypeIssues, reportIndexIssue]
