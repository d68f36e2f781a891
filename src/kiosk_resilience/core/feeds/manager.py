"""Update feed selection with health checks, failover and region preference.

The feed manager owns the current feed index, the consecutive retry counter
and the health map. Nothing it does propagates to callers: probe and check
failures only change internal state and produce log lines.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Final

from kiosk_resilience.core.feeds.region import region_from_locale
from kiosk_resilience.core.retry.classification import is_retryable_error
from kiosk_resilience.errors import UpdateCheckError
from kiosk_resilience.types import (
    Feed,
    FeedManagerStatus,
    FeedStatusEntry,
    HealthProbe,
    RegionResolver,
    Scheduler,
    TimerHandle,
    UpdateCheckOutcome,
    UpdateStatus,
    UpdateTransport,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_DELAY: Final[float] = 5.0
DEFAULT_FAILOVER_DELAY: Final[float] = 2.0
DEFAULT_CHECK_TIMEOUT: Final[float] = 60.0
DEFAULT_INITIAL_CHECK_DELAY: Final[float] = 30.0
DEFAULT_CHECK_INTERVAL: Final[float] = 6 * 60 * 60.0


class FeedManager:
    """Chooses which configured update feed the update transport uses.

    Feeds are ordered by ascending ``priority`` (stable for equal values).
    After ``max_retries`` consecutive retryable check failures the manager
    fails over to the next healthy feed in circular order.
    """

    def __init__(
        self,
        feeds: Sequence[Feed],
        *,
        transport: UpdateTransport,
        prober: HealthProbe,
        scheduler: Scheduler,
        region_resolver: RegionResolver | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        failover_delay: float = DEFAULT_FAILOVER_DELAY,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        initial_check_delay: float = DEFAULT_INITIAL_CHECK_DELAY,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        locale_fallback: Callable[[], str] = region_from_locale,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    ) -> None:
        """Initialize the feed manager.

        Args:
            feeds: Configured feeds; at least one
            transport: Update-check mechanism the selected feed is applied to
            prober: Feed health probe
            scheduler: Timer source for rechecks and periodic checks
            region_resolver: Optional operator region lookup
            max_retries: Consecutive retryable failures before failover
            retry_delay: Delay before a same-feed recheck
            failover_delay: Delay before the first check on a new feed
            check_timeout: Upper bound for a single update check
            initial_check_delay: Delay before the first check after start
            check_interval: Interval between periodic checks
            locale_fallback: Region guess used when the resolver fails
            is_retryable: Classifier shared with the retry engine

        Raises:
            ValueError: If no feeds are configured or max_retries < 1
        """
        if not feeds:
            msg = "FeedManager requires at least one feed"
            raise ValueError(msg)
        if max_retries < 1:
            msg = f"max_retries must be at least 1, got {max_retries}"
            raise ValueError(msg)

        self._feeds: tuple[Feed, ...] = tuple(sorted(feeds, key=lambda feed: feed.priority))
        self._transport: UpdateTransport = transport
        self._prober: HealthProbe = prober
        self._scheduler: Scheduler = scheduler
        self._region_resolver: RegionResolver | None = region_resolver
        self._max_retries: int = max_retries
        self._retry_delay: float = retry_delay
        self._failover_delay: float = failover_delay
        self._check_timeout: float = check_timeout
        self._initial_check_delay: float = initial_check_delay
        self._check_interval: float = check_interval
        self._locale_fallback: Callable[[], str] = locale_fallback
        self._is_retryable: Callable[[BaseException], bool] = is_retryable

        self._current_index: int = 0
        self._retry_count: int = 0
        self._health: dict[str, bool] = {}
        self._region: str | None = None
        self._failing_over: bool = False
        self._checking: bool = False
        self._stopped: bool = False

        self._recheck_timer: TimerHandle | None = None
        self._initial_timer: TimerHandle | None = None
        self._periodic_timer: TimerHandle | None = None

    @property
    def feeds(self) -> tuple[Feed, ...]:
        return self._feeds

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_feed(self) -> Feed:
        return self._feeds[self._current_index]

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def region(self) -> str | None:
        return self._region

    async def start(self) -> None:
        """Select a feed and arm the initial and periodic update checks."""
        self._stopped = False
        await self.initialize()
        self._initial_timer = self._scheduler.call_later(self._initial_check_delay, self.check_for_updates)
        self._periodic_timer = self._scheduler.call_every(self._check_interval, self.check_for_updates)

    def stop(self) -> None:
        """Cancel every outstanding timer, including pending rechecks.

        A check already in flight is allowed to finish, but its result is
        discarded and it cannot arm a new recheck.
        """
        self._stopped = True
        for timer in (self._recheck_timer, self._initial_timer, self._periodic_timer):
            if timer is not None:
                timer.cancel()
        self._recheck_timer = None
        self._initial_timer = None
        self._periodic_timer = None

    async def initialize(self) -> None:
        """Probe every feed, pick the first healthy one and apply it.

        Probes run concurrently; results are applied in one step. With no
        healthy feed the first feed is used. A feed tagged for the operator's
        region wins over the priority choice.
        """
        logger.info("Initializing feed manager with %d feeds", len(self._feeds))

        results = await asyncio.gather(*(self._probe(feed) for feed in self._feeds))
        self._health.update({feed.name: healthy for feed, healthy in zip(self._feeds, results, strict=True)})

        selected = next((index for index, healthy in enumerate(results) if healthy), 0)
        logger.info("Selected feed %s by priority and health", self._feeds[selected].name)

        self._region = await self._resolve_region()
        regional = self._regional_feed_index(self._region)
        if regional is not None and regional != selected:
            logger.info("Region %s detected, preferring feed %s", self._region, self._feeds[regional].name)
            selected = regional

        self._current_index = selected
        self._retry_count = 0
        self._apply_current()

    async def check_for_updates(self) -> UpdateCheckOutcome | None:
        """Run one update check against the current feed and react to it.

        Only one check runs at a time, so a periodic check and a pending
        recheck never both count toward ``retry_count``.

        Returns:
            The check outcome, or None if the check was skipped because the
            manager is stopped or another check is in flight
        """
        if self._stopped:
            logger.debug("Feed manager stopped; skipping update check")
            return None
        if self._checking:
            logger.debug("Update check already in flight; skipping")
            return None

        self._checking = True
        try:
            try:
                async with asyncio.timeout(self._check_timeout):
                    outcome = await self._transport.check()
            except Exception as exc:
                outcome = UpdateCheckOutcome.failed(exc)
        finally:
            self._checking = False

        if self._stopped:
            logger.info("Discarding update check result received after stop")
            return outcome

        await self.handle_check_outcome(outcome)
        return outcome

    async def handle_check_outcome(self, outcome: UpdateCheckOutcome) -> None:
        """Transition function for a completed update check."""
        if outcome.status is UpdateStatus.ERROR:
            error = outcome.error or UpdateCheckError(self.current_feed.name, "check failed without an error")
            await self.on_update_check_error(error)
            return

        if outcome.status is UpdateStatus.AVAILABLE:
            logger.info("Update %s available [%s]", outcome.version, self.current_feed.name)
        else:
            logger.info("No update available [%s]", self.current_feed.name)
        self.on_update_check_success()

    async def on_update_check_error(self, error: BaseException) -> None:
        """React to a failed update check on the current feed."""
        feed_name = self.current_feed.name
        logger.error("Update check failed [%s]: %s", feed_name, error)

        if self._stopped:
            logger.debug("Feed manager stopped; not reacting to error from %s", feed_name)
            return

        if self._failing_over:
            logger.debug("Failover in progress; ignoring error from %s", feed_name)
            return

        if not self._is_retryable(error):
            logger.warning("Non-retryable update error on %s; staying on feed", feed_name)
            self._retry_count = 0
            return

        self._retry_count += 1
        if self._retry_count < self._max_retries:
            logger.info(
                "Retrying feed %s (%d/%d) in %.1fs",
                feed_name,
                self._retry_count,
                self._max_retries,
                self._retry_delay,
            )
            self._schedule_recheck(self._retry_delay)
            return

        logger.warning("Feed %s failed %d times, failing over", feed_name, self._retry_count)
        await self._fail_over()

    def on_update_check_success(self) -> None:
        self._retry_count = 0

    def switch_to_feed(self, index: int) -> bool:
        """Operator override of the current feed.

        Returns:
            False if ``index`` is out of range
        """
        if not 0 <= index < len(self._feeds):
            logger.error("Invalid feed index: %d", index)
            return False

        self._cancel_recheck()
        self._current_index = index
        self._retry_count = 0
        logger.info("Manual feed switch to %s", self._feeds[index].name)
        self._apply_current()
        return True

    async def refresh_all_feed_health(self) -> dict[str, bool]:
        """Re-probe every feed without changing the selection."""
        logger.info("Refreshing health of all feeds")
        results = await asyncio.gather(*(self._probe(feed) for feed in self._feeds))
        self._health.update({feed.name: healthy for feed, healthy in zip(self._feeds, results, strict=True)})
        return dict(self._health)

    def get_status(self) -> FeedManagerStatus:
        return FeedManagerStatus(
            current_feed_name=self.current_feed.name,
            current_index=self._current_index,
            total_feeds=len(self._feeds),
            retry_count=self._retry_count,
            max_retries=self._max_retries,
            health=dict(self._health),
            feeds=tuple(
                FeedStatusEntry(
                    name=feed.name,
                    provider=feed.provider,
                    priority=feed.priority,
                    healthy=self._health.get(feed.name, False),
                    active=index == self._current_index,
                )
                for index, feed in enumerate(self._feeds)
            ),
        )

    async def _fail_over(self) -> None:
        start = self._current_index
        total = len(self._feeds)
        chosen = start

        self._failing_over = True
        try:
            for step in range(1, total):
                candidate = (start + step) % total
                chosen = candidate
                feed = self._feeds[candidate]
                healthy = await self._probe(feed)
                self._health[feed.name] = healthy
                if healthy:
                    break
                logger.warning("Failover candidate %s is unhealthy", feed.name)
        finally:
            self._failing_over = False

        # No stale retry count may survive a feed switch
        self._retry_count = 0
        self._current_index = chosen
        logger.info("Switched to feed %s", self._feeds[chosen].name)
        self._apply_current()
        self._schedule_recheck(self._failover_delay)

    async def _probe(self, feed: Feed) -> bool:
        try:
            return await self._prober.probe(feed)
        except Exception as exc:
            logger.warning("Health probe for %s raised: %s", feed.name, exc)
            return False

    async def _resolve_region(self) -> str:
        if self._region_resolver is None:
            return self._locale_fallback().upper()
        try:
            region = await self._region_resolver.resolve()
        except Exception as exc:
            region = self._locale_fallback()
            logger.warning("Region lookup failed (%s); using locale guess %s", exc, region)
        return region.strip().upper()

    def _regional_feed_index(self, region: str) -> int | None:
        for index, feed in enumerate(self._feeds):
            if feed.region and feed.region.upper() == region:
                return index
        return None

    def _apply_current(self) -> None:
        feed = self.current_feed
        try:
            self._transport.apply_feed(feed)
        except Exception as exc:
            logger.error("Failed to apply feed %s: %s", feed.name, exc)

    def _schedule_recheck(self, delay: float) -> None:
        self._cancel_recheck()
        if self._stopped:
            return
        self._recheck_timer = self._scheduler.call_later(delay, self.check_for_updates)

    def _cancel_recheck(self) -> None:
        if self._recheck_timer is not None:
            self._recheck_timer.cancel()
            self._recheck_timer = None
