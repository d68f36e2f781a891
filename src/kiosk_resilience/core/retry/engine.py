"""Bounded retry with exponential backoff and a background retry queue.

Two entry points share one backoff formula:

- ``execute_with_retry`` runs a foreground operation to completion and
  re-raises the final error to the caller.
- ``schedule_retry`` enqueues a fire-and-forget operation that a periodic
  sweep drives until it succeeds, fails non-retryably or runs out of
  attempts. Exhausting a queued operation is the only automatic path to
  CRITICAL severity.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Final, TypeVar

from kiosk_resilience.core.retry.classification import is_fatal_error_type
from kiosk_resilience.core.retry.error_log import ErrorLog
from kiosk_resilience.core.retry.policy import (
    RetryableOperation,
    RetryConfig,
    RetryOperation,
    RetryStatus,
)
from kiosk_resilience.core.retry.recovery import RecoveryRegistry
from kiosk_resilience.types import (
    ErrorLogEntry,
    ErrorSeverity,
    ErrorStatistics,
    Scheduler,
    TimerHandle,
)
from kiosk_resilience.utils.logging import correlation_scope

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL: Final[float] = 5.0
DEFAULT_CLEANUP_INTERVAL: Final[float] = 24 * 60 * 60.0


class RetryEngine:
    """Retry primitive shared by every subsystem of the kiosk."""

    def __init__(
        self,
        *,
        error_log: ErrorLog,
        scheduler: Scheduler,
        recovery: RecoveryRegistry | None = None,
        default_config: RetryConfig | None = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
    ) -> None:
        """Initialize the retry engine.

        Args:
            error_log: Destination for exhausted and non-retryable failures
            scheduler: Clock used for backoff sleeps and the sweep timer
            recovery: Context-specific recovery strategies
            default_config: Config used when a call site passes none
            sweep_interval: Seconds between background queue sweeps
            cleanup_interval: Seconds between error log pruning runs
        """
        self.error_log: ErrorLog = error_log
        self._scheduler: Scheduler = scheduler
        self._recovery: RecoveryRegistry = recovery or RecoveryRegistry()
        self._default_config: RetryConfig = default_config or RetryConfig()
        self._sweep_interval: float = sweep_interval
        self._cleanup_interval: float = cleanup_interval

        self._queue: dict[str, RetryOperation] = {}
        self._sweep_timer: TimerHandle | None = None
        self._cleanup_timer: TimerHandle | None = None

    @property
    def default_config(self) -> RetryConfig:
        return self._default_config

    @property
    def running(self) -> bool:
        return self._sweep_timer is not None

    def start(self) -> None:
        """Arm the periodic queue sweep and log cleanup."""
        if self._sweep_timer is not None:
            return
        self._sweep_timer = self._scheduler.call_every(self._sweep_interval, self.sweep)
        self._cleanup_timer = self._scheduler.call_every(self._cleanup_interval, self.cleanup)
        logger.info(
            "Retry engine started (sweep every %.1fs, cleanup every %.0fs)",
            self._sweep_interval,
            self._cleanup_interval,
        )

    def stop(self) -> None:
        """Disarm both timers and persist the error log. Queued operations stay in memory."""
        for timer in (self._sweep_timer, self._cleanup_timer):
            if timer is not None:
                timer.cancel()
        self._sweep_timer = None
        self._cleanup_timer = None
        self.error_log.flush()
        logger.info("Retry engine stopped with %d queued operations", len(self._queue))

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str,
        config: RetryConfig | None = None,
    ) -> T:
        """Run ``operation`` with bounded retries.

        Args:
            operation: Zero-argument coroutine function
            context: Label used in logs and the error log
            config: Overrides the engine default

        Returns:
            The first successful result

        Raises:
            Exception: The last error, after logging it at HIGH severity,
                once attempts are exhausted or the error is not retryable
        """
        cfg = config or self._default_config

        for attempt in range(1, cfg.max_attempts + 1):
            try:
                result = await operation()
            except Exception as exc:
                if not cfg.is_retryable(exc):
                    logger.warning("%s failed with non-retryable error: %s", context, exc)
                    _ = self.error_log.record(exc, context, ErrorSeverity.HIGH)
                    raise

                if attempt >= cfg.max_attempts:
                    logger.error("%s failed after %d attempts", context, attempt)
                    _ = self.error_log.record(exc, context, ErrorSeverity.HIGH)
                    raise

                delay = cfg.delay_for(attempt)
                logger.warning(
                    "%s failed (%d/%d), retrying in %.2fs: %s",
                    context,
                    attempt,
                    cfg.max_attempts,
                    delay,
                    exc,
                )
                await self._scheduler.sleep(delay)
            else:
                if attempt > 1:
                    logger.info("%s succeeded after %d attempts", context, attempt)
                return result

        # max_attempts >= 1, so the loop always returns or raises
        msg = f"{context}: retry loop exited without a result"
        raise RuntimeError(msg)

    def schedule_retry(
        self,
        operation: RetryableOperation,
        context: str,
        config: RetryConfig | None = None,
    ) -> str:
        """Queue ``operation`` for background retries.

        The first attempt happens on the next sweep. Never raises; failures
        only ever surface through the error log.

        Returns:
            Identifier of the queued operation
        """
        operation_id = f"{context}_{uuid.uuid4().hex[:12]}"
        self._queue[operation_id] = RetryOperation(
            id=operation_id,
            context=context,
            operation=operation,
            config=config or self._default_config,
            next_attempt_at=self._scheduler.now(),
        )
        logger.debug("Queued background retry %s", operation_id, extra={"error_context": context})
        return operation_id

    async def sweep(self) -> int:
        """Run every due PENDING operation once.

        Returns:
            Number of operations attempted
        """
        now = self._scheduler.now()
        due = [
            op
            for op in list(self._queue.values())
            if op.status is RetryStatus.PENDING and op.next_attempt_at <= now
        ]
        for op in due:
            await self._run_queued(op)
        return len(due)

    async def _run_queued(self, op: RetryOperation) -> None:
        op.status = RetryStatus.PROCESSING
        op.attempts += 1

        with correlation_scope(op.id):
            try:
                await op.operation()
            except Exception as exc:
                op.last_error = str(exc)

                if not op.config.is_retryable(exc):
                    _ = self._queue.pop(op.id, None)
                    _ = self.error_log.record(exc, op.context, ErrorSeverity.HIGH)
                    return

                if op.attempts >= op.config.max_attempts:
                    _ = self._queue.pop(op.id, None)
                    _ = self.error_log.record(exc, op.context, ErrorSeverity.CRITICAL)
                    return

                delay = op.config.delay_for(op.attempts)
                op.next_attempt_at = self._scheduler.now() + delay
                op.status = RetryStatus.PENDING
                logger.warning(
                    "Background retry %s failed (%d/%d), next attempt in %.2fs: %s",
                    op.context,
                    op.attempts,
                    op.config.max_attempts,
                    delay,
                    exc,
                )
            else:
                _ = self._queue.pop(op.id, None)
                logger.info("Background retry %s succeeded after %d attempts", op.context, op.attempts)

    def log_error(
        self,
        error: BaseException,
        context: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    ) -> ErrorLogEntry:
        return self.error_log.record(error, context, severity)

    async def attempt_recovery(self, entry_id: str) -> bool:
        """Run the recovery strategy matching the entry's context.

        CRITICAL and fatal entries need an operator and are never recovered
        automatically.

        Returns:
            True if recovery succeeded; the entry is then marked resolved
        """
        entry = self.error_log.get(entry_id)
        if entry is None:
            logger.warning("No error log entry %s to recover", entry_id)
            return False

        if entry.severity is ErrorSeverity.CRITICAL or is_fatal_error_type(entry.error_type):
            logger.warning(
                "Error %s (%s, %s) requires manual intervention; not recovering",
                entry_id,
                entry.context,
                entry.severity.name,
            )
            return False

        recovered = await self._recovery.recover(entry)
        if recovered:
            _ = self.error_log.resolve(entry_id)
            logger.info("Recovered from error %s (%s)", entry_id, entry.context)
        return recovered

    def get_statistics(self) -> ErrorStatistics:
        return self.error_log.statistics(pending_retries=len(self._queue))

    def cleanup(self) -> int:
        """Prune the error log. Returns the number of entries removed."""
        return self.error_log.prune()

    def pending_operations(self) -> tuple[RetryOperation, ...]:
        """Copies of the queued records, in submission order."""
        return tuple(dataclasses.replace(op) for op in self._queue.values())
