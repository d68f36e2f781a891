"""Context-specific recovery strategies for logged errors.

``attempt_recovery`` looks the strategy up by the entry's context string;
contexts without a registered strategy fall back to a generic state reset.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final, Protocol, override

from kiosk_resilience.types import ErrorLogEntry

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY_TIMEOUT: Final[float] = 30.0

type AsyncCheck = Callable[[], Awaitable[bool]]
type AsyncAction = Callable[[], Awaitable[None]]


class RecoveryStrategy(Protocol):
    """Recovery action for one error context."""

    async def recover(self, entry: ErrorLogEntry) -> bool:
        """Attempt to recover from ``entry``.

        Returns:
            True if the failure condition was cleared
        """
        ...


class PaymentRecovery:
    """Recheck payment state and retry a payment left pending."""

    def __init__(
        self,
        check_status: Callable[[], Awaitable[str]],
        retry_payment: AsyncAction,
    ) -> None:
        self._check_status: Callable[[], Awaitable[str]] = check_status
        self._retry_payment: AsyncAction = retry_payment

    async def recover(self, entry: ErrorLogEntry) -> bool:
        status = await self._check_status()
        if status != "pending":
            logger.info("Payment for %s is %s; nothing to retry", entry.id, status)
            return False
        await self._retry_payment()
        return True


class DatabaseRecovery:
    """Verify connectivity, then flush writes queued while offline."""

    def __init__(self, check_connection: AsyncCheck, flush_offline_writes: AsyncAction) -> None:
        self._check_connection: AsyncCheck = check_connection
        self._flush_offline_writes: AsyncAction = flush_offline_writes

    async def recover(self, entry: ErrorLogEntry) -> bool:
        if not await self._check_connection():
            return False
        await self._flush_offline_writes()
        return True


class NetworkRecovery:
    """Re-check connectivity; recovered once the network answers again."""

    def __init__(
        self,
        check_connectivity: AsyncCheck | None = None,
        *,
        host: str = "1.1.1.1",
        port: int = 53,
        timeout: float = 5.0,
    ) -> None:
        self._check_connectivity: AsyncCheck = check_connectivity or self._open_connection
        self._host: str = host
        self._port: int = port
        self._timeout: float = timeout

    async def recover(self, entry: ErrorLogEntry) -> bool:
        return await self._check_connectivity()

    async def _open_connection(self) -> bool:
        try:
            async with asyncio.timeout(self._timeout):
                _, writer = await asyncio.open_connection(self._host, self._port)
        except (OSError, TimeoutError) as exc:
            logger.debug("Connectivity check to %s:%d failed: %s", self._host, self._port, exc)
            return False
        writer.close()
        await writer.wait_closed()
        return True


class StateResetRecovery:
    """Generic fallback: reset application state.

    Without a reset action there is nothing to run, so recovery fails.
    """

    def __init__(self, reset_state: AsyncAction | None = None) -> None:
        self._reset_state: AsyncAction | None = reset_state

    async def recover(self, entry: ErrorLogEntry) -> bool:
        if self._reset_state is None:
            logger.info("No state reset configured; %s (%s) needs manual attention", entry.id, entry.context)
            return False
        await self._reset_state()
        return True


class RecoveryRegistry:
    """Maps error contexts to recovery strategies."""

    def __init__(
        self,
        strategies: dict[str, RecoveryStrategy] | None = None,
        *,
        fallback: RecoveryStrategy | None = None,
        timeout: float = DEFAULT_RECOVERY_TIMEOUT,
    ) -> None:
        self._strategies: dict[str, RecoveryStrategy] = dict(strategies or {})
        self._fallback: RecoveryStrategy = fallback or StateResetRecovery()
        self._timeout: float = timeout

    def register(self, context: str, strategy: RecoveryStrategy) -> None:
        self._strategies[context] = strategy

    def strategy_for(self, context: str) -> RecoveryStrategy:
        return self._strategies.get(context, self._fallback)

    async def recover(self, entry: ErrorLogEntry) -> bool:
        """Run the matching strategy under the recovery timeout.

        Strategy exceptions and timeouts count as a failed recovery.
        """
        strategy = self.strategy_for(entry.context)
        try:
            async with asyncio.timeout(self._timeout):
                return await strategy.recover(entry)
        except TimeoutError:
            logger.warning("Recovery for %s (%s) timed out after %.1fs", entry.id, entry.context, self._timeout)
            return False
        except Exception as exc:
            logger.error("Recovery attempt for %s (%s) failed: %s", entry.id, entry.context, exc)
            return False

    @override
    def __repr__(self) -> str:
        return f"RecoveryRegistry(contexts={sorted(self._strategies)})"
