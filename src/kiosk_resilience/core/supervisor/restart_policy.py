"""Fixed-delay restart policy with a cap inside a sliding window.

Kept separate from the retry engine's exponential backoff: restarts use one
fixed delay, and the cap is what stops a crash loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final

from kiosk_resilience.types import RestartState

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESTARTS: Final[int] = 5
DEFAULT_RESTART_DELAY: Final[float] = 30.0
DEFAULT_RESET_WINDOW: Final[float] = 300.0


@dataclass(slots=True, frozen=True)
class RestartPolicy:
    """Restart budget: ``max_restarts`` attempts per ``reset_window`` seconds."""

    max_restarts: int = DEFAULT_MAX_RESTARTS
    restart_delay: float = DEFAULT_RESTART_DELAY
    reset_window: float = DEFAULT_RESET_WINDOW

    def __post_init__(self) -> None:
        if self.max_restarts < 0:
            msg = f"max_restarts must be non-negative, got {self.max_restarts}"
            raise ValueError(msg)
        if self.restart_delay < 0 or self.reset_window <= 0:
            msg = "restart_delay must be non-negative and reset_window positive"
            raise ValueError(msg)

    def window_expired(self, state: RestartState, now: float) -> bool:
        return state.window_start is None or now - state.window_start > self.reset_window

    def register_attempt(self, state: RestartState, now: float) -> bool:
        """Count one restart attempt against the budget.

        Resets the window first when it has elapsed, so the first attempt of a
        fresh window counts as 1.

        Args:
            state: Restart bookkeeping, mutated in place
            now: Current monotonic time

        Returns:
            False if the attempt would exceed ``max_restarts``; ``state`` is
            left unchanged apart from a window reset in that case
        """
        if self.window_expired(state, now):
            if state.attempt_count:
                logger.info("Restart window elapsed, resetting attempt count")
            state.attempt_count = 0
            state.window_start = now

        if state.attempt_count + 1 > self.max_restarts:
            return False

        state.attempt_count += 1
        state.last_restart_at = now
        return True

    def mark_running(self, state: RestartState) -> None:
        """A confirmed running window clears the attempt history."""
        state.attempt_count = 0
