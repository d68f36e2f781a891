"""Retry configuration and background queue records."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from kiosk_resilience.core.retry.classification import is_retryable_error

type RetryPredicate = Callable[[BaseException], bool]
type RetryableOperation = Callable[[], Awaitable[object]]


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """Bounded exponential backoff configuration.

    The delay before retry ``n`` (1-based, counting failed attempts) is
    ``min(base_delay * backoff_factor ** (n - 1), max_delay)``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    is_retryable: RetryPredicate = is_retryable_error

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.base_delay < 0 or self.max_delay < 0:
            msg = "base_delay and max_delay must be non-negative"
            raise ValueError(msg)
        if self.backoff_factor < 1:
            msg = f"backoff_factor must be >= 1, got {self.backoff_factor}"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay after ``attempt`` failed attempts."""
        exponent = max(attempt - 1, 0)
        try:
            delay = self.base_delay * self.backoff_factor**exponent
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)


class RetryStatus(Enum):
    """Lifecycle of a queued background retry."""

    PENDING = auto()
    PROCESSING = auto()


@dataclass(slots=True)
class RetryOperation:
    """Background retry queue record, owned by the retry engine."""

    id: str
    context: str
    operation: RetryableOperation
    config: RetryConfig
    next_attempt_at: float
    attempts: int = 0
    status: RetryStatus = RetryStatus.PENDING
    last_error: str | None = field(default=None)
