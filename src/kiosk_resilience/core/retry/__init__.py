"""Retry, failure classification, error log and recovery."""

from kiosk_resilience.core.retry.classification import (
    classify_error,
    is_fatal_error_type,
    is_retryable_error,
)
from kiosk_resilience.core.retry.engine import RetryEngine
from kiosk_resilience.core.retry.error_log import ErrorLog, ErrorLogStore
from kiosk_resilience.core.retry.policy import RetryConfig, RetryOperation, RetryStatus
from kiosk_resilience.core.retry.recovery import (
    DatabaseRecovery,
    NetworkRecovery,
    PaymentRecovery,
    RecoveryRegistry,
    RecoveryStrategy,
    StateResetRecovery,
)

__all__ = [
    "DatabaseRecovery",
    "ErrorLog",
    "ErrorLogStore",
    "NetworkRecovery",
    "PaymentRecovery",
    "RecoveryRegistry",
    "RecoveryStrategy",
    "RetryConfig",
    "RetryEngine",
    "RetryOperation",
    "RetryStatus",
    "StateResetRecovery",
    "classify_error",
    "is_fatal_error_type",
    "is_retryable_error",
]
