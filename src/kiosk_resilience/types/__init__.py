"""Type definitions and protocols for kiosk-resilience.

This package provides:
- Data models (dataclasses and enums)
- Protocol definitions (structural subtyping interfaces)
"""

from kiosk_resilience.types.models import (
    DisplayEvent,
    DisplayEventKind,
    ErrorCategory,
    ErrorLogEntry,
    ErrorSeverity,
    ErrorStatistics,
    Feed,
    FeedManagerStatus,
    FeedStatusEntry,
    Notification,
    RestartState,
    UpdateCheckOutcome,
    UpdateStatus,
    Urgency,
)
from kiosk_resilience.types.protocols import (
    DisplayEventHandler,
    DisplayPort,
    ErrorCollector,
    HardwareCleanup,
    HealthProbe,
    Heartbeat,
    InputInterceptor,
    OperatorNotifier,
    RegionResolver,
    Scheduler,
    TimerCallback,
    TimerHandle,
    UpdateTransport,
)

__all__ = [
    # Data models
    "DisplayEvent",
    "DisplayEventKind",
    "ErrorCategory",
    "ErrorLogEntry",
    "ErrorSeverity",
    "ErrorStatistics",
    "Feed",
    "FeedManagerStatus",
    "FeedStatusEntry",
    "Notification",
    "RestartState",
    "UpdateCheckOutcome",
    "UpdateStatus",
    "Urgency",
    # Protocols
    "DisplayEventHandler",
    "DisplayPort",
    "ErrorCollector",
    "HardwareCleanup",
    "HealthProbe",
    "Heartbeat",
    "InputInterceptor",
    "OperatorNotifier",
    "RegionResolver",
    "Scheduler",
    "TimerCallback",
    "TimerHandle",
    "UpdateTransport",
]
