"""Data models for kiosk-resilience.

This module defines the dataclasses exchanged between the supervisor, the
feed manager, the retry engine and their collaborators. Snapshots handed to
callers are frozen; records owned by a single component are mutable.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto


class ErrorSeverity(Enum):
    """Error severity levels, lowest first."""

    LOW = auto()
    MEDIUM = auto()
    HIGH = auto()
    CRITICAL = auto()


class ErrorCategory(Enum):
    """Failure taxonomy used by the retry classifier."""

    TRANSIENT = auto()  # network, name resolution, timeouts
    HARDWARE = auto()  # device absent or not responding
    CONFIGURATION = auto()  # configuration and validation
    FATAL = auto()  # requires manual intervention
    UNKNOWN = auto()


class Urgency(Enum):
    """Operator notification urgency."""

    LOW = "low"
    NORMAL = "normal"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class Notification:
    """Operator-facing notification payload."""

    title: str
    body: str
    urgency: Urgency = Urgency.NORMAL


@dataclass(slots=True)
class ErrorLogEntry:
    """Structured failure record.

    Append-only inside ErrorLog; only ``resolved`` ever changes after the
    entry has been recorded.
    """

    id: str
    timestamp: datetime
    context: str
    severity: ErrorSeverity
    error_message: str
    error_type: str = "Exception"
    resolved: bool = False

    def to_dict(self) -> dict[str, object]:
        """Convert entry to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "severity": self.severity.name,
            "error_message": self.error_message,
            "error_type": self.error_type,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ErrorLogEntry:
        """Rebuild an entry from ``to_dict`` output.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        return cls(
            id=str(data["id"]),
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
            context=str(data["context"]),
            severity=ErrorSeverity[str(data["severity"])],
            error_message=str(data["error_message"]),
            error_type=str(data.get("error_type", "Exception")),
            resolved=bool(data.get("resolved", False)),
        )


@dataclass(slots=True, frozen=True)
class ErrorStatistics:
    """Aggregate view over the error log and retry queue."""

    total_errors: int
    errors_by_severity: Mapping[str, int]
    errors_by_context: Mapping[str, int]
    resolved_errors: int
    recent_errors: tuple[ErrorLogEntry, ...]
    pending_retries: int = 0


@dataclass(slots=True, frozen=True)
class Feed:
    """Configured update source. Immutable after configuration load."""

    name: str
    priority: int = 0
    endpoint: Mapping[str, object] = field(default_factory=dict)
    health_check_url: str | None = None
    provider: str = "generic"
    region: str | None = None


@dataclass(slots=True, frozen=True)
class FeedStatusEntry:
    """Per-feed line of the feed manager status snapshot."""

    name: str
    provider: str
    priority: int
    healthy: bool
    active: bool


@dataclass(slots=True, frozen=True)
class FeedManagerStatus:
    """Read-only snapshot of FeedManager state."""

    current_feed_name: str
    current_index: int
    total_feeds: int
    retry_count: int
    max_retries: int
    health: Mapping[str, bool]
    feeds: tuple[FeedStatusEntry, ...]

    def to_dict(self) -> dict[str, object]:
        """Convert snapshot to a dictionary for admin screens."""
        return {
            "current_feed": self.current_feed_name,
            "current_index": self.current_index,
            "total_feeds": self.total_feeds,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "health_checks": dict(self.health),
            "feeds": [
                {
                    "name": entry.name,
                    "provider": entry.provider,
                    "priority": entry.priority,
                    "healthy": entry.healthy,
                    "active": entry.active,
                }
                for entry in self.feeds
            ],
        }


class UpdateStatus(Enum):
    """Outcome kind of a single update check."""

    AVAILABLE = auto()
    NOT_AVAILABLE = auto()
    ERROR = auto()


@dataclass(slots=True, frozen=True)
class UpdateCheckOutcome:
    """Result of an awaited update check, consumed by FeedManager."""

    status: UpdateStatus
    version: str | None = None
    error: BaseException | None = None

    @classmethod
    def available(cls, version: str) -> UpdateCheckOutcome:
        return cls(UpdateStatus.AVAILABLE, version=version)

    @classmethod
    def not_available(cls, version: str | None = None) -> UpdateCheckOutcome:
        return cls(UpdateStatus.NOT_AVAILABLE, version=version)

    @classmethod
    def failed(cls, error: BaseException) -> UpdateCheckOutcome:
        return cls(UpdateStatus.ERROR, error=error)


@dataclass(slots=True)
class RestartState:
    """Restart bookkeeping for the supervisor.

    ``attempt_count`` resets to 0 when the window reaches a confirmed running
    state, and the counting window restarts once ``reset_window`` elapses.
    In-memory only.
    """

    attempt_count: int = 0
    last_restart_at: float | None = None
    window_start: float | None = None


class DisplayEventKind(Enum):
    """Signals emitted by the display port."""

    CLOSE_REQUESTED = auto()
    CRASHED = auto()
    UNRESPONSIVE = auto()
    RESPONSIVE = auto()


@dataclass(slots=True, frozen=True)
class DisplayEvent:
    """Crash/hang/close signal from the display port."""

    kind: DisplayEventKind
    authorized: bool = False
    detail: str | None = None
