"""kiosk-resilience - keep an unattended kiosk alive and up to date.

This package provides the resilience core of a self-service kiosk: a
process supervisor with rate-limited restarts, an update feed manager with
health-checked failover, and a retry engine with a structured error log.
"""

from kiosk_resilience.core.feeds import FeedManager
from kiosk_resilience.core.retry import ErrorLog, RetryConfig, RetryEngine
from kiosk_resilience.core.supervisor import ProcessSupervisor, RestartPolicy

__all__ = [
    "ErrorLog",
    "FeedManager",
    "ProcessSupervisor",
    "RestartPolicy",
    "RetryConfig",
    "RetryEngine",
]
