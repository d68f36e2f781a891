"""Operator notification sinks and the remote error collector."""

from kiosk_resilience.notifications.collector import HttpErrorCollector
from kiosk_resilience.notifications.notifier import LoggingNotifier, WebhookNotifier

__all__ = [
    "HttpErrorCollector",
    "LoggingNotifier",
    "WebhookNotifier",
]
