"""Operator notification sinks."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Final
from urllib.parse import urlparse

from kiosk_resilience.types import Notification, Urgency
from kiosk_resilience.utils.http_client import AIOHTTPClient

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT: Final[float] = 10.0

_URGENCY_LEVELS: Final[dict[Urgency, int]] = {
    Urgency.LOW: logging.INFO,
    Urgency.NORMAL: logging.WARNING,
    Urgency.CRITICAL: logging.CRITICAL,
}


class LoggingNotifier:
    """Writes notifications to the log. Used when no webhook is configured."""

    async def notify(self, notification: Notification) -> None:
        logger.log(
            _URGENCY_LEVELS[notification.urgency],
            "Operator notification: %s - %s",
            notification.title,
            notification.body.replace("\n", " "),
            extra={"urgency": notification.urgency.value},
        )


class WebhookNotifier:
    """Delivers notifications as JSON to an operator webhook.

    Every notification is logged locally before delivery. Delivery failures
    propagate to the caller; callers treat notifications as best-effort.
    """

    def __init__(
        self,
        client: AIOHTTPClient,
        webhook_url: str,
        *,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
    ) -> None:
        """Initialize the webhook notifier.

        Args:
            client: Shared HTTP client
            webhook_url: Endpoint receiving the JSON payload
            timeout: Request timeout in seconds

        Raises:
            ValueError: If the webhook URL is not an HTTP(S) URL
        """
        parsed = urlparse(webhook_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Webhook URL must be an HTTP or HTTPS URL")

        self._client: AIOHTTPClient = client
        self._webhook_url: str = webhook_url
        self._timeout: float = timeout
        self._fallback: LoggingNotifier = LoggingNotifier()

    async def notify(self, notification: Notification) -> None:
        await self._fallback.notify(notification)

        payload: dict[str, object] = {
            "title": notification.title,
            "body": notification.body,
            "urgency": notification.urgency.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        response = await self._client.post(self._webhook_url, payload, timeout=self._timeout)
        if not response.ok:
            logger.error("Operator webhook rejected notification: HTTP %d", response.status)
            return
        logger.debug("Operator notification delivered: %s", notification.title)
