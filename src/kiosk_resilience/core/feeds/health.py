"""HTTP health probe for update feeds."""

from __future__ import annotations

import logging
from typing import Final

from kiosk_resilience.types import Feed
from kiosk_resilience.utils.http_client import AIOHTTPClient

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT: Final[float] = 10.0


class HttpHealthProbe:
    """HEAD request against a feed's health-check URL.

    A 2xx answer is healthy. Non-2xx answers, timeouts and exceptions are
    unhealthy. A feed without a health-check URL is assumed healthy.
    Never raises.
    """

    def __init__(self, client: AIOHTTPClient, *, timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        self._client: AIOHTTPClient = client
        self._timeout: float = timeout

    async def probe(self, feed: Feed) -> bool:
        if not feed.health_check_url:
            return True

        try:
            response = await self._client.head(feed.health_check_url, timeout=self._timeout)
        except Exception as exc:
            logger.warning("Health check for feed %s failed: %s", feed.name, exc)
            return False

        healthy = response.ok
        logger.info(
            "Health check for feed %s: %s (status=%d)",
            feed.name,
            "healthy" if healthy else "unhealthy",
            response.status,
        )
        return healthy
