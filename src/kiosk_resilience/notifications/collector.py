"""Remote error collector."""

from __future__ import annotations

import logging

from kiosk_resilience.types import ErrorLogEntry
from kiosk_resilience.utils.http_client import AIOHTTPClient

logger = logging.getLogger(__name__)


class HttpErrorCollector:
    """POSTs each error log entry as JSON to a collector endpoint.

    Transport exceptions propagate; the error log logs and drops them.
    """

    def __init__(self, client: AIOHTTPClient, url: str, *, timeout: float = 10.0) -> None:
        self._client: AIOHTTPClient = client
        self._url: str = url
        self._timeout: float = timeout

    async def submit(self, entry: ErrorLogEntry) -> None:
        response = await self._client.post(self._url, entry.to_dict(), timeout=self._timeout)
        if not response.ok:
            logger.warning("Error collector rejected entry %s: HTTP %d", entry.id, response.status)
