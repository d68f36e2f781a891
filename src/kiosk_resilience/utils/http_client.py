"""Shared aiohttp client for feed probes, release metadata and webhooks.

Every request is bounded with ``asyncio.timeout``; a timeout surfaces as
``TimeoutError`` so the retry classifier treats it like any other network
failure. The client performs exactly one request per call; retries belong to
the retry engine and the feed manager.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Self

import aiohttp

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class HttpResponse:
    """Status, decoded body and headers of a completed request."""

    status: int
    body: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> object:
        """Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.body)  # pyright: ignore[reportAny]


class AIOHTTPClient:
    """Async HTTP client wrapping a single aiohttp session.

    The session is created on first use (or on ``__aenter__``) and reused for
    the lifetime of the client.

    Example:
        >>> async with AIOHTTPClient(user_agent="kiosk/1.0") as client:
        ...     response = await client.head("https://updates.example.com/health", timeout=10)
    """

    def __init__(
        self,
        *,
        default_timeout_seconds: float = 10.0,
        user_agent: str | None = None,
    ) -> None:
        """Initialize HTTP client.

        Args:
            default_timeout_seconds: Timeout applied when a call passes none
            user_agent: Optional User-Agent header sent with every request
        """
        self._default_timeout_seconds: float = default_timeout_seconds
        self._headers: dict[str, str] = {"User-Agent": user_agent} if user_agent else {}
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> Self:
        _ = self._ensure_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying session. Safe to call repeatedly."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def head(self, url: str, *, timeout: float | None = None) -> HttpResponse:
        """Send a HEAD request.

        Raises:
            TimeoutError: If request exceeds timeout
            ValueError: If URL is malformed
            aiohttp.ClientError: For connection issues
        """
        return await self._request("HEAD", url, timeout=timeout)

    async def get(self, url: str, *, timeout: float | None = None) -> HttpResponse:
        """Send a GET request and read the body as text."""
        return await self._request("GET", url, timeout=timeout)

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> HttpResponse:
        """Send a JSON POST request."""
        return await self._request("POST", url, timeout=timeout, payload=payload)

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers,
                json_serialize=json.dumps,
            )
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float | None,
        payload: Mapping[str, object] | None = None,
    ) -> HttpResponse:
        session = self._ensure_session()
        effective_timeout = self._default_timeout_seconds if timeout is None else timeout

        logger.debug("Initiating %s request to %s", method, url)

        try:
            async with asyncio.timeout(effective_timeout):
                async with session.request(method, url, json=payload) as response:
                    body = "" if method == "HEAD" else await response.text()
                    return HttpResponse(
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                    )
        except TimeoutError:
            logger.warning("%s %s timed out after %.1fs", method, url, effective_timeout)
            raise
        except aiohttp.InvalidURL as exc:
            logger.error("Invalid URL: %s", url)
            raise ValueError(f"Malformed URL: {url}") from exc
        except aiohttp.ClientError as exc:
            logger.warning("Client error for %s %s: %s", method, url, exc)
            raise
