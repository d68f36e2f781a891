"""Update-check transport over HTTP.

Only the release metadata is fetched; downloading and installing artifacts
is handled elsewhere.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Final, cast

import yaml

from kiosk_resilience.errors import ConfigurationError, UpdateCheckError
from kiosk_resilience.types import Feed, UpdateCheckOutcome
from kiosk_resilience.utils.http_client import AIOHTTPClient

logger = logging.getLogger(__name__)

GITHUB_API_URL: Final[str] = "https://api.github.com"
DEFAULT_CHECK_TIMEOUT: Final[float] = 30.0

_VERSION_PART: Final[re.Pattern[str]] = re.compile(r"\d+")


def parse_version(version: str) -> tuple[int, ...]:
    """Turn ``v1.10.2`` (or ``1.10.2-beta``) into ``(1, 10, 2)``.

    Raises:
        ValueError: If the string holds no numeric component
    """
    core = version.strip().lstrip("vV").split("-", 1)[0].split("+", 1)[0]
    parts = tuple(int(part) for part in _VERSION_PART.findall(core))
    if not parts:
        msg = f"Unparseable version: {version!r}"
        raise ValueError(msg)
    return parts


def is_newer(candidate: str, current: str) -> bool:
    """True if ``candidate`` is a strictly higher version than ``current``."""
    left, right = parse_version(candidate), parse_version(current)
    width = max(len(left), len(right))
    return left + (0,) * (width - len(left)) > right + (0,) * (width - len(right))


class HttpUpdateTransport:
    """Checks the applied feed for a release newer than the running version.

    Supports the ``generic`` provider (``<url><channel>.yml`` manifest with a
    ``version`` key) and the ``github`` provider (``releases/latest``).
    """

    def __init__(
        self,
        client: AIOHTTPClient,
        current_version: str,
        *,
        timeout: float = DEFAULT_CHECK_TIMEOUT,
    ) -> None:
        self._client: AIOHTTPClient = client
        self._current_version: str = current_version
        self._timeout: float = timeout
        self._feed: Feed | None = None

    @property
    def feed(self) -> Feed | None:
        return self._feed

    def apply_feed(self, feed: Feed) -> None:
        """Point subsequent checks at ``feed``.

        Raises:
            ConfigurationError: If the feed's endpoint is incomplete for its provider
        """
        _ = self._metadata_url(feed)
        self._feed = feed
        logger.info("Update transport now using feed %s (%s)", feed.name, feed.provider)

    async def check(self) -> UpdateCheckOutcome:
        feed = self._feed
        if feed is None:
            raise UpdateCheckError("<none>", "no feed applied")

        response = await self._client.get(self._metadata_url(feed), timeout=self._timeout)
        if not response.ok:
            raise UpdateCheckError(feed.name, f"HTTP {response.status}", status=response.status)

        latest = self._extract_version(feed, response.body)
        if is_newer(latest, self._current_version):
            logger.info("Update %s available on feed %s (running %s)", latest, feed.name, self._current_version)
            return UpdateCheckOutcome.available(latest)

        logger.debug("No update on feed %s (latest %s, running %s)", feed.name, latest, self._current_version)
        return UpdateCheckOutcome.not_available(latest)

    def _metadata_url(self, feed: Feed) -> str:
        endpoint = feed.endpoint
        if feed.provider == "github":
            owner, repo = endpoint.get("owner"), endpoint.get("repo")
            if not owner or not repo:
                raise ConfigurationError(f"Feed '{feed.name}': github provider requires 'owner' and 'repo'")
            return f"{GITHUB_API_URL}/repos/{owner}/{repo}/releases/latest"

        if feed.provider == "generic":
            url = endpoint.get("url")
            if not url:
                raise ConfigurationError(f"Feed '{feed.name}': generic provider requires 'url'")
            base = str(url) if str(url).endswith("/") else f"{url}/"
            channel = str(endpoint.get("channel", "latest"))
            return f"{base}{channel}.yml"

        raise ConfigurationError(f"Feed '{feed.name}': unsupported provider '{feed.provider}'")

    def _extract_version(self, feed: Feed, body: str) -> str:
        if feed.provider == "github":
            key = "tag_name"
            try:
                data = cast(object, json.loads(body))
            except ValueError as exc:
                raise UpdateCheckError(feed.name, f"malformed release metadata: {exc}") from exc
        else:
            key = "version"
            try:
                # BaseLoader keeps scalars as strings so "1.10" stays "1.10"
                data = cast(object, yaml.load(body, Loader=yaml.BaseLoader))  # noqa: S506
            except yaml.YAMLError as exc:
                raise UpdateCheckError(feed.name, f"malformed release metadata: {exc}") from exc

        if not isinstance(data, dict):
            raise UpdateCheckError(feed.name, "release metadata is not a mapping")

        version = cast(dict[str, object], data).get(key)
        if version is None:
            raise UpdateCheckError(feed.name, f"release metadata has no '{key}'")
        return str(version)
