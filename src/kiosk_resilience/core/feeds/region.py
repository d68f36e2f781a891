"""Operator region lookup for region-tagged feed selection."""

from __future__ import annotations

import locale
import logging
import os
import re
from typing import Final

from kiosk_resilience.utils.http_client import AIOHTTPClient

logger = logging.getLogger(__name__)

DEFAULT_REGION_LOOKUP_URL: Final[str] = "https://ipapi.co/country_code/"
DEFAULT_REGION_LOOKUP_TIMEOUT: Final[float] = 5.0
UNKNOWN_REGION: Final[str] = "UNKNOWN"

_COUNTRY_CODE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z]{2}$")
_LOCALE_REGION: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z]{2,3}[_-]([A-Za-z]{2})\b")


class IpApiRegionResolver:
    """Resolve the kiosk's country from an IP geolocation endpoint.

    Raises on any failure; the feed manager owns the locale fallback.
    """

    def __init__(
        self,
        client: AIOHTTPClient,
        *,
        url: str = DEFAULT_REGION_LOOKUP_URL,
        timeout: float = DEFAULT_REGION_LOOKUP_TIMEOUT,
    ) -> None:
        self._client: AIOHTTPClient = client
        self._url: str = url
        self._timeout: float = timeout

    async def resolve(self) -> str:
        """Return the ISO 3166 alpha-2 country code.

        Raises:
            ValueError: If the endpoint answers with a non-2xx status or an
                unrecognisable body
            TimeoutError: If the lookup exceeds its timeout
            aiohttp.ClientError: For connection issues
        """
        response = await self._client.get(self._url, timeout=self._timeout)
        if not response.ok:
            msg = f"Region lookup returned HTTP {response.status}"
            raise ValueError(msg)

        code = response.body.strip()
        if not _COUNTRY_CODE.match(code):
            msg = f"Region lookup returned unexpected body: {code[:32]!r}"
            raise ValueError(msg)
        return code.upper()


def current_locale() -> str:
    """Best-effort system locale name such as ``zh_CN.UTF-8``."""
    for var in ("LC_ALL", "LC_MESSAGES", "LANG"):
        value = os.environ.get(var)
        if value:
            return value
    name, _ = locale.getlocale()
    return name or ""


def region_from_locale(locale_name: str | None = None) -> str:
    """Guess a region from a locale name.

    ``xx_YY`` and ``xx-YY`` map to ``YY``; a bare Chinese locale maps to
    ``CN``; anything else is ``UNKNOWN``.

    Examples:
        >>> region_from_locale("de_AT.UTF-8")
        'AT'
        >>> region_from_locale("zh")
        'CN'
        >>> region_from_locale("C")
        'UNKNOWN'
    """
    name = current_locale() if locale_name is None else locale_name
    match = _LOCALE_REGION.match(name)
    if match:
        return match.group(1).upper()
    if name.lower().startswith("zh"):
        return "CN"
    return UNKNOWN_REGION
