"""Update feed management: selection, health probes, region lookup, transport."""

from kiosk_resilience.core.feeds.health import HttpHealthProbe
from kiosk_resilience.core.feeds.manager import FeedManager
from kiosk_resilience.core.feeds.region import IpApiRegionResolver, region_from_locale
from kiosk_resilience.core.feeds.transport import HttpUpdateTransport, is_newer, parse_version

__all__ = [
    "FeedManager",
    "HttpHealthProbe",
    "HttpUpdateTransport",
    "IpApiRegionResolver",
    "is_newer",
    "parse_version",
    "region_from_locale",
]
