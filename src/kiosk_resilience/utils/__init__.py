"""Utility modules for kiosk-resilience."""

from kiosk_resilience.utils.http_client import AIOHTTPClient, HttpResponse
from kiosk_resilience.utils.logging import (
    CorrelationIDFilter,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "AIOHTTPClient",
    "CorrelationIDFilter",
    "HttpResponse",
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "set_correlation_id",
]
