"""Failure classification shared by the retry engine and the feed manager.

Network-class failures (name resolution, refused or reset connections,
timeouts) are the only retryable category. Hardware, configuration and fatal
failures fail fast so callers never loop on them.
"""

from __future__ import annotations

import errno
import socket
from typing import Final

import aiohttp

from kiosk_resilience.errors import (
    ConfigurationError,
    HardwareUnavailableError,
    RestartLimitExceededError,
)
from kiosk_resilience.types import ErrorCategory

# Markers found in messages raised by HTTP stacks and embedded browsers
TRANSIENT_MARKERS: Final[tuple[str, ...]] = (
    "ENOTFOUND",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ECONNRESET",
    "net::ERR_",
    "REQUEST_TIMEOUT",
    "NETWORK_ERROR",
)

NETWORK_ERRNOS: Final[frozenset[int]] = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.ETIMEDOUT,
        errno.ENETUNREACH,
        errno.ENETDOWN,
        errno.EHOSTUNREACH,
        errno.EPIPE,
    }
)

_TRANSIENT_TYPES: Final[tuple[type[BaseException], ...]] = (
    TimeoutError,
    ConnectionError,
    socket.gaierror,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)

_CONFIGURATION_TYPES: Final[tuple[type[BaseException], ...]] = (
    ConfigurationError,
    ValueError,
    TypeError,
)

_FATAL_TYPES: Final[tuple[type[BaseException], ...]] = (
    RestartLimitExceededError,
    MemoryError,
)

_FATAL_TYPE_NAMES: Final[frozenset[str]] = frozenset(error_type.__name__ for error_type in _FATAL_TYPES)


def classify_error(error: BaseException) -> ErrorCategory:
    """Classify an exception into the resilience failure taxonomy.

    Args:
        error: Exception to classify

    Returns:
        Category of the failure
    """
    if isinstance(error, _FATAL_TYPES):
        return ErrorCategory.FATAL

    if isinstance(error, HardwareUnavailableError):
        return ErrorCategory.HARDWARE

    if isinstance(error, _TRANSIENT_TYPES):
        return ErrorCategory.TRANSIENT

    if isinstance(error, OSError) and error.errno in NETWORK_ERRNOS:
        return ErrorCategory.TRANSIENT

    if _has_transient_marker(error):
        return ErrorCategory.TRANSIENT

    if isinstance(error, _CONFIGURATION_TYPES):
        return ErrorCategory.CONFIGURATION

    return ErrorCategory.UNKNOWN


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: only transient network failures are retried."""
    return classify_error(error) is ErrorCategory.TRANSIENT


def is_fatal_error_type(error_type: str) -> bool:
    """Whether a recorded exception type name belongs to the FATAL category."""
    return error_type in _FATAL_TYPE_NAMES


def _has_transient_marker(error: BaseException) -> bool:
    text = f"{type(error).__name__}: {error}"
    return any(marker in text for marker in TRANSIENT_MARKERS)
