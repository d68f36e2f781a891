"""Exception hierarchy for kiosk-resilience.

Every exception raised by this package derives from KioskResilienceError so
callers can separate resilience-core failures from their own errors. The
retry classifier relies on these types to decide what is worth retrying.
"""

from __future__ import annotations


class KioskResilienceError(Exception):
    """Base exception for all kiosk-resilience errors."""


class ConfigurationError(KioskResilienceError):
    """Exception raised when configuration loading or validation fails.

    Carries an actionable, multi-line message describing what is wrong and
    where. Never retried.
    """


class EnvironmentVariableError(KioskResilienceError):
    """Exception raised when a ${VARIABLE} reference cannot be resolved."""


class HardwareUnavailableError(KioskResilienceError):
    """Exception raised when a device collaborator is absent or not responding.

    Hardware failures degrade to simulated values inside the device layer;
    the retry engine treats them as non-retryable so they fail fast.
    """

    def __init__(self, device: str, message: str) -> None:
        """Initialize the hardware error.

        Args:
            device: Device identifier (camera, printer, sensor, controller)
            message: Error description
        """
        super().__init__(f"Hardware unavailable ({device}): {message}")
        self.device: str = device


class DisplayError(KioskResilienceError):
    """Exception raised when the kiosk window cannot be created or shown."""


class StateTransitionError(KioskResilienceError):
    """Exception raised when a supervisor state transition is not allowed."""

    def __init__(
        self,
        message: str,
        from_state: object | None = None,
        to_state: object | None = None,
    ) -> None:
        """Initialize state transition error.

        Args:
            message: Error message
            from_state: Source state of failed transition
            to_state: Target state of failed transition
        """
        super().__init__(message)
        self.from_state: object | None = from_state
        self.to_state: object | None = to_state


class RestartLimitExceededError(KioskResilienceError):
    """Raised when the supervisor exhausts its restart budget within the window."""

    def __init__(self, attempts: int, window_seconds: float) -> None:
        super().__init__(
            f"Restart limit exceeded: {attempts} restarts within {window_seconds:.0f}s"
        )
        self.attempts: int = attempts
        self.window_seconds: float = window_seconds


class UpdateCheckError(KioskResilienceError):
    """Exception raised when an update feed answers with an unusable response.

    Protocol-level failures (bad status, malformed manifest) land here;
    transport failures surface as the underlying network exception so the
    classifier can recognise them.
    """

    def __init__(self, feed_name: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"Update check failed for feed '{feed_name}': {message}")
        self.feed_name: str = feed_name
        self.status: int | None = status
