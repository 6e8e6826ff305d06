"""Location error hierarchy."""

from typing import Optional

# Error codes reported by geolocation providers
PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3

ERROR_CODES = {
    PERMISSION_DENIED: "PERMISSION_DENIED",
    POSITION_UNAVAILABLE: "POSITION_UNAVAILABLE",
    TIMEOUT: "TIMEOUT",
}

ERROR_MESSAGES = {
    PERMISSION_DENIED: (
        "Location access denied. Grant access to the GPS device and "
        "ensure location is enabled."
    ),
    POSITION_UNAVAILABLE: (
        "Location unavailable. Ensure the GPS is enabled and move to an "
        "outdoor location with clear sky view."
    ),
    TIMEOUT: "Location request timed out. GPS may need more time to acquire satellites.",
}
UNKNOWN_ERROR_MESSAGE = "Unknown location error. Please check your device settings."


def error_message(code: Optional[int]) -> str:
    """User-facing message for a provider error code."""
    return ERROR_MESSAGES.get(code, UNKNOWN_ERROR_MESSAGE)


class LocationError(Exception):
    """Base exception for the location subsystem."""


class GeolocationUnavailable(LocationError):
    """
    No geolocation capability in this environment.

    Raised when there is no provider at all, the provider reports it is not
    available, or the execution context is not secure. This is the only
    error the acquisition path propagates to callers.
    """

    def __init__(self, message: str = "Geolocation is not available in this environment"):
        super().__init__(message)
        self.message = message


class GeolocationError(LocationError):
    """Coded failure reported by a provider for a single request."""

    def __init__(self, code: int, message: Optional[str] = None):
        self.code = code
        self.message = message or error_message(code)
        super().__init__(self.message)

    @property
    def code_name(self) -> str:
        return ERROR_CODES.get(self.code, "UNKNOWN_ERROR")

    def describe(self) -> str:
        """Message with the symbolic code appended, e.g. '... (TIMEOUT)'."""
        return f"{self.message} ({self.code_name})"
