"""Geolocation provider interface."""

from typing import Optional, Callable, Dict, Any

from .position import RawReading
from .errors import GeolocationError

# Permission states
GRANTED = "granted"
DENIED = "denied"
PROMPT = "prompt"
UNAVAILABLE = "unavailable"

PERMISSION_STATES = (GRANTED, DENIED, PROMPT, UNAVAILABLE)

ReadingCallback = Callable[[RawReading], None]
ErrorCallback = Callable[[GeolocationError], None]


class GeolocationProvider:
    """
    Device geolocation capability consumed by LocationService.

    Implementations deliver RawReading objects and report failures by
    raising (or passing to the error callback) a GeolocationError carrying
    one of the PERMISSION_DENIED, POSITION_UNAVAILABLE or TIMEOUT codes.
    """

    name = "generic"

    def is_available(self) -> bool:
        """Whether a position source exists at all."""
        return True

    def is_secure_context(self) -> bool:
        """Whether positions may be requested from this context."""
        return True

    def supports_permission_query(self) -> bool:
        return False

    def query_permission(self) -> Optional[str]:
        """
        Current permission state without prompting.

        Returns one of GRANTED, DENIED or PROMPT, or None when the platform
        has no way to ask.
        """
        return None

    def get_current_position(
        self,
        enable_high_accuracy: bool,
        timeout: float,
        maximum_age: float,
    ) -> RawReading:
        """
        Single fix.

        Args:
            enable_high_accuracy: Request the most accurate source available
            timeout: Seconds to wait for a fix
            maximum_age: Accept a fix the device already holds if it is at
                most this many seconds old

        Raises:
            GeolocationError: on denial, unavailability or timeout
        """
        raise NotImplementedError

    def watch_position(
        self,
        on_reading: ReadingCallback,
        on_error: ErrorCallback,
        options: Dict[str, Any],
    ) -> int:
        """Start continuous updates. Returns a watch id for clear_watch()."""
        raise NotImplementedError

    def clear_watch(self, watch_id: int):
        raise NotImplementedError
