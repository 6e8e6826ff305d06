"""Location acquisition and caching for coastal hazard reporting."""

from .errors import LocationError, GeolocationError, GeolocationUnavailable
from .position import Position, RawReading, haversine_distance
from .service import LocationService, Strategy

__all__ = [
    "LocationError",
    "GeolocationError",
    "GeolocationUnavailable",
    "LocationService",
    "Position",
    "RawReading",
    "Strategy",
    "haversine_distance",
]
