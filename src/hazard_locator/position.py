"""Position records, accuracy classification and distance helpers."""

import math
import logging
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from typing import Optional, Tuple, Dict, Any

import pytz

from .config import (
    ACCURACY_THRESHOLD_METERS,
    FALLBACK_ACCURACY_METERS,
    MAX_PLAUSIBLE_ACCURACY_METERS,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0

# Inclusive upper bounds in meters, ordered by accuracy
ACCURACY_BUCKETS = [
    (10.0, "excellent", "GPS"),
    (50.0, "very_good", "GPS"),
    (100.0, "good", "GPS/GLONASS"),
    (500.0, "fair", "WiFi/Cell"),
    (2000.0, "poor", "WiFi/Cell"),
]
VERY_POOR = ("very_poor", "Network/IP")

SOURCE_UNKNOWN = "Unknown"
SOURCE_FALLBACK = "Fallback"
QUALITY_DEMO = "demo"


@dataclass(frozen=True)
class RawReading:
    """Reading as delivered by a geolocation provider."""
    latitude: Any
    longitude: Any
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    altitude_accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    timestamp: Optional[float] = None  # Unix timestamp of the fix


@dataclass(frozen=True)
class Position:
    """Geolocation reading with derived classification metadata."""
    latitude: float
    longitude: float
    accuracy: float
    timestamp: str
    source: str
    quality: str
    is_high_accuracy: bool
    cache_time: float
    altitude: Optional[float] = None
    altitude_accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    is_fallback: bool = False
    fallback_location_name: Optional[str] = None
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by the persistent store."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Rebuild a position from to_dict() output, ignoring unknown keys."""
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})

    def with_cache_time(self, cache_time: float) -> "Position":
        return replace(self, cache_time=cache_time)

    def age(self, now: float) -> float:
        """Seconds since the record was produced."""
        return now - self.cache_time


def classify_accuracy(accuracy: Optional[float]) -> Tuple[str, str]:
    """
    Map an accuracy radius to its (quality, source) bucket.

    Buckets (meters, inclusive upper bounds):
        <=10 excellent/GPS, <=50 very_good/GPS, <=100 good/GPS/GLONASS,
        <=500 fair/WiFi/Cell, <=2000 poor/WiFi/Cell, else very_poor/Network/IP.

    A missing accuracy is classified very_poor with an Unknown source.
    """
    if accuracy is None:
        return VERY_POOR[0], SOURCE_UNKNOWN
    for upper, quality, source in ACCURACY_BUCKETS:
        if accuracy <= upper:
            return quality, source
    return VERY_POOR


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate_reading(reading: Optional[RawReading]) -> Optional[str]:
    """
    Check a raw provider reading.

    Returns:
        None if the reading is usable, otherwise the rejection reason
    """
    if reading is None:
        return "No reading received"
    if not _is_number(reading.latitude) or not _is_number(reading.longitude):
        return "Coordinates are not numeric"
    if abs(reading.latitude) > 90 or abs(reading.longitude) > 180:
        return f"Coordinates out of range: ({reading.latitude}, {reading.longitude})"
    if reading.accuracy is not None:
        if not _is_number(reading.accuracy) or reading.accuracy < 0:
            return f"Invalid accuracy: {reading.accuracy}"
        if reading.accuracy > MAX_PLAUSIBLE_ACCURACY_METERS:
            return f"Implausible accuracy: {reading.accuracy}m"
    return None


def iso_timestamp(ts: float) -> str:
    """ISO-8601 UTC string for a Unix timestamp."""
    return datetime.fromtimestamp(ts, tz=pytz.UTC).isoformat()


def format_position(
    reading: RawReading,
    now: float,
    accuracy_threshold: float = ACCURACY_THRESHOLD_METERS,
) -> Position:
    """Build a Position from a validated reading."""
    accuracy = reading.accuracy
    quality, source = classify_accuracy(accuracy)
    if accuracy is None:
        accuracy = FALLBACK_ACCURACY_METERS
    captured_at = reading.timestamp if reading.timestamp is not None else now

    return Position(
        latitude=float(reading.latitude),
        longitude=float(reading.longitude),
        accuracy=float(accuracy),
        altitude=reading.altitude,
        altitude_accuracy=reading.altitude_accuracy,
        heading=reading.heading,
        speed=reading.speed,
        timestamp=iso_timestamp(captured_at),
        source=source,
        quality=quality,
        is_high_accuracy=accuracy <= accuracy_threshold,
        cache_time=now,
    )


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c
