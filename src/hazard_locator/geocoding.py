"""Reverse geocoding against reference locations, optionally via OSM Nominatim."""

import time
import logging
import requests
from typing import Optional, Dict, Any, List

from .config import (
    NOMINATIM_API_URL,
    NOMINATIM_ENABLED,
    NOMINATIM_RATE_LIMIT_SECONDS,
    NOMINATIM_TIMEOUT,
    REFERENCE_LOCATIONS,
    REFERENCE_COUNTRY,
)
from .position import haversine_distance

logger = logging.getLogger(__name__)


def nearest_reference(
    lat: float,
    lon: float,
    references: List[Dict[str, Any]] = REFERENCE_LOCATIONS,
) -> Dict[str, Any]:
    """Closest reference point by great-circle distance (first wins on ties)."""
    closest = references[0]
    min_distance = haversine_distance(lat, lon, closest["lat"], closest["lng"])
    for ref in references[1:]:
        distance = haversine_distance(lat, lon, ref["lat"], ref["lng"])
        if distance < min_distance:
            min_distance = distance
            closest = ref
    return closest


class GeocodingService:
    """
    Service for reverse geocoding coordinates to addresses.

    The offline lookup snaps to the nearest reference location and is
    deterministic. With use_nominatim enabled the OSM Nominatim API is tried
    first and any failure falls back to the offline result.
    """

    def __init__(
        self,
        use_nominatim: bool = NOMINATIM_ENABLED,
        references: Optional[List[Dict[str, Any]]] = None,
        country: str = REFERENCE_COUNTRY,
    ):
        self.use_nominatim = use_nominatim
        self.references = references or REFERENCE_LOCATIONS
        self.country = country
        self.last_request_time = 0.0

    def reverse_geocode(self, lat: float, lon: float) -> Dict[str, Any]:
        """
        Reverse geocode coordinates.

        Returns:
            Dictionary with 'address', 'district', 'state', 'country' and
            'coordinates' keys. Never raises.
        """
        if self.use_nominatim:
            result = self._nominatim_lookup(lat, lon)
            if result:
                return result

        ref = nearest_reference(lat, lon, self.references)
        return {
            "address": ref["address"],
            "district": ref["district"],
            "state": ref["state"],
            "country": self.country,
            "coordinates": {"latitude": lat, "longitude": lon},
        }

    def _nominatim_lookup(self, lat: float, lon: float) -> Optional[Dict[str, Any]]:
        """Query Nominatim. Returns None on errors (does not raise exceptions)."""
        # Rate limiting
        now = time.time()
        time_since_last = now - self.last_request_time
        if time_since_last < NOMINATIM_RATE_LIMIT_SECONDS:
            sleep_time = NOMINATIM_RATE_LIMIT_SECONDS - time_since_last
            logger.debug(f"Geocoding rate limiting: sleeping {sleep_time:.1f}s")
            time.sleep(sleep_time)

        try:
            params = {
                "lat": lat,
                "lon": lon,
                "format": "json",
                "addressdetails": 1,
                "accept-language": "en",
            }

            logger.debug(f"Reverse geocoding: ({lat}, {lon})")

            response = requests.get(
                NOMINATIM_API_URL,
                params=params,
                timeout=NOMINATIM_TIMEOUT,
                headers={"User-Agent": "Coastal-Hazard-Locator/1.0"},  # Required by Nominatim
            )

            self.last_request_time = time.time()

            if response.status_code != 200:
                logger.debug(f"Geocoding API error {response.status_code}: {response.text[:100]}")
                return None

            address = response.json().get("address", {})
            city = (
                address.get("city") or
                address.get("town") or
                address.get("village") or
                address.get("municipality")
            )
            district = (
                address.get("state_district") or
                address.get("county") or
                address.get("district") or
                city
            )
            state = address.get("state") or address.get("region")
            country = address.get("country")

            parts = [p for p in (city, state) if p]
            if not parts:
                logger.debug("No address components found")
                return None

            return {
                "address": ", ".join(parts),
                "district": district,
                "state": state,
                "country": country,
                "coordinates": {"latitude": lat, "longitude": lon},
            }

        except requests.exceptions.Timeout:
            logger.debug("Geocoding API timeout")
            return None
        except requests.exceptions.ConnectionError:
            logger.debug("Geocoding API connection error")
            return None
        except Exception as e:
            logger.debug(f"Unexpected error in geocoding: {e}")
            return None
