"""Location acquisition service."""

import time
import uuid
import random
import logging
import platform
import threading
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Callable, Dict, Any, List, Tuple

from .config import (
    ACCURACY_THRESHOLD_METERS,
    CACHE_TIMEOUT_SECONDS,
    FALLBACK_ACCURACY_METERS,
    FALLBACK_LOCATIONS,
    PERMISSION_CACHE_SECONDS,
    RECENT_MAX_ACCURACY_METERS,
    REFRESH_STRATEGY,
    STRATEGIES,
    STRATEGY_TIMEOUT_GRACE_SECONDS,
    WATCH_DEFAULT_MAXIMUM_AGE,
    WATCH_DEFAULT_TIMEOUT,
    WATCH_MIN_DISTANCE_METERS,
    WATCH_STALE_SECONDS,
)
from .database import Store, MemoryStore, PERMISSION_STATUS_KEY
from .device import GeolocationProvider, GRANTED, DENIED, PROMPT, UNAVAILABLE
from .errors import (
    LocationError,
    GeolocationError,
    GeolocationUnavailable,
    PERMISSION_DENIED,
    POSITION_UNAVAILABLE,
    TIMEOUT,
)
from .geocoding import GeocodingService
from .position import (
    Position,
    RawReading,
    QUALITY_DEMO,
    SOURCE_FALLBACK,
    format_position,
    haversine_distance,
    iso_timestamp,
    validate_reading,
)
from .position_cache import PositionCache
from .subscribers import SubscriberRegistry, LocationCallback

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Strategy:
    """One rung of the acquisition ladder."""
    name: str
    enable_high_accuracy: bool
    timeout: float  # seconds
    maximum_age: float  # seconds


DEFAULT_STRATEGIES = [Strategy(*s) for s in STRATEGIES]
DEFAULT_REFRESH_STRATEGY = Strategy(*REFRESH_STRATEGY)


class AcquisitionState(Enum):
    IDLE = "idle"
    TRYING_STRATEGY = "trying_strategy"
    CACHED = "cached"
    FALLBACK = "fallback"
    DONE = "done"


# quality -> (message, color)
ACCURACY_STATUS = {
    "excellent": ("Excellent GPS accuracy", "green"),
    "very_good": ("Very good GPS accuracy", "green"),
    "good": ("Good location accuracy", "blue"),
    "fair": ("Fair accuracy - WiFi/Cell", "yellow"),
    "poor": ("Poor accuracy - Cell tower", "orange"),
    "very_poor": ("Very poor - Network/IP location", "red"),
}

PERMISSION_INSTRUCTIONS = {
    "title": "High-Accuracy GPS Required",
    "message": "For precise hazard reporting, please enable high-accuracy location access:",
    "steps": [
        "Connect the GPS-capable device and keep it powered on",
        "Allow this application to access the device (e.g. add your user to the dialout group)",
        "Enable GPS/Location Services on the device",
        "For best results, try this outdoors with clear sky view",
        "If using a mobile device, ensure 'High Accuracy' mode is enabled in location settings",
    ],
    "troubleshooting": [
        "If accuracy is poor, move outdoors away from buildings",
        "Wait 30-60 seconds for GPS to acquire satellite lock",
        "Check that no other program holds the serial port",
        "Reconnect the device and request location access again",
    ],
}


def is_update_worthy(
    current: Optional[Position],
    candidate: Position,
    now: float,
    min_distance: float = WATCH_MIN_DISTANCE_METERS,
    stale_after: float = WATCH_STALE_SECONDS,
) -> bool:
    """
    Decide whether a watch-mode reading should replace the current position.

    Accepted when there is no current position, when the candidate is more
    than twice as accurate, when it moved further than max(its accuracy,
    min_distance) meters, or when the current position is older than
    stale_after seconds. Everything else is GPS jitter.
    """
    if current is None:
        return True
    if candidate.accuracy < current.accuracy / 2:
        return True
    distance = haversine_distance(
        current.latitude, current.longitude,
        candidate.latitude, candidate.longitude,
    )
    if distance > max(candidate.accuracy, min_distance):
        return True
    return current.age(now) > stale_after


class LocationService:
    """
    Best available device position for reporting, map and login flows.

    Acquisition walks an ordered ladder of strategies, then the cache, then
    a synthesized fallback position, so callers always get a Position back.
    The only error raised from the acquisition path is
    GeolocationUnavailable, when the environment has no usable geolocation
    capability at all.

    One instance is created per process and handed to its consumers;
    cleanup() is called on teardown.

    Attributes:
        provider: Device geolocation capability, None if there is none
        store: Persistent key/value store for position and permission
        cache: Last known position cache
        subscribers: Location update callbacks
        current_position: Latest position handed out (real or fallback)
        state: Acquisition state machine position
    """

    def __init__(
        self,
        provider: Optional[GeolocationProvider] = None,
        store: Optional[Store] = None,
        cache_timeout: float = CACHE_TIMEOUT_SECONDS,
        accuracy_threshold: float = ACCURACY_THRESHOLD_METERS,
        permission_ttl: float = PERMISSION_CACHE_SECONDS,
        strategies: Optional[List[Strategy]] = None,
        refresh_strategy: Strategy = DEFAULT_REFRESH_STRATEGY,
        timeout_grace: float = STRATEGY_TIMEOUT_GRACE_SECONDS,
        geocoder: Optional[GeocodingService] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.provider = provider
        self.store = store if store is not None else MemoryStore()
        self.clock = clock
        self.cache = PositionCache(self.store, cache_timeout, clock)
        self.subscribers = SubscriberRegistry()
        self.geocoder = geocoder or GeocodingService()
        self.accuracy_threshold = accuracy_threshold
        self.permission_ttl = permission_ttl
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)
        self.refresh_strategy = refresh_strategy
        self.timeout_grace = timeout_grace
        self.random = rng or random.Random()

        self.current_position: Optional[Position] = None
        self.permission_status: Optional[str] = None
        self.state = AcquisitionState.IDLE
        self._permission_checked_at: Optional[float] = None
        self._watching = False
        self._watch_id: Optional[int] = None
        self._attempt = 0
        self._fallback_attempt: Optional[int] = None
        self._lock = threading.RLock()

        self._load_cached_state()

    # ------------------------------------------------------------------
    # Startup and permission state
    # ------------------------------------------------------------------

    def _load_cached_state(self):
        """Load fresh permission state and position from the store."""
        try:
            cached = self.store.get(PERMISSION_STATUS_KEY)
        except Exception as e:
            logger.warning(f"Could not read cached permission: {e}")
            cached = None
        if cached and self.clock() - cached.get("timestamp", 0) <= self.permission_ttl:
            self.permission_status = cached.get("status")
            self._permission_checked_at = cached.get("timestamp")
            logger.debug(f"Loaded cached permission: {self.permission_status}")

        self.current_position = self.cache.load()

    def _set_permission(self, status: str):
        now = self.clock()
        with self._lock:
            self.permission_status = status
            self._permission_checked_at = now
        try:
            self.store.set(PERMISSION_STATUS_KEY, {"status": status, "timestamp": now})
        except Exception as e:
            logger.warning(f"Could not persist permission status: {e}")

    def _cached_permission(self) -> Optional[str]:
        with self._lock:
            if self.permission_status is None or self._permission_checked_at is None:
                return None
            if self.clock() - self._permission_checked_at > self.permission_ttl:
                return None
            return self.permission_status

    def check_permission_status(self) -> str:
        """
        Query the provider's permission state without prompting.

        Returns granted, denied or prompt; prompt when the provider cannot be
        asked, unavailable when there is no geolocation capability. The
        result is persisted. Never raises.
        """
        if not self._has_capability():
            status = UNAVAILABLE
        elif not self.provider.supports_permission_query():
            status = PROMPT
        else:
            try:
                status = self.provider.query_permission() or PROMPT
            except Exception as e:
                logger.debug(f"Permission query failed: {e}")
                status = PROMPT
            if status not in (GRANTED, DENIED, PROMPT):
                status = PROMPT

        self._set_permission(status)
        return status

    def has_location_permission(self) -> bool:
        return self._cached_permission() == GRANTED

    def request_location_permission(self) -> bool:
        """
        Provoke the device permission prompt by attempting a fix.

        Returns True if a position was obtained. A successful fix is cached
        and broadcast like any other.
        """
        if not self.is_geolocation_available():
            logger.error("Geolocation not supported in this environment")
            return False

        if self.check_permission_status() == DENIED:
            logger.info("Geolocation permission denied")
            return False

        for strategy in self.strategies:
            position, error = self._run_strategy(strategy)
            if position is not None:
                self._accept(position)
                return True
            logger.debug(f"{strategy.name} failed during permission request: {error.describe()}")
            if error.code == PERMISSION_DENIED:
                self._set_permission(DENIED)
                return False
        return False

    def show_permission_instructions(self) -> Dict[str, Any]:
        return {
            "title": PERMISSION_INSTRUCTIONS["title"],
            "message": PERMISSION_INSTRUCTIONS["message"],
            "steps": list(PERMISSION_INSTRUCTIONS["steps"]),
            "troubleshooting": list(PERMISSION_INSTRUCTIONS["troubleshooting"]),
        }

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    def _has_capability(self) -> bool:
        return self.provider is not None and self.provider.is_available()

    def is_geolocation_available(self) -> bool:
        return self._has_capability() and self.provider.is_secure_context()

    def _ensure_available(self):
        if self.provider is None:
            raise GeolocationUnavailable("No geolocation provider configured")
        if not self.provider.is_available():
            raise GeolocationUnavailable(f"Geolocation provider '{self.provider.name}' is not available")
        if not self.provider.is_secure_context():
            raise GeolocationUnavailable("Geolocation requires a secure context")

    def get_device_capabilities(self) -> Dict[str, Any]:
        provider = self.provider
        return {
            "has_geolocation": self._has_capability(),
            "has_permissions_api": provider is not None and provider.supports_permission_query(),
            "is_secure_context": provider is not None and provider.is_secure_context(),
            "provider": provider.name if provider else None,
            "platform": platform.platform(),
            "python_version": platform.python_version(),
        }

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def get_current_position(self, silent: bool = True) -> Position:
        """
        Best available position.

        Tries each strategy in order, then a fresh cached position, then a
        fallback position. Diagnostics are logged at DEBUG when silent,
        WARNING otherwise.

        Raises:
            GeolocationUnavailable: no geolocation capability in this
                environment. Denials, timeouts and bad readings never raise.
        """
        return self._locate(silent)

    def _locate(self, silent: bool, max_cache_age: Optional[float] = None) -> Position:
        self._ensure_available()
        with self._lock:
            self._attempt += 1

        permission = self._cached_permission() or self.check_permission_status()
        if permission == DENIED:
            self._log(silent, "Location permission denied, skipping device polling")
            return self._acquire([], silent, GeolocationError(PERMISSION_DENIED), max_cache_age)
        return self._acquire(self.strategies, silent, max_cache_age=max_cache_age)

    def refresh_location(self) -> Position:
        """
        User-initiated refresh: drop all cached state and demand a fresh
        high-accuracy fix, logging failures at WARNING.

        Raises:
            GeolocationUnavailable: as get_current_position()
        """
        self._ensure_available()
        logger.info("Forcing GPS refresh...")
        self.cache.clear_all()
        with self._lock:
            self.current_position = None
            self._fallback_attempt = None
            self._attempt += 1

        if self.check_permission_status() == DENIED:
            self._log(False, "Location permission denied, cannot refresh GPS")
            return self._acquire([], False, GeolocationError(PERMISSION_DENIED))
        return self._acquire([self.refresh_strategy], False)

    def get_current_position_with_fallback(self, max_cache_age: Optional[float] = None) -> Position:
        """
        Position for flows that must not fail, e.g. report submission.

        Args:
            max_cache_age: Oldest acceptable cached position in seconds when
                no strategy produces a fix (default: cache timeout)
        """
        try:
            return self._locate(True, max_cache_age)
        except LocationError as e:
            logger.debug(f"Live acquisition impossible: {e}")
            cached = self.cache.get(max_age=max_cache_age)
            if cached:
                return cached
            with self._lock:
                self._attempt += 1
            return self.get_fallback_location(str(e))

    def get_cached_position(self) -> Optional[Position]:
        """Fresh cached position, or None. Never touches the device."""
        return self.cache.get()

    def is_position_recent(self, max_age_minutes: float = 5) -> bool:
        """Whether a cached position exists within max_age_minutes and ±1000 m."""
        position = self.cache.get(max_age=max_age_minutes * 60)
        return position is not None and position.accuracy <= RECENT_MAX_ACCURACY_METERS

    def _acquire(
        self,
        strategies: List[Strategy],
        silent: bool,
        reason: Optional[GeolocationError] = None,
        max_cache_age: Optional[float] = None,
    ) -> Position:
        """Run the ladder: TRYING_STRATEGY(i) -> CACHED -> FALLBACK -> DONE."""
        state = AcquisitionState.TRYING_STRATEGY
        index = 0
        result: Optional[Position] = None

        while state is not AcquisitionState.DONE:
            self.state = state
            if state is AcquisitionState.TRYING_STRATEGY:
                if index >= len(strategies):
                    state = AcquisitionState.CACHED
                    continue
                strategy = strategies[index]
                logger.debug(f"Trying GPS strategy: {strategy.name}")
                position, error = self._run_strategy(strategy)
                if position is not None:
                    logger.info(f"{strategy.name} result: ±{position.accuracy}m ({position.source})")
                    self._accept(position)
                    result = position
                    state = AcquisitionState.DONE
                else:
                    self._log(silent, f"{strategy.name} failed: {error.describe()}")
                    if error.code == PERMISSION_DENIED:
                        self._set_permission(DENIED)
                    reason = error
                    index += 1

            elif state is AcquisitionState.CACHED:
                result = self.cache.get(max_age=max_cache_age)
                if result is not None:
                    self._log(silent, f"Using cached position from {result.timestamp}")
                    with self._lock:
                        self.current_position = result
                    state = AcquisitionState.DONE
                else:
                    state = AcquisitionState.FALLBACK

            elif state is AcquisitionState.FALLBACK:
                message = reason.describe() if reason else "No position available"
                self._log(silent, f"All GPS strategies failed, using fallback: {message}")
                result = self.get_fallback_location(message)
                state = AcquisitionState.DONE

        self.state = AcquisitionState.IDLE
        return result

    def _run_strategy(self, strategy: Strategy) -> Tuple[Optional[Position], Optional[GeolocationError]]:
        """
        Ask the provider for one fix.

        The call runs in a daemon thread and is abandoned after the strategy
        timeout plus the grace period, for providers that ignore the timeout.

        Returns:
            (position, None) on success, (None, error) otherwise
        """
        outcome: Dict[str, Any] = {}

        def call():
            try:
                outcome["reading"] = self.provider.get_current_position(
                    strategy.enable_high_accuracy,
                    strategy.timeout,
                    strategy.maximum_age,
                )
            except GeolocationError as e:
                outcome["error"] = e
            except Exception as e:
                outcome["error"] = GeolocationError(POSITION_UNAVAILABLE, f"Provider error: {e}")

        worker = threading.Thread(target=call, name=f"geolocation-{strategy.name}", daemon=True)
        worker.start()
        worker.join(strategy.timeout + self.timeout_grace)

        if worker.is_alive():
            return None, GeolocationError(
                TIMEOUT, f"{strategy.name} gave no answer within {strategy.timeout + self.timeout_grace:.1f}s"
            )
        if "error" in outcome:
            return None, outcome["error"]

        reading: Optional[RawReading] = outcome.get("reading")
        invalid = validate_reading(reading)
        if invalid:
            return None, GeolocationError(POSITION_UNAVAILABLE, f"Invalid GPS data received: {invalid}")
        return format_position(reading, self.clock(), self.accuracy_threshold), None

    def _accept(self, position: Position):
        """Make a real position current, cache it and broadcast it."""
        with self._lock:
            self.current_position = position
        self.cache.update(position)
        if self._cached_permission() != GRANTED:
            self._set_permission(GRANTED)
        self.subscribers.notify(position)

    def get_fallback_location(self, reason: Optional[str] = None) -> Position:
        """
        Synthesized position at a random reference location.

        Within one acquisition attempt the same fallback is returned; a new
        top-level acquisition may pick another location.
        """
        with self._lock:
            current = self.current_position
            if current is not None and current.is_fallback and self._fallback_attempt == self._attempt:
                return current

            choice = self.random.choice(FALLBACK_LOCATIONS)
            now = self.clock()
            position = Position(
                latitude=choice["lat"],
                longitude=choice["lng"],
                accuracy=FALLBACK_ACCURACY_METERS,
                timestamp=iso_timestamp(now),
                source=SOURCE_FALLBACK,
                quality=QUALITY_DEMO,
                is_high_accuracy=False,
                cache_time=now,
                is_fallback=True,
                fallback_location_name=choice["name"],
                fallback_reason=reason,
            )
            self.current_position = position
            self._fallback_attempt = self._attempt

        logger.info(f"Using fallback location: {choice['name']}")
        self.subscribers.notify(position)
        return position

    # ------------------------------------------------------------------
    # Watch mode
    # ------------------------------------------------------------------

    def start_watching_position(self, options: Optional[Dict[str, Any]] = None) -> int:
        """
        Start continuous tracking. Returns the watch id; calling again while
        watching returns the existing id.

        Raises:
            GeolocationUnavailable: no geolocation capability
            GeolocationError: the provider refused to start watching
        """
        self._ensure_available()
        with self._lock:
            if self._watching:
                return self._watch_id

            watch_options = {
                "enable_high_accuracy": True,
                "timeout": WATCH_DEFAULT_TIMEOUT,
                "maximum_age": WATCH_DEFAULT_MAXIMUM_AGE,
            }
            watch_options.update(options or {})

            self._watching = True
            try:
                self._watch_id = self.provider.watch_position(
                    self._on_watch_reading, self._on_watch_error, watch_options
                )
            except Exception:
                self._watching = False
                raise
            logger.info(f"Started watching position (watch {self._watch_id})")
            return self._watch_id

    def stop_watching_position(self):
        """Stop tracking. No update is delivered after this returns."""
        with self._lock:
            watch_id = self._watch_id
            was_watching = self._watching
            self._watching = False
            self._watch_id = None
        if not was_watching:
            return
        try:
            self.provider.clear_watch(watch_id)
        except Exception as e:
            logger.warning(f"Error clearing position watch: {e}")
        logger.info("Stopped watching position")

    def is_watching(self) -> bool:
        with self._lock:
            return self._watching

    def _on_watch_reading(self, reading: RawReading):
        invalid = validate_reading(reading)
        if invalid:
            logger.debug(f"Ignoring invalid watch reading: {invalid}")
            return
        position = format_position(reading, self.clock(), self.accuracy_threshold)

        # Delivery happens under the lock so stop_watching_position() can't
        # return while an update is still being broadcast
        with self._lock:
            if not self._watching:
                return
            if not is_update_worthy(self.current_position, position, self.clock()):
                logger.debug(f"Discarding watch update ±{position.accuracy}m")
                return
            self.current_position = position
            self.cache.update(position)
            self.subscribers.notify(position)

    def _on_watch_error(self, error: GeolocationError):
        logger.error(f"GPS watch error: {error.describe()}")

    # ------------------------------------------------------------------
    # Subscribers and presentation
    # ------------------------------------------------------------------

    def on_location_update(self, callback: LocationCallback) -> Callable[[], None]:
        """
        Subscribe to position updates.

        The callback receives the current position immediately if there is
        one. Returns an idempotent unsubscribe function.

        Watch updates are delivered while the service lock is held, so a
        slow callback delays every other service call. Hand long work such
        as reverse geocoding off to another thread.
        """
        unsubscribe = self.subscribers.subscribe(callback)
        with self._lock:
            current = self.current_position
        if current is not None:
            SubscriberRegistry.deliver(callback, current)
        return unsubscribe

    def get_accuracy_status(self, position: Optional[Position] = None) -> Dict[str, str]:
        """Human-readable accuracy status: {status, message, color}."""
        if position is None:
            with self._lock:
                position = self.current_position
        if position is None:
            position = self.cache.get()
        if position is None:
            return {"status": "unknown", "message": "Location accuracy unknown", "color": "gray"}

        if position.is_fallback:
            return {
                "status": QUALITY_DEMO,
                "message": f"Demo location - {position.fallback_location_name}",
                "color": "purple",
            }

        message, color = ACCURACY_STATUS.get(position.quality, ("Location accuracy unknown", "gray"))
        return {
            "status": position.quality,
            "message": f"{message} ({position.source})",
            "color": color,
        }

    def reverse_geocode(self, lat: float, lng: float) -> Dict[str, Any]:
        return self.geocoder.reverse_geocode(lat, lng)

    def geotag_media(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        position: Optional[Position] = None,
    ) -> Dict[str, Any]:
        """
        Attach position and address to captured media.

        Never raises: without geolocation the record is returned with
        geotagged False and the error message.
        """
        record = {
            "id": uuid.uuid4().hex,
            "data": data,
            "size": len(data),
            "type": content_type,
            "timestamp": iso_timestamp(self.clock()),
        }
        try:
            location = position or self.get_current_position()
        except LocationError as e:
            logger.error(f"Geotagging error: {e}")
            record.update({"location": None, "address": None, "geotagged": False, "error": str(e)})
            return record

        record.update({
            "location": location.to_dict(),
            "address": self.reverse_geocode(location.latitude, location.longitude),
            "geotagged": True,
        })
        return record

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cleanup(self):
        """Stop watching and clear in-memory state and subscribers."""
        self.stop_watching_position()
        self.cache.clear()
        self.subscribers.clear()
        with self._lock:
            self.current_position = None

    def _log(self, silent: bool, message: str):
        if silent:
            logger.debug(message)
        else:
            logger.warning(message)
