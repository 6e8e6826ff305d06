"""Last known position cache."""

import time
import logging
import threading
from typing import Optional, Callable

from .config import CACHE_TIMEOUT_SECONDS
from .database import Store, LAST_KNOWN_LOCATION_KEY
from .position import Position

logger = logging.getLogger(__name__)


class PositionCache:
    """
    In-memory cache of the last known position, mirrored to a Store.

    The persistent copy lets a restarted process answer "where was the
    device recently" without touching the GPS.

    Attributes:
        position: Last cached Position, or None
        cache_timeout: Seconds after which an entry is stale

    Note:
        Eviction is lazy: stale entries are dropped when read, nothing
        sweeps the cache in the background. Age is measured from the
        entry's cache_time using the injected clock.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        cache_timeout: float = CACHE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache_timeout = cache_timeout
        self.clock = clock
        self.position: Optional[Position] = None
        self._lock = threading.Lock()

    def load(self) -> Optional[Position]:
        """Load a fresh persisted position into memory."""
        position = self._read_store()
        if position and self._is_fresh(position, self.cache_timeout):
            with self._lock:
                self.position = position
            logger.debug(f"Loaded cached position ({position.latitude}, {position.longitude})")
            return position
        return None

    def update(self, position: Position):
        """Cache a position in memory and in the store."""
        with self._lock:
            self.position = position
        if self.store is not None:
            try:
                self.store.set(LAST_KNOWN_LOCATION_KEY, position.to_dict())
            except Exception as e:
                logger.warning(f"Could not persist position: {e}")
        logger.debug(f"Cached position ({position.latitude}, {position.longitude}) ±{position.accuracy}m")

    def get(self, max_age: Optional[float] = None) -> Optional[Position]:
        """
        Freshest cached position within max_age seconds.

        Memory is consulted first, then the store. max_age defaults to
        cache_timeout.
        """
        if max_age is None:
            max_age = self.cache_timeout

        with self._lock:
            position = self.position
            if position and not self._is_fresh(position, self.cache_timeout):
                logger.debug("Evicting stale in-memory position")
                self.position = None
                position = None
        if position and self._is_fresh(position, max_age):
            return position

        stored = self._read_store()
        if stored and self._is_fresh(stored, max_age):
            return stored
        return None

    def get_age(self) -> Optional[float]:
        """Age of the in-memory position in seconds."""
        with self._lock:
            position = self.position
        if position:
            return position.age(self.clock())
        return None

    def clear(self):
        """Clear the in-memory entry only."""
        with self._lock:
            self.position = None

    def clear_all(self):
        """Clear memory and the persisted entry."""
        self.clear()
        if self.store is not None:
            try:
                self.store.delete(LAST_KNOWN_LOCATION_KEY)
            except Exception as e:
                logger.warning(f"Could not clear persisted position: {e}")

    def _is_fresh(self, position: Position, max_age: float) -> bool:
        return position.age(self.clock()) <= max_age

    def _read_store(self) -> Optional[Position]:
        if self.store is None:
            return None
        try:
            data = self.store.get(LAST_KNOWN_LOCATION_KEY)
            return Position.from_dict(data) if data else None
        except Exception as e:
            logger.warning(f"Could not read persisted position: {e}")
            return None
