"""Location update subscribers."""

import logging
import threading
from typing import Callable, List, Tuple

from .position import Position

logger = logging.getLogger(__name__)

LocationCallback = Callable[[Position], None]


class SubscriberRegistry:
    """
    Ordered list of location callbacks.

    Each registration gets its own token, so the same callable can be
    registered twice and unsubscribed independently. Callbacks run in
    registration order on the notifying thread; an exception raised by one
    callback is logged and does not stop delivery to the rest.
    """

    def __init__(self):
        self._subscribers: List[Tuple[object, LocationCallback]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: LocationCallback) -> Callable[[], None]:
        """Register a callback. Returns an idempotent unsubscribe function."""
        token = object()
        with self._lock:
            self._subscribers.append((token, callback))

        def unsubscribe():
            with self._lock:
                self._subscribers = [s for s in self._subscribers if s[0] is not token]

        return unsubscribe

    def notify(self, position: Position):
        """Deliver a position to every subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for _, callback in subscribers:
            self.deliver(callback, position)

    @staticmethod
    def deliver(callback: LocationCallback, position: Position):
        """Invoke a single callback, logging its failure."""
        try:
            callback(position)
        except Exception as e:
            logger.error(f"Error in location subscriber {callback!r}: {e}")

    def clear(self):
        with self._lock:
            self._subscribers = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
