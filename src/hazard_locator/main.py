"""Main locator application."""

import time
import queue
import signal
import logging
from typing import Optional

from .config import LOG_LEVEL, SERIAL_PORT, WATCH_ENABLED, PROJECT_NAME
from .database import Database
from .errors import LocationError
from .meshtastic_device import MeshtasticGeolocation, MESHTASTIC_AVAILABLE
from .position import Position
from .service import LocationService

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def meshtastic_log_level(level: int) -> int:
    """meshtastic logs very verbosely; keep it at WARNING or above unless debugging."""
    if level <= logging.DEBUG:
        return level
    return max(level, logging.WARNING)


logging.getLogger("meshtastic").setLevel(
    meshtastic_log_level(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
)

logger = logging.getLogger(__name__)


class LocatorApp:
    """
    Process wrapper around a single LocationService.

    Components:
        - Database: SQLite store for last known position and permission
        - MeshtasticGeolocation: GPS of the attached Meshtastic radio
        - LocationService: acquisition, cache, fallback and watch mode

    Acquires one position on start and logs it with its accuracy status
    and address. With WATCH_ENABLED the app keeps tracking until SIGINT or
    SIGTERM.
    """

    def __init__(self, service: Optional[LocationService] = None, watch: bool = WATCH_ENABLED):
        self.running = False
        self.watch = watch
        if service is None:
            provider = MeshtasticGeolocation(port=SERIAL_PORT) if MESHTASTIC_AVAILABLE else None
            service = LocationService(provider=provider, store=Database())
        self.service = service
        self._unsubscribe = None
        # Watch updates arrive under the service lock; geocoding them there
        # would block the service, so the main loop logs them instead
        self._updates: "queue.Queue[Position]" = queue.Queue()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def _log_position(self, position: Position):
        status = self.service.get_accuracy_status(position)
        address = self.service.reverse_geocode(position.latitude, position.longitude)
        logger.info(
            f"Position ({position.latitude:.6f}, {position.longitude:.6f}) "
            f"±{position.accuracy:.0f}m - {status['message']} - {address['address']}"
        )

    def _drain_updates(self):
        while True:
            try:
                position = self._updates.get_nowait()
            except queue.Empty:
                return
            self._log_position(position)

    def acquire_once(self) -> Optional[Position]:
        """Get and log one position. Returns None without geolocation."""
        try:
            position = self.service.get_current_position(silent=False)
        except LocationError as e:
            logger.error(f"Cannot acquire position: {e}")
            return None
        self._log_position(position)
        return position

    def start(self):
        """Start the locator."""
        logger.info(f"Starting {PROJECT_NAME}")
        logger.info(f"Device capabilities: {self.service.get_device_capabilities()}")
        self.running = True

        self.acquire_once()
        if not self.watch:
            self.stop()
            return

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            self.service.start_watching_position()
        except LocationError as e:
            logger.error(f"Cannot watch position: {e}")
            self.stop()
            return
        self._unsubscribe = self.service.on_location_update(self._updates.put)

        # Main loop
        try:
            while self.running:
                time.sleep(1)
                self._drain_updates()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.stop()

    def stop(self):
        """Stop the locator."""
        logger.info("Stopping locator...")
        self.running = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self.service.cleanup()
        logger.info("Locator stopped")


def main():
    """Main entry point."""
    app = LocatorApp()
    app.start()


if __name__ == "__main__":
    main()
