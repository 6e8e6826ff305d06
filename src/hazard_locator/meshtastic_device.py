"""Meshtastic radio as geolocation provider, using meshtastic-python library."""

import os
import time
import logging
import threading
from typing import Optional, Callable, Dict, Any

try:
    import meshtastic.serial_interface
    from pubsub import pub
    MESHTASTIC_AVAILABLE = True
except ImportError:
    MESHTASTIC_AVAILABLE = False
    pub = None

from .config import SERIAL_PORT
from .device import GeolocationProvider, GRANTED, DENIED, PROMPT
from .errors import GeolocationError, PERMISSION_DENIED, POSITION_UNAVAILABLE, TIMEOUT
from .position import RawReading

logger = logging.getLogger(__name__)

POSITION_TOPIC = "meshtastic.receive.position"

# Approximate position error for a given precision_bits setting:
# a fix truncated to N bits is known to within ~23.9e6 / 2**N meters
PRECISION_BITS_SCALE = 23905787.925


def reading_from_position(position_data: Dict[str, Any], now: float) -> Optional[RawReading]:
    """
    Convert a decoded Meshtastic position dict into a RawReading.

    Accuracy is estimated from HDOP and the device's reported GPS accuracy
    when both are present, otherwise from precisionBits. Returns None if the
    packet carries no coordinates.
    """
    lat = position_data.get("latitude")
    lon = position_data.get("longitude")
    if lat is None or lon is None:
        # Meshtastic uses integer coordinates (1e-7 degrees)
        lat_i = position_data.get("latitudeI")
        lon_i = position_data.get("longitudeI")
        if lat_i is None or lon_i is None:
            return None
        lat = lat_i / 1e7
        lon = lon_i / 1e7

    accuracy = None
    hdop = position_data.get("HDOP")
    gps_accuracy = position_data.get("gpsAccuracy")  # millimeters
    precision_bits = position_data.get("precisionBits")
    if hdop and gps_accuracy:
        accuracy = (hdop / 100.0) * (gps_accuracy / 1000.0)
    elif precision_bits:
        accuracy = PRECISION_BITS_SCALE / (2 ** precision_bits)

    ground_track = position_data.get("groundTrack")
    fix_time = position_data.get("time") or position_data.get("timestamp")

    return RawReading(
        latitude=lat,
        longitude=lon,
        accuracy=accuracy,
        altitude=position_data.get("altitude"),
        heading=ground_track * 1e-5 if ground_track is not None else None,
        speed=position_data.get("groundSpeed"),
        timestamp=float(fix_time) if fix_time else now,
    )


class MeshtasticGeolocation(GeolocationProvider):
    """
    GPS of a Meshtastic device attached over USB serial.

    The local node's last known position is read from its node info; fresh
    fixes arrive as position packets published by meshtastic-python on the
    meshtastic.receive.position pubsub topic.

    Attributes:
        port: Serial port path (e.g., "/dev/ttyACM0")
        interface: meshtastic SerialInterface object

    Note:
        Meshtastic firmware decides the GPS mode by itself, so the
        enable_high_accuracy flag is only logged. Permission means read/write
        access to the serial device node.
    """

    name = "meshtastic"

    def __init__(self, port: str = SERIAL_PORT, clock: Callable[[], float] = time.time):
        self.port = port
        self.clock = clock
        self.interface = None
        self._watches: Dict[int, Callable] = {}
        self._next_watch_id = 1
        self._lock = threading.Lock()
        self._connect_lock = threading.Lock()

    def is_available(self) -> bool:
        return MESHTASTIC_AVAILABLE

    def supports_permission_query(self) -> bool:
        return True

    def query_permission(self) -> Optional[str]:
        if not os.path.exists(self.port):
            # Device not plugged in yet; access can't be decided
            return PROMPT
        if os.access(self.port, os.R_OK | os.W_OK):
            return GRANTED
        return DENIED

    def connect(self):
        """
        Connect to the Meshtastic device.

        Raises:
            GeolocationError: PERMISSION_DENIED if the port can't be opened for
                lack of access, POSITION_UNAVAILABLE on other failures
        """
        # Held across the open so an abandoned call still inside
        # SerialInterface() can't race a second open of the same port
        with self._connect_lock:
            if self.interface:
                try:
                    _ = self.interface.getMyNodeInfo()
                    return
                except Exception:
                    # Connection lost, need to reconnect
                    self.interface = None

            if not MESHTASTIC_AVAILABLE:
                raise GeolocationError(POSITION_UNAVAILABLE, "meshtastic library not available")

            try:
                logger.info(f"Connecting to Meshtastic device at {self.port}...")
                self.interface = meshtastic.serial_interface.SerialInterface(
                    devPath=self.port,
                    noProto=False,
                    connectNow=True,
                )
                logger.info(f"Connected to Meshtastic device at {self.port}")
            except Exception as e:
                self.interface = None
                if isinstance(e, PermissionError) or "Permission denied" in str(e):
                    raise GeolocationError(PERMISSION_DENIED) from e
                logger.error(f"Failed to connect to {self.port}: {e}")
                raise GeolocationError(POSITION_UNAVAILABLE) from e

    def disconnect(self):
        """Disconnect from the device and drop all watches."""
        with self._lock:
            watch_ids = list(self._watches)
        for watch_id in watch_ids:
            self.clear_watch(watch_id)
        with self._connect_lock:
            if self.interface:
                try:
                    self.interface.close()
                    logger.info("Disconnected from Meshtastic device")
                except Exception as e:
                    logger.debug(f"Error closing interface: {e}")
                finally:
                    self.interface = None

    def _local_node(self) -> Dict[str, Any]:
        return self.interface.getMyNodeInfo() or {}

    def get_current_position(
        self,
        enable_high_accuracy: bool,
        timeout: float,
        maximum_age: float,
    ) -> RawReading:
        self.connect()
        logger.debug(
            f"Position request (high_accuracy={enable_high_accuracy}, "
            f"timeout={timeout}s, maximum_age={maximum_age}s)"
        )

        node_info = self._local_node()
        position_data = node_info.get("position", {})
        known = reading_from_position(position_data, self.clock())
        # A fix without its own time has unknown age and is never reused
        has_time = bool(position_data.get("time") or position_data.get("timestamp"))
        if known and has_time and self.clock() - known.timestamp <= maximum_age:
            return known

        # Wait for a fresh fix from the local node
        my_num = node_info.get("num")
        received: Dict[str, RawReading] = {}
        got_fix = threading.Event()

        def on_position(packet, interface):
            if my_num is not None and packet.get("from") != my_num:
                return
            reading = reading_from_position(
                packet.get("decoded", {}).get("position", {}), self.clock()
            )
            if reading:
                received["reading"] = reading
                got_fix.set()

        pub.subscribe(on_position, POSITION_TOPIC)
        try:
            got_fix.wait(timeout)
        finally:
            pub.unsubscribe(on_position, POSITION_TOPIC)

        if "reading" in received:
            return received["reading"]
        if known is None:
            raise GeolocationError(POSITION_UNAVAILABLE)
        raise GeolocationError(TIMEOUT)

    def watch_position(self, on_reading, on_error, options: Dict[str, Any]) -> int:
        self.connect()
        my_num = self._local_node().get("num")

        def on_position(packet, interface):
            if my_num is not None and packet.get("from") != my_num:
                return
            try:
                reading = reading_from_position(
                    packet.get("decoded", {}).get("position", {}), self.clock()
                )
                if reading is None:
                    on_error(GeolocationError(POSITION_UNAVAILABLE))
                    return
                on_reading(reading)
            except Exception as e:
                logger.error(f"Error processing position message: {e}")

        with self._lock:
            watch_id = self._next_watch_id
            self._next_watch_id += 1
            # pubsub keeps weak references; the dict holds the listener alive
            self._watches[watch_id] = on_position
        pub.subscribe(on_position, POSITION_TOPIC)
        logger.info(f"Watching Meshtastic positions (watch {watch_id})")
        return watch_id

    def clear_watch(self, watch_id: int):
        with self._lock:
            listener = self._watches.pop(watch_id, None)
        if listener and pub:
            pub.unsubscribe(listener, POSITION_TOPIC)
