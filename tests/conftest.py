"""Shared fixtures: scripted geolocation provider and controllable clock."""

import random
import pytest

from hazard_locator.database import Database
from hazard_locator.device import GeolocationProvider
from hazard_locator.errors import GeolocationError, POSITION_UNAVAILABLE
from hazard_locator.position import RawReading
from hazard_locator.service import LocationService

START_TIME = 1700000000.0


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProvider(GeolocationProvider):
    """
    Provider answering get_current_position() from a script.

    Each response is a RawReading (returned), an exception (raised) or a
    callable (called, its result returned). An exhausted script raises
    POSITION_UNAVAILABLE.
    """

    name = "fake"

    def __init__(self, responses=None, permission=None, available=True, secure=True):
        self.responses = list(responses or [])
        self.permission = permission
        self.available = available
        self.secure = secure
        self.calls = []
        self.watchers = {}
        self.cleared = []
        self._next_watch_id = 1

    def is_available(self):
        return self.available

    def is_secure_context(self):
        return self.secure

    def supports_permission_query(self):
        return self.permission is not None

    def query_permission(self):
        return self.permission

    def get_current_position(self, enable_high_accuracy, timeout, maximum_age):
        self.calls.append((enable_high_accuracy, timeout, maximum_age))
        if not self.responses:
            raise GeolocationError(POSITION_UNAVAILABLE)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response

    def watch_position(self, on_reading, on_error, options):
        watch_id = self._next_watch_id
        self._next_watch_id += 1
        self.watchers[watch_id] = (on_reading, on_error, options)
        return watch_id

    def clear_watch(self, watch_id):
        self.watchers.pop(watch_id, None)
        self.cleared.append(watch_id)

    def emit(self, reading):
        for on_reading, _, _ in list(self.watchers.values()):
            on_reading(reading)

    def emit_error(self, error):
        for _, on_error, _ in list(self.watchers.values()):
            on_error(error)


def reading(lat=19.07, lon=72.87, accuracy=8.0, **kwargs):
    return RawReading(latitude=lat, longitude=lon, accuracy=accuracy, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    """Create temporary database."""
    db_path = tmp_path / "test.db"
    return Database(db_path=db_path)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_service(db, clock):
    """Factory building services over the shared store and clock."""

    def _make(provider=None, **kwargs):
        kwargs.setdefault("store", db)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", random.Random(7))
        return LocationService(provider=provider, **kwargs)

    return _make
