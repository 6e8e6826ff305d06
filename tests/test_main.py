"""Tests for the locator application."""

import logging
import pytest
from unittest.mock import patch

from hazard_locator.errors import GeolocationError, TIMEOUT
from hazard_locator.main import LocatorApp, meshtastic_log_level

from conftest import FakeProvider, reading


def test_acquire_once_logs_position(make_service, caplog):
    """Test a single acquisition with accuracy and address in the log."""
    caplog.set_level("INFO")
    app = LocatorApp(service=make_service(FakeProvider(responses=[reading(lat=13.08, lon=80.27, accuracy=7)])), watch=False)

    position = app.acquire_once()

    assert position.latitude == 13.08
    assert "Excellent GPS accuracy" in caplog.text
    assert "Chennai, Tamil Nadu" in caplog.text


def test_acquire_once_without_geolocation(make_service, caplog):
    app = LocatorApp(service=make_service(None), watch=False)
    assert app.acquire_once() is None
    assert "Cannot acquire position" in caplog.text


def test_start_without_watch_cleans_up(make_service):
    """Test that a one-shot run stops and cleans up the service."""
    service = make_service(FakeProvider(responses=[reading()]))
    app = LocatorApp(service=service, watch=False)

    app.start()

    assert not app.running
    assert service.current_position is None
    assert len(service.subscribers) == 0


def test_start_with_watch_refused(make_service, caplog):
    """Test that a provider refusing to watch ends the run."""

    class Refusing(FakeProvider):
        def watch_position(self, on_reading, on_error, options):
            raise GeolocationError(TIMEOUT)

    service = make_service(Refusing(responses=[reading()]))
    app = LocatorApp(service=service, watch=True)

    with patch("hazard_locator.main.signal.signal"):
        app.start()

    assert "Cannot watch position" in caplog.text
    assert not service.is_watching()


def test_watch_updates_logged(make_service, caplog):
    """Test that watch updates reach the app's subscriber until stop."""
    caplog.set_level("INFO")
    provider = FakeProvider(responses=[reading(lat=19.07, lon=72.87, accuracy=40)])
    service = make_service(provider)
    app = LocatorApp(service=service, watch=True)

    def fake_sleep(seconds):
        provider.emit(reading(lat=15.3, lon=74.1, accuracy=9))
        app.running = False

    with patch("hazard_locator.main.signal.signal"), patch("hazard_locator.main.time.sleep", side_effect=fake_sleep):
        app.start()

    assert "Panaji, Goa" in caplog.text
    assert not service.is_watching()
    assert provider.watchers == {}


@pytest.mark.parametrize("level, expected", [
    (logging.DEBUG, logging.DEBUG),
    (logging.INFO, logging.WARNING),
    (logging.WARNING, logging.WARNING),
    (logging.ERROR, logging.ERROR),
    (logging.CRITICAL, logging.CRITICAL),
])
def test_meshtastic_log_level(level, expected):
    """Test meshtastic is quieted to WARNING but never made louder than LOG_LEVEL."""
    assert meshtastic_log_level(level) == expected


def test_watch_subscriber_does_not_geocode_under_service_lock(make_service):
    """Test that watch updates are queued and geocoded by the main loop."""
    provider = FakeProvider(responses=[reading()])
    service = make_service(provider)
    app = LocatorApp(service=service, watch=True)
    geocoded_on_loop = []

    def fake_sleep(seconds):
        with patch.object(service, "reverse_geocode", side_effect=AssertionError("geocoded in callback")):
            provider.emit(reading(lat=11.94, lon=79.8, accuracy=9))
        app.running = False

    original = service.reverse_geocode

    def record(lat, lon):
        geocoded_on_loop.append(lat)
        return original(lat, lon)

    with patch("hazard_locator.main.signal.signal"), patch("hazard_locator.main.time.sleep", side_effect=fake_sleep):
        with patch.object(service, "reverse_geocode", side_effect=record):
            app.start()

    assert 11.94 in geocoded_on_loop
