"""Tests for position records, classification and distance."""

import math
import pytest

from hazard_locator.position import (
    Position,
    RawReading,
    classify_accuracy,
    format_position,
    haversine_distance,
    validate_reading,
)


@pytest.mark.parametrize("accuracy, quality, source", [
    (3, "excellent", "GPS"),
    (10, "excellent", "GPS"),
    (10.5, "very_good", "GPS"),
    (50, "very_good", "GPS"),
    (100, "good", "GPS/GLONASS"),
    (500, "fair", "WiFi/Cell"),
    (1000, "poor", "WiFi/Cell"),
    (2000, "poor", "WiFi/Cell"),
    (2000.1, "very_poor", "Network/IP"),
    (50000, "very_poor", "Network/IP"),
])
def test_classify_accuracy(accuracy, quality, source):
    """Test inclusive accuracy buckets."""
    assert classify_accuracy(accuracy) == (quality, source)


def test_classify_missing_accuracy():
    assert classify_accuracy(None) == ("very_poor", "Unknown")


def test_format_position():
    """Test formatting of a device reading."""
    raw = RawReading(latitude=13.08, longitude=80.27, accuracy=42.0, altitude=5.0, timestamp=1700000000.0)
    pos = format_position(raw, now=1700000005.0)

    assert pos.latitude == 13.08
    assert pos.longitude == 80.27
    assert pos.quality == "very_good"
    assert pos.source == "GPS"
    assert pos.is_high_accuracy
    assert not pos.is_fallback
    assert pos.fallback_location_name is None
    assert pos.altitude == 5.0
    assert pos.heading is None
    assert pos.cache_time == 1700000005.0
    assert pos.timestamp.startswith("2023-11-14T22:13:20")


def test_format_position_threshold():
    """Test that is_high_accuracy follows the configured threshold."""
    raw = RawReading(latitude=1.0, longitude=2.0, accuracy=150.0)
    assert not format_position(raw, now=0.0).is_high_accuracy
    assert format_position(raw, now=0.0, accuracy_threshold=200).is_high_accuracy


def test_format_position_without_accuracy():
    """Test that a missing accuracy gets the large default."""
    pos = format_position(RawReading(latitude=1.0, longitude=2.0), now=10.0)
    assert pos.accuracy == 10000
    assert pos.source == "Unknown"
    assert not pos.is_high_accuracy


@pytest.mark.parametrize("raw", [
    None,
    RawReading(latitude="19.0", longitude=72.8, accuracy=5),
    RawReading(latitude=None, longitude=72.8, accuracy=5),
    RawReading(latitude=True, longitude=72.8, accuracy=5),
    RawReading(latitude=math.nan, longitude=72.8, accuracy=5),
    RawReading(latitude=90.5, longitude=72.8, accuracy=5),
    RawReading(latitude=19.0, longitude=-180.1, accuracy=5),
    RawReading(latitude=19.0, longitude=72.8, accuracy=100001),
    RawReading(latitude=19.0, longitude=72.8, accuracy=-1),
])
def test_validate_reading_rejects(raw):
    """Test rejection of unusable readings."""
    assert validate_reading(raw) is not None


@pytest.mark.parametrize("raw", [
    RawReading(latitude=90, longitude=-180, accuracy=5),
    RawReading(latitude=-45.5, longitude=179.9, accuracy=100000),
    RawReading(latitude=0, longitude=0),
])
def test_validate_reading_accepts(raw):
    assert validate_reading(raw) is None


def test_haversine_symmetry_and_zero():
    """Test distance symmetry and zero distance."""
    a = (19.0760, 72.8777)
    b = (13.0827, 80.2707)

    assert haversine_distance(*a, *b) == haversine_distance(*b, *a)
    assert haversine_distance(*a, *a) == 0
    assert haversine_distance(*a, *b) > 0


def test_haversine_known_distances():
    # 0.0001 degree of longitude at the equator is ~11 m
    assert haversine_distance(0, 0, 0, 0.0001) == pytest.approx(11.12, abs=0.01)
    # Mumbai - Chennai is ~1030 km
    assert haversine_distance(19.0760, 72.8777, 13.0827, 80.2707) == pytest.approx(1030000, rel=0.01)


def test_position_dict_round_trip():
    """Test Position serialization round trip."""
    pos = format_position(
        RawReading(latitude=15.2993, longitude=74.124, accuracy=12.5, speed=1.2, heading=90.0),
        now=1700000000.123,
    )
    data = pos.to_dict()
    assert Position.from_dict(data) == pos

    data["unexpected"] = "ignored"
    assert Position.from_dict(data) == pos


def test_position_is_immutable():
    pos = format_position(RawReading(latitude=1.0, longitude=2.0, accuracy=5), now=0.0)
    with pytest.raises(Exception):
        pos.latitude = 3.0
