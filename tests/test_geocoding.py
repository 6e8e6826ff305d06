"""Tests for reverse geocoding."""

import pytest
import requests
from unittest.mock import Mock, patch

from hazard_locator.geocoding import GeocodingService, nearest_reference


@pytest.mark.parametrize("lat, lon, address", [
    (19.0760, 72.8777, "Mumbai, Maharashtra"),
    (18.5, 73.8, "Mumbai, Maharashtra"),
    (15.4, 73.9, "Panaji, Goa"),
    (12.0, 79.9, "Puducherry"),
    (22.0, 88.0, "Kolkata, West Bengal"),
])
def test_nearest_reference(lat, lon, address):
    assert nearest_reference(lat, lon)["address"] == address


def test_offline_reverse_geocode():
    """Test the offline lookup result shape."""
    result = GeocodingService(use_nominatim=False).reverse_geocode(15.3, 74.1)
    assert result == {
        "address": "Panaji, Goa",
        "district": "North Goa",
        "state": "Goa",
        "country": "India",
        "coordinates": {"latitude": 15.3, "longitude": 74.1},
    }


@patch("hazard_locator.geocoding.requests.get")
def test_offline_does_not_call_api(mock_get):
    GeocodingService(use_nominatim=False).reverse_geocode(15.3, 74.1)
    mock_get.assert_not_called()


@patch("hazard_locator.geocoding.requests.get")
def test_nominatim_success(mock_get):
    """Test address built from a Nominatim response."""
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.json.return_value = {
        "address": {
            "city": "Kochi",
            "state_district": "Ernakulam",
            "state": "Kerala",
            "country": "India",
        }
    }
    mock_get.return_value = mock_response

    result = GeocodingService(use_nominatim=True).reverse_geocode(9.93, 76.26)

    assert result["address"] == "Kochi, Kerala"
    assert result["district"] == "Ernakulam"
    assert result["state"] == "Kerala"
    assert result["country"] == "India"
    mock_get.assert_called_once()


@patch("hazard_locator.geocoding.requests.get")
def test_nominatim_error_falls_back(mock_get):
    """Test API errors fall back to the offline lookup."""
    mock_response = Mock()
    mock_response.status_code = 503
    mock_response.text = "Service Unavailable"
    mock_get.return_value = mock_response

    result = GeocodingService(use_nominatim=True).reverse_geocode(13.0, 80.2)
    assert result["address"] == "Chennai, Tamil Nadu"


@patch("hazard_locator.geocoding.requests.get")
def test_nominatim_timeout_falls_back(mock_get):
    mock_get.side_effect = requests.exceptions.Timeout()
    result = GeocodingService(use_nominatim=True).reverse_geocode(13.0, 80.2)
    assert result["address"] == "Chennai, Tamil Nadu"


@patch("hazard_locator.geocoding.requests.get")
def test_nominatim_empty_address_falls_back(mock_get):
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.json.return_value = {"address": {}}
    mock_get.return_value = mock_response

    result = GeocodingService(use_nominatim=True).reverse_geocode(19.0, 72.8)
    assert result["address"] == "Mumbai, Maharashtra"
