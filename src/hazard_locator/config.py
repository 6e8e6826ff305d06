"""Configuration management."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
# Try to load from standard locations
env_paths = [
    Path("/var/lib/hazard-locator/.env"),  # Production location
    Path(".env"),  # Current directory
    Path(__file__).parent.parent.parent / ".env",  # Project root
]
for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

# Base directory for data
DATA_DIR = Path(os.getenv("DATA_DIR", "/var/lib/hazard-locator"))
try:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
except (PermissionError, OSError):
    # No write access (e.g. during tests): use the temp directory
    import tempfile
    DATA_DIR = Path(tempfile.gettempdir()) / "hazard-locator"
    DATA_DIR.mkdir(parents=True, exist_ok=True)

# Key/value store path
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "locator.db")))

# Serial port of the Meshtastic radio used as GPS source
SERIAL_PORT = os.getenv("SERIAL_PORT", "/dev/ttyACM0")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Continuous tracking when running the console script
WATCH_ENABLED = os.getenv("WATCH_ENABLED", "false").lower() == "true"

# Cache lifetimes (seconds)
CACHE_TIMEOUT_SECONDS = float(os.getenv("CACHE_TIMEOUT_SECONDS", "300"))
PERMISSION_CACHE_SECONDS = float(os.getenv("PERMISSION_CACHE_SECONDS", "3600"))

# Accuracy thresholds (meters)
# ACCURACY_THRESHOLD: readings at or below are flagged high accuracy
# FALLBACK_ACCURACY: accuracy assigned to synthesized positions and to
#   readings that report no accuracy at all
# MAX_PLAUSIBLE_ACCURACY: readings above are network noise and rejected
ACCURACY_THRESHOLD_METERS = float(os.getenv("ACCURACY_THRESHOLD_METERS", "100"))
FALLBACK_ACCURACY_METERS = 10000.0
MAX_PLAUSIBLE_ACCURACY_METERS = 100000.0

# Extra time given to a provider beyond the requested timeout before the
# call is abandoned
STRATEGY_TIMEOUT_GRACE_SECONDS = float(os.getenv("STRATEGY_TIMEOUT_GRACE_SECONDS", "2"))

# Acquisition ladder: (name, enable_high_accuracy, timeout s, maximum_age s)
STRATEGIES = [
    ("HighAccuracy", True, 10.0, 30.0),
    ("Balanced", True, 20.0, 120.0),
    ("PowerSaving", False, 30.0, 300.0),
]
REFRESH_STRATEGY = ("Refresh", True, 30.0, 0.0)

# Watch mode
WATCH_MIN_DISTANCE_METERS = 50.0
WATCH_STALE_SECONDS = 300.0
WATCH_DEFAULT_TIMEOUT = 30.0
WATCH_DEFAULT_MAXIMUM_AGE = 15.0

# "Recent" position for is_position_recent()
RECENT_MAX_ACCURACY_METERS = 1000.0

# Nominatim reverse geocoding API (disabled: offline reference lookup only)
NOMINATIM_ENABLED = os.getenv("NOMINATIM_ENABLED", "false").lower() == "true"
NOMINATIM_API_URL = "https://nominatim.openstreetmap.org/reverse"
NOMINATIM_RATE_LIMIT_SECONDS = 1  # Nominatim requires max 1 request per second
NOMINATIM_TIMEOUT = 5  # seconds

# Reference coastal locations used for fallback positions and offline
# reverse geocoding
FALLBACK_LOCATIONS = [
    {"lat": 19.0760, "lng": 72.8777, "name": "Mumbai, Maharashtra"},
    {"lat": 13.0827, "lng": 80.2707, "name": "Chennai, Tamil Nadu"},
    {"lat": 15.2993, "lng": 74.1240, "name": "Panaji, Goa"},
    {"lat": 11.9416, "lng": 79.8083, "name": "Puducherry"},
]
REFERENCE_LOCATIONS = [
    {"lat": 19.0760, "lng": 72.8777, "address": "Mumbai, Maharashtra", "district": "Mumbai", "state": "Maharashtra"},
    {"lat": 13.0827, "lng": 80.2707, "address": "Chennai, Tamil Nadu", "district": "Chennai", "state": "Tamil Nadu"},
    {"lat": 15.2993, "lng": 74.1240, "address": "Panaji, Goa", "district": "North Goa", "state": "Goa"},
    {"lat": 11.9416, "lng": 79.8083, "address": "Puducherry", "district": "Puducherry", "state": "Puducherry"},
    {"lat": 22.5726, "lng": 88.3639, "address": "Kolkata, West Bengal", "district": "Kolkata", "state": "West Bengal"},
]
REFERENCE_COUNTRY = "India"

# Project information
PROJECT_NAME = "Coastal Hazard Locator"
