"""Key/value stores for cached location state."""

import json
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Any, Dict
from contextlib import contextmanager

from .config import DB_PATH

logger = logging.getLogger(__name__)

# Store keys
LAST_KNOWN_LOCATION_KEY = "last_known_location"
PERMISSION_STATUS_KEY = "location_permission_status"


class Store:
    """
    Minimal typed key/value interface used by the location service.

    Values are JSON-serializable objects. get() returns None for missing keys.
    """

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any):
        raise NotImplementedError

    def delete(self, key: str):
        raise NotImplementedError


class MemoryStore(Store):
    """Process-local store, lost on restart."""

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._values.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any):
        # Stored as JSON so both stores hand back equal, independent copies
        raw = json.dumps(value)
        with self._lock:
            self._values[key] = raw

    def delete(self, key: str):
        with self._lock:
            self._values.pop(key, None)


class Database(Store):
    """SQLite-backed store surviving process restarts."""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            # WAL mode provides better concurrency and crash recovery
            conn.execute("PRAGMA journal_mode=WAL")
            # Full sync for data integrity (slower but safer for power loss)
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
            logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """
        Get database connection with proper error handling.

        Each operation opens its own connection, so the store can be used
        from provider callback threads as well as the caller's thread.
        """
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Any]:
        """Get a JSON value by key, None if missing or unreadable."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT value FROM system_state
                WHERE key = ?
            """, (key,))
            row = cursor.fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except ValueError as e:
            logger.warning(f"Discarding unreadable value for {key}: {e}")
            return None

    def set(self, key: str, value: Any):
        """Insert or replace a JSON value."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO system_state (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, json.dumps(value)))
            conn.commit()

    def delete(self, key: str):
        with self._get_connection() as conn:
            conn.execute("DELETE FROM system_state WHERE key = ?", (key,))
            conn.commit()
