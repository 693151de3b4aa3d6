# src/odyssey/store/kv.py
"""
Durable key-value storage (SQLite + platformdirs).

Every logical entity of the decision core is persisted as ONE JSON document
under a well-known key:

    hydration_storage         -> today's HydrationState
    hydration_window_config   -> {"start": 8, "end": 22}
    odyssey_nudge_history     -> [NudgeRecord, ...]
    odyssey_calendar_events   -> [CalendarEvent, ...]   (written by the calendar owner)

Callers own encoding/decoding; the store only moves strings around. Any
failure surfaces as `StoreError` so callers can log it and fall back to their
in-memory state.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Dict, Optional, Protocol

from platformdirs import user_data_dir

from odyssey.core.errors import StoreError

logger = logging.getLogger(__name__)

HYDRATION_STORAGE_KEY = "hydration_storage"
HYDRATION_WINDOW_KEY = "hydration_window_config"
NUDGE_HISTORY_KEY = "odyssey_nudge_history"
CALENDAR_EVENTS_KEY = "odyssey_calendar_events"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


# ============================================================================
# Paths
# ============================================================================

def _get_data_dir() -> Path:
    """
    Return the platform-specific user data directory for the 'odyssey' app.

    Examples
    --------
    macOS:   ~/Library/Application Support/odyssey/
    Linux:   ~/.local/share/odyssey/
    Windows: C:\\Users\\<user>\\AppData\\Local\\odyssey\\
    """
    data_dir = Path(user_data_dir(appname="odyssey"))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _get_db_path() -> Path:
    env_path = os.getenv("ODYSSEY_STORE_DB")
    if env_path:
        return Path(env_path).expanduser()
    return _get_data_dir() / "odyssey.db"


# ============================================================================
# SQLite implementation
# ============================================================================

class SQLiteKeyValueStore:
    """
    One table, one row per key. Connections are short-lived: open, do the
    thing, close.
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else _get_db_path()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the kv table if it does not exist. Safe to call repeatedly."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                conn.commit()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"could not initialise store at {self.db_path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT value FROM kv_entries WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"read of {key!r} failed: {exc}") from exc
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO kv_entries (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"write of {key!r} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"delete of {key!r} failed: {exc}") from exc


class InMemoryKeyValueStore:
    """Dict-backed store for tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


def open_default_store() -> SQLiteKeyValueStore:
    store = SQLiteKeyValueStore()
    store.init_db()
    logger.info("using key-value store at %s", store.db_path)
    return store


__all__ = [
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "InMemoryKeyValueStore",
    "open_default_store",
    "HYDRATION_STORAGE_KEY",
    "HYDRATION_WINDOW_KEY",
    "NUDGE_HISTORY_KEY",
    "CALENDAR_EVENTS_KEY",
]
