"""Database schema and functions for application settings."""

import logging
import sqlite3
from typing import Optional, Any

from .db_config import get_db

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS = [
    ("startup_poll_interval_seconds", "2", "Seconds between port probes while a worker boots"),
    ("startup_poll_attempts", "60", "Port probes before a worker start is declared timed out"),
    ("job_poll_interval_seconds", "1", "Seconds between job status polls on asynchronous workers"),
    ("job_poll_attempts", "180", "Status polls before a generation job is declared timed out"),
    ("probe_timeout_seconds", "2", "Timeout of a single connectivity probe"),
    ("request_timeout_seconds", "600", "Timeout of a synchronous generation request"),
    ("stop_grace_seconds", "0.1", "Seconds to wait after killing a worker before forgetting it"),
    ("log_buffer_size", "500", "Number of console log lines kept in memory"),
]


def init_settings_table():
    """Initialize settings table schema."""
    with get_db() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                description TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        for key, value, description in DEFAULT_SETTINGS:
            conn.execute("""
                INSERT OR IGNORE INTO settings (key, value, description)
                VALUES (?, ?, ?)
            """, (key, value, description))


def get_setting(key: str, default: Any = None) -> Optional[str]:
    """
    Get a setting value by key.

    Args:
        key: Setting key
        default: Default value if setting not found

    Returns:
        Setting value as string, or default if not found
    """
    try:
        with get_db() as conn:
            cursor = conn.execute("""
                SELECT value FROM settings WHERE key = ?
            """, (key,))
            row = cursor.fetchone()
            return row["value"] if row else default
    except sqlite3.OperationalError as e:
        # Table not created yet (settings read before startup)
        logger.debug(f"Settings unavailable, using default for '{key}': {e}")
        return default


def get_setting_int(key: str, default: int = 0) -> int:
    """
    Get a setting value as integer.

    Args:
        key: Setting key
        default: Default value if setting not found or invalid

    Returns:
        Setting value as integer
    """
    value = get_setting(key)
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def get_setting_float(key: str, default: Optional[float] = None) -> Optional[float]:
    """
    Get a setting value as float.

    Args:
        key: Setting key
        default: Default value if setting not found or invalid

    Returns:
        Setting value as float, or default if empty/invalid
    """
    value = get_setting(key)
    if not value or value.strip() == "":
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def set_setting(key: str, value: str, description: Optional[str] = None) -> None:
    """
    Set or update a setting value.

    Args:
        key: Setting key
        value: Setting value (will be stored as string)
        description: Optional description of the setting
    """
    with get_db() as conn:
        if description is not None:
            conn.execute("""
                INSERT INTO settings (key, value, description, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    description = excluded.description,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, str(value), description))
        else:
            conn.execute("""
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, str(value)))


def get_all_settings() -> dict:
    """
    Get all settings as a dictionary.

    Returns:
        Dictionary of all settings {key: value}
    """
    with get_db() as conn:
        cursor = conn.execute("SELECT key, value FROM settings")
        return {row["key"]: row["value"] for row in cursor.fetchall()}
