"""Shared SQLite configuration for the helper (settings and job history)."""

import sqlite3
from pathlib import Path
from contextlib import contextmanager


def get_db_path() -> Path:
    """Get the database file path at the helper root."""
    from ..config import get_helper_dir
    helper_dir = get_helper_dir()
    helper_dir.mkdir(parents=True, exist_ok=True)
    return helper_dir / "genhelper.db"


@contextmanager
def get_db(timeout: float = 5.0):
    """
    Get database connection context manager.

    Args:
        timeout: Database lock timeout in seconds (default: 5.0)
    """
    conn = sqlite3.connect(
        get_db_path(),
        timeout=timeout,
        check_same_thread=False,  # Reader threads and the event loop share it
    )
    conn.row_factory = sqlite3.Row

    # WAL allows status reads while a job record is being written
    conn.execute("PRAGMA journal_mode=WAL")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
