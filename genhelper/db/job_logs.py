"""Generation job history.

One row per orchestrated job, written when the job starts and completed
when it finishes or fails.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .db_config import get_db


def _utc_now() -> str:
    # Same layout as SQLite datetime() so cleanup comparisons work
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def ensure_table() -> None:
    """Create job_logs table if it doesn't exist."""
    with get_db() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS job_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,

                -- Job identification
                capability TEXT NOT NULL,
                worker TEXT NOT NULL,
                request_id TEXT,

                -- Timing
                started_at DATETIME NOT NULL,
                completed_at DATETIME,
                duration_ms INTEGER,

                -- Outcome
                status TEXT NOT NULL DEFAULT 'running',  -- running, completed, failed
                artifact_path TEXT,
                error_code TEXT,
                error_message TEXT,

                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_job_logs_capability_time
            ON job_logs (capability, started_at DESC)
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_job_logs_status
            ON job_logs (status)
        """)


def create_log(capability: str, worker: str, request_id: Optional[str] = None) -> int:
    """
    Create a job entry when orchestration starts.

    Returns:
        The log ID for completing later
    """
    ensure_table()

    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT INTO job_logs (capability, worker, request_id, started_at, status)
            VALUES (?, ?, ?, ?, 'running')
            """,
            (capability, worker, request_id, _utc_now()),
        )
        return cursor.lastrowid


def complete_log(
    log_id: int,
    duration_ms: int,
    status: str = "completed",
    artifact_path: Optional[str] = None,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
) -> None:
    """Update a job entry when it completes or fails."""
    with get_db() as conn:
        conn.execute(
            """
            UPDATE job_logs SET
                completed_at = ?,
                duration_ms = ?,
                status = ?,
                artifact_path = ?,
                error_code = ?,
                error_message = ?
            WHERE id = ?
            """,
            (
                _utc_now(),
                duration_ms,
                status,
                artifact_path,
                error_code,
                error_message,
                log_id,
            ),
        )


def get_recent_logs(
    limit: int = 100,
    capability: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Get recent jobs, newest first, with optional filtering."""
    ensure_table()

    conditions = []
    params: List[Any] = []

    if capability:
        conditions.append("capability = ?")
        params.append(capability)
    if status:
        conditions.append("status = ?")
        params.append(status)

    where_clause = ""
    if conditions:
        where_clause = "WHERE " + " AND ".join(conditions)

    params.append(limit)

    with get_db() as conn:
        cursor = conn.execute(
            f"""
            SELECT * FROM job_logs
            {where_clause}
            ORDER BY id DESC
            LIMIT ?
            """,
            params,
        )
        return [dict(row) for row in cursor.fetchall()]


def cleanup_old_logs(days: int = 30) -> int:
    """
    Delete jobs older than the given number of days.

    Returns number of deleted rows.
    """
    ensure_table()

    with get_db() as conn:
        cursor = conn.execute(
            """
            DELETE FROM job_logs
            WHERE started_at < datetime('now', ?)
            """,
            (f"-{days} days",),
        )
        return cursor.rowcount
