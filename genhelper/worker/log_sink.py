"""Console log sink shared by every component that reports progress.

Lines are kept in a bounded in-memory ring (oldest evicted first) and
mirrored to an append-only file at the helper root. Lines tagged ``system``
are visible in every filtered view.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import IO, List, Optional

from .protocol import LogEntry

logger = logging.getLogger(__name__)

SYSTEM_TAG = "system"
DEFAULT_CAPACITY = 500


class LogSink:
    """Thread-safe ring buffer of worker-tagged log lines."""

    def __init__(self, log_path: Optional[Path] = None, capacity: int = DEFAULT_CAPACITY):
        self._entries: deque[LogEntry] = deque(maxlen=max(1, capacity))
        self._lock = threading.Lock()  # Guards _entries and _file
        self._file: Optional[IO[str]] = None
        self.log_path = log_path

        if log_path is not None:
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(log_path, "a", encoding="utf-8")
            except OSError as e:
                logger.warning(f"Console log file unavailable at {log_path}: {e}")

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, worker: str, message: str) -> None:
        """Record one line. Never raises for durable-write problems."""
        stamp = datetime.now().strftime("%H:%M:%S")
        entry = LogEntry(worker=worker, time=stamp, message=message)

        with self._lock:
            self._entries.append(entry)
            if self._file is not None:
                try:
                    self._file.write(f"[{stamp}][{worker}] {message}\n")
                    self._file.flush()
                except (OSError, ValueError):
                    # Durable copy is best-effort; the ring always has the line
                    pass

        logger.debug(f"[{worker}] {message}")

    def read(self, worker: Optional[str] = None) -> List[LogEntry]:
        """
        Snapshot of the buffer.

        Args:
            worker: If set, only lines for this worker plus ``system`` lines

        Returns:
            Entries in insertion order
        """
        with self._lock:
            if not worker:
                return list(self._entries)
            return [e for e in self._entries if e.worker in (worker, SYSTEM_TAG)]

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                try:
                    self._file.close()
                except OSError:
                    pass
                self._file = None
