"""Shared models for worker state.

Workers are third-party servers; the helper only sees:
- GET  /            -> connectivity probe (any HTTP answer counts)
- POST <submit>     -> capability-specific generation request
- GET  <status>     -> job history (asynchronous workers only)
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class WorkerStatus(str, Enum):
    """Derived runtime status of a worker.

    Precedence when several facts hold: running > installing > ready > failed > idle.
    """

    RUNNING = "running"  # Present in the process registry
    INSTALLING = "installing"  # Installer pipeline in flight
    READY = "ready"  # Isolated environment present on disk
    FAILED = "failed"  # Worker root present, environment missing
    IDLE = "idle"  # Nothing on disk


@dataclass
class WorkerHandle:
    """Registry's view of a live worker process."""

    name: str
    proc: subprocess.Popen
    port: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def is_alive(self) -> bool:
        """Check if worker process is still running."""
        return self.proc.poll() is None


@dataclass(frozen=True)
class LogEntry:
    """One line of the console log."""

    worker: str
    time: str  # HH:MM:SS local time
    message: str

    def to_dict(self) -> dict:
        return {"model": self.worker, "time": self.time, "message": self.message}


@dataclass(frozen=True)
class StatusSnapshot:
    """Atomic view of one worker's registry facts."""

    running: bool
    installing: bool
    pid: Optional[int] = None
