"""HelperState - the state every lifecycle component shares by reference.

Replaces module-level globals: the registry, the log sink and the worker
catalog live on one object that is handed to the supervisor, installer,
prober and orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from .catalog import WORKERS, WorkerDescriptor, get_descriptor
from .log_sink import SYSTEM_TAG, LogSink
from .protocol import WorkerStatus
from .registry import ProcessRegistry


@dataclass
class HelperState:
    helper_dir: Path
    log_sink: LogSink
    registry: ProcessRegistry = field(default_factory=ProcessRegistry)
    workers: Dict[str, WorkerDescriptor] = field(
        default_factory=lambda: {w.name: w for w in WORKERS}
    )

    @classmethod
    def create(
        cls,
        helper_dir: Path,
        log_capacity: int = 500,
        workers: Optional[Iterable[WorkerDescriptor]] = None,
        log_path: Optional[Path] = None,
    ) -> "HelperState":
        """Build state rooted at helper_dir with its console log file."""
        sink = LogSink(log_path or helper_dir / "console.log", capacity=log_capacity)
        state = cls(helper_dir=helper_dir, log_sink=sink)
        if workers is not None:
            state.workers = {w.name: w for w in workers}
        return state

    def descriptor(self, name: str) -> WorkerDescriptor:
        return get_descriptor(name, self.workers)

    def log(self, worker: str, message: str) -> None:
        self.log_sink.append(worker, message)

    def log_system(self, message: str) -> None:
        self.log_sink.append(SYSTEM_TAG, message)

    def resolve_status(self, name: str) -> Tuple[WorkerStatus, int]:
        """
        Derive a worker's status.

        Registry facts are read in one atomic snapshot, then the filesystem
        is probed. Precedence: running > installing > ready > failed > idle.

        Returns:
            (status, pid) where pid is 0 unless running
        """
        descriptor = self.descriptor(name)
        snap = self.registry.snapshot(name)

        if snap.running:
            return WorkerStatus.RUNNING, snap.pid or 0
        if snap.installing:
            return WorkerStatus.INSTALLING, 0
        if descriptor.venv_dir(self.helper_dir).is_dir():
            return WorkerStatus.READY, 0
        if descriptor.root(self.helper_dir).is_dir():
            return WorkerStatus.FAILED, 0
        return WorkerStatus.IDLE, 0
