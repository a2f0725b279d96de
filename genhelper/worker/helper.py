"""Helper - wires the lifecycle components around one shared HelperState."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import Timings, get_api_port, get_helper_dir, get_log_path, load_timings
from ..services.system_stats import get_system_usage
from .catalog import list_checkpoints
from .deploy import Deployer
from .orchestrator import JobOrchestrator
from .prober import ReadinessProber
from .state import HelperState
from .supervisor import WorkerSupervisor
from .tasks import TaskSupervisor

logger = logging.getLogger(__name__)


class Helper:
    """
    Owns the state and every component that acts on it.

    All components receive the same HelperState, so the registry and log
    sink are shared without module-level globals.
    """

    def __init__(
        self,
        state: HelperState,
        timings: Optional[Timings] = None,
        api_port: Optional[int] = None,
    ):
        self.state = state
        self.timings = timings or Timings()
        self.api_port = api_port or get_api_port()
        self.tasks = TaskSupervisor()
        self.supervisor = WorkerSupervisor(state, stop_grace=self.timings.stop_grace)
        self.prober = ReadinessProber(state, self.supervisor, self.timings)
        self.orchestrator = JobOrchestrator(state, self.prober, self.timings)
        self.deployer = Deployer(state, self.tasks)

    @classmethod
    def from_config(cls) -> "Helper":
        """Build from environment variables and the settings table."""
        from ..db.settings import get_setting_int

        helper_dir = get_helper_dir()
        state = HelperState.create(
            helper_dir,
            log_capacity=get_setting_int("log_buffer_size", 500),
            log_path=get_log_path(helper_dir),
        )
        return cls(state, timings=load_timings())

    @property
    def helper_dir(self) -> Path:
        return self.state.helper_dir

    def status(self) -> Dict[str, Any]:
        """Aggregate status: every worker in catalog order plus host usage."""
        workers: List[Dict[str, Any]] = []
        for name, descriptor in self.state.workers.items():
            status, pid = self.state.resolve_status(name)
            workers.append({
                "name": name,
                "status": status.value,
                "port": descriptor.port,
                "pid": pid,
                "busy": self.orchestrator.busy(name),
            })

        return {
            "running": True,
            "port": self.api_port,
            "helper_dir": str(self.helper_dir),
            "deploying": self.deployer.in_progress,
            "models": workers,
            **get_system_usage(),
        }

    def checkpoints(self) -> List[str]:
        return list_checkpoints(self.helper_dir)

    async def shutdown(self) -> None:
        """Cancel background work, stop every worker, close the log file."""
        await self.tasks.cancel_all()
        stopped = self.supervisor.stop_all()
        if stopped:
            logger.info(f"Stopped {stopped} worker(s) on shutdown")
        self.state.log_sink.close()


# Global helper instance
_helper: Optional[Helper] = None


def get_helper() -> Helper:
    """Get or create the global helper instance."""
    global _helper
    if _helper is None:
        _helper = Helper.from_config()
    return _helper


def set_helper(helper: Optional[Helper]) -> None:
    """Replace the global instance (None resets it)."""
    global _helper
    _helper = helper
