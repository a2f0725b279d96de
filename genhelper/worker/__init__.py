"""Local worker lifecycle and job orchestration.

Each generative model runs as its own Python subprocess with its own virtual
environment and HTTP port. This package installs, starts, stops and talks to
those workers.

Key components:
- catalog: WorkerDescriptor table for the six workers
- installer: InstallerPipeline, resumable clone/venv/pip install
- supervisor: WorkerSupervisor, process start/stop and output capture
- prober: ReadinessProber, start-on-demand and port polling
- orchestrator: JobOrchestrator, submit/poll/copy for every capability
- capabilities: per-worker payload builders and reply schemas
- deploy: Deployer, background install of all workers
- helper: Helper, wires everything around one HelperState
"""

from .errors import HelperError
from .helper import Helper, get_helper, set_helper
from .protocol import LogEntry, WorkerHandle, WorkerStatus
from .state import HelperState

__all__ = [
    "Helper",
    "HelperError",
    "HelperState",
    "LogEntry",
    "WorkerHandle",
    "WorkerStatus",
    "get_helper",
    "set_helper",
]
