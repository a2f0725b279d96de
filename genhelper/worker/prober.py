"""ReadinessProber - make sure a worker answers on its port before use.

Distinguishes three cases so concurrent requests never double-launch:
- already answering (possibly started outside the helper): return at once
- booting (registered but not answering yet): wait for it
- installed but stopped: start it, then wait
Anything else cannot be booted and fails with NotInstalled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..config import Timings
from .errors import NotInstalled, StartupTimeout
from .protocol import WorkerHandle, WorkerStatus
from .state import HelperState
from .supervisor import WorkerSupervisor
from .utils import probe_port

logger = logging.getLogger(__name__)

PortProbe = Callable[[int], Awaitable[bool]]


class ReadinessProber:
    def __init__(
        self,
        state: HelperState,
        supervisor: WorkerSupervisor,
        timings: Optional[Timings] = None,
        probe: Optional[PortProbe] = None,
    ):
        self.state = state
        self.supervisor = supervisor
        self.timings = timings or Timings()
        self._probe = probe or self._probe_http

    async def _probe_http(self, port: int) -> bool:
        return await asyncio.to_thread(probe_port, port, self.timings.probe_timeout)

    async def _wait_for_port(self, name: str, port: int, handle: Optional[WorkerHandle] = None) -> None:
        """
        Poll the port on a fixed interval until it answers or attempts run out.

        When ``handle`` is the process this call launched, stop early once it
        has exited.
        """
        attempts = self.timings.startup_poll_attempts
        interval = self.timings.startup_poll_interval

        for attempt in range(1, attempts + 1):
            await asyncio.sleep(interval)
            if await self._probe(port):
                logger.info(f"Worker {name} answering on port {port} after {attempt} probe(s)")
                self.state.log(name, f"Port {port} is answering")
                return
            if handle is not None and not handle.is_alive():
                logger.warning(f"Worker {name} exited after {attempt} probe(s) without answering")
                self.state.log(name, f"Process exited before answering on port {port}")
                raise StartupTimeout(name, port, attempt * interval)

        self.state.log(name, f"Startup timed out waiting for port {port}")
        raise StartupTimeout(name, port, attempts * interval)

    async def ensure_running(self, name: str, port: Optional[int] = None) -> None:
        """
        Block until the worker answers on its port.

        Raises:
            NotInstalled: Worker is idle, failed or still installing
            StartupTimeout: Worker never answered within the poll window
                or the process it launched exited first
            AlreadyRunning / NotInstalled / WorkerLaunchFailure from the
                supervisor, unchanged
        """
        if port is None:
            port = self.state.descriptor(name).port

        if await self._probe(port):
            self.state.log(name, f"Port {port} already answering, skipping start")
            return

        status, _ = self.state.resolve_status(name)

        if status == WorkerStatus.RUNNING:
            self.state.log(name, "Process is booting, waiting for port")
            await self._wait_for_port(name, port)
            return

        if status != WorkerStatus.READY:
            self.state.log(name, f"Cannot start worker in state '{status.value}'")
            raise NotInstalled(name)

        self.state.log(name, "Starting worker...")
        handle = self.supervisor.start(name)
        await self._wait_for_port(name, port, handle)
