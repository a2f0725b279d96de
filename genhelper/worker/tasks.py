"""Supervised background tasks.

Fire-and-forget work (deployments, installs) is created here so shutdown can
cancel everything still running instead of leaving orphaned coroutines.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Schedule a coroutine and keep a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def active(self, name: Optional[str] = None) -> int:
        """Number of unfinished tasks, optionally only those with this name."""
        return sum(
            1 for t in self._tasks
            if not t.done() and (name is None or t.get_name() == name)
        )

    async def cancel_all(self, timeout: float = 5.0) -> None:
        """Cancel every unfinished task and wait for them to unwind."""
        tasks = [t for t in self._tasks if not t.done()]
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} background task(s) did not stop in {timeout}s")
