"""ProcessRegistry - authoritative map of live worker processes.

Also owns the set of workers whose installation is in flight, so the two
facts that decide ``running`` and ``installing`` are read under one lock.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Set

from .errors import AlreadyRunning
from .protocol import StatusSnapshot, WorkerHandle


class ProcessRegistry:
    """
    Worker name -> live process handle, plus the installing set.

    All methods are atomic with respect to each other. Output readers and
    exit waiters run on their own threads, so a threading lock is used
    rather than an asyncio one.
    """

    def __init__(self):
        self._handles: Dict[str, WorkerHandle] = {}
        self._installing: Set[str] = set()
        self._lock = threading.Lock()

    def register(self, name: str, handle: WorkerHandle) -> None:
        """Add a handle. Raises AlreadyRunning if the name is taken."""
        with self._lock:
            if name in self._handles:
                raise AlreadyRunning(name)
            self._handles[name] = handle

    def lookup(self, name: str) -> Optional[WorkerHandle]:
        with self._lock:
            return self._handles.get(name)

    def remove(self, name: str, handle: Optional[WorkerHandle] = None) -> bool:
        """
        Forget a worker. Idempotent.

        Args:
            name: Worker name
            handle: If given, only remove when the registered handle is this one
                    (an exit waiter must not evict a newer process)

        Returns:
            True if an entry was removed
        """
        with self._lock:
            current = self._handles.get(name)
            if current is None:
                return False
            if handle is not None and current is not handle:
                return False
            del self._handles[name]
            return True

    def names(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def pop_all(self) -> List[WorkerHandle]:
        """Remove and return every handle."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
            return handles

    def begin_install(self, name: str) -> bool:
        """
        Mark a worker as installing.

        Returns:
            False if an install for this worker is already in flight
        """
        with self._lock:
            if name in self._installing:
                return False
            self._installing.add(name)
            return True

    def end_install(self, name: str) -> None:
        with self._lock:
            self._installing.discard(name)

    def is_installing(self, name: str) -> bool:
        with self._lock:
            return name in self._installing

    def snapshot(self, name: str) -> StatusSnapshot:
        """Registry and installing membership read together."""
        with self._lock:
            handle = self._handles.get(name)
            return StatusSnapshot(
                running=handle is not None,
                installing=name in self._installing,
                pid=handle.pid if handle is not None else None,
            )
