"""WorkerSupervisor - start, stop and reap worker processes.

Each started worker gets three daemon threads: one per output stream that
forwards lines to the log sink, and one waiter that logs the exit and drops
the registry entry.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from typing import IO, Callable, List, Optional

from .errors import AlreadyRunning, NotInstalled, NotRunning, WorkerLaunchFailure
from .protocol import WorkerHandle
from .state import HelperState

logger = logging.getLogger(__name__)


def hidden_process_kwargs() -> dict:
    """Popen flags that keep a child detached and without a console window."""
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {"start_new_session": True}


def pump_lines(stream: IO[bytes], sink: Callable[[str], None]) -> None:
    """Forward every line of a byte stream until EOF."""
    try:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                sink(line)
    except (OSError, ValueError):
        # Stream closed underneath us (process killed)
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


class WorkerSupervisor:
    """Starts workers from their isolated environments and tracks them."""

    def __init__(
        self,
        state: HelperState,
        stop_grace: float = 0.1,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.state = state
        self.stop_grace = stop_grace
        self._popen = popen

    def build_command(self, name: str) -> List[str]:
        descriptor = self.state.descriptor(name)
        python = descriptor.python(self.state.helper_dir)
        return [str(python), *descriptor.launch_args]

    def start(self, name: str) -> WorkerHandle:
        """
        Launch a worker.

        Raises:
            AlreadyRunning: Worker already registered
            NotInstalled: Isolated environment missing
            WorkerLaunchFailure: Interpreter could not be executed
        """
        registry = self.state.registry
        descriptor = self.state.descriptor(name)
        helper_dir = self.state.helper_dir

        if registry.lookup(name) is not None:
            raise AlreadyRunning(name)

        python = descriptor.python(helper_dir)
        if not descriptor.venv_dir(helper_dir).is_dir() or not python.exists():
            raise NotInstalled(name)

        cmd = self.build_command(name)
        env = os.environ.copy()
        env.setdefault("PYTHONUNBUFFERED", "1")
        # The worker must resolve its own venv, not ours
        env.pop("VIRTUAL_ENV", None)

        logger.info(f"Starting worker {name}: {' '.join(cmd)}")
        try:
            proc = self._popen(
                cmd,
                cwd=str(descriptor.root(helper_dir)),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **hidden_process_kwargs(),
            )
        except OSError as e:
            logger.error(f"Failed to launch worker {name}: {e}")
            self.state.log(name, f"Failed to launch process: {e}")
            raise WorkerLaunchFailure(name, str(e)) from e

        handle = WorkerHandle(name=name, proc=proc, port=descriptor.port)
        try:
            registry.register(name, handle)
        except Exception:
            # Lost a start race; this process must not outlive the attempt
            proc.kill()
            raise

        self.state.log(name, f"Process started (pid {proc.pid})")
        self._watch(handle)
        return handle

    def _watch(self, handle: WorkerHandle) -> None:
        name = handle.name
        proc = handle.proc

        def forward(line: str) -> None:
            self.state.log(name, line)

        readers = []
        for stream in (proc.stdout, proc.stderr):
            if stream is None:
                continue
            t = threading.Thread(
                target=pump_lines,
                args=(stream, forward),
                name=f"{name}-output",
                daemon=True,
            )
            t.start()
            readers.append(t)

        def wait_exit() -> None:
            code = proc.wait()
            for t in readers:
                t.join(timeout=2.0)
            self.state.log(name, f"Process exited (code {code})")
            self.state.registry.remove(name, handle)

        threading.Thread(target=wait_exit, name=f"{name}-waiter", daemon=True).start()

    def stop(self, name: str) -> None:
        """
        Kill a worker. The registry entry is removed even if the kill fails.

        Raises:
            NotRunning: Worker not registered
        """
        handle = self.state.registry.lookup(name)
        if handle is None:
            raise NotRunning(name)

        try:
            handle.proc.kill()
        except OSError as e:
            logger.warning(f"Failed to kill worker {name}: {e}")
        self.state.log(name, "Stop signal sent")

        time.sleep(self.stop_grace)
        self.state.registry.remove(name, handle)

    def stop_all(self) -> int:
        """Kill every registered worker. Returns how many were signalled."""
        handles = self.state.registry.pop_all()
        for handle in handles:
            try:
                handle.proc.kill()
            except OSError as e:
                logger.warning(f"Failed to kill worker {handle.name}: {e}")
            self.state.log(handle.name, "Stop signal sent")
        return len(handles)

    def running(self) -> List[str]:
        return self.state.registry.names()

    def lookup(self, name: str) -> Optional[WorkerHandle]:
        return self.state.registry.lookup(name)
