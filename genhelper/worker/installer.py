"""InstallerPipeline - resumable per-worker installation.

Steps run strictly in order:

    clone -> create_env -> upgrade_tools -> install_heavy
          -> install_requirements -> install_extras -> done

Each step first checks whether its result is already on disk and skips the
work if so, which makes a half-finished install resumable:
- clone is skipped when the worker root exists
- create_env is skipped when venv/ exists
- the pip steps are skipped when their stamp is recorded in venv/.install_steps

A failing step aborts that worker's install; whatever was left on disk shows
up as ``failed`` the next time status is resolved.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config import PYTHON_ENV, get_torch_index_url
from .catalog import WorkerDescriptor
from .errors import InstallInProgress, InstallStepFailure, MissingPrerequisites
from .state import HelperState

logger = logging.getLogger(__name__)

STAMP_FILE = ".install_steps"


class InstallState(str, Enum):
    """Position of a worker in the install sequence."""

    NOT_CLONED = "not_cloned"
    CLONED = "cloned"
    ENV_CREATED = "env_created"
    TOOLS_UPGRADED = "tools_upgraded"
    HEAVY_DEPS_INSTALLED = "heavy_deps_installed"
    REQUIREMENTS_INSTALLED = "requirements_installed"
    EXTRAS_INSTALLED = "extras_installed"
    DONE = "done"


class InstallStep(str, Enum):
    CLONE = "clone"
    CREATE_ENV = "create_env"
    UPGRADE_TOOLS = "upgrade_tools"
    INSTALL_HEAVY = "install_heavy"
    INSTALL_REQUIREMENTS = "install_requirements"
    INSTALL_EXTRAS = "install_extras"


# step -> state reached once it succeeds (or is skipped)
STEP_RESULTS = (
    (InstallStep.CLONE, InstallState.CLONED),
    (InstallStep.CREATE_ENV, InstallState.ENV_CREATED),
    (InstallStep.UPGRADE_TOOLS, InstallState.TOOLS_UPGRADED),
    (InstallStep.INSTALL_HEAVY, InstallState.HEAVY_DEPS_INSTALLED),
    (InstallStep.INSTALL_REQUIREMENTS, InstallState.REQUIREMENTS_INSTALLED),
    (InstallStep.INSTALL_EXTRAS, InstallState.EXTRAS_INSTALLED),
)


@dataclass
class InstallProgress:
    """Progress tracking for one worker installation."""

    worker: str
    started_at: float
    state: InstallState = InstallState.NOT_CLONED
    completed_at: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    ran: List[InstallStep] = field(default_factory=list)
    skipped: List[InstallStep] = field(default_factory=list)


# (worker, cwd, argv) -> return code
CommandRunner = Callable[[str, Path, Sequence[str]], Awaitable[int]]


_PYTHON311_CANDIDATES = (
    r"C:\Python311\python.exe",
    r"C:\Program Files\Python311\python.exe",
    r"C:\Program Files (x86)\Python311\python.exe",
    r"C:\tools\python311\python.exe",
    "/usr/bin/python3.11",
    "/usr/local/bin/python3.11",
    "/opt/homebrew/bin/python3.11",
)


def find_python311() -> Optional[str]:
    """
    Locate a Python 3.11 interpreter for creating worker environments.

    Order: GENHELPER_PYTHON, well-known install paths, python3.11 on PATH.
    """
    override = os.getenv(PYTHON_ENV)
    if override and Path(override).exists():
        return override

    candidates = list(_PYTHON311_CANDIDATES)
    local_app_data = os.getenv("LOCALAPPDATA")
    if local_app_data:
        candidates.append(
            str(Path(local_app_data) / "Programs" / "Python" / "Python311" / "python.exe")
        )
    for candidate in candidates:
        if Path(candidate).exists():
            return candidate

    return shutil.which("python3.11")


def check_prerequisites() -> str:
    """
    Verify git and Python 3.11 are available.

    Returns:
        Path of the Python 3.11 interpreter

    Raises:
        MissingPrerequisites: listing what is absent
    """
    missing = []
    if shutil.which("git") is None:
        missing.append("git")
    python = find_python311()
    if python is None:
        missing.append("python3.11")
    if missing:
        raise MissingPrerequisites(missing)
    return python


class InstallerPipeline:
    """Runs the install sequence for one worker at a time per call."""

    def __init__(
        self,
        state: HelperState,
        base_python: str,
        runner: Optional[CommandRunner] = None,
        torch_index_url: Optional[str] = None,
    ):
        self.state = state
        self.base_python = base_python
        self.torch_index_url = torch_index_url or get_torch_index_url()
        self._run = runner or self._run_command

    async def _run_command(self, worker: str, cwd: Path, argv: Sequence[str]) -> int:
        """Run one external command, streaming merged output to the log sink."""
        logger.info(f"[{worker}] Running: {' '.join(argv)} in {cwd}")

        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env={**os.environ, "PYTHONUNBUFFERED": "1", "PIP_NO_INPUT": "1"},
        )

        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    self.state.log(worker, text)
            return await proc.wait()
        except asyncio.CancelledError:
            # Shutdown or abort: the child must not keep installing
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

    async def _step(self, worker: str, step: InstallStep, cwd: Path, argv: Sequence[str]) -> None:
        try:
            code = await self._run(worker, cwd, argv)
        except OSError as e:
            self.state.log(worker, f"Failed to launch command: {e}")
            raise InstallStepFailure(worker, step.value, detail=str(e)) from e
        if code != 0:
            raise InstallStepFailure(worker, step.value, returncode=code)

    def _stamp_path(self, descriptor: WorkerDescriptor) -> Path:
        return descriptor.venv_dir(self.state.helper_dir) / STAMP_FILE

    def completed_steps(self, descriptor: WorkerDescriptor) -> List[str]:
        """Pip steps recorded as done for the current environment."""
        path = self._stamp_path(descriptor)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError):
            return []
        return [s for s in data if isinstance(s, str)] if isinstance(data, list) else []

    def _record_step(self, descriptor: WorkerDescriptor, step: InstallStep) -> None:
        done = self.completed_steps(descriptor)
        if step.value not in done:
            done.append(step.value)
        path = self._stamp_path(descriptor)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(done))

    def _commands(self, descriptor: WorkerDescriptor, step: InstallStep) -> List[List[str]]:
        """External commands for a pip step (may be empty)."""
        root = descriptor.root(self.state.helper_dir)
        python = str(descriptor.python(self.state.helper_dir))
        pip = [python, "-m", "pip", "install"]

        if step == InstallStep.UPGRADE_TOOLS:
            return [pip + ["--upgrade", "pip", "setuptools", "wheel", "-q"]]
        if step == InstallStep.INSTALL_HEAVY:
            if not descriptor.install_torch:
                return []
            return [pip + ["torch", "torchvision", "torchaudio",
                           "--index-url", self.torch_index_url, "-q"]]
        if step == InstallStep.INSTALL_REQUIREMENTS:
            return [
                pip + ["-r", req, "-q"]
                for req in descriptor.requirement_files
                if (root / req).exists()
            ]
        if step == InstallStep.INSTALL_EXTRAS:
            # "-e ." is two arguments
            return [pip + pkg.split() + ["-q"] for pkg in descriptor.extra_packages]
        return []

    _STEP_MESSAGES = {
        InstallStep.UPGRADE_TOOLS: "Upgrading pip...",
        InstallStep.INSTALL_HEAVY: "Installing PyTorch...",
        InstallStep.INSTALL_REQUIREMENTS: "Installing requirements...",
        InstallStep.INSTALL_EXTRAS: "Installing extra packages...",
    }

    async def install(self, name: str) -> InstallProgress:
        """
        Install (or resume installing) one worker.

        Raises:
            InstallInProgress: another install for this worker is in flight
            InstallStepFailure: a step failed; carries the step name
        """
        descriptor = self.state.descriptor(name)
        registry = self.state.registry
        helper_dir = self.state.helper_dir
        root = descriptor.root(helper_dir)
        venv_dir = descriptor.venv_dir(helper_dir)

        if not registry.begin_install(name):
            raise InstallInProgress(name)

        progress = InstallProgress(worker=name, started_at=time.time())
        try:
            for step, reached in STEP_RESULTS:
                if step == InstallStep.CLONE:
                    if root.exists():
                        progress.skipped.append(step)
                    else:
                        self.state.log(name, "Cloning repository...")
                        await self._step(
                            name, step, helper_dir,
                            ["git", "clone", descriptor.repository_url, name],
                        )
                        progress.ran.append(step)

                elif step == InstallStep.CREATE_ENV:
                    if venv_dir.exists():
                        progress.skipped.append(step)
                    else:
                        self.state.log(name, "Creating virtual environment...")
                        await self._step(
                            name, step, root,
                            [self.base_python, "-m", "venv", venv_dir.name],
                        )
                        progress.ran.append(step)

                elif step.value in self.completed_steps(descriptor):
                    progress.skipped.append(step)

                else:
                    commands = self._commands(descriptor, step)
                    if commands:
                        self.state.log(name, self._STEP_MESSAGES[step])
                    for argv in commands:
                        await self._step(name, step, root, argv)
                    self._record_step(descriptor, step)
                    progress.ran.append(step)

                progress.state = reached

            progress.state = InstallState.DONE
            progress.success = True
            self.state.log(name, "Installation complete")
            return progress

        except InstallStepFailure as e:
            progress.error = str(e)
            self.state.log(name, f"Installation failed: {e}")
            raise
        finally:
            progress.completed_at = time.time()
            registry.end_install(name)
