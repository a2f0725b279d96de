"""Deployer - full install of every worker, run in the background."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..config import get_output_dir
from .errors import DeployInProgress, HelperError, MissingPrerequisites
from .installer import InstallerPipeline, check_prerequisites
from .state import HelperState
from .tasks import TaskSupervisor

logger = logging.getLogger(__name__)

DEPLOY_TASK_NAME = "deploy"
OUTPUT_SUBDIRS = ("images", "models", "audio", "voice")

PipelineFactory = Callable[[str], InstallerPipeline]


class Deployer:
    def __init__(
        self,
        state: HelperState,
        tasks: TaskSupervisor,
        prerequisites: Callable[[], str] = check_prerequisites,
        pipeline_factory: Optional[PipelineFactory] = None,
    ):
        self.state = state
        self.tasks = tasks
        self._prerequisites = prerequisites
        self._pipeline_factory = pipeline_factory or (
            lambda python: InstallerPipeline(state, python)
        )

    @property
    def in_progress(self) -> bool:
        return self.tasks.active(DEPLOY_TASK_NAME) > 0

    def run_deploy(self) -> None:
        """
        Schedule a full deployment and return immediately.

        Raises:
            DeployInProgress: a deployment task is still running
        """
        if self.in_progress:
            raise DeployInProgress()

        self.state.log_system("========================================")
        self.state.log_system("Starting deployment")
        self.state.log_system("========================================")
        self.tasks.spawn(self.full_install(), name=DEPLOY_TASK_NAME)

    async def full_install(self) -> List[str]:
        """
        Install every worker in catalog order.

        Returns:
            Names of workers whose install succeeded
        """
        total = len(self.state.workers) + 1
        self.state.log_system(f"[1/{total}] Checking environment...")
        try:
            python = self._prerequisites()
        except MissingPrerequisites as e:
            for item in e.missing:
                self.state.log_system(f"Missing prerequisite: {item}")
            self.state.log_system("Deployment aborted")
            logger.error(f"Deployment aborted: {e}")
            return []
        self.state.log_system(f"Using Python: {python}")

        pipeline = self._pipeline_factory(python)
        installed = []
        for i, name in enumerate(self.state.workers, start=2):
            self.state.log_system(f"[{i}/{total}] installing {name}")
            try:
                await pipeline.install(name)
                installed.append(name)
            except HelperError as e:
                # One broken worker does not block the others
                self.state.log_system(f"{name} failed: {e.message}")
                logger.error(f"Install of {name} failed: {e}")

        output_dir = get_output_dir(self.state.helper_dir)
        for sub in OUTPUT_SUBDIRS:
            (output_dir / sub).mkdir(parents=True, exist_ok=True)

        self.state.log_system("========================================")
        self.state.log_system(
            f"Deployment finished: {len(installed)}/{len(self.state.workers)} workers installed"
        )
        self.state.log_system("========================================")
        return installed
