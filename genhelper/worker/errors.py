"""Error taxonomy for worker lifecycle and job orchestration.

Every error carries a stable ``code`` that the API layer returns to callers
alongside the human-readable message.
"""

from __future__ import annotations

from typing import Optional


class HelperError(Exception):
    """Base class for all helper errors."""

    code = "HELPER_ERROR"

    def __init__(self, message: str, worker: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.worker = worker


class UnknownWorker(HelperError):
    code = "UNKNOWN_WORKER"

    def __init__(self, name: str):
        super().__init__(f"Unknown worker '{name}'", worker=name)


class AlreadyRunning(HelperError):
    code = "ALREADY_RUNNING"

    def __init__(self, name: str):
        super().__init__(f"Worker '{name}' is already running", worker=name)


class NotRunning(HelperError):
    code = "NOT_RUNNING"

    def __init__(self, name: str):
        super().__init__(f"Worker '{name}' is not running", worker=name)


class NotInstalled(HelperError):
    code = "NOT_INSTALLED"

    def __init__(self, name: str):
        super().__init__(f"Worker '{name}' is not installed", worker=name)


class StartupTimeout(HelperError):
    code = "STARTUP_TIMEOUT"

    def __init__(self, name: str, port: int, waited_seconds: float):
        super().__init__(
            f"Worker '{name}' did not answer on port {port} "
            f"within {waited_seconds:.0f}s",
            worker=name,
        )
        self.port = port


class GenerationTimeout(HelperError):
    code = "GENERATION_TIMEOUT"

    def __init__(self, name: str, job_id: str, attempts: int):
        super().__init__(
            f"Job '{job_id}' on worker '{name}' did not complete "
            f"after {attempts} status polls",
            worker=name,
        )
        self.job_id = job_id


class InvalidWorkerResponse(HelperError):
    code = "INVALID_WORKER_RESPONSE"


class WorkerRequestFailure(HelperError):
    """Transport-level failure talking to a worker (refused, HTTP error)."""

    code = "WORKER_REQUEST_FAILED"


class ArtifactReadFailure(HelperError):
    code = "ARTIFACT_READ_FAILED"


class InstallStepFailure(HelperError):
    code = "INSTALL_STEP_FAILED"

    def __init__(self, name: str, step: str, returncode: Optional[int] = None, detail: str = ""):
        message = f"Install step '{step}' failed for worker '{name}'"
        if returncode is not None:
            message += f" (exit code {returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message, worker=name)
        self.step = step
        self.returncode = returncode


class MissingPrerequisites(HelperError):
    code = "MISSING_PREREQUISITES"

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing prerequisites: {', '.join(missing)}")
        self.missing = list(missing)


class DeployInProgress(HelperError):
    code = "DEPLOY_IN_PROGRESS"

    def __init__(self):
        super().__init__("A deployment is already in progress")


class InstallInProgress(HelperError):
    code = "INSTALL_IN_PROGRESS"

    def __init__(self, name: str):
        super().__init__(f"Worker '{name}' is already being installed", worker=name)


class WorkerLaunchFailure(HelperError):
    """The worker's interpreter could not be executed."""

    code = "WORKER_LAUNCH_FAILED"

    def __init__(self, name: str, detail: str):
        super().__init__(f"Failed to launch worker '{name}': {detail}", worker=name)
