"""Map helper errors onto HTTP error responses."""

import logging

from fastapi import HTTPException

from ..models.base import ErrorDetail
from ...worker.errors import (
    AlreadyRunning,
    ArtifactReadFailure,
    DeployInProgress,
    GenerationTimeout,
    HelperError,
    InstallInProgress,
    InvalidWorkerResponse,
    NotInstalled,
    NotRunning,
    StartupTimeout,
    UnknownWorker,
    WorkerRequestFailure,
)

logger = logging.getLogger(__name__)

# First match wins; anything unlisted is a 500
STATUS_CODES = (
    (UnknownWorker, 404),
    ((AlreadyRunning, NotRunning, NotInstalled, DeployInProgress, InstallInProgress), 409),
    ((StartupTimeout, GenerationTimeout), 504),
    ((InvalidWorkerResponse, WorkerRequestFailure), 502),
    (ArtifactReadFailure, 422),
)


def status_code_for(error: HelperError) -> int:
    for types, status in STATUS_CODES:
        if isinstance(error, types):
            return status
    return 500


def to_http_exception(error: HelperError) -> HTTPException:
    status = status_code_for(error)
    if status >= 500:
        logger.error(f"{error.code}: {error.message}")
    else:
        logger.warning(f"{error.code}: {error.message}")
    return HTTPException(
        status_code=status,
        detail=ErrorDetail(code=error.code, message=error.message).model_dump(),
    )
