"""Worker lifecycle API: status, logs, deploy, start and stop."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..models.workers import (
    ActionResponse,
    CheckpointsResponse,
    LogsResponse,
    StatusResponse,
)
from ...worker import Helper, get_helper
from ...worker.errors import HelperError
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["workers"])


@router.get("/status", response_model=StatusResponse)
async def get_status(helper: Helper = Depends(get_helper)):
    """Status of every worker plus host usage."""
    return helper.status()


@router.get("/logs", response_model=LogsResponse)
async def get_logs(
    model: Optional[str] = Query(
        default=None,
        description="Only this worker's lines (system lines are always included)",
    ),
    helper: Helper = Depends(get_helper),
):
    entries = helper.state.log_sink.read(model or None)
    return {"logs": [e.to_dict() for e in entries]}


@router.post("/deploy", response_model=ActionResponse)
async def deploy(helper: Helper = Depends(get_helper)):
    """
    Install every worker in the background.

    Returns immediately; follow progress through /api/logs.
    """
    try:
        helper.deployer.run_deploy()
    except HelperError as e:
        raise to_http_exception(e)
    return ActionResponse(message="Deployment started")


@router.post("/start", response_model=ActionResponse)
async def start_worker(
    name: str = Query(..., description="Worker name"),
    helper: Helper = Depends(get_helper),
):
    """Launch an installed worker. Does not wait for its port to answer."""
    try:
        handle = helper.supervisor.start(name)
    except HelperError as e:
        raise to_http_exception(e)
    return ActionResponse(message=f"{name} started (pid {handle.pid})")


@router.post("/stop", response_model=ActionResponse)
async def stop_worker(
    name: str = Query(..., description="Worker name"),
    helper: Helper = Depends(get_helper),
):
    try:
        helper.state.descriptor(name)
        await asyncio.to_thread(helper.supervisor.stop, name)
    except HelperError as e:
        raise to_http_exception(e)
    return ActionResponse(message=f"{name} stopped")


@router.post("/stop-all", response_model=ActionResponse)
async def stop_all_workers(helper: Helper = Depends(get_helper)):
    stopped = helper.supervisor.stop_all()
    return ActionResponse(message=f"Stopped {stopped} worker(s)")


@router.get("/checkpoints", response_model=CheckpointsResponse)
async def get_checkpoints(helper: Helper = Depends(get_helper)):
    """Checkpoint files available to the image worker."""
    try:
        return {"checkpoints": helper.checkpoints()}
    except OSError as e:
        logger.error(f"Failed to list checkpoints: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"code": "CHECKPOINTS_ERROR", "message": f"Failed to list checkpoints: {e}"},
        )
