"""Job history API router."""

import logging
import sqlite3
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, Query

from ..models.workers import JobEntry
from ...db.job_logs import get_recent_logs
from ...worker.capabilities import CAPABILITIES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["jobs"])


@router.get("/jobs", response_model=List[JobEntry])
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    capability: Optional[str] = Query(default=None, description="image, mesh, rig, motion, voice or audio"),
    status: Optional[Literal["running", "completed", "failed"]] = Query(default=None),
):
    """
    Recent generation jobs, newest first.

    Returns:
        List of job entries
    """
    if capability and capability not in CAPABILITIES:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_CAPABILITY", "message": f"Unknown capability '{capability}'"},
        )
    try:
        return get_recent_logs(limit=limit, capability=capability, status=status)
    except sqlite3.Error as e:
        logger.error(f"Error reading job history: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"code": "JOBS_ERROR", "message": f"Failed to read job history: {e}"},
        )
