"""Generation API: one endpoint per capability, all through the orchestrator."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..models.generation import (
    AudioInput,
    GenerateResponse,
    ImageInput,
    MeshInput,
    MotionInput,
    RigInput,
    VoiceInput,
)
from ...worker import Helper, get_helper
from ...worker.errors import HelperError
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


async def _run(helper: Helper, capability: str, request: BaseModel) -> GenerateResponse:
    try:
        result = await helper.orchestrator.submit(capability, request)
    except HelperError as e:
        raise to_http_exception(e)

    logger.info(
        f"{capability} job {result.job_id} on {result.worker} finished in "
        f"{result.duration_ms}ms -> {result.output}"
    )
    return GenerateResponse(
        request_id=result.job_id,
        processing_time_ms=result.duration_ms,
        output=result.output,
    )


@router.post("/flux/generate", response_model=GenerateResponse)
async def generate_image(request: ImageInput, helper: Helper = Depends(get_helper)):
    """Text to image through ComfyUI."""
    return await _run(helper, "image", request)


@router.post("/hunyuan3d/generate", response_model=GenerateResponse)
async def generate_mesh(request: MeshInput, helper: Helper = Depends(get_helper)):
    """Image to 3D model (GLB)."""
    return await _run(helper, "mesh", request)


@router.post("/unirig/rig", response_model=GenerateResponse)
async def rig_model(request: RigInput, helper: Helper = Depends(get_helper)):
    """Add a skeleton to a GLB model."""
    return await _run(helper, "rig", request)


@router.post("/motion/generate", response_model=GenerateResponse)
async def generate_motion(request: MotionInput, helper: Helper = Depends(get_helper)):
    """
    Animate a rigged model from motion descriptions.

    Without ``output`` the source model file is replaced.
    """
    return await _run(helper, "motion", request)


@router.post("/voice/generate", response_model=GenerateResponse)
async def generate_voice(request: VoiceInput, helper: Helper = Depends(get_helper)):
    return await _run(helper, "voice", request)


@router.post("/audio/generate", response_model=GenerateResponse)
async def generate_audio(request: AudioInput, helper: Helper = Depends(get_helper)):
    return await _run(helper, "audio", request)
