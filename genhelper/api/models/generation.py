"""Pydantic models for the generation endpoints.

Request bodies are the capability input models themselves; see
``genhelper.worker.capabilities``.
"""

from pydantic import Field

from ...worker.capabilities import (
    AudioInput,
    ImageInput,
    MeshInput,
    MotionInput,
    RigInput,
    VoiceInput,
)
from .base import BaseResponse

__all__ = [
    "AudioInput",
    "GenerateResponse",
    "ImageInput",
    "MeshInput",
    "MotionInput",
    "RigInput",
    "VoiceInput",
]


class GenerateResponse(BaseResponse):
    """Successful generation: where the artifact ended up."""

    ok: bool = Field(default=True, description="Always true on success")
    output: str = Field(..., description="Absolute path of the delivered artifact")
