"""Generation capabilities.

Every capability is one variant behind the same interface: it names its
worker, builds that worker's request payload, and decodes the worker's reply
into an artifact reference. Adding a worker type means adding a variant here;
the orchestration loop does not change.

Two completion protocols exist:
- ASYNC_BY_ID: submission returns a job id, a history endpoint is polled
- SYNC: the submission reply already names the artifact
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import resolve_output_path
from .errors import ArtifactReadFailure, InvalidWorkerResponse

logger = logging.getLogger(__name__)


class CompletionProtocol(str, Enum):
    ASYNC_BY_ID = "async_by_id"
    SYNC = "sync"


# =============================================================================
# Capability inputs
# =============================================================================


class ImageInput(BaseModel):
    prompt: str = Field(..., description="Text prompt for the image")
    model: Optional[str] = Field(
        default=None,
        description="Checkpoint file name; empty picks a FLUX checkpoint if one exists",
    )
    output: Optional[str] = Field(default=None, description="Destination path")


class MeshInput(BaseModel):
    image: str = Field(..., description="Path of the source image")
    output: Optional[str] = Field(default=None, description="Destination path")


class RigInput(BaseModel):
    input: str = Field(..., description="Path of the GLB model to rig")
    output: Optional[str] = Field(default=None, description="Destination path")


class MotionInput(BaseModel):
    model: str = Field(..., description="Path of the rigged GLB model")
    motions: List[str] = Field(default_factory=list, description="Motion descriptions")
    output: Optional[str] = Field(
        default=None,
        description="Destination path; defaults to overwriting the input model",
    )


class VoiceInput(BaseModel):
    text: str = Field(..., description="Text to speak")
    output: Optional[str] = Field(default=None, description="Destination path")


class AudioInput(BaseModel):
    prompt: str = Field(..., description="Description of the sound or music")
    output: Optional[str] = Field(default=None, description="Destination path")


# =============================================================================
# Worker reply schemas
# =============================================================================


class ComfyPromptReply(BaseModel):
    prompt_id: str


class ComfyImage(BaseModel):
    filename: str
    subfolder: str = ""
    type: str = "output"


class ComfyNodeOutput(BaseModel):
    images: List[ComfyImage] = Field(default_factory=list)


class ComfyStatus(BaseModel):
    status_str: Optional[str] = None
    completed: Optional[bool] = None


class ComfyHistoryRecord(BaseModel):
    outputs: Dict[str, Any] = Field(default_factory=dict)
    status: Optional[ComfyStatus] = None


class GradioFile(BaseModel):
    name: str


class GradioPredictReply(BaseModel):
    data: List[Any] = Field(..., min_length=1)


def _validate(model: type[BaseModel], value: Any, what: str) -> Any:
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise InvalidWorkerResponse(f"Unexpected {what}: {e.errors()[0]['msg']}") from e


# =============================================================================
# Context handed to payload builders
# =============================================================================


class CapabilityContext:
    """What a payload builder may touch: caller files and the worker's GET API."""

    def __init__(
        self,
        helper_dir: Path,
        fetch_json: Callable[[str], Awaitable[Any]],
        log: Callable[[str], None],
    ):
        self.helper_dir = helper_dir
        self.fetch_json = fetch_json
        self.log = log

    def resolve(self, path: str) -> Path:
        return resolve_output_path(path, self.helper_dir)

    def read_input(self, path: str) -> bytes:
        resolved = self.resolve(path)
        try:
            return resolved.read_bytes()
        except OSError as e:
            raise ArtifactReadFailure(f"Cannot read input file {resolved}: {e}") from e

    def data_uri(self, path: str, default_mime: str) -> str:
        mime = mimetypes.guess_type(path)[0] or default_mime
        encoded = base64.b64encode(self.read_input(path)).decode("ascii")
        return f"data:{mime};base64,{encoded}"


# =============================================================================
# Capability variants
# =============================================================================


class Capability(ABC):
    """One generation capability bound to one worker."""

    name: str = "unknown"
    worker: str = "unknown"
    protocol: CompletionProtocol = CompletionProtocol.SYNC
    submit_path: str = "/api/predict"
    input_model: type[BaseModel] = BaseModel

    def parse_input(self, data: Any) -> BaseModel:
        if isinstance(data, self.input_model):
            return data
        return self.input_model.model_validate(data)

    def destination(self, request: BaseModel) -> Optional[str]:
        return getattr(request, "output", None)

    def describe(self, request: BaseModel) -> str:
        """One-line summary for the console log."""
        return self.name

    @abstractmethod
    async def build_payload(self, request: BaseModel, ctx: CapabilityContext) -> Dict[str, Any]:
        pass

    def artifact_path(self, reference: str, helper_dir: Path) -> Path:
        """Map a worker artifact reference to a local file path."""
        path = Path(reference)
        if path.is_absolute():
            return path
        return helper_dir / self.worker / path

    # Synchronous protocol

    def parse_result(self, reply: Any) -> str:
        raise NotImplementedError

    # Asynchronous protocol

    def parse_submission(self, reply: Any) -> str:
        raise NotImplementedError

    def status_path(self, job_id: str) -> str:
        raise NotImplementedError

    def parse_status(self, reply: Any, job_id: str) -> Optional[str]:
        """Artifact reference once complete, None while still running."""
        raise NotImplementedError


class GradioCapability(Capability):
    """Gradio apps answer /api/predict synchronously with a file reference."""

    protocol = CompletionProtocol.SYNC
    submit_path = "/api/predict"

    def parse_result(self, reply: Any) -> str:
        parsed = _validate(GradioPredictReply, reply, "predict reply")
        first = _validate(GradioFile, parsed.data[0], "predict output")
        if not first.name:
            raise InvalidWorkerResponse("Predict output has an empty file name")
        return first.name


# Fixed text-to-image graph; node "9" is the SaveImage node whose output is read back
IMAGE_OUTPUT_NODE = "9"


def build_image_workflow(prompt: str, checkpoint: str, seed: int) -> Dict[str, Any]:
    return {
        "3": {
            "inputs": {
                "seed": seed,
                "steps": 20,
                "cfg": 7,
                "sampler_name": "euler",
                "scheduler": "normal",
                "denoise": 1,
                "model": ["4", 0],
                "positive": ["6", 0],
                "negative": ["7", 0],
                "latent_image": ["5", 0],
            },
            "class_type": "KSampler",
        },
        "4": {
            "inputs": {"ckpt_name": checkpoint},
            "class_type": "CheckpointLoaderSimple",
        },
        "5": {
            "inputs": {"width": 1024, "height": 1024, "batch_size": 1},
            "class_type": "EmptyLatentImage",
        },
        "6": {
            "inputs": {"text": prompt, "clip": ["4", 1]},
            "class_type": "CLIPTextEncode",
        },
        "7": {
            "inputs": {"text": "", "clip": ["4", 1]},
            "class_type": "CLIPTextEncode",
        },
        "8": {
            "inputs": {"samples": ["3", 0], "vae": ["4", 2]},
            "class_type": "VAEDecode",
        },
        IMAGE_OUTPUT_NODE: {
            "inputs": {"filename_prefix": "flux_output", "images": ["8", 0]},
            "class_type": "SaveImage",
        },
    }


def parse_checkpoint_names(object_info: Any) -> List[str]:
    """
    Extract checkpoint names from ComfyUI's /object_info reply.

    Handles both the legacy ``[[names...]]`` and the ``["COMBO", {"options": [...]}]``
    input specs.
    """
    try:
        spec = object_info["CheckpointLoaderSimple"]["input"]["required"]["ckpt_name"]
    except (KeyError, TypeError) as e:
        raise InvalidWorkerResponse("object_info has no CheckpointLoaderSimple.ckpt_name") from e

    if not isinstance(spec, list) or not spec:
        return []
    if isinstance(spec[0], list):
        options = spec[0]
    elif len(spec) > 1 and isinstance(spec[1], dict):
        options = spec[1].get("options", [])
    else:
        options = []
    return [n for n in options if isinstance(n, str)]


def pick_checkpoint(names: List[str]) -> Optional[str]:
    """Prefer a FLUX checkpoint, else the first one."""
    if not names:
        return None
    for name in names:
        if "flux" in name.lower():
            return name
    return names[0]


class ImageCapability(Capability):
    name = "image"
    worker = "comfyui"
    protocol = CompletionProtocol.ASYNC_BY_ID
    submit_path = "/prompt"
    input_model = ImageInput

    def describe(self, request: ImageInput) -> str:
        return f"Generating image: {request.prompt} (model: {request.model or 'auto'})"

    async def build_payload(self, request: ImageInput, ctx: CapabilityContext) -> Dict[str, Any]:
        checkpoint = request.model
        if not checkpoint:
            info = await ctx.fetch_json("/object_info")
            checkpoint = pick_checkpoint(parse_checkpoint_names(info))
            if checkpoint is None:
                raise InvalidWorkerResponse(
                    "No checkpoint available; download a FLUX or SD model into "
                    "comfyui/models/checkpoints"
                )
        ctx.log(f"Using checkpoint: {checkpoint}")

        seed = time.time_ns() % 1_000_000_000
        return {
            "prompt": build_image_workflow(request.prompt, checkpoint, seed),
            "client_id": f"server_{time.time_ns()}",
        }

    def parse_submission(self, reply: Any) -> str:
        if isinstance(reply, dict) and isinstance(reply.get("error"), dict):
            message = reply["error"].get("message") or "unknown error"
            raise InvalidWorkerResponse(f"ComfyUI error: {message}")
        return _validate(ComfyPromptReply, reply, "prompt reply").prompt_id

    def status_path(self, job_id: str) -> str:
        return f"/history/{job_id}"

    def parse_status(self, reply: Any, job_id: str) -> Optional[str]:
        if not isinstance(reply, dict) or job_id not in reply:
            return None

        record = _validate(ComfyHistoryRecord, reply[job_id], "history record")
        if record.status is not None and record.status.status_str == "error":
            raise InvalidWorkerResponse(f"ComfyUI reported an execution error for {job_id}")

        node = record.outputs.get(IMAGE_OUTPUT_NODE)
        if node is None:
            return None
        images = _validate(ComfyNodeOutput, node, "SaveImage output").images
        if not images:
            return None
        image = images[0]
        if image.subfolder:
            return f"{image.subfolder}/{image.filename}"
        return image.filename

    def artifact_path(self, reference: str, helper_dir: Path) -> Path:
        return helper_dir / self.worker / "output" / reference


class MeshCapability(GradioCapability):
    name = "mesh"
    worker = "hunyuan3d"
    input_model = MeshInput

    def describe(self, request: MeshInput) -> str:
        return f"Generating 3D model: {request.image}"

    async def build_payload(self, request: MeshInput, ctx: CapabilityContext) -> Dict[str, Any]:
        return {
            "data": [ctx.data_uri(request.image, "image/png"), "", 42, 50],
            "fn_index": 0,
        }


class RigCapability(GradioCapability):
    name = "rig"
    worker = "unirig"
    input_model = RigInput

    def describe(self, request: RigInput) -> str:
        return f"Rigging: {request.input}"

    async def build_payload(self, request: RigInput, ctx: CapabilityContext) -> Dict[str, Any]:
        return {
            "data": [ctx.data_uri(request.input, "model/gltf-binary")],
            "fn_index": 0,
        }


class MotionCapability(GradioCapability):
    name = "motion"
    worker = "hy-motion"
    input_model = MotionInput

    def describe(self, request: MotionInput) -> str:
        return f"Generating motion: {request.model}"

    def destination(self, request: MotionInput) -> Optional[str]:
        # Animation replaces the source model unless told otherwise
        return request.output or request.model

    async def build_payload(self, request: MotionInput, ctx: CapabilityContext) -> Dict[str, Any]:
        motion_text = ", ".join(m for m in request.motions if m) or "idle"
        return {
            "data": [ctx.data_uri(request.model, "model/gltf-binary"), motion_text, 30],
            "fn_index": 0,
        }


class VoiceCapability(GradioCapability):
    name = "voice"
    worker = "chatterbox"
    input_model = VoiceInput

    def describe(self, request: VoiceInput) -> str:
        return f"Generating speech: {request.text}"

    async def build_payload(self, request: VoiceInput, ctx: CapabilityContext) -> Dict[str, Any]:
        return {"data": [request.text, 0.5, 0.5], "fn_index": 0}


class AudioCapability(GradioCapability):
    name = "audio"
    worker = "stable-audio"
    input_model = AudioInput

    def describe(self, request: AudioInput) -> str:
        return f"Generating audio: {request.prompt}"

    async def build_payload(self, request: AudioInput, ctx: CapabilityContext) -> Dict[str, Any]:
        return {"data": [request.prompt, "", 30.0, 100, 3.0, 42], "fn_index": 0}


CAPABILITIES: Dict[str, Capability] = {
    c.name: c
    for c in (
        ImageCapability(),
        MeshCapability(),
        RigCapability(),
        MotionCapability(),
        VoiceCapability(),
        AudioCapability(),
    )
}


def get_capability(name: str) -> Capability:
    try:
        return CAPABILITIES[name]
    except KeyError:
        raise ValueError(f"Unknown capability '{name}'") from None
