"""Fixed catalog of the six generation workers.

Each worker is a third-party repository cloned under the helper root and
run from its own virtual environment. The launch table is per worker type:
there is no general rule for how these projects start their servers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import UnknownWorker

# Name of the isolated environment directory inside a worker root.
# Its presence is what makes a worker "ready".
VENV_DIR_NAME = "venv"


@dataclass(frozen=True)
class WorkerDescriptor:
    """Static description of one worker."""

    name: str
    port: int
    repository_url: str
    launch_args: Tuple[str, ...]  # Arguments after the venv interpreter
    requirement_files: Tuple[str, ...] = ()
    extra_packages: Tuple[str, ...] = ()
    install_torch: bool = True

    def root(self, helper_dir: Path) -> Path:
        """Install root (the cloned repository)."""
        return helper_dir / self.name

    def venv_dir(self, helper_dir: Path) -> Path:
        return self.root(helper_dir) / VENV_DIR_NAME

    def python(self, helper_dir: Path) -> Path:
        return venv_python(self.venv_dir(helper_dir))


def venv_python(venv_dir: Path) -> Path:
    """Interpreter inside a virtual environment for this platform."""
    if os.name == "nt":
        return venv_dir / "Scripts" / "python.exe"
    return venv_dir / "bin" / "python"


_GRADIO_APP = ("-m", "gradio", "app.py")

WORKERS: Tuple[WorkerDescriptor, ...] = (
    WorkerDescriptor(
        name="comfyui",
        port=8188,
        repository_url="https://github.com/comfyanonymous/ComfyUI.git",
        launch_args=("main.py", "--listen", "0.0.0.0", "--port", "8188"),
        requirement_files=("requirements.txt",),
    ),
    WorkerDescriptor(
        name="hunyuan3d",
        port=7860,
        repository_url="https://github.com/Tencent/Hunyuan3D-2.git",
        launch_args=("app.py",),
        requirement_files=("requirements.txt",),
        extra_packages=("gradio",),
    ),
    WorkerDescriptor(
        name="unirig",
        port=7861,
        repository_url="https://github.com/VAST-AI-Research/UniRig.git",
        launch_args=_GRADIO_APP,
        requirement_files=("requirements.txt",),
        extra_packages=("trimesh", "numpy", "scipy"),
    ),
    WorkerDescriptor(
        name="hy-motion",
        port=7862,
        repository_url="https://github.com/Tencent-Hunyuan/HY-Motion-1.0.git",
        launch_args=_GRADIO_APP,
        requirement_files=("requirements.txt",),
        extra_packages=("PyYAML", "Cython", "huggingface-hub>=0.30.0,<1.0", "gradio"),
    ),
    WorkerDescriptor(
        name="stable-audio",
        port=7863,
        repository_url="https://github.com/Stability-AI/stable-audio-tools.git",
        launch_args=_GRADIO_APP,
        extra_packages=("-e .", "gradio"),
    ),
    WorkerDescriptor(
        name="chatterbox",
        port=7864,
        repository_url="https://github.com/resemble-ai/chatterbox.git",
        launch_args=_GRADIO_APP,
        extra_packages=("chatterbox-tts", "gradio"),
    ),
)

_BY_NAME: Dict[str, WorkerDescriptor] = {w.name: w for w in WORKERS}


def get_descriptor(name: str, workers: Optional[Dict[str, WorkerDescriptor]] = None) -> WorkerDescriptor:
    """Look up a worker by name. Raises UnknownWorker."""
    table = workers if workers is not None else _BY_NAME
    try:
        return table[name]
    except KeyError:
        raise UnknownWorker(name) from None


def list_checkpoints(helper_dir: Path) -> list[str]:
    """
    Checkpoint files available to the image worker.

    Returns:
        Sorted file names with .safetensors/.ckpt/.pt extensions
    """
    checkpoint_dir = helper_dir / "comfyui" / "models" / "checkpoints"
    if not checkpoint_dir.is_dir():
        return []

    names = []
    for entry in checkpoint_dir.iterdir():
        if entry.is_dir():
            continue
        if entry.suffix.lower() in (".safetensors", ".ckpt", ".pt"):
            names.append(entry.name)
    return sorted(names)
