"""Application configuration for the helper root, output paths and tunables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_API_PORT = 9527
DEFAULT_TORCH_INDEX_URL = "https://download.pytorch.org/whl/cu124"

# Environment variable names
HELPER_DIR_ENV = "GENHELPER_DIR"
API_PORT_ENV = "GENHELPER_API_PORT"
PYTHON_ENV = "GENHELPER_PYTHON"
TORCH_INDEX_URL_ENV = "GENHELPER_TORCH_INDEX_URL"


def get_helper_dir() -> Path:
    """
    Get the helper root directory.

    Checks GENHELPER_DIR first, then walks up from the working directory
    (at most four levels) looking for a directory that contains ``server/``.
    Falls back to the working directory.
    """
    if env_dir := os.getenv(HELPER_DIR_ENV):
        return Path(env_dir).resolve()

    cwd = Path.cwd().resolve()
    candidate = cwd
    for _ in range(5):
        if (candidate / "server").is_dir():
            return candidate
        if candidate.parent == candidate:
            break
        candidate = candidate.parent

    return cwd


def get_output_dir(helper_dir: Optional[Path] = None) -> Path:
    """Shared output directory with capability-named subfolders."""
    return (helper_dir or get_helper_dir()) / "output"


def get_log_path(helper_dir: Optional[Path] = None) -> Path:
    """Append-only console log at the helper root."""
    return (helper_dir or get_helper_dir()) / "console.log"


def get_api_port() -> int:
    """Port the API server listens on (GENHELPER_API_PORT, default 9527)."""
    value = os.getenv(API_PORT_ENV)
    if not value:
        return DEFAULT_API_PORT
    try:
        return int(value)
    except ValueError:
        return DEFAULT_API_PORT


def get_torch_index_url() -> str:
    """Wheel index used for the heavy runtime install."""
    return os.getenv(TORCH_INDEX_URL_ENV) or DEFAULT_TORCH_INDEX_URL


def resolve_output_path(path: str, helper_dir: Optional[Path] = None) -> Path:
    """
    Resolve a caller-supplied path.

    Absolute paths are returned unchanged; relative paths are placed under
    the shared output directory.

    Examples:
        >>> resolve_output_path('images/cat.png', Path('/srv/helper'))
        PosixPath('/srv/helper/output/images/cat.png')
    """
    p = Path(path)
    if p.is_absolute():
        return p
    return get_output_dir(helper_dir) / p


@dataclass(frozen=True)
class Timings:
    """Polling cadence and timeouts used by the prober and orchestrator."""

    startup_poll_interval: float = 2.0
    startup_poll_attempts: int = 60
    job_poll_interval: float = 1.0
    job_poll_attempts: int = 180
    probe_timeout: float = 2.0
    request_timeout: float = 600.0
    stop_grace: float = 0.1


def load_timings() -> Timings:
    """
    Build Timings from the settings table.

    Missing or invalid values fall back to the defaults above.
    """
    # Avoid circular import by importing here
    from .db.settings import get_setting_float, get_setting_int

    defaults = Timings()
    return Timings(
        startup_poll_interval=get_setting_float(
            "startup_poll_interval_seconds", defaults.startup_poll_interval
        ),
        startup_poll_attempts=get_setting_int(
            "startup_poll_attempts", defaults.startup_poll_attempts
        ),
        job_poll_interval=get_setting_float(
            "job_poll_interval_seconds", defaults.job_poll_interval
        ),
        job_poll_attempts=get_setting_int("job_poll_attempts", defaults.job_poll_attempts),
        probe_timeout=get_setting_float("probe_timeout_seconds", defaults.probe_timeout),
        request_timeout=get_setting_float(
            "request_timeout_seconds", defaults.request_timeout
        ),
        stop_grace=get_setting_float("stop_grace_seconds", defaults.stop_grace),
    )
