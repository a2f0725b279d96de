"""Coarse host usage figures for the status endpoint."""

import logging
from typing import Dict

import psutil

logger = logging.getLogger(__name__)


def get_system_usage() -> Dict[str, float]:
    """
    Sample CPU and memory usage.

    CPU uses a non-blocking sample (percent since the previous call), so the
    very first reading after startup may be 0. GPU figures are not collected
    and are reported as 0.
    """
    try:
        cpu = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory().percent
    except (OSError, RuntimeError) as e:
        logger.warning(f"Failed to sample system usage: {e}")
        cpu, memory = 0.0, 0.0

    return {
        "cpu_usage": round(float(cpu), 1),
        "memory_usage": round(float(memory), 1),
        "gpu_usage": 0.0,
        "gpu_memory": 0.0,
    }
