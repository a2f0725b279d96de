"""Pydantic models for worker lifecycle endpoints."""

from typing import List

from pydantic import BaseModel, Field

from ...worker.protocol import WorkerStatus


class WorkerInfo(BaseModel):
    name: str = Field(..., description="Worker name")
    status: WorkerStatus = Field(..., description="running, installing, ready, failed or idle")
    port: int = Field(..., description="HTTP port the worker serves on")
    pid: int = Field(default=0, description="Process id while running, else 0")
    busy: bool = Field(default=False, description="A generation job currently holds this worker")


class StatusResponse(BaseModel):
    """Aggregate helper status."""

    running: bool = Field(default=True, description="The API server is up")
    port: int = Field(..., description="API server port")
    helper_dir: str = Field(..., description="Helper root directory")
    deploying: bool = Field(default=False, description="A deployment is in flight")
    models: List[WorkerInfo] = Field(..., description="Workers in catalog order")
    cpu_usage: float = Field(default=0.0, description="Host CPU usage percent")
    memory_usage: float = Field(default=0.0, description="Host memory usage percent")
    gpu_usage: float = Field(default=0.0, description="Not collected, always 0")
    gpu_memory: float = Field(default=0.0, description="Not collected, always 0")


class LogLine(BaseModel):
    model: str = Field(..., description="Worker name or 'system'")
    time: str = Field(..., description="Local time, HH:MM:SS")
    message: str


class LogsResponse(BaseModel):
    logs: List[LogLine]


class ActionResponse(BaseModel):
    ok: bool = True
    message: str = ""


class CheckpointsResponse(BaseModel):
    checkpoints: List[str] = Field(..., description="Checkpoint file names, sorted")


class JobEntry(BaseModel):
    """One row of job history."""

    id: int
    capability: str
    worker: str
    request_id: str | None = None
    started_at: str
    completed_at: str | None = None
    duration_ms: int | None = None
    status: str
    artifact_path: str | None = None
    error_code: str | None = None
    error_message: str | None = None
