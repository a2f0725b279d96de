"""Base Pydantic models with common fields for all API endpoints."""

from pydantic import BaseModel, Field


class BaseResponse(BaseModel):
    """Base response model with common fields for generation responses."""

    request_id: str = Field(..., description="Job identifier, also recorded in job history")
    processing_time_ms: int = Field(..., description="Time taken to run the job in milliseconds")


class ErrorDetail(BaseModel):
    """Shape of the ``detail`` field on every error response."""

    code: str = Field(..., description="Stable machine-readable error code")
    message: str = Field(..., description="Human-readable description")
