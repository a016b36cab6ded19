"""
Common API response models.
"""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard API error response."""

    error: str = Field(..., description="Error message")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(default="ok", description="Service status")
    service: str | None = Field(None, description="Service name")


class WakeupResponse(BaseModel):
    """Response of the queue wakeup trigger."""

    status: str = Field(default="awake", description="Always 'awake'")
    processing: bool = Field(..., description="Whether a sweep was already running")


class AcceptedResponse(BaseModel):
    """Reply of an endpoint that renders and uploads in the background."""

    status: str = Field(default="accepted", description="Always 'accepted'")
    message: str = Field(..., description="Which job was started")
