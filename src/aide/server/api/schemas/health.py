"""Health, status and account Pydantic schemas."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(default="healthy", description="Server health status")
    version: str = Field(description="Server version")
    uptime_seconds: float = Field(description="Server uptime in seconds")


class StatusResponse(BaseModel):
    """Response model for status endpoint."""

    version: str = Field(description="Server version")
    status: str = Field(default="running", description="Server status")
    uptime_seconds: float = Field(description="Server uptime in seconds")


class DeleteAccountResponse(BaseModel):
    ok: bool = True
