"""Health and status endpoints."""

from fastapi import APIRouter

from aide.server import __version__
from aide.server.state import get_uptime
from aide.server.api.schemas import HealthResponse, StatusResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, uptime_seconds=get_uptime())


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    return StatusResponse(version=__version__, status="running", uptime_seconds=get_uptime())
