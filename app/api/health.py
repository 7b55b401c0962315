"""
Health check endpoint.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel
from datetime import datetime

from app.utils.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    running: bool
    queue_depth: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Reports "healthy" while the agent is running, "idle" when stopped.
    """
    settings = get_settings()
    orchestrator = request.app.state.orchestrator

    return HealthResponse(
        status="healthy" if orchestrator.is_running else "idle",
        timestamp=datetime.now(),
        running=orchestrator.is_running,
        queue_depth=len(orchestrator.queue),
        version=settings.api_version
    )
