"""
Admin endpoints for agent control.

Includes:
- Start / stop and status
- Debug log toggle
- Baseline sweep

Start, stop and sweep block on file I/O and thread joins, so they are plain
functions that FastAPI runs in its threadpool.
"""

from typing import List

from fastapi import APIRouter, Request
from loguru import logger
from pydantic import BaseModel

from app.models.schemas import AgentStatus, OperationResponse
from app.utils.log_config import set_debug_mode
from domains.file_ingest.orchestrator import Orchestrator

router = APIRouter()


class SweepResponse(BaseModel):
    """Baseline sweep result."""
    status: str
    renamed: List[str]
    count: int


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@router.post("/start", response_model=OperationResponse)
def start_agent(request: Request):
    """
    Start watching with freshly read settings.

    Returns:
        "started", or "unchanged" if already running
    """
    logger.info("Agent start requested")
    started = _orchestrator(request).start()
    return OperationResponse(
        status="started" if started else "unchanged",
        message="Agent started" if started else "Agent already running"
    )


@router.post("/stop", response_model=OperationResponse)
def stop_agent(request: Request):
    """Stop all watchers and the dispatch consumer."""
    logger.info("Agent stop requested")
    stopped = _orchestrator(request).stop()
    return OperationResponse(
        status="stopped" if stopped else "unchanged",
        message="Agent stopped" if stopped else "Agent not running"
    )


@router.get("/status", response_model=AgentStatus)
async def get_status(request: Request):
    """Per-pipeline watch state, queue depth and plugin count."""
    return _orchestrator(request).status()


@router.post("/debug", response_model=OperationResponse)
async def toggle_debug(enabled: bool):
    """
    Turn debug log output on or off.

    Args:
        enabled: New debug flag
    """
    set_debug_mode(enabled)
    return OperationResponse(
        status="ok",
        message=f"Debug mode {'enabled' if enabled else 'disabled'}"
    )


@router.post("/baseline/sweep", response_model=SweepResponse)
def sweep_baseline(request: Request):
    """
    Compare every baseline record against every comparison folder.

    Returns:
        Renamed file paths
    """
    logger.info("Baseline sweep triggered")
    renamed = _orchestrator(request).sweep_baseline()
    return SweepResponse(
        status="completed",
        renamed=[str(p) for p in renamed],
        count=len(renamed)
    )
