"""Polling control and status endpoints."""

import structlog
from fastapi import APIRouter, HTTPException, status

from dispatch_monitor.schemas import CycleResultResponse, PollingStatusResponse
from dispatch_monitor.services.polling.orchestrator import (
    PollingOrchestrator,
    get_orchestrator,
)

router = APIRouter(prefix="/polling", tags=["polling"])
logger = structlog.get_logger(__name__)


def _get_orchestrator() -> PollingOrchestrator:
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Polling orchestrator not configured (set JOB_SOURCE_URL)",
        )
    return orchestrator


@router.get("/status", response_model=PollingStatusResponse)
async def polling_status() -> PollingStatusResponse:
    """Running state, last poll, last duration and failure streak."""
    return PollingStatusResponse.model_validate(_get_orchestrator().get_status())


@router.post("/start", response_model=PollingStatusResponse)
async def start_polling() -> PollingStatusResponse:
    """Start the polling timer. No-op if already running."""
    orchestrator = _get_orchestrator()
    await orchestrator.start()
    logger.info("polling_started_via_api")
    return PollingStatusResponse.model_validate(orchestrator.get_status())


@router.post("/stop", response_model=PollingStatusResponse)
async def stop_polling() -> PollingStatusResponse:
    """Stop the polling timer after the in-flight cycle finishes."""
    orchestrator = _get_orchestrator()
    await orchestrator.stop()
    logger.info("polling_stopped_via_api")
    return PollingStatusResponse.model_validate(orchestrator.get_status())


@router.post("/run", response_model=CycleResultResponse)
async def run_cycle() -> CycleResultResponse:
    """
    Run one cycle now.

    Returns status "skipped" if a cycle is already in progress.
    """
    result = await _get_orchestrator().run_once()
    return CycleResultResponse.model_validate(result)
