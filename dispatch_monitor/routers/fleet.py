"""Fleet GPS status endpoint."""

from fastapi import APIRouter, HTTPException, status

from dispatch_monitor.schemas import GpsStatusResponse
from dispatch_monitor.services.polling.orchestrator import get_orchestrator

router = APIRouter(prefix="/fleet", tags=["fleet"])


@router.get("/gps-status", response_model=GpsStatusResponse)
async def gps_status() -> GpsStatusResponse:
    """Per-vehicle GPS verification from the last completed cycle."""
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Polling orchestrator not configured",
        )
    return GpsStatusResponse.model_validate(orchestrator.get_gps_status())
