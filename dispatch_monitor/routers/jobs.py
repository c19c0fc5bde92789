"""Per-job change history endpoint."""

from fastapi import APIRouter, HTTPException, Query, status

from dispatch_monitor.schemas import JobHistoryEntryResponse, JobHistoryResponse
from dispatch_monitor.services.polling.orchestrator import get_orchestrator

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}/changes", response_model=JobHistoryResponse)
async def job_changes(
    job_id: str,
    limit: int = Query(10, ge=1, le=100, description="Max entries to return"),
) -> JobHistoryResponse:
    """
    Committed changes to one job, newest first.

    Unknown jobs return an empty list; history lives in memory only.
    """
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Polling orchestrator not configured",
        )
    entries = orchestrator.detector.get_job_history(job_id, limit=limit)
    return JobHistoryResponse(
        job_id=job_id,
        entries=[JobHistoryEntryResponse.model_validate(e) for e in entries],
        count=len(entries),
    )
