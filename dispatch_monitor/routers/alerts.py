"""Alert endpoints: active list, history, acknowledge and dismiss (single or bulk)."""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from dispatch_monitor.schemas import (
    ActiveAlertsResponse,
    AlertActionRequest,
    AlertActionResponse,
    AlertHistoryEntryResponse,
    AlertHistoryResponse,
    AlertResponse,
    AlertStatsResponse,
    BulkAlertActionRequest,
    BulkAlertActionResponse,
)
from dispatch_monitor.services.alerts.engine import AlertEngine, get_alert_engine
from dispatch_monitor.services.alerts.models import (
    AlertNotFoundError,
    BulkActionResult,
    InvalidStateTransition,
    Severity,
)
from dispatch_monitor.services.events import get_event_bus
from dispatch_monitor.services.events.schemas import alert_event

router = APIRouter(prefix="/alerts", tags=["alerts"])
logger = structlog.get_logger(__name__)


def _get_engine() -> AlertEngine:
    engine = get_alert_engine()
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert engine not initialized",
        )
    return engine


@router.get("", response_model=ActiveAlertsResponse)
async def list_active_alerts(
    severity: Optional[Severity] = Query(None, description="Filter by severity"),
    include_acknowledged: bool = Query(
        True, description="Include acknowledged alerts in the list"
    ),
    rule_id: Optional[str] = Query(None, description="Filter by rule id"),
    limit: Optional[int] = Query(
        None, ge=1, le=1000, description="Max alerts to return after sorting"
    ),
) -> ActiveAlertsResponse:
    """
    List open alerts.

    Sorted by severity descending, then first_seen_at ascending. Stats cover
    all open alerts regardless of the filter.
    """
    engine = _get_engine()
    alerts, stats = engine.get_active_alerts(
        severity=severity,
        include_acknowledged=include_acknowledged,
        rule_id=rule_id,
        limit=limit,
    )
    return ActiveAlertsResponse(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        stats=AlertStatsResponse.model_validate(stats),
    )


@router.get("/history", response_model=AlertHistoryResponse)
async def alert_history(
    limit: int = Query(100, ge=1, le=1000, description="Max entries"),
) -> AlertHistoryResponse:
    """Recent alert lifecycle events, oldest first."""
    engine = _get_engine()
    entries = engine.get_history(limit)
    return AlertHistoryResponse(
        entries=[AlertHistoryEntryResponse.model_validate(e) for e in entries],
        count=len(entries),
    )


async def _bulk_response(
    result: BulkActionResult, topic: str
) -> BulkAlertActionResponse:
    bus = get_event_bus()
    for alert in result.applied:
        await bus.publish(alert_event(topic, alert))
    return BulkAlertActionResponse(
        succeeded=result.succeeded,
        failed=len(result.failed),
        alerts=[AlertResponse.model_validate(a) for a in result.applied],
        errors=result.failed,
    )


# Declared before the /{alert_id} routes so "bulk" is not read as an alert id
@router.post("/bulk/acknowledge", response_model=BulkAlertActionResponse)
async def bulk_acknowledge_alerts(
    request: BulkAlertActionRequest,
) -> BulkAlertActionResponse:
    """
    Acknowledge several alerts.

    Always 200; per-alert failures (unknown id, Dismissed or Resolved) are
    counted in failed and listed in errors.
    """
    engine = _get_engine()
    result = await engine.bulk_acknowledge(request.alert_ids, request.by)
    return await _bulk_response(result, "alert.acknowledged")


@router.post("/bulk/dismiss", response_model=BulkAlertActionResponse)
async def bulk_dismiss_alerts(
    request: BulkAlertActionRequest,
) -> BulkAlertActionResponse:
    """Dismiss several alerts. Failures are reported, not raised."""
    engine = _get_engine()
    result = await engine.bulk_dismiss(request.alert_ids, request.by)
    return await _bulk_response(result, "alert.dismissed")


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(alert_id: str) -> AlertResponse:
    """Get a single alert by id, in any state."""
    engine = _get_engine()
    try:
        return AlertResponse.model_validate(engine.get_alert(alert_id))
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{alert_id}/acknowledge", response_model=AlertActionResponse)
async def acknowledge_alert(
    alert_id: str, request: AlertActionRequest
) -> AlertActionResponse:
    """
    Acknowledge an alert.

    Idempotent. Returns 409 if the alert is Dismissed or Resolved.
    """
    engine = _get_engine()
    try:
        alert, already = await engine.acknowledge(alert_id, request.by)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if not already:
        await get_event_bus().publish(alert_event("alert.acknowledged", alert))

    return AlertActionResponse(
        alert=AlertResponse.model_validate(alert), already_applied=already
    )


@router.post("/{alert_id}/dismiss", response_model=AlertActionResponse)
async def dismiss_alert(
    alert_id: str, request: AlertActionRequest
) -> AlertActionResponse:
    """
    Dismiss an alert.

    Idempotent. Returns 409 if the alert is Resolved.
    """
    engine = _get_engine()
    try:
        alert, already = await engine.dismiss(alert_id, request.by)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if not already:
        await get_event_bus().publish(alert_event("alert.dismissed", alert))

    return AlertActionResponse(
        alert=AlertResponse.model_validate(alert), already_applied=already
    )
