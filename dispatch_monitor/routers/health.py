"""Health check endpoint."""

import structlog
from fastapi import APIRouter

from dispatch_monitor import __version__
from dispatch_monitor.schemas import HealthResponse
from dispatch_monitor.services.alerts.engine import get_alert_engine
from dispatch_monitor.services.polling.orchestrator import get_orchestrator

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Service health.

    "ok" while polling is healthy, "degraded" during upstream failure
    streaks or stale polls, "starting" before the first completed cycle.
    """
    orchestrator = get_orchestrator()
    engine = get_alert_engine()
    active_alerts = engine.active_count() if engine is not None else 0

    if orchestrator is None:
        return HealthResponse(
            status="degraded",
            version=__version__,
            polling_running=False,
            consecutive_failures=0,
            active_alerts=active_alerts,
        )

    polling = orchestrator.get_status()
    if polling.healthy:
        overall = "ok"
    elif polling.last_poll_at is None and polling.consecutive_failures == 0:
        overall = "starting"
    else:
        overall = "degraded"

    if overall == "degraded":
        logger.warning(
            "health_degraded",
            running=polling.running,
            consecutive_failures=polling.consecutive_failures,
            last_error=polling.last_error,
        )

    return HealthResponse(
        status=overall,
        version=__version__,
        polling_running=polling.running,
        consecutive_failures=polling.consecutive_failures,
        last_poll_at=polling.last_poll_at,
        active_alerts=active_alerts,
    )
