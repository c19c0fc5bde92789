"""Dispatch Monitor - FastAPI Application."""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from dispatch_monitor import __version__
from dispatch_monitor.config import Settings, get_settings
from dispatch_monitor.routers import (
    alerts,
    events,
    fleet,
    health,
    jobs,
    metrics,
    polling,
)
from dispatch_monitor.services.alerts import (
    AlertEngine,
    AlertStore,
    build_rules,
    set_alert_engine,
)
from dispatch_monitor.services.changes import ChangeDetector
from dispatch_monitor.services.events import get_event_bus
from dispatch_monitor.services.gps.verifier import GpsProximityVerifier
from dispatch_monitor.services.history import LoggingHistorySink, create_postgres_sink
from dispatch_monitor.services.polling import PollingOrchestrator, set_orchestrator
from dispatch_monitor.services.snapshot import SnapshotStore
from dispatch_monitor.services.sources import HttpJobSource, HttpTelemetrySource

settings = get_settings()

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

# Initialize Sentry (if configured)
if settings.sentry_dsn:

    def before_send(event, hint):
        """
        Filter out 4xx client errors from Sentry events.

        404 on unknown alerts and 409 on invalid transitions are operator
        errors, not service faults.
        """
        if "exc_info" in hint:
            exc_type, exc_value, tb = hint["exc_info"]
            if hasattr(exc_value, "status_code"):
                status_code = exc_value.status_code
                if 400 <= status_code < 500:
                    return None

        if "contexts" in event:
            response = event.get("contexts", {}).get("response", {})
            status_code = response.get("status_code", 0)
            if 400 <= status_code < 500:
                return None

        return event

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"dispatch-monitor@{__version__}"),
        integrations=[
            LoggingIntegration(level=None, event_level="ERROR"),
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=before_send,
    )
    sentry_sdk.set_tag("service", "dispatch-monitor")

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )


def build_alert_engine(settings: Settings) -> AlertEngine:
    """Create the process-wide alert store and engine."""
    store = AlertStore(history_size=settings.alert_history_size)
    return AlertEngine(build_rules(settings), store)


# Global clients
_history_pool = None
_sources: list = []


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global _history_pool, _sources

    settings = get_settings()
    logger.info(
        "service_starting",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
        poll_interval_ms=settings.poll_interval_ms,
    )

    engine = build_alert_engine(settings)
    set_alert_engine(engine)

    # History sink: Postgres when configured, otherwise structured logs
    history_sink = LoggingHistorySink()
    if settings.history_database_url:
        try:
            history_sink, _history_pool = await create_postgres_sink(
                settings.history_database_url
            )
        except Exception as e:
            logger.error(
                "history_pool_init_failed",
                error=str(e),
                fallback="log_sink",
            )
            _history_pool = None

    orchestrator = None
    if settings.job_source_url:
        job_source = HttpJobSource(
            settings.job_source_url,
            api_key=settings.job_source_api_key,
            timeout=settings.upstream_timeout_seconds,
        )
        _sources = [job_source]
        telemetry_source = None
        if settings.telemetry_source_url:
            telemetry_source = HttpTelemetrySource(
                settings.telemetry_source_url,
                api_key=settings.telemetry_source_api_key,
                timeout=settings.upstream_timeout_seconds,
            )
            _sources.append(telemetry_source)
        else:
            logger.warning("telemetry_source_not_configured", gps_rules="disabled")

        orchestrator = PollingOrchestrator(
            job_source=job_source,
            telemetry_source=telemetry_source,
            engine=engine,
            snapshot_store=SnapshotStore(cache_ttl_seconds=settings.cache_ttl_ms / 1000),
            verifier=GpsProximityVerifier(
                settings.proximity_threshold_miles,
                schedule_tz=settings.schedule_timezone,
            ),
            settings=settings,
            history_sink=history_sink,
            detector=ChangeDetector(
                history_size=settings.change_history_size,
                history_jobs=settings.change_history_jobs,
            ),
            event_bus=get_event_bus(),
        )
        set_orchestrator(orchestrator)

        if settings.polling_enabled:
            await orchestrator.start()
        else:
            logger.info("polling_disabled", reason="POLLING_ENABLED=false")
    else:
        logger.warning("job_source_not_configured", polling="unavailable")

    yield

    # Cleanup on shutdown
    logger.info("service_stopping")

    if orchestrator is not None:
        await orchestrator.stop()
        set_orchestrator(None)

    for source in _sources:
        await source.close()
    _sources = []

    if _history_pool is not None:
        await _history_pool.close()
        _history_pool = None
        logger.info("history_pool_closed")

    set_alert_engine(None)


# Create FastAPI app
app = FastAPI(
    title="Dispatch Monitor",
    description="Job change detection, GPS proximity verification and operational alerts",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    """Add request ID and timing to all requests."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    # Bind request context to logger
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("request_failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "retryable": True},
            headers={
                "X-Request-ID": request_id,
                "X-API-Version": __version__,
            },
        )

    duration_ms = (time.perf_counter() - start_time) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
    response.headers["X-API-Version"] = __version__
    return response


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(alerts.router)
app.include_router(fleet.router)
app.include_router(jobs.router)
app.include_router(polling.router)
app.include_router(events.router)
app.include_router(metrics.router, include_in_schema=False)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Dispatch Monitor",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dispatch_monitor.main:app",
        host=settings.service_host,
        port=settings.service_port,
        reload=False,
    )
