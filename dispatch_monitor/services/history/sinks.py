"""History sink implementations."""

import json
from typing import Any

import asyncpg
import structlog

from dispatch_monitor.services.history.base import SnapshotMetrics

logger = structlog.get_logger(__name__)


class LoggingHistorySink:
    """Writes cycle metrics to the structured log only."""

    async def record(self, metrics: SnapshotMetrics) -> None:
        logger.info("poll_history_recorded", **metrics.to_dict())


class PostgresHistorySink:
    """
    Inserts one row per cycle into poll_history.

    Expected table:
        poll_history(
            id bigserial primary key,
            polled_at timestamptz not null,
            duration_ms integer not null,
            jobs_total integer not null,
            jobs_added integer not null,
            jobs_removed integer not null,
            jobs_modified integer not null,
            alerts_new integer not null,
            alerts_resolved integer not null,
            alerts_active integer not null,
            vehicles_tracked integer not null,
            vehicles_verified integer not null,
            telemetry_error text,
            field_changes jsonb not null default '{}'
        )
    """

    INSERT_SQL = """
        INSERT INTO poll_history (
            polled_at, duration_ms, jobs_total, jobs_added, jobs_removed,
            jobs_modified, alerts_new, alerts_resolved, alerts_active,
            vehicles_tracked, vehicles_verified, telemetry_error, field_changes
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb)
    """

    def __init__(self, pool: Any):
        """
        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    async def record(self, metrics: SnapshotMetrics) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                self.INSERT_SQL,
                metrics.polled_at,
                metrics.duration_ms,
                metrics.jobs_total,
                metrics.jobs_added,
                metrics.jobs_removed,
                metrics.jobs_modified,
                metrics.alerts_new,
                metrics.alerts_resolved,
                metrics.alerts_active,
                metrics.vehicles_tracked,
                metrics.vehicles_verified,
                metrics.telemetry_error,
                json.dumps(metrics.field_changes),
            )


async def create_postgres_sink(
    database_url: str, max_size: int = 2
) -> tuple[PostgresHistorySink, Any]:
    """
    Create an asyncpg pool and a sink bound to it.

    Returns:
        (sink, pool) - the caller owns the pool and closes it on shutdown
    """
    pool = await asyncpg.create_pool(
        database_url,
        min_size=0,
        max_size=max_size,
        timeout=10,
        command_timeout=30,
    )
    logger.info("history_pool_initialized", max_size=max_size)
    return PostgresHistorySink(pool), pool
