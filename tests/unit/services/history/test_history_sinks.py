"""Unit tests for poll history sinks."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dispatch_monitor.services.history.base import HistorySink, SnapshotMetrics
from dispatch_monitor.services.history.sinks import (
    LoggingHistorySink,
    PostgresHistorySink,
    create_postgres_sink,
)

NOW = datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def metrics():
    return SnapshotMetrics(
        polled_at=NOW,
        duration_ms=84,
        jobs_total=12,
        jobs_added=2,
        jobs_removed=1,
        jobs_modified=3,
        alerts_new=1,
        alerts_resolved=2,
        alerts_active=4,
        vehicles_tracked=9,
        vehicles_verified=5,
        telemetry_error=None,
        field_changes={"status": 2, "driver_id": 1},
    )


@pytest.fixture
def mock_pool():
    """Mock database connection pool."""
    pool = MagicMock()
    conn = AsyncMock()

    # Setup acquire as async context manager
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=None)
    pool.acquire.return_value = cm

    return pool, conn


class TestSnapshotMetrics:
    """Tests for SnapshotMetrics."""

    def test_to_dict_serializes_timestamp(self, metrics):
        data = metrics.to_dict()

        assert data["polled_at"] == NOW.isoformat()
        assert data["field_changes"] == {"status": 2, "driver_id": 1}
        json.dumps(data)


class TestLoggingHistorySink:
    """Tests for LoggingHistorySink."""

    @pytest.mark.asyncio
    async def test_record_logs(self, metrics):
        sink = LoggingHistorySink()
        with patch("dispatch_monitor.services.history.sinks.logger") as mock_logger:
            await sink.record(metrics)

        mock_logger.info.assert_called_once()
        args, kwargs = mock_logger.info.call_args
        assert args[0] == "poll_history_recorded"
        assert kwargs["jobs_total"] == 12

    def test_satisfies_protocol(self):
        assert isinstance(LoggingHistorySink(), HistorySink)


class TestPostgresHistorySink:
    """Tests for PostgresHistorySink."""

    @pytest.mark.asyncio
    async def test_record_inserts_row(self, metrics, mock_pool):
        pool, conn = mock_pool
        sink = PostgresHistorySink(pool)

        await sink.record(metrics)

        conn.execute.assert_awaited_once()
        args = conn.execute.call_args.args
        assert "INSERT INTO poll_history" in args[0]
        assert args[1] == NOW
        assert args[3] == 12
        assert args[12] is None
        assert json.loads(args[13]) == {"status": 2, "driver_id": 1}

    @pytest.mark.asyncio
    async def test_record_propagates_errors(self, metrics, mock_pool):
        """Write failures surface to the caller, which logs them."""
        pool, conn = mock_pool
        conn.execute.side_effect = RuntimeError("connection lost")
        sink = PostgresHistorySink(pool)

        with pytest.raises(RuntimeError):
            await sink.record(metrics)

    @pytest.mark.asyncio
    async def test_create_postgres_sink(self):
        pool = MagicMock()
        with patch(
            "dispatch_monitor.services.history.sinks.asyncpg.create_pool",
            new=AsyncMock(return_value=pool),
        ) as create_pool:
            sink, returned_pool = await create_postgres_sink("postgresql://db/test")

        assert isinstance(sink, PostgresHistorySink)
        assert returned_pool is pool
        assert create_pool.call_args.args[0] == "postgresql://db/test"
        assert create_pool.call_args.kwargs["max_size"] == 2
