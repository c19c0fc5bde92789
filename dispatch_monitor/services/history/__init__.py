"""Write-only history of poll cycles."""

from dispatch_monitor.services.history.base import HistorySink, SnapshotMetrics
from dispatch_monitor.services.history.sinks import (
    LoggingHistorySink,
    PostgresHistorySink,
    create_postgres_sink,
)

__all__ = [
    "HistorySink",
    "LoggingHistorySink",
    "PostgresHistorySink",
    "SnapshotMetrics",
    "create_postgres_sink",
]
