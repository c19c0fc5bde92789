"""Job and vehicle domain types."""

from dispatch_monitor.services.jobs.models import (
    ACTIVE_STATUSES,
    FINISHED_STATUSES,
    FetchResult,
    JobRecord,
    JobStatus,
    VehiclePosition,
    index_snapshot,
)

__all__ = [
    "ACTIVE_STATUSES",
    "FINISHED_STATUSES",
    "FetchResult",
    "JobRecord",
    "JobStatus",
    "VehiclePosition",
    "index_snapshot",
]
