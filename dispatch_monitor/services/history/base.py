"""Per-cycle metrics record and the history sink interface."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class SnapshotMetrics:
    """Summary of one completed poll cycle, written to the history sink."""

    polled_at: datetime
    duration_ms: int
    jobs_total: int
    jobs_added: int
    jobs_removed: int
    jobs_modified: int
    alerts_new: int
    alerts_resolved: int
    alerts_active: int
    vehicles_tracked: int
    vehicles_verified: int
    telemetry_error: Optional[str] = None
    field_changes: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["polled_at"] = self.polled_at.isoformat()
        return data


@runtime_checkable
class HistorySink(Protocol):
    """Write-only destination for per-cycle metrics."""

    async def record(self, metrics: SnapshotMetrics) -> None:
        ...
