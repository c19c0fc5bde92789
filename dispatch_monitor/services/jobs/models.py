"""Job and vehicle domain types."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)


class JobStatus(str, Enum):
    """Work order status as reported by the job source."""

    ENTERED = "Entered"
    IN_PROGRESS = "InProgress"
    ATTEMPTED = "Attempted"
    COMPLETED = "Completed"
    CANCELED = "Canceled"
    RESCHEDULED = "Rescheduled"
    DELETED = "Deleted"

    @classmethod
    def parse(cls, raw: Any) -> "JobStatus":
        """
        Parse an upstream status string.

        Tolerates case and separator differences ("Re-scheduled",
        "DELETED", "In Progress", "cancelled").

        Raises:
            ValueError: If the status is not recognised
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            raise ValueError(f"Invalid job status: {raw!r}")
        key = "".join(ch for ch in raw.lower() if ch.isalnum())
        status = _STATUS_ALIASES.get(key)
        if status is None:
            raise ValueError(f"Invalid job status: {raw!r}")
        return status


_STATUS_ALIASES: dict[str, JobStatus] = {
    "entered": JobStatus.ENTERED,
    "scheduled": JobStatus.ENTERED,
    "inprogress": JobStatus.IN_PROGRESS,
    "attempted": JobStatus.ATTEMPTED,
    "completed": JobStatus.COMPLETED,
    "complete": JobStatus.COMPLETED,
    "canceled": JobStatus.CANCELED,
    "cancelled": JobStatus.CANCELED,
    "rescheduled": JobStatus.RESCHEDULED,
    "deleted": JobStatus.DELETED,
}

# Statuses after which the vehicle is no longer expected on site
FINISHED_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.CANCELED, JobStatus.DELETED}
)

# Statuses in which the job is still being worked
ACTIVE_STATUSES = frozenset({JobStatus.ENTERED, JobStatus.IN_PROGRESS})


# =============================================================================
# Parsing helpers
# =============================================================================


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def record_job_id(data: Any) -> Optional[str]:
    """Best-effort job id of a raw upstream record, or None."""
    if not isinstance(data, Mapping):
        return None
    return _optional_str(_pick(data, "job_id", "jobId", "id"))


def _parse_driver_status(raw: Any, job_id: str) -> Optional[JobStatus]:
    """Driver-reported status is free text; unknown values are ignored."""
    if _optional_str(raw) is None:
        return None
    try:
        return JobStatus.parse(raw)
    except ValueError:
        logger.warning("driver_status_unrecognized", job_id=job_id, value=str(raw))
        return None


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or value == "":
        raise ValueError("scheduled_date is required")
    return date.fromisoformat(str(value)[:10])


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class JobRecord:
    """One unit of scheduled field work, as of a single poll."""

    job_id: str
    status: JobStatus
    scheduled_date: date
    driver_reported_status: Optional[JobStatus] = None
    arrival_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    route_id: Optional[str] = None
    site_address: Optional[str] = None
    site_lat: Optional[float] = None
    site_lon: Optional[float] = None
    job_type: Optional[str] = None

    @property
    def has_site_coordinates(self) -> bool:
        return self.site_lat is not None and self.site_lon is not None

    @property
    def is_finished(self) -> bool:
        """True once the job no longer expects a vehicle on site."""
        return self.completion_time is not None or self.status in FINISHED_STATUSES

    @property
    def is_on_site(self) -> bool:
        """Arrival recorded and not yet completed."""
        return self.arrival_time is not None and self.completion_time is None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobRecord":
        """
        Build a record from an upstream JSON object.

        Accepts snake_case or camelCase keys.

        Raises:
            ValueError: If the id, status or scheduled date is missing or invalid
        """
        job_id = record_job_id(data)
        if job_id is None:
            raise ValueError("job_id is required")

        driver_status = _pick(data, "driver_reported_status", "driverReportedStatus")

        return cls(
            job_id=job_id,
            status=JobStatus.parse(_pick(data, "status")),
            scheduled_date=_parse_date(_pick(data, "scheduled_date", "scheduledDate")),
            driver_reported_status=_parse_driver_status(driver_status, job_id),
            arrival_time=parse_datetime(_pick(data, "arrival_time", "arrivalTime")),
            completion_time=parse_datetime(
                _pick(data, "completion_time", "completionTime")
            ),
            vehicle_id=_optional_str(_pick(data, "vehicle_id", "vehicleId")),
            driver_id=_optional_str(_pick(data, "driver_id", "driverId")),
            route_id=_optional_str(_pick(data, "route_id", "routeId")),
            site_address=_optional_str(_pick(data, "site_address", "siteAddress")),
            site_lat=_optional_float(_pick(data, "site_lat", "siteLat", "lat")),
            site_lon=_optional_float(_pick(data, "site_lon", "siteLon", "lon")),
            job_type=_optional_str(_pick(data, "job_type", "jobType")),
        )


@dataclass(frozen=True)
class VehiclePosition:
    """Latest known position of a vehicle."""

    vehicle_id: str
    lat: float
    lon: float
    observed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VehiclePosition":
        vehicle_id = _optional_str(_pick(data, "vehicle_id", "vehicleId", "id"))
        if vehicle_id is None:
            raise ValueError("vehicle_id is required")
        return cls(
            vehicle_id=vehicle_id,
            lat=float(_pick(data, "lat", "latitude")),
            lon=float(_pick(data, "lon", "longitude")),
            observed_at=parse_datetime(_pick(data, "observed_at", "observedAt", "time")),
        )


@dataclass
class FetchResult:
    """
    One job fetch.

    invalid_ids holds ids of records that came back but could not be parsed.
    Those jobs still exist upstream and must not be treated as removed.
    """

    jobs: list[JobRecord] = field(default_factory=list)
    invalid_ids: set[str] = field(default_factory=set)

    def copy(self) -> "FetchResult":
        return FetchResult(list(self.jobs), set(self.invalid_ids))


def index_snapshot(jobs: Iterable[JobRecord]) -> dict[str, JobRecord]:
    """
    Build the job_id -> JobRecord mapping for one poll.

    Deleted jobs are dropped so they surface as removed. When an id repeats,
    the first record wins and the duplicate is logged.
    """
    snapshot: dict[str, JobRecord] = {}
    duplicates = 0
    for job in jobs:
        if job.status == JobStatus.DELETED:
            continue
        if job.job_id in snapshot:
            duplicates += 1
            logger.warning("snapshot_duplicate_job_id", job_id=job.job_id)
            continue
        snapshot[job.job_id] = job
    if duplicates:
        logger.info("snapshot_duplicates_dropped", count=duplicates)
    return snapshot
