"""GPS proximity verification.

Matches each job's site against the latest known position of its assigned
vehicle. Pure computation over already-fetched telemetry; never does I/O.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional
from zoneinfo import ZoneInfo

import structlog

from dispatch_monitor.services.geo import InvalidCoordinate, haversine_miles
from dispatch_monitor.services.jobs.models import JobRecord, VehiclePosition

logger = structlog.get_logger(__name__)


class VerificationStatus(str, Enum):
    """Outcome of comparing a vehicle position with a job site."""

    VERIFIED = "verified"
    OFF_SCHEDULE = "off_schedule"
    UNVERIFIED = "unverified"
    NO_TRACKING = "no_tracking"


@dataclass(frozen=True)
class VerificationResult:
    """Verification verdict for one job in one cycle."""

    job_id: str
    verification_status: VerificationStatus
    distance_miles: Optional[float] = None
    vehicle_id: Optional[str] = None
    observed_at: Optional[datetime] = None
    reason: Optional[str] = None

    @property
    def proximity_satisfied(self) -> bool:
        # off_schedule never counts, whatever the distance
        return self.verification_status == VerificationStatus.VERIFIED


def classify_distance(distance_miles: float, threshold_miles: float) -> VerificationStatus:
    """Classify a distance against the proximity threshold (inclusive)."""
    if distance_miles <= threshold_miles:
        return VerificationStatus.VERIFIED
    return VerificationStatus.UNVERIFIED


class GpsProximityVerifier:
    """Stateless per-job proximity verifier."""

    def __init__(self, proximity_threshold_miles: float, schedule_tz: str = "UTC"):
        self.proximity_threshold_miles = proximity_threshold_miles
        self._tz = ZoneInfo(schedule_tz)

    def _in_window(self, job: JobRecord, now: datetime) -> bool:
        if job.is_finished:
            return False
        return job.scheduled_date == now.astimezone(self._tz).date()

    def verify(
        self,
        job: JobRecord,
        position: Optional[VehiclePosition],
        now: datetime,
    ) -> VerificationResult:
        """
        Verify one job against its vehicle's latest position.

        Args:
            job: Job with optional vehicle assignment and site coordinates
            position: Latest position of the assigned vehicle, if known
            now: Cycle timestamp (timezone-aware)

        Returns:
            VerificationResult for the job
        """
        if job.vehicle_id is None or position is None:
            return VerificationResult(
                job_id=job.job_id,
                verification_status=VerificationStatus.NO_TRACKING,
                vehicle_id=job.vehicle_id,
                reason="no_vehicle" if job.vehicle_id is None else "no_position",
            )

        if not job.has_site_coordinates:
            return VerificationResult(
                job_id=job.job_id,
                verification_status=VerificationStatus.NO_TRACKING,
                vehicle_id=job.vehicle_id,
                observed_at=position.observed_at,
                reason="no_site_coordinates",
            )

        try:
            distance = haversine_miles(
                job.site_lat, job.site_lon, position.lat, position.lon
            )
        except InvalidCoordinate as e:
            logger.warning(
                "gps_invalid_coordinate",
                job_id=job.job_id,
                vehicle_id=job.vehicle_id,
                error=str(e),
            )
            return VerificationResult(
                job_id=job.job_id,
                verification_status=VerificationStatus.NO_TRACKING,
                vehicle_id=job.vehicle_id,
                observed_at=position.observed_at,
                reason="invalid_coordinate",
            )

        if not self._in_window(job, now):
            # Distance kept for display only
            return VerificationResult(
                job_id=job.job_id,
                verification_status=VerificationStatus.OFF_SCHEDULE,
                distance_miles=round(distance, 2),
                vehicle_id=job.vehicle_id,
                observed_at=position.observed_at,
            )

        # Classify on the unrounded distance; round only for reporting
        return VerificationResult(
            job_id=job.job_id,
            verification_status=classify_distance(
                distance, self.proximity_threshold_miles
            ),
            distance_miles=round(distance, 2),
            vehicle_id=job.vehicle_id,
            observed_at=position.observed_at,
        )

    def verify_all(
        self,
        jobs: Mapping[str, JobRecord],
        positions: Mapping[str, VehiclePosition],
        now: datetime,
    ) -> dict[str, VerificationResult]:
        """Verify every job in a snapshot, keyed by job_id."""
        return {
            job_id: self.verify(
                job,
                positions.get(job.vehicle_id) if job.vehicle_id else None,
                now,
            )
            for job_id, job in jobs.items()
        }
