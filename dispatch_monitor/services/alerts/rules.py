"""Alert rule definitions."""

from datetime import timedelta
from typing import Optional

from dispatch_monitor.config import Settings
from dispatch_monitor.services.alerts.models import (
    AlertRule,
    EvalContext,
    RuleScope,
    Severity,
)
from dispatch_monitor.services.gps.verifier import (
    VerificationResult,
    VerificationStatus,
)
from dispatch_monitor.services.jobs.models import (
    ACTIVE_STATUSES,
    JobRecord,
    JobStatus,
)


# =============================================================================
# Job-scope predicates
# =============================================================================


def missing_truck_assignment(job: JobRecord, _v, _ctx) -> bool:
    return job.status == JobStatus.ENTERED and job.vehicle_id is None


def truck_without_driver(job: JobRecord, _v, _ctx) -> bool:
    return (
        job.status == JobStatus.ENTERED
        and job.vehicle_id is not None
        and job.driver_id is None
    )


def attempted_status(job: JobRecord, _v, _ctx) -> bool:
    return JobStatus.ATTEMPTED in (job.status, job.driver_reported_status)


def rescheduled_status(job: JobRecord, _v, _ctx) -> bool:
    return job.status == JobStatus.RESCHEDULED


def driver_status_conflict(job: JobRecord, _v, _ctx) -> bool:
    return (
        job.driver_reported_status is not None
        and job.driver_reported_status != job.status
    )


# =============================================================================
# GPS predicates
# =============================================================================

# Verification reasons meaning the truck is tracked but the check could not run
DATA_ISSUE_REASONS = frozenset({"no_site_coordinates", "invalid_coordinate"})


def _in_transit(job: JobRecord) -> bool:
    return (
        job.status in ACTIVE_STATUSES
        and job.arrival_time is None
        and job.completion_time is None
    )


def gps_proximity(
    job: JobRecord, verification: Optional[VerificationResult], _ctx
) -> bool:
    # off_schedule and no_tracking are never proximity-satisfied
    if verification is None or not verification.proximity_satisfied:
        return False
    return _in_transit(job)


def _no_tracking_on_active_job(
    job: JobRecord, verification: Optional[VerificationResult]
) -> bool:
    return (
        verification is not None
        and job.vehicle_id is not None
        and job.status in ACTIVE_STATUSES
        and not job.is_finished
        and verification.verification_status == VerificationStatus.NO_TRACKING
    )


def gps_no_tracking(
    job: JobRecord, verification: Optional[VerificationResult], _ctx
) -> bool:
    # The assigned truck reported no position
    return (
        _no_tracking_on_active_job(job, verification)
        and verification.reason == "no_position"
    )


def gps_data_unavailable(
    job: JobRecord, verification: Optional[VerificationResult], _ctx
) -> bool:
    # Truck is tracked but the site or position data cannot be compared
    return (
        _no_tracking_on_active_job(job, verification)
        and verification.reason in DATA_ISSUE_REASONS
    )


def vehicle_double_booked(job: JobRecord, _v, ctx: EvalContext) -> bool:
    if job.vehicle_id is None or not job.is_on_site:
        return False
    return len(ctx.on_site_by_vehicle.get(job.vehicle_id, ())) > 1


# =============================================================================
# Rule set
# =============================================================================


def build_rules(settings: Settings) -> tuple[AlertRule, ...]:
    """
    Build the rule set with thresholds from settings.

    Rules are evaluated in the order returned.
    """
    arrival_window = timedelta(hours=settings.arrival_completion_hours)
    mismatch_miles = settings.location_mismatch_miles

    def arrival_without_completion(job: JobRecord, _v, ctx: EvalContext) -> bool:
        if job.arrival_time is None or job.completion_time is not None:
            return False
        if job.status == JobStatus.COMPLETED:
            return False
        return ctx.now - job.arrival_time > arrival_window

    def gps_location_mismatch(
        job: JobRecord, verification: Optional[VerificationResult], _ctx
    ) -> bool:
        if verification is None or not job.is_on_site:
            return False
        return (
            verification.verification_status == VerificationStatus.UNVERIFIED
            and verification.distance_miles is not None
            and verification.distance_miles > mismatch_miles
        )

    hours = f"{settings.arrival_completion_hours:g}"

    return (
        AlertRule(
            rule_id="arrival-without-completion",
            name="Arrival Without Completion",
            severity=Severity.HIGH,
            scope=RuleScope.TIME,
            predicate=arrival_without_completion,
            message_template=(
                "Job {job_id} arrived at {arrival_time} but has no completion "
                f"after {hours}h"
            ),
        ),
        AlertRule(
            rule_id="missing-truck-assignment",
            name="Missing Truck Assignment",
            severity=Severity.HIGH,
            scope=RuleScope.JOB,
            predicate=missing_truck_assignment,
            message_template="Job {job_id} is Entered with no truck assigned",
        ),
        AlertRule(
            rule_id="truck-without-driver",
            name="Truck Without Driver",
            severity=Severity.MEDIUM,
            scope=RuleScope.JOB,
            predicate=truck_without_driver,
            message_template=(
                "Job {job_id} has truck {vehicle_id} assigned but no driver"
            ),
        ),
        AlertRule(
            rule_id="attempted-status",
            name="Attempted Job",
            severity=Severity.HIGH,
            scope=RuleScope.JOB,
            predicate=attempted_status,
            message_template="Job {job_id} was attempted but not completed",
        ),
        AlertRule(
            rule_id="rescheduled-status",
            name="Rescheduled Job",
            severity=Severity.MEDIUM,
            scope=RuleScope.JOB,
            predicate=rescheduled_status,
            message_template="Job {job_id} has been rescheduled",
        ),
        AlertRule(
            rule_id="driver-status-conflict",
            name="Driver Status Conflict",
            severity=Severity.MEDIUM,
            scope=RuleScope.JOB,
            predicate=driver_status_conflict,
            message_template=(
                "Job {job_id} driver reports {driver_reported_status} "
                "but system status is {status}"
            ),
        ),
        AlertRule(
            rule_id="gps-proximity",
            name="GPS Proximity",
            severity=Severity.LOW,
            scope=RuleScope.GPS,
            predicate=gps_proximity,
            message_template=(
                "Truck {vehicle_id} is {distance_miles} mi from job {job_id} "
                "and should be in transit"
            ),
        ),
        AlertRule(
            rule_id="gps-location-mismatch",
            name="GPS Location Mismatch",
            severity=Severity.HIGH,
            scope=RuleScope.GPS,
            predicate=gps_location_mismatch,
            message_template=(
                "Truck {vehicle_id} is {distance_miles} mi from job {job_id} "
                "while the job is recorded on site"
            ),
        ),
        AlertRule(
            rule_id="gps-no-tracking",
            name="GPS No Tracking",
            severity=Severity.MEDIUM,
            scope=RuleScope.GPS,
            predicate=gps_no_tracking,
            message_template="No GPS tracking for truck {vehicle_id} on job {job_id}",
        ),
        AlertRule(
            rule_id="gps-data-unavailable",
            name="GPS Data Unavailable",
            severity=Severity.MEDIUM,
            scope=RuleScope.GPS,
            predicate=gps_data_unavailable,
            message_template=(
                "GPS data unavailable for truck {vehicle_id} on job {job_id} "
                "({gps_reason})"
            ),
        ),
        AlertRule(
            rule_id="vehicle-double-booked",
            name="Vehicle Double Booked",
            severity=Severity.MEDIUM,
            scope=RuleScope.FLEET,
            predicate=vehicle_double_booked,
            message_template=(
                "Truck {vehicle_id} is on site at more than one job ({job_id})"
            ),
        ),
    )
