"""Pydantic response models for the HTTP API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from dispatch_monitor.services.alerts.models import AlertState, Severity
from dispatch_monitor.services.changes.detector import ChangeKind
from dispatch_monitor.services.gps.verifier import VerificationStatus


# ===========================================
# Alerts
# ===========================================


class AlertResponse(BaseModel):
    """A single alert."""

    model_config = ConfigDict(from_attributes=True)

    alert_id: str = Field(..., description="Deterministic id from (rule_id, job_id)")
    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    job_id: str
    vehicle_id: Optional[str] = None
    state: AlertState
    first_seen_at: datetime
    last_seen_at: datetime
    occurrence_count: int = Field(..., description="Cycles in which the condition held")
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    dismissed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class AlertStatsResponse(BaseModel):
    """Counts over open alerts."""

    model_config = ConfigDict(from_attributes=True)

    total: int
    by_severity: dict[str, int]
    acknowledged: int
    unacknowledged: int
    by_rule: dict[str, int]


class ActiveAlertsResponse(BaseModel):
    """Open alerts sorted by severity descending, then first_seen_at."""

    alerts: list[AlertResponse]
    stats: AlertStatsResponse


class AlertActionRequest(BaseModel):
    """Operator action on an alert."""

    by: str = Field(..., min_length=1, max_length=200, description="Operator name")


class AlertActionResponse(BaseModel):
    """Result of acknowledge/dismiss."""

    alert: AlertResponse
    already_applied: bool = Field(
        ..., description="True if the alert was already in the target state"
    )


class BulkAlertActionRequest(BaseModel):
    """Operator action on several alerts at once."""

    alert_ids: list[str] = Field(
        ..., min_length=1, max_length=500, description="Alerts to act on"
    )
    by: str = Field(..., min_length=1, max_length=200, description="Operator name")


class BulkAlertActionResponse(BaseModel):
    """Result of a bulk acknowledge/dismiss."""

    succeeded: int = Field(
        ..., description="Alerts now in the target state, including already applied"
    )
    failed: int
    alerts: list[AlertResponse] = Field(
        ..., description="Alerts newly moved to the target state"
    )
    errors: dict[str, str] = Field(
        default_factory=dict, description="alert_id -> reason for each failure"
    )


class AlertHistoryEntryResponse(BaseModel):
    """Alert lifecycle event."""

    model_config = ConfigDict(from_attributes=True)

    alert_id: str
    rule_id: str
    job_id: str
    severity: Severity
    event: str
    at: datetime
    by: Optional[str] = None


class AlertHistoryResponse(BaseModel):
    """Recent alert lifecycle events, oldest first."""

    entries: list[AlertHistoryEntryResponse]
    count: int


# ===========================================
# Fleet GPS
# ===========================================


class VehicleGpsStatusResponse(BaseModel):
    """GPS verification for one vehicle."""

    model_config = ConfigDict(from_attributes=True)

    vehicle_id: str
    verification_status: VerificationStatus
    tracked: bool = Field(..., description="Vehicle reported a position last cycle")
    job_id: Optional[str] = Field(None, description="Job the status refers to")
    job_ids: list[str] = Field(default_factory=list)
    distance_miles: Optional[float] = None
    observed_at: Optional[datetime] = None


class GpsStatusResponse(BaseModel):
    """Fleet GPS verification summary."""

    model_config = ConfigDict(from_attributes=True)

    total_vehicles: int
    verified_count: int
    telemetry_available: bool
    updated_at: Optional[datetime] = None
    vehicles: list[VehicleGpsStatusResponse]


# ===========================================
# Polling
# ===========================================


class PollingStatusResponse(BaseModel):
    """Polling orchestrator status."""

    model_config = ConfigDict(from_attributes=True)

    running: bool
    cycle_in_progress: bool
    last_poll_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_duration_ms: Optional[int] = None
    consecutive_failures: int
    last_error: Optional[str] = None
    last_telemetry_error: Optional[str] = None
    total_cycles: int
    successful_cycles: int
    failed_cycles: int
    skipped_cycles: int
    success_rate: Optional[float] = None
    poll_interval_ms: int
    healthy: bool


class CycleResultResponse(BaseModel):
    """Result of a manually triggered cycle."""

    model_config = ConfigDict(from_attributes=True)

    status: str
    started_at: Optional[datetime] = None
    duration_ms: int
    jobs_total: int
    jobs_carried_forward: int = Field(
        0, description="Jobs whose unparseable record was replaced by the last good one"
    )
    changes: dict[str, int]
    change_categories: dict[str, int] = Field(
        default_factory=dict,
        description="Modified jobs per category: status, assignment, time, critical",
    )
    alerts_new: int
    alerts_resolved: int
    telemetry_error: Optional[str] = None
    error: Optional[str] = None


# ===========================================
# Job change history
# ===========================================


class FieldChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    old: Any = None
    new: Any = None


class JobHistoryEntryResponse(BaseModel):
    """One committed change to a job."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    kind: ChangeKind
    recorded_at: datetime
    fields: list[FieldChangeResponse] = Field(default_factory=list)


class JobHistoryResponse(BaseModel):
    """Recent changes to one job, newest first."""

    job_id: str
    entries: list[JobHistoryEntryResponse]
    count: int


# ===========================================
# Health
# ===========================================


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="ok, degraded or starting")
    version: str = Field(..., description="Service version")
    polling_running: bool
    consecutive_failures: int
    last_poll_at: Optional[datetime] = None
    active_alerts: int
