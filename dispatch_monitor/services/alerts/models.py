"""Alert models, rule definitions and lifecycle errors."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping, Optional

from dispatch_monitor.services.gps.verifier import VerificationResult
from dispatch_monitor.services.jobs.models import JobRecord


class Severity(str, Enum):
    """Alert severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER[self]


SEVERITY_ORDER = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AlertState(str, Enum):
    """Alert lifecycle states."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


OPEN_STATES = frozenset({AlertState.ACTIVE, AlertState.ACKNOWLEDGED})
TERMINAL_STATES = frozenset({AlertState.DISMISSED, AlertState.RESOLVED})


class RuleScope(str, Enum):
    """What a rule predicate depends on, which decides when it can be cached."""

    JOB = "job"  # tracked fields of the job only
    TIME = "time"  # job fields and the cycle time
    GPS = "gps"  # verification result
    FLEET = "fleet"  # other jobs in the snapshot


# =============================================================================
# Errors
# =============================================================================


class AlertNotFoundError(LookupError):
    """Raised when an alert id is unknown."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class InvalidStateTransition(Exception):
    """Raised when an operator action is not allowed from the alert's state."""

    def __init__(self, alert_id: str, current: AlertState, action: str):
        super().__init__(
            f"Cannot {action} alert {alert_id} in state {current.value}"
        )
        self.alert_id = alert_id
        self.current = current
        self.action = action


# =============================================================================
# Alerts
# =============================================================================


def make_alert_id(rule_id: str, job_id: str) -> str:
    """
    Derive the alert id for a (rule_id, job_id) pair.

    The pair is JSON-encoded before hashing so ("a-b", "c") and ("a", "b-c")
    never share an id.
    """
    raw = json.dumps([rule_id, job_id], separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@dataclass
class Alert:
    """One alert incident for a (rule, job) pair."""

    alert_id: str
    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    job_id: str
    first_seen_at: datetime
    last_seen_at: datetime
    state: AlertState = AlertState.ACTIVE
    vehicle_id: Optional[str] = None
    occurrence_count: int = 1
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    dismissed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state in OPEN_STATES


@dataclass(frozen=True)
class AlertHistoryEntry:
    """A lifecycle event recorded for an alert."""

    alert_id: str
    rule_id: str
    job_id: str
    severity: Severity
    event: str  # created, acknowledged, dismissed, resolved
    at: datetime
    by: Optional[str] = None


@dataclass
class AlertStats:
    """Aggregate counts over open alerts."""

    total: int = 0
    by_severity: dict[str, int] = field(
        default_factory=lambda: {s.value: 0 for s in Severity}
    )
    acknowledged: int = 0
    unacknowledged: int = 0
    by_rule: dict[str, int] = field(default_factory=dict)


# =============================================================================
# Rules
# =============================================================================


@dataclass
class EvalContext:
    """Cycle-wide data available to every rule predicate."""

    now: datetime
    jobs: Mapping[str, JobRecord]
    verifications: Optional[Mapping[str, VerificationResult]] = None
    # vehicle_id -> job_ids currently on site with that vehicle
    on_site_by_vehicle: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        now: datetime,
        jobs: Mapping[str, JobRecord],
        verifications: Optional[Mapping[str, VerificationResult]] = None,
    ) -> "EvalContext":
        on_site: dict[str, list[str]] = {}
        for job in jobs.values():
            if job.vehicle_id and job.is_on_site:
                on_site.setdefault(job.vehicle_id, []).append(job.job_id)
        return cls(
            now=now,
            jobs=jobs,
            verifications=verifications,
            on_site_by_vehicle=on_site,
        )


Predicate = Callable[[JobRecord, Optional[VerificationResult], EvalContext], bool]


@dataclass(frozen=True)
class AlertRule:
    """Static rule definition, loaded once per process."""

    rule_id: str
    name: str
    severity: Severity
    scope: RuleScope
    predicate: Predicate
    message_template: str


@dataclass
class EvalResult:
    """Result of one evaluation pass."""

    timestamp: datetime

    # Counts
    conditions_evaluated: int = 0
    conditions_reused: int = 0
    alerts_triggered: int = 0
    alerts_new: int = 0
    alerts_updated: int = 0
    alerts_resolved: int = 0
    alerts_suppressed: int = 0
    gps_rules_skipped: bool = False

    # Alerts that changed state this pass (copies)
    created: list[Alert] = field(default_factory=list)
    resolved: list[Alert] = field(default_factory=list)

    # Per-rule trigger counts
    by_rule: dict[str, int] = field(default_factory=dict)

    # Any errors
    errors: list[str] = field(default_factory=list)


@dataclass
class BulkActionResult:
    """Outcome of acknowledging or dismissing several alerts."""

    # Alerts this call moved to the target state (copies)
    applied: list[Alert] = field(default_factory=list)
    # Ids that were already in the target state
    already_applied: list[str] = field(default_factory=list)
    # alert_id -> reason
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.applied) + len(self.already_applied)
