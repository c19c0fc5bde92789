"""Field-level change detection between two job snapshots."""

from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

import structlog

from dispatch_monitor.services.jobs.models import JobRecord

logger = structlog.get_logger(__name__)

# JobRecord attributes compared between polls
TRACKED_FIELDS: tuple[str, ...] = (
    "status",
    "driver_reported_status",
    "scheduled_date",
    "arrival_time",
    "completion_time",
    "vehicle_id",
    "driver_id",
    "route_id",
    "site_address",
    "site_lat",
    "site_lon",
    "job_type",
)

# Field categories used by ChangeSet.analyze
STATUS_FIELDS = frozenset({"status", "driver_reported_status"})
ASSIGNMENT_FIELDS = frozenset({"vehicle_id", "driver_id"})
TIME_FIELDS = frozenset({"arrival_time", "completion_time"})

# Fields whose change matters to dispatch; site address and coordinates do not
CRITICAL_FIELDS = frozenset(
    STATUS_FIELDS
    | ASSIGNMENT_FIELDS
    | TIME_FIELDS
    | {"route_id", "scheduled_date", "job_type"}
)


class ChangeKind(str, Enum):
    """Classification of a job between two snapshots."""

    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"


@dataclass(frozen=True)
class JobChange:
    """How one job changed between polls."""

    job_id: str
    kind: ChangeKind
    changed_fields: tuple[str, ...] = ()

    @property
    def critical_fields(self) -> tuple[str, ...]:
        return tuple(name for name in self.changed_fields if name in CRITICAL_FIELDS)


@dataclass(frozen=True)
class ChangeAnalysis:
    """Modified-job counts per field category."""

    status_changes: int = 0
    assignment_changes: int = 0
    time_changes: int = 0
    critical_changes: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "status": self.status_changes,
            "assignment": self.assignment_changes,
            "time": self.time_changes,
            "critical": self.critical_changes,
        }


@dataclass
class ChangeSet:
    """Result of diffing two snapshots."""

    changes: dict[str, JobChange] = field(default_factory=dict)

    def _of_kind(self, kind: ChangeKind) -> list[JobChange]:
        return [c for c in self.changes.values() if c.kind == kind]

    @property
    def added(self) -> list[JobChange]:
        return self._of_kind(ChangeKind.ADDED)

    @property
    def removed(self) -> list[JobChange]:
        return self._of_kind(ChangeKind.REMOVED)

    @property
    def modified(self) -> list[JobChange]:
        return self._of_kind(ChangeKind.MODIFIED)

    @property
    def unchanged(self) -> list[JobChange]:
        return self._of_kind(ChangeKind.UNCHANGED)

    @property
    def changed_job_ids(self) -> set[str]:
        """Ids of jobs that were added, removed or modified."""
        return {
            job_id
            for job_id, change in self.changes.items()
            if change.kind != ChangeKind.UNCHANGED
        }

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_job_ids)

    def kind_of(self, job_id: str) -> ChangeKind:
        change = self.changes.get(job_id)
        return change.kind if change else ChangeKind.ADDED

    def summary(self) -> dict[str, int]:
        counts = Counter(c.kind.value for c in self.changes.values())
        return {kind.value: counts.get(kind.value, 0) for kind in ChangeKind}

    def field_counts(self) -> dict[str, int]:
        """How often each tracked field changed, most frequent first."""
        counts: Counter[str] = Counter()
        for change in self.modified:
            counts.update(change.changed_fields)
        return dict(counts.most_common())

    def critical_changes(self) -> list[JobChange]:
        """Modified jobs with at least one critical field changed."""
        return [c for c in self.modified if c.critical_fields]

    def analyze(self) -> ChangeAnalysis:
        """
        Count modified jobs per category.

        A job counts once per category no matter how many of the
        category's fields changed, and may count in several categories.
        """
        status = assignment = times = critical = 0
        for change in self.modified:
            changed = set(change.changed_fields)
            status += bool(changed & STATUS_FIELDS)
            assignment += bool(changed & ASSIGNMENT_FIELDS)
            times += bool(changed & TIME_FIELDS)
            critical += bool(changed & CRITICAL_FIELDS)
        return ChangeAnalysis(
            status_changes=status,
            assignment_changes=assignment,
            time_changes=times,
            critical_changes=critical,
        )


def diff_fields(old: JobRecord, new: JobRecord) -> tuple[str, ...]:
    """Return the tracked fields whose values differ."""
    return tuple(
        name for name in TRACKED_FIELDS if getattr(old, name) != getattr(new, name)
    )


# =============================================================================
# Per-job history
# =============================================================================


@dataclass(frozen=True)
class FieldChange:
    """Old and new value of one tracked field."""

    name: str
    old: Any
    new: Any


@dataclass(frozen=True)
class JobHistoryEntry:
    """One committed change to a job."""

    job_id: str
    kind: ChangeKind
    recorded_at: datetime
    fields: tuple[FieldChange, ...] = ()


class ChangeDetector:
    """
    Diffs consecutive snapshots at field granularity.

    Also keeps a short history of committed changes per job. Each job keeps
    at most history_size entries; at most history_jobs jobs are remembered
    and the least recently changed job is forgotten first.
    """

    def __init__(self, history_size: int = 10, history_jobs: int = 5000):
        self._history_size = history_size
        self._history_jobs = history_jobs
        self._history: OrderedDict[str, deque[JobHistoryEntry]] = OrderedDict()

    def detect(
        self,
        previous: Mapping[str, JobRecord],
        new: Mapping[str, JobRecord],
    ) -> ChangeSet:
        """
        Classify every job present in either snapshot.

        Args:
            previous: job_id -> JobRecord from the last committed cycle
            new: job_id -> JobRecord from this cycle

        Returns:
            ChangeSet with one JobChange per job id
        """
        result = ChangeSet()

        for job_id, job in new.items():
            old = previous.get(job_id)
            if old is None:
                result.changes[job_id] = JobChange(job_id, ChangeKind.ADDED)
                continue
            changed = diff_fields(old, job)
            if changed:
                result.changes[job_id] = JobChange(
                    job_id, ChangeKind.MODIFIED, changed
                )
            else:
                result.changes[job_id] = JobChange(job_id, ChangeKind.UNCHANGED)

        for job_id in previous:
            if job_id not in new:
                result.changes[job_id] = JobChange(job_id, ChangeKind.REMOVED)

        return result

    def record_history(
        self,
        changes: ChangeSet,
        previous: Mapping[str, JobRecord],
        new: Mapping[str, JobRecord],
        recorded_at: datetime,
    ) -> int:
        """
        Append the committed changes of one cycle to the per-job history.

        Unchanged jobs are not recorded. Returns the number of entries added.
        """
        if self._history_size <= 0 or self._history_jobs <= 0:
            return 0

        recorded = 0
        for job_id, change in changes.changes.items():
            if change.kind == ChangeKind.UNCHANGED:
                continue
            fields: tuple[FieldChange, ...] = ()
            if change.kind == ChangeKind.MODIFIED:
                old, current = previous[job_id], new[job_id]
                fields = tuple(
                    FieldChange(name, getattr(old, name), getattr(current, name))
                    for name in change.changed_fields
                )
            self._append(JobHistoryEntry(job_id, change.kind, recorded_at, fields))
            recorded += 1

        evicted = 0
        while len(self._history) > self._history_jobs:
            self._history.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("change_history_jobs_evicted", count=evicted)
        return recorded

    def _append(self, entry: JobHistoryEntry) -> None:
        entries = self._history.get(entry.job_id)
        if entries is None:
            entries = deque(maxlen=self._history_size)
            self._history[entry.job_id] = entries
        else:
            self._history.move_to_end(entry.job_id)
        entries.append(entry)

    def get_job_history(
        self, job_id: str, limit: Optional[int] = 10
    ) -> list[JobHistoryEntry]:
        """Recorded changes for one job, newest first."""
        entries = list(reversed(self._history.get(job_id, ())))
        if limit is not None:
            entries = entries[:limit]
        return entries

    def reset(self) -> None:
        self._history.clear()
