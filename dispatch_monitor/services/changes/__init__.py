"""Change detection between job snapshots."""

from dispatch_monitor.services.changes.detector import (
    CRITICAL_FIELDS,
    TRACKED_FIELDS,
    ChangeAnalysis,
    ChangeDetector,
    ChangeKind,
    ChangeSet,
    FieldChange,
    JobChange,
    JobHistoryEntry,
)

__all__ = [
    "CRITICAL_FIELDS",
    "TRACKED_FIELDS",
    "ChangeAnalysis",
    "ChangeDetector",
    "ChangeKind",
    "ChangeSet",
    "FieldChange",
    "JobChange",
    "JobHistoryEntry",
]
