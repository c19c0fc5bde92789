"""Snapshot store."""

from dispatch_monitor.services.snapshot.store import SnapshotStore

__all__ = ["SnapshotStore"]
