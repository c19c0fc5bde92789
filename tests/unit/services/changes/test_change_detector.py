"""Unit tests for snapshot change detection."""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from dispatch_monitor.services.changes.detector import (
    CRITICAL_FIELDS,
    ChangeDetector,
    ChangeKind,
    ChangeSet,
    FieldChange,
    JobChange,
    diff_fields,
)
from dispatch_monitor.services.jobs.models import JobRecord, JobStatus


def make_job(job_id="J1", **overrides) -> JobRecord:
    fields = dict(
        job_id=job_id,
        status=JobStatus.ENTERED,
        scheduled_date=date(2024, 6, 3),
        vehicle_id="T1",
        driver_id="D1",
    )
    fields.update(overrides)
    return JobRecord(**fields)


@pytest.fixture
def detector():
    return ChangeDetector()


class TestDiffFields:
    """Tests for field-level diffs."""

    def test_identical_records(self):
        """Equal records have no changed fields."""
        assert diff_fields(make_job(), make_job()) == ()

    def test_reports_each_changed_field(self):
        """Every differing tracked field is reported."""
        old = make_job()
        new = replace(
            old,
            status=JobStatus.IN_PROGRESS,
            arrival_time=datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc),
        )
        assert set(diff_fields(old, new)) == {"status", "arrival_time"}


class TestChangeDetector:
    """Tests for ChangeDetector.detect."""

    def test_first_snapshot_all_added(self, detector):
        """Against an empty snapshot every job is added."""
        changes = detector.detect({}, {"A": make_job("A"), "B": make_job("B")})

        assert {c.job_id for c in changes.added} == {"A", "B"}
        assert changes.has_changes is True

    def test_classifies_every_kind(self, detector):
        """Added, removed, modified and unchanged are all detected."""
        previous = {
            "keep": make_job("keep"),
            "edit": make_job("edit"),
            "gone": make_job("gone"),
        }
        new = {
            "keep": make_job("keep"),
            "edit": make_job("edit", driver_id="D9"),
            "new": make_job("new"),
        }

        changes = detector.detect(previous, new)

        assert changes.kind_of("keep") == ChangeKind.UNCHANGED
        assert changes.kind_of("edit") == ChangeKind.MODIFIED
        assert changes.kind_of("gone") == ChangeKind.REMOVED
        assert changes.kind_of("new") == ChangeKind.ADDED
        assert changes.changes["edit"].changed_fields == ("driver_id",)
        assert changes.changed_job_ids == {"edit", "gone", "new"}

    def test_no_changes(self, detector):
        """Identical snapshots produce only unchanged entries."""
        snapshot = {"A": make_job("A")}
        changes = detector.detect(snapshot, dict(snapshot))

        assert changes.has_changes is False
        assert len(changes.unchanged) == 1

    def test_summary_counts_all_kinds(self, detector):
        """summary always includes every kind."""
        changes = detector.detect({"A": make_job("A")}, {"A": make_job("A")})

        assert changes.summary() == {
            "added": 0,
            "removed": 0,
            "unchanged": 1,
            "modified": 0,
        }


class TestChangeSet:
    """Tests for ChangeSet helpers."""

    def test_unknown_job_treated_as_added(self):
        """Jobs missing from the change set must be re-evaluated."""
        assert ChangeSet().kind_of("nope") == ChangeKind.ADDED

    def test_field_counts_most_frequent_first(self):
        """field_counts aggregates over modified jobs."""
        changes = ChangeSet(
            changes={
                "A": JobChange("A", ChangeKind.MODIFIED, ("status", "driver_id")),
                "B": JobChange("B", ChangeKind.MODIFIED, ("status",)),
                "C": JobChange("C", ChangeKind.ADDED),
            }
        )

        counts = changes.field_counts()
        assert counts == {"status": 2, "driver_id": 1}
        assert list(counts)[0] == "status"

    def test_analyze_counts_categories(self):
        """A job counts once per category it touched."""
        changes = ChangeSet(
            changes={
                "A": JobChange(
                    "A", ChangeKind.MODIFIED, ("status", "driver_reported_status")
                ),
                "B": JobChange("B", ChangeKind.MODIFIED, ("vehicle_id", "arrival_time")),
                "C": JobChange("C", ChangeKind.MODIFIED, ("site_address",)),
                "D": JobChange("D", ChangeKind.ADDED),
            }
        )

        analysis = changes.analyze()

        assert analysis.as_dict() == {
            "status": 1,
            "assignment": 1,
            "time": 1,
            "critical": 2,
        }

    def test_critical_changes(self):
        """Site address and coordinates are not critical."""
        changes = ChangeSet(
            changes={
                "A": JobChange("A", ChangeKind.MODIFIED, ("route_id", "site_lat")),
                "B": JobChange("B", ChangeKind.MODIFIED, ("site_lat", "site_lon")),
            }
        )

        critical = changes.critical_changes()

        assert [c.job_id for c in critical] == ["A"]
        assert critical[0].critical_fields == ("route_id",)
        assert "site_address" not in CRITICAL_FIELDS


# =============================================================================
# Per-job history
# =============================================================================


T = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)


def commit(detector, previous, new, at):
    changes = detector.detect(previous, new)
    detector.record_history(changes, previous, new, at)
    return changes


class TestJobHistory:
    """Tests for the per-job change history."""

    def test_records_lifecycle_newest_first(self, detector):
        """Added, modified and removed entries are kept; unchanged are not."""
        first = {"A": make_job("A")}
        second = {"A": make_job("A", driver_id="D9")}

        commit(detector, {}, first, T)
        commit(detector, first, second, T + timedelta(minutes=1))
        commit(detector, second, dict(second), T + timedelta(minutes=2))
        commit(detector, second, {}, T + timedelta(minutes=3))

        history = detector.get_job_history("A")

        assert [e.kind for e in history] == [
            ChangeKind.REMOVED,
            ChangeKind.MODIFIED,
            ChangeKind.ADDED,
        ]
        assert history[0].recorded_at == T + timedelta(minutes=3)
        assert history[1].fields == (FieldChange("driver_id", "D1", "D9"),)

    def test_bounded_per_job(self):
        """Only the most recent history_size entries are kept."""
        detector = ChangeDetector(history_size=2)
        previous = {}
        for minute, driver in enumerate(["D1", "D2", "D3", "D4"]):
            snapshot = {"A": make_job("A", driver_id=driver)}
            commit(detector, previous, snapshot, T + timedelta(minutes=minute))
            previous = snapshot

        history = detector.get_job_history("A")

        assert len(history) == 2
        assert history[0].fields[0].new == "D4"
        assert history[1].fields[0].new == "D3"

    def test_limit(self, detector):
        previous = {}
        for minute, driver in enumerate(["D1", "D2", "D3"]):
            snapshot = {"A": make_job("A", driver_id=driver)}
            commit(detector, previous, snapshot, T + timedelta(minutes=minute))
            previous = snapshot

        assert len(detector.get_job_history("A", limit=1)) == 1
        assert len(detector.get_job_history("A", limit=None)) == 3

    def test_least_recently_changed_job_forgotten(self):
        """Past history_jobs, the job changed longest ago is dropped."""
        detector = ChangeDetector(history_jobs=2)
        commit(detector, {}, {"A": make_job("A")}, T)
        commit(detector, {}, {"B": make_job("B")}, T + timedelta(minutes=1))
        commit(detector, {}, {"C": make_job("C")}, T + timedelta(minutes=2))

        assert detector.get_job_history("A") == []
        assert len(detector.get_job_history("B")) == 1
        assert len(detector.get_job_history("C")) == 1

    def test_unknown_job_and_reset(self, detector):
        commit(detector, {}, {"A": make_job("A")}, T)

        assert detector.get_job_history("nope") == []
        detector.reset()
        assert detector.get_job_history("A") == []

    def test_disabled_when_size_zero(self):
        detector = ChangeDetector(history_size=0)

        changes = detector.detect({}, {"A": make_job("A")})

        assert detector.record_history(changes, {}, {"A": make_job("A")}, T) == 0
        assert detector.get_job_history("A") == []
