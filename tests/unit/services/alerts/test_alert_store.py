"""Unit tests for the alert store."""

from datetime import datetime, timezone

from dispatch_monitor.services.alerts.models import (
    Alert,
    AlertState,
    Severity,
    make_alert_id,
)
from dispatch_monitor.services.alerts.store import AlertStore

NOW = datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)


def make_alert(rule_id="rescheduled-status", job_id="J1", **overrides) -> Alert:
    fields = dict(
        alert_id=make_alert_id(rule_id, job_id),
        rule_id=rule_id,
        rule_name="Rescheduled Job",
        severity=Severity.MEDIUM,
        message=f"Job {job_id} has been rescheduled",
        job_id=job_id,
        first_seen_at=NOW,
        last_seen_at=NOW,
    )
    fields.update(overrides)
    return Alert(**fields)


class TestAlertStore:
    """Tests for AlertStore."""

    def test_put_and_get(self):
        store = AlertStore()
        alert = make_alert()
        store.put(alert)

        assert store.get(alert.alert_id) is alert
        assert len(store) == 1

    def test_open_alerts_excludes_terminal_states(self):
        """Only Active and Acknowledged alerts are open."""
        store = AlertStore()
        store.put(make_alert(job_id="A"))
        store.put(make_alert(job_id="B", state=AlertState.ACKNOWLEDGED))
        store.put(make_alert(job_id="C", state=AlertState.DISMISSED))
        store.put(make_alert(job_id="D", state=AlertState.RESOLVED))

        assert sorted(a.job_id for a in store.open_alerts()) == ["A", "B"]
        assert len(list(store.values())) == 4

    def test_suppression(self):
        store = AlertStore()
        store.suppress("x")
        assert store.is_suppressed("x") is True
        assert store.suppressed_ids == frozenset({"x"})

        store.unsuppress("x")
        store.unsuppress("never-added")
        assert store.is_suppressed("x") is False

    def test_history_bounded(self):
        """History keeps only the most recent entries."""
        store = AlertStore(history_size=2)
        alert = make_alert()
        for event in ("created", "acknowledged", "resolved"):
            store.record(alert, event, NOW)

        assert [e.event for e in store.history()] == ["acknowledged", "resolved"]

    def test_history_limit(self):
        store = AlertStore()
        alert = make_alert()
        store.record(alert, "created", NOW)
        store.record(alert, "dismissed", NOW, by="ops")

        assert [e.event for e in store.history(limit=1)] == ["dismissed"]
        assert store.history(limit=0) == []
        assert store.history(limit=1)[0].by == "ops"

    def test_reset(self):
        store = AlertStore()
        alert = make_alert()
        store.put(alert)
        store.suppress(alert.alert_id)
        store.record(alert, "created", NOW)

        store.reset()

        assert len(store) == 0
        assert store.suppressed_ids == frozenset()
        assert store.history() == []
