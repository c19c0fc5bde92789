"""Process-wide alert store shared by the engine and the HTTP operations."""

import asyncio
from collections import deque
from datetime import datetime
from typing import Iterator, Optional

import structlog

from dispatch_monitor.services.alerts.models import Alert, AlertHistoryEntry

logger = structlog.get_logger(__name__)


class AlertStore:
    """
    Owns the alert map and the lock that serializes every mutation.

    Holds the latest instance per alert_id. Cleared only by reset().
    """

    def __init__(self, history_size: int = 1000):
        self.lock = asyncio.Lock()
        self._alerts: dict[str, Alert] = {}
        # Dismissed alert ids whose condition has held since the dismissal
        self._suppressed: set[str] = set()
        self._history: deque[AlertHistoryEntry] = deque(maxlen=history_size)

    def __len__(self) -> int:
        return len(self._alerts)

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def put(self, alert: Alert) -> None:
        self._alerts[alert.alert_id] = alert

    def values(self) -> Iterator[Alert]:
        return iter(list(self._alerts.values()))

    def open_alerts(self) -> list[Alert]:
        return [a for a in self._alerts.values() if a.is_open]

    # Suppression

    def suppress(self, alert_id: str) -> None:
        self._suppressed.add(alert_id)

    def unsuppress(self, alert_id: str) -> None:
        self._suppressed.discard(alert_id)

    def is_suppressed(self, alert_id: str) -> bool:
        return alert_id in self._suppressed

    @property
    def suppressed_ids(self) -> frozenset[str]:
        return frozenset(self._suppressed)

    # History

    def record(
        self,
        alert: Alert,
        event: str,
        at: datetime,
        by: Optional[str] = None,
    ) -> None:
        self._history.append(
            AlertHistoryEntry(
                alert_id=alert.alert_id,
                rule_id=alert.rule_id,
                job_id=alert.job_id,
                severity=alert.severity,
                event=event,
                at=at,
                by=by,
            )
        )

    def history(self, limit: Optional[int] = None) -> list[AlertHistoryEntry]:
        """Lifecycle events, oldest first."""
        entries = list(self._history)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def reset(self) -> None:
        """Drop all alerts, suppression and history."""
        self._alerts.clear()
        self._suppressed.clear()
        self._history.clear()
        logger.info("alert_store_reset")
