"""Event schemas for monitor notifications."""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from dispatch_monitor.services.alerts.models import Alert


# Event topics
EventTopic = Literal[
    # Poll cycle events
    "poll.completed",
    "poll.failed",
    "poll.skipped",
    # Alert lifecycle events
    "alert.created",
    "alert.resolved",
    "alert.acknowledged",
    "alert.dismissed",
]

# Topic categories for filtering
POLL_TOPICS = {"poll.completed", "poll.failed", "poll.skipped"}
ALERT_TOPICS = {
    "alert.created",
    "alert.resolved",
    "alert.acknowledged",
    "alert.dismissed",
}


class MonitorEvent(BaseModel):
    """
    Event payload for SSE notifications.

    Designed for browser EventSource consumption with:
    - Monotonic ID for Last-Event-ID reconnection
    - Topic-based routing
    """

    id: str = Field(default="", description="Monotonic event ID for reconnection")
    topic: EventTopic = Field(..., description="Event topic (e.g., 'alert.created')")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Event timestamp (UTC)",
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")

    def to_sse(self) -> str:
        """
        Format as SSE message with id: line for reconnection.

        Returns:
            SSE-formatted string:
                id: <event_id>
                event: <topic>
                data: <json_payload>

        """
        return f"id: {self.id}\nevent: {self.topic}\ndata: {self.model_dump_json()}\n\n"


# Convenience constructors


def alert_event(topic: EventTopic, alert: Alert) -> MonitorEvent:
    """Create an alert.* event from an alert snapshot."""
    payload: dict[str, Any] = {
        "alert_id": alert.alert_id,
        "rule_id": alert.rule_id,
        "job_id": alert.job_id,
        "severity": alert.severity.value,
        "state": alert.state.value,
        "message": alert.message,
    }
    if alert.acknowledged_by and topic == "alert.acknowledged":
        payload["acknowledged_by"] = alert.acknowledged_by
    if alert.dismissed_by and topic == "alert.dismissed":
        payload["dismissed_by"] = alert.dismissed_by
    return MonitorEvent(topic=topic, payload=payload)


def poll_completed(
    duration_ms: int,
    jobs_total: int,
    changes: dict[str, int],
    alerts_new: int,
    alerts_resolved: int,
    telemetry_error: Optional[str] = None,
) -> MonitorEvent:
    """Create a poll.completed event."""
    payload: dict[str, Any] = {
        "duration_ms": duration_ms,
        "jobs_total": jobs_total,
        "changes": changes,
        "alerts_new": alerts_new,
        "alerts_resolved": alerts_resolved,
    }
    if telemetry_error:
        payload["telemetry_error"] = telemetry_error
    return MonitorEvent(topic="poll.completed", payload=payload)


def poll_failed(error: str, consecutive_failures: int) -> MonitorEvent:
    """Create a poll.failed event."""
    return MonitorEvent(
        topic="poll.failed",
        payload={"error": error, "consecutive_failures": consecutive_failures},
    )


def poll_skipped(reason: str, skipped_cycles: int) -> MonitorEvent:
    """Create a poll.skipped event."""
    return MonitorEvent(
        topic="poll.skipped",
        payload={"reason": reason, "skipped_cycles": skipped_cycles},
    )
