"""Typed notification channel for poll and alert events."""

from dispatch_monitor.services.events.schemas import EventTopic, MonitorEvent
from dispatch_monitor.services.events.bus import (
    EventBus,
    InMemoryEventBus,
    get_event_bus,
    set_event_bus,
    reset_event_bus,
)

__all__ = [
    "MonitorEvent",
    "EventTopic",
    "EventBus",
    "InMemoryEventBus",
    "get_event_bus",
    "set_event_bus",
    "reset_event_bus",
]
