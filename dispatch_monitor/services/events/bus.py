"""Event bus for real-time monitor notifications.

Typed publish/subscribe channel between the polling orchestrator, operator
actions and SSE consumers. Single-process, in-memory.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import AsyncIterator, Optional, Set

import structlog

from dispatch_monitor.services.events.schemas import (
    ALERT_TOPICS,
    POLL_TOPICS,
    MonitorEvent,
)

logger = structlog.get_logger(__name__)


class EventBus(ABC):
    """Abstract interface for event distribution."""

    @abstractmethod
    def subscribe(
        self,
        subscriber_id: str,
        topics: Set[str],
        last_event_id: Optional[str] = None,
    ) -> AsyncIterator[MonitorEvent]:
        """
        Subscribe to events (async generator).

        Args:
            subscriber_id: Unique identifier for this subscriber (for cleanup)
            topics: Topic categories ("poll", "alert") or specific topics
            last_event_id: Optional event ID for reconnection replay

        Yields:
            MonitorEvent objects matching the topics.
        """
        ...

    @abstractmethod
    async def publish(self, event: MonitorEvent) -> int:
        """
        Publish an event to all matching subscribers.

        Returns:
            Number of subscribers that received the event.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, subscriber_id: str) -> None:
        """Clean up subscriber on disconnect."""
        ...

    @abstractmethod
    def subscriber_count(self) -> int:
        """Return current number of active subscribers."""
        ...


def expand_topics(topics: Set[str]) -> Set[str]:
    """Expand category names ("poll", "alert") to specific topics."""
    result: Set[str] = set()
    for topic in topics:
        if topic == "poll":
            result.update(POLL_TOPICS)
        elif topic == "alert":
            result.update(ALERT_TOPICS)
        else:
            result.add(topic)
    return result


class InMemoryEventBus(EventBus):
    """
    In-memory event bus.

    Features:
    - Topic-based subscription
    - Event buffer for reconnection (Last-Event-ID support)

    Limitations:
    - Events only reach subscribers in same process
    - Event buffer lost on restart
    """

    def __init__(self, buffer_size: int = 1000, buffer_ttl_seconds: int = 300):
        """
        Args:
            buffer_size: Maximum events to buffer for reconnection
            buffer_ttl_seconds: Time to keep events in buffer (5 min default)
        """
        self._subscribers: dict[str, asyncio.Queue[MonitorEvent]] = {}
        self._filters: dict[str, Set[str]] = {}
        self._event_buffer: deque[tuple[float, MonitorEvent]] = deque(
            maxlen=buffer_size
        )
        self._buffer_ttl = buffer_ttl_seconds
        self._event_counter: int = 0
        self._lock = asyncio.Lock()

    def _generate_event_id(self) -> str:
        """Generate monotonic event ID."""
        self._event_counter += 1
        return f"evt-{self._event_counter}"

    async def subscribe(
        self,
        subscriber_id: str,
        topics: Set[str],
        last_event_id: Optional[str] = None,
    ) -> AsyncIterator[MonitorEvent]:
        expanded_topics = expand_topics(topics)
        queue: asyncio.Queue[MonitorEvent] = asyncio.Queue()

        async with self._lock:
            self._subscribers[subscriber_id] = queue
            self._filters[subscriber_id] = expanded_topics

        logger.info(
            "sse_subscriber_added",
            subscriber_id=subscriber_id,
            topics=sorted(expanded_topics),
            total_subscribers=len(self._subscribers),
        )

        try:
            if last_event_id:
                for event in self._replay_from(last_event_id, expanded_topics):
                    yield event

            while True:
                event = await queue.get()
                yield event
        finally:
            await self.unsubscribe(subscriber_id)

    def _replay_from(self, last_event_id: str, topics: Set[str]) -> list[MonitorEvent]:
        """Buffered events after last_event_id, for Last-Event-ID reconnection."""
        found_start = False
        cutoff = time.monotonic() - self._buffer_ttl
        replay: list[MonitorEvent] = []

        for timestamp, event in self._event_buffer:
            if timestamp < cutoff:
                continue
            if not found_start:
                if event.id == last_event_id:
                    found_start = True
                continue
            if event.topic in topics:
                replay.append(event)

        return replay

    async def publish(self, event: MonitorEvent) -> int:
        if not event.id:
            event.id = self._generate_event_id()

        async with self._lock:
            self._event_buffer.append((time.monotonic(), event))

        count = 0
        for sub_id, queue in list(self._subscribers.items()):
            if event.topic in self._filters.get(sub_id, set()):
                queue.put_nowait(event)
                count += 1

        if count > 0:
            logger.debug(
                "sse_event_published",
                event_id=event.id,
                topic=event.topic,
                subscriber_count=count,
            )

        return count

    async def unsubscribe(self, subscriber_id: str) -> None:
        async with self._lock:
            self._subscribers.pop(subscriber_id, None)
            self._filters.pop(subscriber_id, None)

        logger.info(
            "sse_subscriber_removed",
            subscriber_id=subscriber_id,
            remaining_subscribers=len(self._subscribers),
        )

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def buffer_size(self) -> int:
        """Return current event buffer size."""
        return len(self._event_buffer)


# ===========================================
# Singleton instance
# ===========================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """
    Get the singleton event bus instance.

    Returns:
        EventBus instance (singleton per process)
    """
    global _event_bus
    if _event_bus is None:
        from dispatch_monitor.config import get_settings

        settings = get_settings()
        _event_bus = InMemoryEventBus(buffer_size=settings.event_bus_buffer_size)
        logger.info(
            "event_bus_initialized",
            buffer_size=settings.event_bus_buffer_size,
        )
    return _event_bus


def set_event_bus(bus: Optional[EventBus]) -> None:
    """Set the event bus instance (for testing or runtime replacement)."""
    global _event_bus
    _event_bus = bus


def reset_event_bus() -> None:
    """Reset the event bus singleton (for testing)."""
    global _event_bus
    _event_bus = None
