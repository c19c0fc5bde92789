"""SSE (Server-Sent Events) endpoint for real-time monitor notifications.

Streams poll cycle outcomes and alert lifecycle changes.
"""

from uuid import uuid4

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from dispatch_monitor.services.events import get_event_bus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.get(
    "/stream",
    summary="SSE event stream",
    response_class=StreamingResponse,
)
async def event_stream(
    request: Request,
    topics: str = Query(
        default="poll,alert",
        description="Comma-separated topics or categories (poll, alert)",
    ),
):
    """
    Server-Sent Events stream.

    **Topics**:
    - `poll` - poll.completed, poll.failed, poll.skipped
    - `alert` - alert.created, alert.resolved, alert.acknowledged, alert.dismissed

    **Event format**:
    ```
    id: evt-123
    event: alert.created
    data: {"id":"evt-123","topic":"alert.created","payload":{...}}

    ```

    **Reconnection**: Browser sends `Last-Event-ID` header on reconnect.
    Server replays missed events from buffer (5 min window).
    """
    topic_set = set(t.strip() for t in topics.split(",") if t.strip())
    if not topic_set:
        topic_set = {"poll", "alert"}

    last_event_id = request.headers.get("last-event-id")
    subscriber_id = f"sse-{uuid4()}"

    logger.info(
        "sse_connection_started",
        subscriber_id=subscriber_id,
        topics=sorted(topic_set),
        last_event_id=last_event_id,
        is_reconnect=last_event_id is not None,
    )

    async def generate():
        """Generate SSE events."""
        bus = get_event_bus()

        # Send initial comment to establish connection
        yield ": connected\n\n"

        try:
            async for event in bus.subscribe(
                subscriber_id=subscriber_id,
                topics=topic_set,
                last_event_id=last_event_id,
            ):
                yield event.to_sse()
        finally:
            logger.info("sse_connection_closed", subscriber_id=subscriber_id)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
