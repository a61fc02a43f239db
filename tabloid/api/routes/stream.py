"""Server-Sent Events stream of run lifecycle events.

Endpoints:
    GET /api/stream     text/event-stream, one `data: <json>` per event
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from tabloid.runs.event_bus import EventBus, Subscription, get_event_bus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["stream"])

KEEPALIVE_S = 15.0


def format_sse(message: dict[str, Any]) -> str:
    return f"data: {json.dumps(message, default=str)}\n\n"


async def sse_messages(
    bus: EventBus,
    sub: Subscription,
    keepalive_s: float = KEEPALIVE_S,
) -> AsyncIterator[str]:
    """Yield SSE frames until the subscription closes or the client leaves."""
    try:
        yield "\n"
        while True:
            try:
                message = await sub.get(timeout=keepalive_s)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message is None:
                break
            yield format_sse(message)
    finally:
        bus.unsubscribe(sub)


@router.get("/stream")
async def stream_events(bus: EventBus = Depends(get_event_bus)):
    """Long-lived event stream; one subscription per connection."""
    sub = bus.subscribe()
    return StreamingResponse(
        sse_messages(bus, sub),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
