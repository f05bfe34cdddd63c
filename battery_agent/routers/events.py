from __future__ import annotations

import asyncio
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from battery_agent.http_utils import broadcaster
from battery_agent.services.events import EventBroadcaster, format_sse

router = APIRouter(prefix="/v1")

KEEPALIVE_SECONDS = 15.0


async def _event_stream(request: Request, hub: EventBroadcaster) -> AsyncIterator[str]:
    queue = hub.subscribe()
    try:
        while not await request.is_disconnected():
            try:
                name, payload = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(name, payload)
    finally:
        hub.unsubscribe(queue)


@router.get("/events")
async def events(request: Request):
    """Server-sent battery info and monitor status events."""

    hub = broadcaster(request.app)
    return StreamingResponse(
        _event_stream(request, hub),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
