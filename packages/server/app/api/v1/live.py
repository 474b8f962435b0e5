"""
Live delivery endpoints.

- GET /stream — SSE stream of "pause" events for the authenticated user
- GET /stats  — open connection counts per user
"""

from __future__ import annotations

import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from app.core.auth import AuthenticatedUser, get_authenticated_user_sse
from app.core.live import LiveConnection, LiveDeliveryHub
from app.core.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


async def live_event_generator(
    hub: LiveDeliveryHub,
    conn: LiveConnection,
) -> AsyncGenerator[ServerSentEvent, None]:
    """
    Stream one connection's queue:
    - `connected` with the user id first
    - queued events as they arrive
    - keepalives as SSE comments
    Disconnect (generator close) removes the connection from the hub.
    """
    try:
        yield ServerSentEvent(event="connected", data=json.dumps({"userId": str(conn.user_id)}))
        async for message in conn:
            if message.is_keepalive:
                yield ServerSentEvent(comment="heartbeat")
            else:
                yield ServerSentEvent(event=message.event, data=json.dumps(message.data))
    finally:
        hub.unsubscribe(conn)
        logger.info("SSE stream ended for user %s", conn.user_id)


@router.get("/stream")
async def stream_events(
    auth: AuthenticatedUser = Depends(get_authenticated_user_sse),
    services: Services = Depends(get_services),
):
    """
    Server-Sent Events stream for real-time redemption notifications.

    Accepts the JWT as a Bearer header or, for EventSource clients, as the
    `token` query parameter. A `: heartbeat` comment is sent every 30 seconds.
    """
    conn = services.hub.subscribe(auth.user_id)
    return EventSourceResponse(live_event_generator(services.hub, conn))


@router.get("/stats")
async def connection_stats(services: Services = Depends(get_services)):
    return services.hub.stats()
