"""
Twitch EventSub webhook endpoint.

- POST /webhook/twitch — verification handshakes, notifications, revocations
- GET  /webhook/twitch — health probe for the callback URL
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from app.core.services import Services, get_services

router = APIRouter()


@router.post("/twitch", summary="Receive EventSub messages")
async def receive_eventsub(request: Request, services: Services = Depends(get_services)) -> Response:
    # Signature covers the raw bytes, so the body is read before any parsing
    body = await request.body()
    reply = await services.dispatcher.handle(request.headers, body)
    if reply.media_type == "text/plain":
        return PlainTextResponse(reply.body, status_code=reply.status_code)
    return JSONResponse(reply.body, status_code=reply.status_code)


@router.get("/twitch", summary="Webhook endpoint health")
async def webhook_health(services: Services = Depends(get_services)):
    return {
        "status": "ok",
        "message": "Twitch EventSub webhook endpoint",
        "configured": services.registry.configured,
    }
