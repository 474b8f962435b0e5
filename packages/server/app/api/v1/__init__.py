"""
API Router

Routes used by the browser extension, mounted under /api.
"""

from fastapi import APIRouter
from . import eventsub, live

router = APIRouter()

router.include_router(eventsub.router, prefix="/eventsub", tags=["EventSub"])
router.include_router(live.router, prefix="/events", tags=["Events"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/eventsub/subscribe",
            "/eventsub/subscriptions",
            "/eventsub/twitch-info",
            "/eventsub/events",
            "/eventsub/sync",
            "/events/stream",
            "/events/stats",
        ],
    }
