"""
EventSub management endpoints for the browser extension.

- POST   /subscribe            — subscribe to a reward's redemptions
- DELETE /subscribe/{rewardId} — remove that subscription
- GET    /subscriptions        — the caller's subscriptions
- GET    /twitch-info          — the caller's linked Twitch identity
- GET    /events               — recent redemptions (limit default 50, max 100)
- POST   /sync                 — reconcile local statuses with Twitch
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.errors import NoLinkedAccount, NotFound
from app.core.services import Services, get_services
from autopause_shared.schemas.eventsub import (
    LinkedIdentityRead,
    RedemptionList,
    RedemptionRead,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionList,
    SubscriptionRead,
    SyncResponse,
    UnsubscribeResponse,
)

router = APIRouter()


@router.post("/subscribe", response_model=SubscribeResponse, response_model_by_alias=True)
async def subscribe(
    body: SubscribeRequest,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    """Subscribe the caller to redemptions of one custom reward."""
    result = await services.registry.subscribe(auth.user_id, body.reward_id)
    message = (
        "Subscription already exists"
        if result.already_exists
        else "Subscription created successfully"
    )
    return SubscribeResponse(subscription_id=result.twitch_subscription_id, message=message)


@router.delete(
    "/subscribe/{rewardId}",
    response_model=UnsubscribeResponse,
    response_model_by_alias=True,
)
async def unsubscribe(
    rewardId: str,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    await services.registry.unsubscribe(auth.user_id, rewardId)
    return UnsubscribeResponse(message="Subscription deleted successfully")


@router.get("/subscriptions", response_model=SubscriptionList, response_model_by_alias=True)
async def list_subscriptions(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    records = await services.registry.list_for_user(auth.user_id)
    return SubscriptionList(
        subscriptions=[
            SubscriptionRead(
                id=str(r.id),
                reward_id=r.reward_id,
                broadcaster_id=r.broadcaster_id,
                status=r.status,
                created_at=r.created_at,
            )
            for r in records
        ]
    )


@router.get("/twitch-info", response_model=LinkedIdentityRead, response_model_by_alias=True)
async def twitch_info(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    try:
        identity = await services.registry.get_linked_identity(auth.user_id)
    except NoLinkedAccount:
        raise NotFound("No Twitch account linked")
    return LinkedIdentityRead(
        twitch_user_id=identity.twitch_user_id,
        twitch_username=identity.twitch_username,
        display_name=identity.display_name,
    )


@router.get("/events", response_model=RedemptionList, response_model_by_alias=True)
async def recent_events(
    limit: Optional[int] = Query(None),
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    """Recent redemptions for the caller, newest first."""
    events = await services.router.recent_for_user(auth.user_id, limit)
    return RedemptionList(
        events=[
            RedemptionRead(
                id=str(e.id),
                twitch_redemption_id=e.twitch_redemption_id,
                broadcaster_id=e.broadcaster_id,
                broadcaster_name=e.broadcaster_name,
                viewer_id=e.viewer_id,
                viewer_name=e.viewer_name,
                reward_id=e.reward_id,
                reward_title=e.reward_title,
                reward_cost=e.reward_cost,
                user_input=e.user_input,
                status=e.status,
                redeemed_at=e.redeemed_at,
                processed_at=e.processed_at,
            )
            for e in events
        ]
    )


@router.post("/sync", response_model=SyncResponse, response_model_by_alias=True)
async def sync(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    services: Services = Depends(get_services),
):
    report = await services.registry.reconcile()
    return SyncResponse(
        message="Sync completed",
        updated=report.updated,
        missing=report.missing,
        remote_total=report.remote_total,
    )
