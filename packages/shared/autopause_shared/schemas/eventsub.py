"""EventSub management schemas (subscriptions, linked identity, redemption history)."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    # The browser extension speaks camelCase
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class SubscribeRequest(_CamelModel):
    reward_id: str = Field(alias="rewardId", min_length=1, max_length=200)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SubscribeResponse(_CamelModel):
    success: bool = True
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    message: str


class UnsubscribeResponse(_CamelModel):
    success: bool = True
    message: str


class SubscriptionRead(_CamelModel):
    id: str
    reward_id: str = Field(alias="rewardId")
    broadcaster_id: str = Field(alias="broadcasterId")
    status: str
    created_at: datetime = Field(alias="createdAt")


class SubscriptionList(BaseModel):
    subscriptions: List[SubscriptionRead]


class LinkedIdentityRead(_CamelModel):
    twitch_user_id: str = Field(alias="twitchUserId")
    twitch_username: str = Field(alias="twitchUsername")
    display_name: Optional[str] = Field(default=None, alias="displayName")


class RedemptionRead(_CamelModel):
    id: str
    twitch_redemption_id: str = Field(alias="twitchRedemptionId")
    broadcaster_id: str = Field(alias="broadcasterId")
    broadcaster_name: str = Field(alias="broadcasterName")
    viewer_id: str = Field(alias="viewerId")
    viewer_name: str = Field(alias="viewerName")
    reward_id: str = Field(alias="rewardId")
    reward_title: str = Field(alias="rewardTitle")
    reward_cost: int = Field(alias="rewardCost")
    user_input: Optional[str] = Field(default=None, alias="userInput")
    status: str
    redeemed_at: datetime = Field(alias="redeemedAt")
    processed_at: datetime = Field(alias="processedAt")


class RedemptionList(BaseModel):
    events: List[RedemptionRead]


class SyncResponse(_CamelModel):
    success: bool = True
    message: str
    updated: int = 0
    missing: int = 0
    remote_total: int = Field(default=0, alias="remoteTotal")
