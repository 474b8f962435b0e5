"""Inbound Twitch EventSub webhook payloads."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Twitch timestamps carry nanoseconds; datetime holds microseconds
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def _truncate_fraction(value: Any) -> Any:
    if isinstance(value, str):
        return _EXCESS_FRACTION.sub(r"\1", value, count=1)
    return value


class RewardPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    cost: int
    prompt: str = ""


class RedemptionEventPayload(BaseModel):
    """A channel point custom reward redemption as delivered by EventSub."""

    model_config = ConfigDict(extra="ignore")

    id: str
    broadcaster_user_id: str
    broadcaster_user_login: str
    broadcaster_user_name: str
    user_id: str
    user_login: str
    user_name: str
    user_input: str = ""
    # unfulfilled, fulfilled or canceled; kept open so new values still route
    status: str = "unknown"
    reward: RewardPayload
    redeemed_at: datetime

    @field_validator("redeemed_at", mode="before")
    @classmethod
    def truncate_nanoseconds(cls, value: Any) -> Any:
        return _truncate_fraction(value)


class TransportPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    method: str
    callback: Optional[str] = None


class SubscriptionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    type: str
    version: str = "1"
    condition: dict[str, str] = Field(default_factory=dict)
    transport: Optional[TransportPayload] = None
    created_at: Optional[datetime] = None
    cost: int = 0

    @field_validator("created_at", mode="before")
    @classmethod
    def truncate_nanoseconds(cls, value: Any) -> Any:
        return _truncate_fraction(value)


class EventSubPayload(BaseModel):
    """Top-level webhook body: subscription plus an optional event or challenge."""

    model_config = ConfigDict(extra="ignore")

    subscription: SubscriptionPayload
    event: Optional[RedemptionEventPayload] = None
    challenge: Optional[str] = None
