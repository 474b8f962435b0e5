"""Redemption event model (immutable history; only status changes on redelivery)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class RedemptionEvent(UUIDMixin, SQLModel, table=True):
    __tablename__ = "redemption_events"

    twitch_redemption_id: str = Field(nullable=False, unique=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    broadcaster_id: str = Field(nullable=False, index=True)
    broadcaster_login: str = Field(nullable=False)
    broadcaster_name: str = Field(nullable=False)
    viewer_id: str = Field(nullable=False)
    viewer_login: str = Field(nullable=False)
    viewer_name: str = Field(nullable=False)
    reward_id: str = Field(nullable=False)
    reward_title: str = Field(nullable=False)
    reward_cost: int = Field(nullable=False)
    user_input: Optional[str] = None
    status: str = Field(nullable=False)
    redeemed_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    processed_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
