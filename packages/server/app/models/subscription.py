"""EventSub subscription model: one standing interest per (user, reward)."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class EventSubSubscription(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "eventsub_subscriptions"
    __table_args__ = (sa.UniqueConstraint("user_id", "reward_id", name="uq_eventsub_user_reward"),)

    twitch_subscription_id: str = Field(nullable=False, unique=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    broadcaster_id: str = Field(nullable=False, index=True)
    reward_id: str = Field(nullable=False)
    status: str = Field(default="pending", nullable=False)  # see SubscriptionStatus
