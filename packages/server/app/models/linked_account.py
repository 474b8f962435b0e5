"""Linked remote (Twitch) account for a local user."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class LinkedAccount(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "linked_accounts"
    __table_args__ = (sa.UniqueConstraint("user_id", "provider"),)

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    provider: str = Field(default="twitch", nullable=False)
    account_id: str = Field(nullable=False)  # remote user id (broadcaster id)
    login: Optional[str] = None  # filled from the profile lookup
    display_name: Optional[str] = None
