"""Autopause schema: users, linked accounts, EventSub subscriptions, redemption events.

Revision ID: 0001_autopause_schema
Revises:
Create Date: 2026-10-18 12:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_autopause_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider", sa.String(), nullable=False, server_default="twitch"),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("login", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "provider"),
    )
    op.create_index("ix_linked_accounts_id", "linked_accounts", ["id"])
    op.create_index("ix_linked_accounts_user_id", "linked_accounts", ["user_id"])

    # One standing interest per (user, reward); upserts target this constraint
    op.create_table(
        "eventsub_subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("twitch_subscription_id", sa.String(), nullable=False, unique=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("broadcaster_id", sa.String(), nullable=False),
        sa.Column("reward_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "reward_id", name="uq_eventsub_user_reward"),
    )
    op.create_index("ix_eventsub_subscriptions_id", "eventsub_subscriptions", ["id"])
    op.create_index("ix_eventsub_subscriptions_user_id", "eventsub_subscriptions", ["user_id"])
    op.create_index("ix_eventsub_subscriptions_broadcaster_id", "eventsub_subscriptions", ["broadcaster_id"])

    op.create_table(
        "redemption_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("twitch_redemption_id", sa.String(), nullable=False, unique=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("broadcaster_id", sa.String(), nullable=False),
        sa.Column("broadcaster_login", sa.String(), nullable=False),
        sa.Column("broadcaster_name", sa.String(), nullable=False),
        sa.Column("viewer_id", sa.String(), nullable=False),
        sa.Column("viewer_login", sa.String(), nullable=False),
        sa.Column("viewer_name", sa.String(), nullable=False),
        sa.Column("reward_id", sa.String(), nullable=False),
        sa.Column("reward_title", sa.String(), nullable=False),
        sa.Column("reward_cost", sa.Integer(), nullable=False),
        sa.Column("user_input", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_redemption_events_id", "redemption_events", ["id"])
    op.create_index("ix_redemption_events_user_id", "redemption_events", ["user_id"])
    op.create_index("ix_redemption_events_broadcaster_id", "redemption_events", ["broadcaster_id"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_table("redemption_events")
    op.drop_table("eventsub_subscriptions")
    op.drop_table("linked_accounts")
    op.drop_table("users")
