"""
Redemption routing: match an incoming redemption to the user who subscribed
to its reward, persist it and announce it on the bus.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlmodel import select

from app.core.bus import EventBus, RedemptionRouted
from app.core.database import SessionFactory, dialect_insert, session_scope
from app.core.metrics import MetricsCollector
from app.models.redemption import RedemptionEvent
from app.services.subscriptions import SubscriptionRegistry
from autopause_shared.schemas.webhooks import RedemptionEventPayload

log = structlog.get_logger()

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


@dataclass
class RoutedRedemption:
    user_id: uuid.UUID
    stored_id: uuid.UUID


def clamp_limit(limit: int | None, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    if limit is None:
        return default
    return max(1, min(limit, maximum))


class EventRouter:
    def __init__(
        self,
        session_factory: SessionFactory,
        registry: SubscriptionRegistry,
        bus: EventBus,
        metrics: MetricsCollector | None = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ):
        self._sessions = session_factory
        self._registry = registry
        self._bus = bus
        self._metrics = metrics or MetricsCollector()
        self._default_limit = default_limit
        self._max_limit = max_limit

    async def route(self, event: RedemptionEventPayload) -> RoutedRedemption | None:
        """Persist and publish a redemption; returns None if nobody subscribed to it."""
        subscription = await self._registry.find_enabled(event.broadcaster_user_id, event.reward.id)
        if subscription is None:
            self._metrics.inc("redemptions_total", outcome="unrouted")
            log.info(
                "redemptions.no_subscriber",
                broadcaster_id=event.broadcaster_user_id,
                reward_id=event.reward.id,
                redemption_id=event.id,
            )
            return None

        stored_id = await self._store(subscription.user_id, event)
        self._metrics.inc("redemptions_total", outcome="routed")
        log.info(
            "redemptions.routed",
            user_id=str(subscription.user_id),
            redemption_id=event.id,
            reward_title=event.reward.title,
            viewer=event.user_name,
        )
        await self._bus.publish(RedemptionRouted(subscription.user_id, event, stored_id))
        return RoutedRedemption(subscription.user_id, stored_id)

    async def _store(self, user_id: uuid.UUID, event: RedemptionEventPayload) -> uuid.UUID:
        # Redelivery of the same redemption only refreshes its status
        async with session_scope(self._sessions) as session:
            table = RedemptionEvent.__table__
            stmt = dialect_insert(session, table).values(
                id=uuid.uuid4(),
                twitch_redemption_id=event.id,
                user_id=user_id,
                broadcaster_id=event.broadcaster_user_id,
                broadcaster_login=event.broadcaster_user_login,
                broadcaster_name=event.broadcaster_user_name,
                viewer_id=event.user_id,
                viewer_login=event.user_login,
                viewer_name=event.user_name,
                reward_id=event.reward.id,
                reward_title=event.reward.title,
                reward_cost=event.reward.cost,
                user_input=event.user_input or None,
                status=event.status,
                redeemed_at=event.redeemed_at,
                processed_at=datetime.now(timezone.utc),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.twitch_redemption_id],
                set_={"status": stmt.excluded.status},
            ).returning(table.c.id)
            result = await session.execute(stmt)
            return result.scalar_one()

    async def recent_for_user(self, user_id: uuid.UUID, limit: int | None = None) -> list[RedemptionEvent]:
        limit = clamp_limit(limit, self._default_limit, self._max_limit)
        async with self._sessions() as session:
            result = await session.execute(
                select(RedemptionEvent)
                .where(RedemptionEvent.user_id == user_id)
                .order_by(RedemptionEvent.redeemed_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
