"""
Service container: builds every long-lived component once and owns their
start/stop order.

Routes reach it through `request.app.state.services`; tests build one with
fakes and hand it to `create_app()`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.bus import EventBus
from app.core.config import Settings
from app.core.database import SessionFactory, create_engine, create_session_factory, init_db
from app.core.live import LiveDeliveryHub
from app.core.metrics import MetricsCollector
from app.core.redis import close_redis, configure_redis, get_redis
from app.services.redemptions import EventRouter
from app.services.subscriptions import RemoteSubscriptions, SubscriptionRegistry
from app.services.twitch_api import TwitchClient
from app.tasks.reconcile import ReconcileScheduler
from app.webhooks.dedup import DuplicateFilter, MemoryDuplicateFilter, RedisDuplicateFilter
from app.webhooks.dispatcher import WebhookDispatcher

log = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    session_factory: SessionFactory
    metrics: MetricsCollector
    bus: EventBus
    remote: RemoteSubscriptions
    dedup: DuplicateFilter
    registry: SubscriptionRegistry
    router: EventRouter
    hub: LiveDeliveryHub
    dispatcher: WebhookDispatcher
    reconciler: ReconcileScheduler
    engine: Optional[AsyncEngine] = None
    create_schema: bool = False

    async def start(self) -> None:
        if self.create_schema and self.engine is not None:
            await init_db(self.engine)
        if isinstance(self.remote, TwitchClient):
            await self.remote.open()
        await self.dedup.start()
        await self.hub.start()
        if self.registry.configured and self.settings.twitch_client_id:
            await self.reconciler.start()
        log.info(
            "services.started",
            dedup_backend=self.settings.dedup_backend,
            eventsub_configured=self.registry.configured,
        )

    async def stop(self) -> None:
        await self.reconciler.stop()
        await self.dispatcher.drain()
        await self.hub.stop()
        await self.dedup.stop()
        if isinstance(self.remote, TwitchClient):
            await self.remote.close()
        if isinstance(self.dedup, RedisDuplicateFilter):
            await close_redis()
        if self.engine is not None:
            await self.engine.dispose()
        log.info("services.stopped")


def build_dedup(settings: Settings) -> DuplicateFilter:
    if settings.dedup_backend == "redis":
        configure_redis(settings.redis_url)
        return RedisDuplicateFilter(get_redis, retention_seconds=settings.dedup_retention_seconds)
    return MemoryDuplicateFilter(
        retention_seconds=settings.dedup_retention_seconds,
        sweep_interval_seconds=settings.dedup_sweep_interval_seconds,
    )


def build_services(
    settings: Settings,
    *,
    session_factory: SessionFactory | None = None,
    remote: RemoteSubscriptions | None = None,
    dedup: DuplicateFilter | None = None,
    create_schema: bool | None = None,
) -> Services:
    """Wire the components together. Keyword overrides replace individual parts."""
    engine = None
    if session_factory is None:
        engine = create_engine(settings.database_url, echo=settings.debug)
        session_factory = create_session_factory(engine)

    if remote is None:
        remote = TwitchClient(
            client_id=settings.twitch_client_id,
            client_secret=settings.twitch_client_secret,
            api_url=settings.twitch_api_url,
            token_url=settings.twitch_auth_url,
            request_timeout=settings.remote_request_timeout_seconds,
            refresh_margin_seconds=settings.token_refresh_margin_seconds,
        )

    metrics = MetricsCollector()
    bus = EventBus()
    dedup = dedup or build_dedup(settings)

    registry = SubscriptionRegistry(
        session_factory,
        remote,
        callback_url=settings.webhook_callback_url,
        secret=settings.twitch_eventsub_secret,
    )
    router = EventRouter(
        session_factory,
        registry,
        bus,
        metrics,
        default_limit=settings.events_default_limit,
        max_limit=settings.events_max_limit,
    )
    hub = LiveDeliveryHub(
        metrics,
        keepalive_interval=settings.keepalive_interval_seconds,
        queue_size=settings.live_queue_size,
    )
    hub.attach(bus)

    dispatcher = WebhookDispatcher(
        secret=settings.twitch_eventsub_secret,
        dedup=dedup,
        registry=registry,
        router=router,
        bus=bus,
        metrics=metrics,
        max_age_seconds=settings.signature_max_age_seconds,
    )
    reconciler = ReconcileScheduler(
        registry,
        interval=settings.reconcile_interval_seconds,
        run_on_start=settings.reconcile_on_startup,
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        metrics=metrics,
        bus=bus,
        remote=remote,
        dedup=dedup,
        registry=registry,
        router=router,
        hub=hub,
        dispatcher=dispatcher,
        reconciler=reconciler,
        engine=engine,
        create_schema=settings.create_schema if create_schema is None else create_schema,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container attached to the running app."""
    return request.app.state.services
