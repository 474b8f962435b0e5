"""
Core component tests: event bus, metrics, JWT helpers, error envelope, the
reconcile scheduler and the Redis health check.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import jwt
import pytest
import redis.asyncio as redis

from app.core.auth import create_jwt, decode_jwt
from app.core.bus import EventBus, SubscriptionRevoked
from app.core.errors import NotConfigured, RemoteApiError
from app.core.metrics import MetricsCollector
from app.core import redis as redis_client
from app.services.subscriptions import ReconcileReport
from app.tasks.reconcile import ReconcileScheduler


class TestEventBus:
    @pytest.mark.asyncio
    async def test_delivers_by_exact_type(self):
        bus = EventBus()
        seen = []

        async def handler(message):
            seen.append(message)

        bus.subscribe(SubscriptionRevoked, handler)
        message = SubscriptionRevoked("sub-1", "authorization_revoked")
        assert await bus.publish(message) == 1
        assert await bus.publish(object()) == 0
        assert seen == [message]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        bus = EventBus()
        seen = []

        async def broken(message):
            raise RuntimeError("boom")

        async def healthy(message):
            seen.append(message)

        bus.subscribe(SubscriptionRevoked, broken)
        bus.subscribe(SubscriptionRevoked, healthy)
        assert await bus.publish(SubscriptionRevoked("sub-1", "x")) == 1
        assert len(seen) == 1

    def test_unsubscribe(self):
        bus = EventBus()

        async def handler(message):
            pass

        bus.subscribe(SubscriptionRevoked, handler)
        assert bus.handler_count(SubscriptionRevoked) == 1
        bus.unsubscribe(SubscriptionRevoked, handler)
        bus.unsubscribe(SubscriptionRevoked, handler)
        assert bus.handler_count(SubscriptionRevoked) == 0


class TestMetrics:
    def test_counter_increment(self):
        m = MetricsCollector()
        m.inc("live_deliveries_total")
        m.inc("live_deliveries_total", 2)
        assert m.get("live_deliveries_total") == 3

    def test_labels_are_separate_series(self):
        m = MetricsCollector()
        m.inc("webhook_messages_total", outcome="duplicate")
        m.inc("webhook_messages_total", outcome="duplicate")
        m.inc("webhook_messages_total", outcome="notification")
        assert m.get("webhook_messages_total", outcome="duplicate") == 2
        assert m.get("webhook_messages_total", outcome="rejected") == 0
        assert m.total("webhook_messages_total") == 3

    def test_gauge_set(self):
        m = MetricsCollector()
        m.set_gauge("live_connections", 3)
        assert m.get("live_connections") == 3

    def test_prometheus_format(self):
        m = MetricsCollector()
        m.inc("redemptions_total", 5, outcome="routed")
        m.inc("redemptions_total", outcome="unrouted")
        m.set_gauge("live_connections", 2)
        text = m.to_prometheus()
        assert text.count("# TYPE autopause_redemptions_total counter") == 1
        assert 'autopause_redemptions_total{outcome="routed"} 5' in text
        assert 'autopause_redemptions_total{outcome="unrouted"} 1' in text
        assert "autopause_live_connections 2" in text
        assert "autopause_uptime_seconds" in text


class TestJwt:
    def test_round_trip(self):
        user_id = uuid.uuid4()
        token, jti = create_jwt(user_id)
        payload = decode_jwt(token)
        assert payload["sub"] == str(user_id)
        assert payload["jti"] == jti

    def test_expired(self):
        token, _ = create_jwt(uuid.uuid4(), expires_delta=timedelta(seconds=-1))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_jwt(token)


class TestErrors:
    def test_envelope(self):
        assert NotConfigured("missing callback").to_dict() == {
            "error": {"code": "NOT_CONFIGURED", "message": "missing callback", "status": 503}
        }

    def test_remote_error_carries_remote_details(self):
        exc = RemoteApiError("Failed", remote_status=409, remote_body="conflict")
        assert exc.status_code == 502
        assert (exc.remote_status, exc.remote_body) == (409, "conflict")


class TestReconcileScheduler:
    @pytest.mark.asyncio
    async def test_run_once_records_report(self):
        registry = AsyncMock()
        registry.reconcile.return_value = ReconcileReport(updated=1, missing=2, remote_total=3)
        scheduler = ReconcileScheduler(registry)
        report = await scheduler.run_once()
        assert report.missing == 2
        assert scheduler.last_report is report

    @pytest.mark.asyncio
    async def test_failure_logged_and_loop_continues(self):
        registry = AsyncMock()
        registry.reconcile.side_effect = [RemoteApiError("down"), ReconcileReport(remote_total=1)]
        scheduler = ReconcileScheduler(registry, interval=0.01, run_on_start=True)
        await scheduler.start()
        for _ in range(100):
            if registry.reconcile.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert registry.reconcile.await_count >= 2
        assert scheduler.last_report.remote_total == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        scheduler = ReconcileScheduler(AsyncMock())
        await scheduler.stop()


class TestRedisPing:
    @pytest.mark.asyncio
    async def test_reachable(self, monkeypatch):
        monkeypatch.setattr(redis_client, "_client", AsyncMock(ping=AsyncMock(return_value=True)))
        assert await redis_client.redis_ping() is True

    @pytest.mark.asyncio
    async def test_unreachable_reports_false(self, monkeypatch):
        client = AsyncMock(ping=AsyncMock(side_effect=redis.ConnectionError("refused")))
        monkeypatch.setattr(redis_client, "_client", client)
        assert await redis_client.redis_ping() is False
