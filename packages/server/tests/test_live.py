"""
Live delivery tests: fan-out, bounded queues, failure isolation, keepalive,
stats and the SSE generator.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone

import pytest

from app.api.v1.live import live_event_generator
from app.core.bus import EventBus, RedemptionRouted
from app.core.live import KEEPALIVE, LiveDeliveryHub, LiveMessage
from app.core.metrics import MetricsCollector
from autopause_shared.schemas.webhooks import RedemptionEventPayload
from conftest import redemption_event


async def _drain(conn, expected: int) -> list[LiveMessage]:
    items = []
    iterator = conn.__aiter__()
    for _ in range(expected):
        items.append(await asyncio.wait_for(iterator.__anext__(), timeout=1))
    return items


class TestFanOut:
    @pytest.mark.asyncio
    async def test_publish_reaches_every_connection_of_user(self):
        hub = LiveDeliveryHub()
        user = uuid.uuid4()
        other = uuid.uuid4()
        a, b = hub.subscribe(user), hub.subscribe(user)
        c = hub.subscribe(other)

        assert hub.publish(user, "pause", {"x": 1}) == 2
        assert a.pending == b.pending == 1
        assert c.pending == 0

    @pytest.mark.asyncio
    async def test_publish_without_connections(self):
        hub = LiveDeliveryHub()
        assert hub.publish(uuid.uuid4(), "pause", {}) == 0

    @pytest.mark.asyncio
    async def test_failing_connection_does_not_block_others(self, monkeypatch):
        hub = LiveDeliveryHub()
        user = uuid.uuid4()
        broken, healthy = hub.subscribe(user), hub.subscribe(user)

        def boom(message):
            raise RuntimeError("socket gone")

        monkeypatch.setattr(broken, "offer", boom)
        assert hub.publish(user, "pause", {}) == 1
        assert healthy.pending == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        hub = LiveDeliveryHub(queue_size=2)
        user = uuid.uuid4()
        conn = hub.subscribe(user)
        for i in range(3):
            hub.publish(user, "pause", {"n": i})
        hub.unsubscribe(conn)

        items = [m async for m in conn]
        assert [m.data["n"] for m in items] == [1, 2]
        assert conn.dropped == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_mid_publish_is_safe(self):
        hub = LiveDeliveryHub()
        user = uuid.uuid4()
        conns = [hub.subscribe(user) for _ in range(3)]
        hub.unsubscribe(conns[1])
        assert hub.publish(user, "pause", {}) == 2
        assert hub.connection_count(user) == 2


class TestKeepaliveAndLifecycle:
    @pytest.mark.asyncio
    async def test_tick_enqueues_keepalive_everywhere(self):
        hub = LiveDeliveryHub()
        a = hub.subscribe(uuid.uuid4())
        b = hub.subscribe(uuid.uuid4())
        assert hub.tick_keepalive() == 2
        assert (await _drain(a, 1))[0] is KEEPALIVE
        assert (await _drain(b, 1))[0].is_keepalive

    @pytest.mark.asyncio
    async def test_keepalive_task_ticks(self):
        hub = LiveDeliveryHub(keepalive_interval=0.01)
        conn = hub.subscribe(uuid.uuid4())
        await hub.start()
        items = await _drain(conn, 2)
        await hub.stop()
        assert all(m.is_keepalive for m in items)

    @pytest.mark.asyncio
    async def test_stop_closes_connections(self):
        hub = LiveDeliveryHub()
        conn = hub.subscribe(uuid.uuid4())
        await hub.start()
        await hub.stop()
        assert conn.closed
        assert [m async for m in conn] == []
        assert hub.connection_count() == 0

    @pytest.mark.asyncio
    async def test_stats_and_gauge(self):
        metrics = MetricsCollector()
        hub = LiveDeliveryHub(metrics)
        user = uuid.uuid4()
        hub.subscribe(user)
        hub.subscribe(user)
        stats = hub.stats()
        assert stats["totalUsers"] == 1
        assert stats["connections"] == [{"userId": str(user), "connectionCount": 2}]
        assert metrics.get("live_connections") == 2


class TestPauseEvents:
    @pytest.mark.asyncio
    async def test_routed_redemption_becomes_pause_event(self):
        bus = EventBus()
        hub = LiveDeliveryHub()
        hub.attach(bus)
        user = uuid.uuid4()
        conn = hub.subscribe(user)

        event = RedemptionEventPayload.model_validate(redemption_event())
        await bus.publish(RedemptionRouted(user, event, uuid.uuid4()))

        (message,) = await _drain(conn, 1)
        assert message.event == "pause"
        assert message.data["rewardId"] == "R1"
        assert message.data["rewardTitle"] == "Pause the game"
        assert message.data["viewerName"] == "Ann"
        assert message.data["cost"] == 500
        assert datetime.fromisoformat(message.data["timestamp"]) == datetime(
            2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc
        )


class TestEventGenerator:
    @pytest.mark.asyncio
    async def test_connected_then_events_then_cleanup(self):
        hub = LiveDeliveryHub()
        user = uuid.uuid4()
        conn = hub.subscribe(user)
        hub.publish(user, "pause", {"rewardId": "R1"})
        hub.tick_keepalive()

        gen = live_event_generator(hub, conn)
        connected = await gen.__anext__()
        assert connected.event == "connected"
        assert json.loads(connected.data) == {"userId": str(user)}

        pause = await gen.__anext__()
        assert pause.event == "pause"
        assert json.loads(pause.data) == {"rewardId": "R1"}

        heartbeat = await gen.__anext__()
        assert heartbeat.comment == "heartbeat"

        await gen.aclose()
        assert hub.connection_count(user) == 0
