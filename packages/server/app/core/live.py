"""
Live delivery fan-out to connected browser clients.

Features:
- Any number of connections per user (one per open extension tab)
- Bounded queue per connection; a full queue drops its oldest item
- Keepalive tick every 30 seconds on every connection
- Failures on one connection never affect the others
- Routed redemptions become "pause" events for their owner
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from app.core.bus import EventBus, RedemptionRouted
from app.core.metrics import MetricsCollector

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 30  # seconds
DEFAULT_QUEUE_SIZE = 100
PAUSE_EVENT = "pause"

_connection_ids = itertools.count(1)


@dataclass(frozen=True)
class LiveMessage:
    """One queued item. `event` is None for a keepalive."""

    event: Optional[str] = None
    data: Any = None

    @property
    def is_keepalive(self) -> bool:
        return self.event is None


KEEPALIVE = LiveMessage()
_CLOSED = object()


@dataclass(eq=False)
class LiveConnection:
    user_id: UUID
    queue_size: int = DEFAULT_QUEUE_SIZE
    id: int = field(default_factory=lambda: next(_connection_ids))
    dropped: int = 0
    closed: bool = False

    def __post_init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size + 1)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, message: LiveMessage) -> None:
        if self.closed:
            raise RuntimeError(f"connection {self.id} is closed")
        # One slot is reserved for the close marker
        if self._queue.qsize() >= self.queue_size:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[LiveMessage]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class LiveDeliveryHub:
    def __init__(
        self,
        metrics: MetricsCollector | None = None,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self._connections: dict[UUID, set[LiveConnection]] = {}
        self._metrics = metrics or MetricsCollector()
        self._keepalive_interval = keepalive_interval
        self._queue_size = queue_size
        self._task: asyncio.Task | None = None

    # --- Registration ---

    def subscribe(self, user_id: UUID) -> LiveConnection:
        conn = LiveConnection(user_id=user_id, queue_size=self._queue_size)
        self._connections.setdefault(user_id, set()).add(conn)
        self._update_gauge()
        logger.info("Live connection %s opened for user %s", conn.id, user_id)
        return conn

    def unsubscribe(self, conn: LiveConnection) -> None:
        conns = self._connections.get(conn.user_id)
        if conns is not None:
            conns.discard(conn)
            if not conns:
                del self._connections[conn.user_id]
        conn.close()
        self._update_gauge()
        logger.info("Live connection %s closed for user %s", conn.id, conn.user_id)

    def connection_count(self, user_id: UUID | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(c) for c in self._connections.values())

    def _update_gauge(self) -> None:
        self._metrics.set_gauge("live_connections", self.connection_count())

    # --- Delivery ---

    def _offer_all(self, conns: list[LiveConnection], message: LiveMessage) -> int:
        delivered = 0
        for conn in conns:
            try:
                conn.offer(message)
                delivered += 1
            except Exception:
                logger.exception("Failed to queue %s for connection %s", message.event or "keepalive", conn.id)
        return delivered

    def publish(self, user_id: UUID, event_type: str, payload: Any) -> int:
        """Queue an event on every connection of a user. Returns deliveries."""
        conns = list(self._connections.get(user_id, ()))
        if not conns:
            logger.info("No live connections for user %s", user_id)
            return 0
        delivered = self._offer_all(conns, LiveMessage(event_type, payload))
        self._metrics.inc("live_deliveries_total", delivered)
        logger.info("Sent %s event to %d connection(s) for user %s", event_type, delivered, user_id)
        return delivered

    def tick_keepalive(self) -> int:
        conns = [c for group in list(self._connections.values()) for c in list(group)]
        return self._offer_all(conns, KEEPALIVE)

    async def on_redemption_routed(self, message: RedemptionRouted) -> None:
        event = message.event
        self.publish(
            message.user_id,
            PAUSE_EVENT,
            {
                "rewardId": event.reward.id,
                "rewardTitle": event.reward.title,
                "viewerName": event.user_name,
                "cost": event.reward.cost,
                "timestamp": event.redeemed_at.isoformat(),
            },
        )

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(RedemptionRouted, self.on_redemption_routed)

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._keepalive_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for conns in list(self._connections.values()):
            for conn in list(conns):
                conn.close()
        self._connections.clear()
        self._update_gauge()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            self.tick_keepalive()

    def stats(self) -> dict[str, Any]:
        return {
            "totalUsers": len(self._connections),
            "connections": [
                {"userId": str(user_id), "connectionCount": len(conns)}
                for user_id, conns in self._connections.items()
            ],
        }
