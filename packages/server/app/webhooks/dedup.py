"""Webhook message deduplication.

Twitch delivers at least once, so the same message id can arrive again after a
timeout or a non-2xx reply. A message id seen within the retention window is
acknowledged without re-running business logic.

Two backends share one interface:
- MemoryDuplicateFilter: per-process dict with per-entry TTL and a sweep task
- RedisDuplicateFilter: SET NX EX, for deployments running several workers

Retention is independent of the signature max age: the verifier bounds
replays of old messages, this bounds duplicate processing of fresh ones.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Protocol

import redis.asyncio as redis
import structlog

log = structlog.get_logger()

DEFAULT_RETENTION_SECONDS = 600
_KEY_PREFIX = "autopause:webhook:seen"


class DuplicateFilter(Protocol):
    async def seen(self, message_id: str) -> bool: ...

    async def mark_seen(self, message_id: str) -> None: ...

    async def check_and_mark(self, message_id: str) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class MemoryDuplicateFilter:
    """Time-bounded set of processed message ids.

    check_and_mark() never awaits between the lookup and the insert, so on a
    single event loop it is an atomic insert-if-absent.
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._retention = retention_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _is_live(self, message_id: str, now: float) -> bool:
        inserted = self._entries.get(message_id)
        return inserted is not None and now - inserted < self._retention

    async def seen(self, message_id: str) -> bool:
        return self._is_live(message_id, self._clock())

    async def mark_seen(self, message_id: str) -> None:
        self._entries[message_id] = self._clock()

    async def check_and_mark(self, message_id: str) -> bool:
        now = self._clock()
        if self._is_live(message_id, now):
            return True
        self._entries[message_id] = now
        return False

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [mid for mid, inserted in self._entries.items() if now - inserted >= self._retention]
        for mid in expired:
            del self._entries[mid]
        if expired:
            log.debug("dedup.swept", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._entries.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()


class RedisDuplicateFilter:
    """Shared filter: one key per message id, expiring after the retention window."""

    def __init__(
        self,
        get_client: Callable[[], Awaitable[redis.Redis]],
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
    ):
        self._get_client = get_client
        self._retention = int(retention_seconds)

    @staticmethod
    def _key(message_id: str) -> str:
        return f"{_KEY_PREFIX}:{message_id}"

    async def seen(self, message_id: str) -> bool:
        client = await self._get_client()
        return await client.exists(self._key(message_id)) > 0

    async def mark_seen(self, message_id: str) -> None:
        client = await self._get_client()
        await client.set(self._key(message_id), "1", ex=self._retention)

    async def check_and_mark(self, message_id: str) -> bool:
        client = await self._get_client()
        # SET NX returns True if the key was created (first sighting)
        was_set = await client.set(self._key(message_id), "1", nx=True, ex=self._retention)
        return not was_set

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None
