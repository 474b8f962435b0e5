"""
In-process event bus with typed topics.

Producers publish frozen dataclass messages; consumers subscribe to a message
class. Every handler is awaited on its own, so one failing consumer never
blocks another, and each handler can be exercised directly with a synthetic
message.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from autopause_shared.schemas.webhooks import RedemptionEventPayload

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RedemptionRouted:
    """A redemption was matched to its owning user and persisted."""

    user_id: uuid.UUID
    event: RedemptionEventPayload
    stored_id: uuid.UUID


@dataclass(frozen=True)
class SubscriptionRevoked:
    """Twitch revoked a subscription (authorization removed, user banned, ...)."""

    twitch_subscription_id: str
    reason: str


M = TypeVar("M")
Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, message_type: type[M], handler: Callable[[M], Awaitable[None]]) -> None:
        self._handlers[message_type].append(handler)

    def unsubscribe(self, message_type: type[M], handler: Callable[[M], Awaitable[None]]) -> None:
        try:
            self._handlers[message_type].remove(handler)
        except ValueError:
            pass

    def handler_count(self, message_type: type) -> int:
        return len(self._handlers.get(message_type, []))

    async def publish(self, message: Any) -> int:
        """Deliver a message to every handler of its exact type. Returns handlers that succeeded."""
        delivered = 0
        for handler in list(self._handlers.get(type(message), [])):
            try:
                await handler(message)
                delivered += 1
            except Exception:
                log.exception(
                    "bus.handler_error",
                    topic=type(message).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )
        return delivered
