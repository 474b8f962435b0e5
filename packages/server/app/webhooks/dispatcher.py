"""
Inbound EventSub webhook handling.

Order of operations for every request:
1. Verify headers, signature and timestamp (400 / 403 on failure)
2. Parse the JSON body (400 unless it is a JSON object)
3. Classify by message type, then validate the payload that kind needs:
   - handshake:    echo the challenge as text/plain (never deduplicated)
   - notification: dedup, then route in a background task, reply 200 at once
   - revocation:   dedup, mark the subscription revoked, reply 200
   - anything else: dedup, log, reply 200

A notification or revocation whose body does not match the expected schema is
logged and acknowledged so the sender does not keep retrying it.

Replies are plain values; the HTTP layer only renders them. Nothing here
raises to the sender.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import structlog
from pydantic import ValidationError

from app.core.bus import EventBus, SubscriptionRevoked
from app.core.errors import AutopauseError, MalformedRequest, VerificationFailed
from app.core.metrics import MetricsCollector
from app.webhooks.dedup import DuplicateFilter
from app.webhooks.verification import (
    DEFAULT_MAX_AGE_SECONDS,
    HEADER_MESSAGE_ID,
    HEADER_MESSAGE_RETRY,
    HEADER_MESSAGE_SIGNATURE,
    HEADER_MESSAGE_TIMESTAMP,
    HEADER_MESSAGE_TYPE,
    VerificationResult,
    verify_message,
)
from autopause_shared.schemas.common import MessageType, SubscriptionStatus
from autopause_shared.schemas.webhooks import (
    EventSubPayload,
    RedemptionEventPayload,
    SubscriptionPayload,
)

log = structlog.get_logger()

OK_BODY = {"status": "ok"}


@dataclass
class WebhookReply:
    status_code: int
    body: Any
    media_type: str = "application/json"

    @classmethod
    def ok(cls) -> "WebhookReply":
        return cls(200, OK_BODY)

    @classmethod
    def rejected(cls, error: AutopauseError) -> "WebhookReply":
        return cls(error.status_code, {"error": error.message, "code": error.code})


class _StatusWriter(Protocol):
    async def update_status(self, twitch_subscription_id: str, status: str) -> int: ...


class _Router(Protocol):
    async def route(self, event: RedemptionEventPayload) -> Any: ...


class WebhookDispatcher:
    def __init__(
        self,
        secret: str,
        dedup: DuplicateFilter,
        registry: _StatusWriter,
        router: _Router,
        bus: EventBus,
        metrics: MetricsCollector | None = None,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    ):
        self._secret = secret
        self._dedup = dedup
        self._registry = registry
        self._router = router
        self._bus = bus
        self._metrics = metrics or MetricsCollector()
        self._max_age = max_age_seconds
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def handle(self, headers: Mapping[str, str], body: bytes) -> WebhookReply:
        # Starlette headers are case-insensitive; plain dicts from tests may not be
        lowered = {k.lower(): v for k, v in headers.items()}
        message_id = lowered.get(HEADER_MESSAGE_ID)
        message_type = lowered.get(HEADER_MESSAGE_TYPE)

        result = verify_message(
            message_id,
            lowered.get(HEADER_MESSAGE_TIMESTAMP),
            message_type,
            body,
            lowered.get(HEADER_MESSAGE_SIGNATURE),
            self._secret,
            max_age_seconds=self._max_age,
        )
        if result is VerificationResult.MISSING_HEADERS:
            self._metrics.inc("webhook_messages_total", outcome="rejected")
            log.warning("webhook.missing_headers", message_id=message_id)
            return WebhookReply.rejected(MalformedRequest("Missing required headers"))
        if not result.ok:
            self._metrics.inc("webhook_messages_total", outcome="rejected")
            log.warning("webhook.verification_failed", message_id=message_id, reason=result.value)
            return WebhookReply.rejected(VerificationFailed("Invalid signature"))

        try:
            data = json.loads(body)
        except ValueError as exc:
            data, error = None, str(exc)
        else:
            error = None if isinstance(data, dict) else "body is not a JSON object"
        if error is not None:
            self._metrics.inc("webhook_messages_total", outcome="malformed")
            log.warning("webhook.invalid_body", message_id=message_id, error=error[:200])
            return WebhookReply.rejected(MalformedRequest("Invalid JSON body"))

        if message_type == MessageType.HANDSHAKE.value:
            return self._handle_handshake(data)

        if await self._dedup.check_and_mark(message_id):
            self._metrics.inc("webhook_messages_total", outcome="duplicate")
            log.info(
                "webhook.duplicate",
                message_id=message_id,
                retry=lowered.get(HEADER_MESSAGE_RETRY),
            )
            return WebhookReply.ok()

        # The sender only ever sees 2xx from here on; payloads we cannot use are logged
        if message_type == MessageType.NOTIFICATION.value:
            self._handle_notification(message_id, data)
        elif message_type == MessageType.REVOCATION.value:
            await self._handle_revocation(message_id, data)
        else:
            self._metrics.inc("webhook_messages_total", outcome="unknown")
            log.warning("webhook.unknown_type", message_id=message_id, message_type=message_type)
        return WebhookReply.ok()

    def _handle_handshake(self, data: dict[str, Any]) -> WebhookReply:
        challenge = data.get("challenge")
        subscription_id = _subscription_id(data)
        if not isinstance(challenge, str) or not challenge:
            self._metrics.inc("webhook_messages_total", outcome="malformed")
            log.warning("webhook.handshake_without_challenge", subscription_id=subscription_id)
            return WebhookReply.rejected(MalformedRequest("Missing challenge"))
        self._metrics.inc("webhook_messages_total", outcome="handshake")
        log.info("webhook.handshake", subscription_id=subscription_id)
        return WebhookReply(200, challenge, "text/plain")

    def _handle_notification(self, message_id: str, data: dict[str, Any]) -> None:
        try:
            payload = EventSubPayload.model_validate(data)
        except ValidationError as exc:
            self._metrics.inc("webhook_messages_total", outcome="unrecognized")
            log.warning(
                "webhook.unrecognized_notification",
                message_id=message_id,
                subscription_id=_subscription_id(data),
                error=str(exc)[:200],
            )
            return
        self._metrics.inc("webhook_messages_total", outcome="notification")
        if payload.event is None:
            log.warning("webhook.notification_without_event", message_id=message_id)
            return
        task = asyncio.create_task(self._process_notification(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_notification(self, payload: EventSubPayload) -> None:
        subscription = payload.subscription
        try:
            if subscription.status == SubscriptionStatus.ENABLED.value:
                await self._registry.update_status(subscription.id, SubscriptionStatus.ENABLED.value)
            await self._router.route(payload.event)
        except Exception:
            self._metrics.inc("webhook_processing_errors_total", stage="notification")
            log.exception(
                "webhook.processing_failed",
                subscription_id=subscription.id,
                redemption_id=payload.event.id if payload.event else None,
            )

    async def _handle_revocation(self, message_id: str, data: dict[str, Any]) -> None:
        try:
            subscription = SubscriptionPayload.model_validate(data.get("subscription"))
        except ValidationError as exc:
            self._metrics.inc("webhook_messages_total", outcome="unrecognized")
            log.warning("webhook.unrecognized_revocation", message_id=message_id, error=str(exc)[:200])
            return
        self._metrics.inc("webhook_messages_total", outcome="revocation")
        log.warning("webhook.revoked", subscription_id=subscription.id, reason=subscription.status)
        try:
            await self._registry.update_status(
                subscription.id, SubscriptionStatus.AUTHORIZATION_REVOKED.value
            )
            await self._bus.publish(SubscriptionRevoked(subscription.id, subscription.status))
        except Exception:
            self._metrics.inc("webhook_processing_errors_total", stage="revocation")
            log.exception("webhook.revocation_failed", subscription_id=subscription.id)

    async def drain(self) -> None:
        """Wait for every in-flight notification task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _subscription_id(data: dict[str, Any]) -> Any:
    subscription = data.get("subscription")
    return subscription.get("id") if isinstance(subscription, dict) else None
