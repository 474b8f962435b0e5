"""
Shared fixtures: SQLite database, fake Twitch client, wired services and an
ASGI test client.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.auth import create_jwt
from app.core.config import Settings
from app.core.database import create_engine, create_session_factory, init_db, session_scope
from app.core.errors import RemoteApiError
from app.main import create_app
from app.models.linked_account import LinkedAccount
from app.models.user import User
from app.services.twitch_api import RemoteSubscription, TwitchUser
from app.core.services import build_services
from app.webhooks.dedup import MemoryDuplicateFilter
from app.webhooks.verification import sign_message

WEBHOOK_SECRET = "test-eventsub-secret"
CALLBACK_URL = "https://autopause.test/webhook/twitch"


class FakeTwitch:
    """In-memory stand-in for the Helix EventSub client."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, RemoteSubscription] = {}
        self.users: dict[str, TwitchUser] = {}
        self.create_calls = 0
        self.delete_calls = 0
        self.create_status = "enabled"
        self.fail_create = False
        self.fail_delete = False
        self.fail_list = False
        self.fail_user_lookup = False

    async def create_redemption_subscription(
        self, broadcaster_id: str, reward_id: str, callback_url: str, secret: str
    ) -> RemoteSubscription:
        self.create_calls += 1
        if self.fail_create:
            raise RemoteApiError("Failed to create EventSub subscription: forbidden", 403, "forbidden")
        sub = RemoteSubscription(
            id=f"sub-{uuid.uuid4().hex[:12]}",
            status=self.create_status,
            type="channel.channel_points_custom_reward_redemption.add",
            condition={"broadcaster_user_id": broadcaster_id, "reward_id": reward_id},
        )
        self.subscriptions[sub.id] = sub
        return sub

    async def list_subscriptions(self, **filters: str) -> list[RemoteSubscription]:
        if self.fail_list:
            raise RemoteApiError("Failed to list EventSub subscriptions: boom", 500, "boom")
        return list(self.subscriptions.values())

    async def delete_subscription(self, subscription_id: str) -> bool:
        self.delete_calls += 1
        if self.fail_delete:
            raise RemoteApiError("Failed to delete EventSub subscription: boom", 500, "boom")
        return self.subscriptions.pop(subscription_id, None) is not None

    async def get_user(self, user_id: str) -> TwitchUser | None:
        if self.fail_user_lookup:
            raise RemoteApiError("Failed to get user profile: boom", 500, "boom")
        return self.users.get(user_id)


# ---------------------------------------------------------------------------
# Settings / database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'autopause.db'}",
        twitch_client_id="test-client-id",
        twitch_client_secret="test-client-secret",
        twitch_eventsub_secret=WEBHOOK_SECRET,
        webhook_callback_url=CALLBACK_URL,
        secret_key="test-secret-key",
        reconcile_on_startup=False,
    )


@pytest.fixture
async def session_factory(settings):
    engine = create_engine(settings.database_url)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def twitch() -> FakeTwitch:
    return FakeTwitch()


@pytest.fixture
async def services(settings, session_factory, twitch):
    svc = build_services(
        settings,
        session_factory=session_factory,
        remote=twitch,
        dedup=MemoryDuplicateFilter(retention_seconds=settings.dedup_retention_seconds),
    )
    yield svc
    await svc.dispatcher.drain()
    await svc.hub.stop()


@pytest.fixture
async def client(settings, services):
    app = create_app(settings, services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def create_user(session_factory, name: str, twitch_id: str | None = None) -> uuid.UUID:
    """Insert a user, optionally with a linked Twitch account."""
    async with session_scope(session_factory) as session:
        user = User(name=name)
        session.add(user)
        await session.flush()
        if twitch_id is not None:
            session.add(LinkedAccount(user_id=user.id, account_id=twitch_id))
        return user.id


@pytest.fixture
async def linked_user(session_factory) -> uuid.UUID:
    """User U1 linked to broadcaster B1."""
    return await create_user(session_factory, "U1", twitch_id="B1")


def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    token, _ = create_jwt(user_id)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Webhook messages
# ---------------------------------------------------------------------------


def rfc3339(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%f") + "123Z"


def redemption_event(
    redemption_id: str = "red-1",
    broadcaster_id: str = "B1",
    reward_id: str = "R1",
    viewer: str = "Ann",
    cost: int = 500,
    status: str = "unfulfilled",
) -> dict[str, Any]:
    return {
        "id": redemption_id,
        "broadcaster_user_id": broadcaster_id,
        "broadcaster_user_login": "b1",
        "broadcaster_user_name": "B1",
        "user_id": "viewer-1",
        "user_login": viewer.lower(),
        "user_name": viewer,
        "user_input": "",
        "status": status,
        "reward": {"id": reward_id, "title": "Pause the game", "cost": cost, "prompt": ""},
        "redeemed_at": "2024-05-01T12:00:00.123456789Z",
    }


def eventsub_body(
    subscription_id: str = "sub-1",
    status: str = "enabled",
    event: dict | None = None,
    challenge: str | None = None,
) -> bytes:
    payload: dict[str, Any] = {
        "subscription": {
            "id": subscription_id,
            "status": status,
            "type": "channel.channel_points_custom_reward_redemption.add",
            "version": "1",
            "condition": {"broadcaster_user_id": "B1", "reward_id": "R1"},
            "transport": {"method": "webhook", "callback": CALLBACK_URL},
            "created_at": "2024-05-01T11:00:00.000000000Z",
            "cost": 0,
        }
    }
    if event is not None:
        payload["event"] = event
    if challenge is not None:
        payload["challenge"] = challenge
    return json.dumps(payload).encode()


def signed_headers(
    body: bytes,
    message_type: str = "notification",
    message_id: str | None = None,
    timestamp: str | None = None,
    secret: str = WEBHOOK_SECRET,
) -> dict[str, str]:
    message_id = message_id or uuid.uuid4().hex
    timestamp = timestamp or rfc3339()
    return {
        "Twitch-Eventsub-Message-Id": message_id,
        "Twitch-Eventsub-Message-Timestamp": timestamp,
        "Twitch-Eventsub-Message-Type": message_type,
        "Twitch-Eventsub-Message-Signature": sign_message(message_id, timestamp, body, secret),
        "Content-Type": "application/json",
    }
