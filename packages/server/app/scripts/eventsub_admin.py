"""
EventSub maintenance commands.

    python -m app.scripts.eventsub_admin list
    python -m app.scripts.eventsub_admin reconcile
    python -m app.scripts.eventsub_admin cleanup --broadcaster 1234 --reward abcd
    python -m app.scripts.eventsub_admin link-user --name Alice --twitch-id 1234
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid

from sqlmodel import select

from app.core.auth import create_jwt
from app.core.config import get_settings
from app.core.database import create_engine, create_session_factory, init_db, session_scope
from app.core.errors import AutopauseError
from app.core.logging import configure_logging
from app.models.linked_account import LinkedAccount
from app.models.user import User
from app.services.subscriptions import SubscriptionRegistry
from app.services.twitch_api import TwitchClient
from autopause_shared.schemas.common import REDEMPTION_ADD_TYPE


def _client() -> TwitchClient:
    settings = get_settings()
    return TwitchClient(
        client_id=settings.twitch_client_id,
        client_secret=settings.twitch_client_secret,
        api_url=settings.twitch_api_url,
        token_url=settings.twitch_auth_url,
        request_timeout=settings.remote_request_timeout_seconds,
    )


async def list_subscriptions(client: TwitchClient) -> int:
    subscriptions = await client.list_subscriptions()
    for sub in subscriptions:
        condition = ", ".join(f"{k}={v}" for k, v in sorted(sub.condition.items()))
        print(f"{sub.id}  {sub.status:<24} {sub.type}  {condition}")
    print(f"{len(subscriptions)} subscription(s)")
    return len(subscriptions)


async def cleanup(client: TwitchClient, broadcaster_id: str, reward_id: str) -> int:
    """Delete every remote redemption subscription for one broadcaster/reward pair."""
    subscriptions = await client.list_subscriptions()
    to_delete = [
        s
        for s in subscriptions
        if s.type == REDEMPTION_ADD_TYPE
        and s.condition.get("broadcaster_user_id") == broadcaster_id
        and s.condition.get("reward_id") == reward_id
    ]
    for sub in to_delete:
        await client.delete_subscription(sub.id)
    print(f"Cleaned up {len(to_delete)} subscription(s)")
    return len(to_delete)


async def reconcile(client: TwitchClient) -> None:
    settings = get_settings()
    engine = create_engine(settings.database_url)
    try:
        registry = SubscriptionRegistry(
            create_session_factory(engine),
            client,
            callback_url=settings.webhook_callback_url,
            secret=settings.twitch_eventsub_secret,
        )
        report = await registry.reconcile()
        print(f"updated={report.updated} missing={report.missing} remote_total={report.remote_total}")
    finally:
        await engine.dispose()


async def link_user(name: str, twitch_id: str, email: str | None) -> uuid.UUID:
    """Create (or reuse) a local user linked to a Twitch account and print a JWT."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    try:
        await init_db(engine)
        factory = create_session_factory(engine)
        async with session_scope(factory) as session:
            result = await session.execute(
                select(LinkedAccount).where(
                    LinkedAccount.provider == "twitch",
                    LinkedAccount.account_id == twitch_id,
                )
            )
            account = result.scalar_one_or_none()
            if account:
                user_id = account.user_id
                print(f"Twitch account {twitch_id} already linked to user {user_id}.")
            else:
                user = User(name=name, email=email)
                session.add(user)
                await session.flush()
                session.add(LinkedAccount(user_id=user.id, account_id=twitch_id))
                user_id = user.id
                print(f"Created user {name} ({user_id}) linked to Twitch account {twitch_id}.")
    finally:
        await engine.dispose()

    token, _ = create_jwt(user_id)
    print(f"Session token: {token}")
    return user_id


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Autopause EventSub maintenance")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List remote EventSub subscriptions")
    sub.add_parser("reconcile", help="Align local subscription statuses with Twitch")
    p_cleanup = sub.add_parser("cleanup", help="Delete remote subscriptions for a reward")
    p_cleanup.add_argument("--broadcaster", required=True, help="Broadcaster user id")
    p_cleanup.add_argument("--reward", required=True, help="Custom reward id")
    p_link = sub.add_parser("link-user", help="Create a local user linked to a Twitch account")
    p_link.add_argument("--name", required=True)
    p_link.add_argument("--twitch-id", required=True, help="Twitch user id (broadcaster id)")
    p_link.add_argument("--email")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, "text")

    if args.command == "link-user":
        await link_user(args.name, args.twitch_id, args.email)
        return 0

    client = _client()
    try:
        if args.command == "list":
            await list_subscriptions(client)
        elif args.command == "reconcile":
            await reconcile(client)
        elif args.command == "cleanup":
            await cleanup(client, args.broadcaster, args.reward)
    except AutopauseError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await client.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
