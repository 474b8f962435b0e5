"""
Subscription registry: local records of each user's standing interest in a
reward, kept in step with the remote EventSub subscriptions.

Remote calls never run inside a database transaction. On create the remote
call goes first and the local write follows; on delete the remote call goes
first and a remote failure leaves the local record in place.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

import sqlalchemy as sa
import structlog
from sqlmodel import select

from app.core.database import SessionFactory, dialect_insert, session_scope
from app.core.errors import NoLinkedAccount, NotConfigured, NotFound, RemoteApiError
from app.models.linked_account import LinkedAccount
from app.models.subscription import EventSubSubscription
from app.services.twitch_api import RemoteSubscription, TwitchUser
from autopause_shared.schemas.common import SubscriptionStatus

log = structlog.get_logger()

TWITCH_PROVIDER = "twitch"


class RemoteSubscriptions(Protocol):
    async def create_redemption_subscription(
        self, broadcaster_id: str, reward_id: str, callback_url: str, secret: str
    ) -> RemoteSubscription: ...

    async def list_subscriptions(self, **filters: str) -> list[RemoteSubscription]: ...

    async def delete_subscription(self, subscription_id: str) -> bool: ...

    async def get_user(self, user_id: str) -> Optional[TwitchUser]: ...


@dataclass
class SubscribeResult:
    twitch_subscription_id: str
    status: str
    already_exists: bool = False


@dataclass
class ReconcileReport:
    updated: int = 0
    missing: int = 0
    remote_total: int = 0


@dataclass
class LinkedIdentity:
    twitch_user_id: str
    twitch_username: str
    display_name: Optional[str] = None


class SubscriptionRegistry:
    def __init__(
        self,
        session_factory: SessionFactory,
        remote: RemoteSubscriptions,
        callback_url: str,
        secret: str,
    ):
        self._sessions = session_factory
        self._remote = remote
        self._callback_url = callback_url
        self._secret = secret

    @property
    def configured(self) -> bool:
        return bool(self._callback_url and self._secret)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _linked_account(self, user_id: uuid.UUID) -> Optional[LinkedAccount]:
        async with self._sessions() as session:
            result = await session.execute(
                select(LinkedAccount).where(
                    LinkedAccount.user_id == user_id,
                    LinkedAccount.provider == TWITCH_PROVIDER,
                )
            )
            return result.scalar_one_or_none()

    async def _get(self, user_id: uuid.UUID, reward_id: str) -> Optional[EventSubSubscription]:
        async with self._sessions() as session:
            result = await session.execute(
                select(EventSubSubscription).where(
                    EventSubSubscription.user_id == user_id,
                    EventSubSubscription.reward_id == reward_id,
                )
            )
            return result.scalar_one_or_none()

    async def find_enabled(self, broadcaster_id: str, reward_id: str) -> Optional[EventSubSubscription]:
        """The enabled subscription a redemption for (broadcaster, reward) belongs to."""
        async with self._sessions() as session:
            result = await session.execute(
                select(EventSubSubscription)
                .where(
                    EventSubSubscription.broadcaster_id == broadcaster_id,
                    EventSubSubscription.reward_id == reward_id,
                    EventSubSubscription.status == SubscriptionStatus.ENABLED.value,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_for_user(self, user_id: uuid.UUID) -> list[EventSubSubscription]:
        async with self._sessions() as session:
            result = await session.execute(
                select(EventSubSubscription)
                .where(EventSubSubscription.user_id == user_id)
                .order_by(EventSubSubscription.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_linked_identity(self, user_id: uuid.UUID) -> LinkedIdentity:
        """
        Linked Twitch identity for a user.

        The login and display name come from a profile lookup the first time
        and are stored; a failing lookup falls back to whatever is stored.
        """
        account = await self._linked_account(user_id)
        if account is None:
            raise NoLinkedAccount("No Twitch account linked")

        if not account.login:
            try:
                profile = await self._remote.get_user(account.account_id)
            except RemoteApiError as exc:
                log.warning("subscriptions.profile_lookup_failed", user_id=str(user_id), error=exc.message)
                profile = None
            if profile is not None:
                async with session_scope(self._sessions) as session:
                    stored = await session.get(LinkedAccount, account.id)
                    stored.login = profile.login
                    stored.display_name = profile.display_name
                account.login = profile.login
                account.display_name = profile.display_name

        return LinkedIdentity(
            twitch_user_id=account.account_id,
            twitch_username=account.login or account.account_id,
            display_name=account.display_name,
        )

    # ------------------------------------------------------------------
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------

    async def subscribe(self, user_id: uuid.UUID, reward_id: str) -> SubscribeResult:
        if not self.configured:
            raise NotConfigured("EventSub webhook callback URL or secret is not configured")

        account = await self._linked_account(user_id)
        if account is None:
            raise NoLinkedAccount("No Twitch account linked")

        existing = await self._get(user_id, reward_id)
        if existing and existing.status == SubscriptionStatus.ENABLED.value:
            log.info(
                "subscriptions.already_enabled",
                user_id=str(user_id),
                reward_id=reward_id,
                subscription_id=existing.twitch_subscription_id,
            )
            return SubscribeResult(existing.twitch_subscription_id, existing.status, already_exists=True)

        # RemoteApiError propagates here with no local write
        remote = await self._remote.create_redemption_subscription(
            broadcaster_id=account.account_id,
            reward_id=reward_id,
            callback_url=self._callback_url,
            secret=self._secret,
        )

        now = datetime.now(timezone.utc)
        async with session_scope(self._sessions) as session:
            table = EventSubSubscription.__table__
            stmt = dialect_insert(session, table).values(
                id=uuid.uuid4(),
                twitch_subscription_id=remote.id,
                user_id=user_id,
                broadcaster_id=account.account_id,
                reward_id=reward_id,
                status=remote.status,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.user_id, table.c.reward_id],
                set_={
                    "twitch_subscription_id": stmt.excluded.twitch_subscription_id,
                    "broadcaster_id": stmt.excluded.broadcaster_id,
                    "status": stmt.excluded.status,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)

        log.info(
            "subscriptions.created",
            user_id=str(user_id),
            reward_id=reward_id,
            subscription_id=remote.id,
            status=remote.status,
        )
        return SubscribeResult(remote.id, remote.status)

    async def unsubscribe(self, user_id: uuid.UUID, reward_id: str) -> None:
        existing = await self._get(user_id, reward_id)
        if existing is None:
            raise NotFound("Subscription not found")

        # Remote first; a failure here leaves the local record for a retry
        await self._remote.delete_subscription(existing.twitch_subscription_id)

        async with session_scope(self._sessions) as session:
            await session.execute(
                sa.delete(EventSubSubscription).where(EventSubSubscription.id == existing.id)
            )
        log.info(
            "subscriptions.deleted",
            user_id=str(user_id),
            reward_id=reward_id,
            subscription_id=existing.twitch_subscription_id,
        )

    # ------------------------------------------------------------------
    # Status maintenance
    # ------------------------------------------------------------------

    async def update_status(self, twitch_subscription_id: str, status: str) -> int:
        async with session_scope(self._sessions) as session:
            result = await session.execute(
                sa.update(EventSubSubscription)
                .where(EventSubSubscription.twitch_subscription_id == twitch_subscription_id)
                .values(status=status, updated_at=datetime.now(timezone.utc))
            )
            updated = result.rowcount or 0
        if updated:
            log.info("subscriptions.status_updated", subscription_id=twitch_subscription_id, status=status)
        return updated

    async def reconcile(self) -> ReconcileReport:
        """Align local statuses with the remote listing.

        Every write is a conditional UPDATE, so a revocation committed while
        the listing is in flight is never overwritten. Local records whose
        remote id is gone are marked not_found_on_remote, except revoked ones.
        `updated` counts status changes only; `missing` counts every
        non-revoked record absent from the listing.
        """
        remote = await self._remote.list_subscriptions()
        by_status: dict[str, list[str]] = {}
        for sub in remote:
            by_status.setdefault(sub.status, []).append(sub.id)
        report = ReconcileReport(remote_total=len(remote))
        now = datetime.now(timezone.utc)
        table = EventSubSubscription.__table__
        revoked = SubscriptionStatus.AUTHORIZATION_REVOKED.value
        not_found = SubscriptionStatus.NOT_FOUND_ON_REMOTE.value

        async with session_scope(self._sessions) as session:
            for status, ids in by_status.items():
                result = await session.execute(
                    sa.update(table)
                    .where(
                        table.c.twitch_subscription_id.in_(ids),
                        table.c.status != status,
                        table.c.status != revoked,
                    )
                    .values(status=status, updated_at=now)
                )
                report.updated += result.rowcount or 0

            absent = sa.update(table).where(table.c.status != revoked)
            if remote:
                absent = absent.where(
                    table.c.twitch_subscription_id.not_in([sub.id for sub in remote])
                )
            result = await session.execute(
                absent.values(
                    status=not_found,
                    # already-missing rows keep their original timestamp
                    updated_at=sa.case(
                        (table.c.status == not_found, table.c.updated_at),
                        else_=now,
                    ),
                )
            )
            report.missing = result.rowcount or 0

        log.info(
            "subscriptions.reconciled",
            updated=report.updated,
            missing=report.missing,
            remote_total=report.remote_total,
        )
        return report
