"""
Twitch Helix client: app access token cache plus EventSub subscription calls.

Handles:
- Client-credentials token, cached until shortly before expiry
- Create / list (paginated) / delete EventSub subscriptions
- User profile lookup for linked accounts
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import structlog

from app.core.errors import RemoteApiError
from autopause_shared.schemas.common import REDEMPTION_ADD_TYPE, REDEMPTION_ADD_VERSION

log = structlog.get_logger()

DEFAULT_REFRESH_MARGIN_SECONDS = 300


@dataclass
class RemoteSubscription:
    """An EventSub subscription as reported by Twitch."""

    id: str
    status: str
    type: str
    version: str = "1"
    condition: dict[str, str] = field(default_factory=dict)
    created_at: str | None = None
    cost: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteSubscription":
        return cls(
            id=data["id"],
            status=data.get("status", "pending"),
            type=data.get("type", ""),
            version=data.get("version", "1"),
            condition=data.get("condition") or {},
            created_at=data.get("created_at"),
            cost=data.get("cost", 0),
        )


@dataclass
class TwitchUser:
    id: str
    login: str
    display_name: str


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    body = response.text
    log.error("twitch_api.error", action=action, status=response.status_code, body=body[:500])
    raise RemoteApiError(
        f"Failed to {action}: {body}",
        remote_status=response.status_code,
        remote_body=body,
    )


class AppTokenCache:
    """
    Caches the app access token.

    Concurrent callers during expiry share one refresh: the lock serializes
    refreshes and the cache is re-checked after acquiring it.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        http: Callable[[], httpx.AsyncClient],
        refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._http = http
        self._margin = refresh_margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - self._margin

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        if self._valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if self._valid():
                return self._token  # type: ignore[return-value]
            await self._refresh()
            return self._token  # type: ignore[return-value]

    async def _refresh(self) -> None:
        if not self._client_id or not self._client_secret:
            raise RemoteApiError("Twitch client id and secret must be configured")
        try:
            response = await self._http().post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.HTTPError as exc:
            raise RemoteApiError(f"Failed to get app access token: {exc}") from exc
        _raise_for_status(response, "get app access token")

        data = response.json()
        self._token = data["access_token"]
        self._expires_at = self._clock() + float(data.get("expires_in", 0))
        self.refresh_count += 1
        log.info("twitch_api.token_refreshed", expires_in=data.get("expires_in"))


class TwitchClient:
    """
    Thin client over the Helix EventSub and Users endpoints.

    Every call is bounded by the request timeout; non-2xx responses raise
    RemoteApiError carrying Twitch's error text.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_url: str = "https://api.twitch.tv/helix",
        token_url: str = "https://id.twitch.tv/oauth2/token",
        request_timeout: float = 10.0,
        refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client_id = client_id
        self._api_url = api_url.rstrip("/")
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.tokens = AppTokenCache(
            client_id,
            client_secret,
            token_url,
            http=self._http,
            refresh_margin_seconds=refresh_margin_seconds,
        )

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._request_timeout),
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            # Lazily opened so scripts and tests need not call open() first
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._request_timeout),
                transport=self._transport,
            )
        return self._client

    async def _headers(self) -> dict[str, str]:
        token = await self.tokens.get_token()
        return {"Authorization": f"Bearer {token}", "Client-Id": self._client_id}

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        headers = await self._headers()
        try:
            response = await self._http().request(
                method, f"{self._api_url}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as exc:
            log.error("twitch_api.unreachable", action=action, error=str(exc))
            raise RemoteApiError(f"Failed to {action}: {exc}") from exc
        if response.status_code == 401:
            # Token revoked early; next call fetches a fresh one
            self.tokens.invalidate()
        return response

    # --- EventSub ---

    async def create_redemption_subscription(
        self,
        broadcaster_id: str,
        reward_id: str,
        callback_url: str,
        secret: str,
    ) -> RemoteSubscription:
        action = "create EventSub subscription"
        response = await self._request(
            "POST",
            "/eventsub/subscriptions",
            action,
            json={
                "type": REDEMPTION_ADD_TYPE,
                "version": REDEMPTION_ADD_VERSION,
                "condition": {
                    "broadcaster_user_id": broadcaster_id,
                    "reward_id": reward_id,
                },
                "transport": {
                    "method": "webhook",
                    "callback": callback_url,
                    "secret": secret,
                },
            },
        )
        _raise_for_status(response, action)
        data = response.json()
        subscription = RemoteSubscription.from_api(data["data"][0])
        log.info(
            "twitch_api.subscription_created",
            subscription_id=subscription.id,
            status=subscription.status,
            total_cost=data.get("total_cost"),
            max_total_cost=data.get("max_total_cost"),
        )
        return subscription

    async def list_subscriptions(self, **filters: str) -> list[RemoteSubscription]:
        """List every subscription for this app, following pagination cursors."""
        action = "list EventSub subscriptions"
        results: list[RemoteSubscription] = []
        cursor: str | None = None
        while True:
            params = dict(filters)
            if cursor:
                params["after"] = cursor
            response = await self._request("GET", "/eventsub/subscriptions", action, params=params)
            _raise_for_status(response, action)
            data = response.json()
            results.extend(RemoteSubscription.from_api(s) for s in data.get("data", []))
            cursor = (data.get("pagination") or {}).get("cursor")
            if not cursor:
                break
        return results

    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription. Returns False if Twitch no longer knows it."""
        action = "delete EventSub subscription"
        response = await self._request(
            "DELETE", "/eventsub/subscriptions", action, params={"id": subscription_id}
        )
        if response.status_code == 404:
            log.warning("twitch_api.subscription_already_gone", subscription_id=subscription_id)
            return False
        _raise_for_status(response, action)
        log.info("twitch_api.subscription_deleted", subscription_id=subscription_id)
        return True

    # --- Users ---

    async def get_user(self, user_id: str) -> TwitchUser | None:
        action = "get user profile"
        response = await self._request("GET", "/users", action, params={"id": user_id})
        _raise_for_status(response, action)
        data = response.json().get("data", [])
        if not data:
            return None
        return TwitchUser(
            id=data[0]["id"],
            login=data[0]["login"],
            display_name=data[0].get("display_name") or data[0]["login"],
        )
