"""Twitch EventSub message verification — constant-time HMAC plus a replay window.

Security contract:
- Signature is "sha256=" + hex(HMAC-SHA256(secret, message_id + timestamp + body))
- Comparison uses hmac.compare_digest() (constant-time)
- Missing headers are reported before any signature work
- Missing secret -> verification always fails (fail-closed)
- Messages older or newer than the max age (default 600s) are rejected
- Outcomes are returned, never raised; the dispatcher maps them to HTTP codes
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import re
from datetime import datetime, timezone

import structlog

log = structlog.get_logger()

HEADER_MESSAGE_ID = "twitch-eventsub-message-id"
HEADER_MESSAGE_TIMESTAMP = "twitch-eventsub-message-timestamp"
HEADER_MESSAGE_TYPE = "twitch-eventsub-message-type"
HEADER_MESSAGE_SIGNATURE = "twitch-eventsub-message-signature"
HEADER_MESSAGE_RETRY = "twitch-eventsub-message-retry"

SIGNATURE_PREFIX = "sha256="
DEFAULT_MAX_AGE_SECONDS = 600

# RFC 3339 with an optional fraction of any precision (Twitch sends nanoseconds)
_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


class VerificationResult(str, enum.Enum):
    OK = "ok"
    MISSING_HEADERS = "missing_headers"
    BAD_SIGNATURE = "bad_signature"
    STALE_TIMESTAMP = "stale_timestamp"

    @property
    def ok(self) -> bool:
        return self is VerificationResult.OK


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def sign_message(message_id: str, timestamp: str, body: str | bytes, secret: str) -> str:
    """Compute the signature header value Twitch would send for this message."""
    message = _as_bytes(message_id) + _as_bytes(timestamp) + _as_bytes(body)
    digest = hmac.new(_as_bytes(secret), message, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def parse_timestamp(value: str) -> datetime | None:
    """Parse an RFC 3339 timestamp, truncating sub-microsecond precision."""
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        return None
    frac = (match.group("frac") or "0")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz == "Z":
        tz = "+00:00"
    try:
        return datetime.fromisoformat(f"{match.group('base')}.{frac}{tz}")
    except ValueError:
        return None


def verify_signature(
    message_id: str,
    timestamp: str,
    body: str | bytes,
    signature: str,
    secret: str,
) -> bool:
    if not secret:
        log.warning("webhook.secret_not_configured")
        return False
    expected = sign_message(message_id, timestamp, body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def is_timestamp_fresh(
    timestamp: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now: datetime | None = None,
) -> bool:
    sent_at = parse_timestamp(timestamp)
    if sent_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return abs((now - sent_at).total_seconds()) <= max_age_seconds


def verify_message(
    message_id: str | None,
    timestamp: str | None,
    message_type: str | None,
    body: str | bytes,
    signature: str | None,
    secret: str,
    *,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now: datetime | None = None,
) -> VerificationResult:
    """Validate authenticity and freshness of one inbound EventSub message."""
    if not message_id or not timestamp or not message_type or not signature:
        return VerificationResult.MISSING_HEADERS

    if not verify_signature(message_id, timestamp, body, signature, secret):
        return VerificationResult.BAD_SIGNATURE

    if not is_timestamp_fresh(timestamp, max_age_seconds, now):
        return VerificationResult.STALE_TIMESTAMP

    return VerificationResult.OK
