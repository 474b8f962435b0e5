"""
Authentication for the management and live-delivery endpoints.

Sessions are signed JWTs issued by the account service. The browser extension
sends them as `Authorization: Bearer <token>`; EventSource cannot set headers,
so the stream endpoint also accepts a `token` query parameter.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Query, Request
from fastapi.security import APIKeyHeader

from app.core.config import get_settings

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    settings = get_settings()
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for an authenticated user."""

    def __init__(self, user_id: uuid.UUID, jti: str | None = None):
        self.user_id = user_id
        self.jti = jti


def _authenticate_jwt(token: str) -> AuthenticatedUser:
    try:
        payload = decode_jwt(token)
        user_id = uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return AuthenticatedUser(user_id=user_id, jti=payload.get("jti"))


async def get_authenticated_user(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
) -> AuthenticatedUser:
    """Bearer-token authentication for the management API."""
    if authorization and authorization.startswith("Bearer "):
        auth_user = _authenticate_jwt(authorization[7:].strip())
        request.state.auth = auth_user
        return auth_user
    raise HTTPException(status_code=401, detail="Authentication required")


async def get_authenticated_user_sse(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
    token: Optional[str] = Query(None),
) -> AuthenticatedUser:
    """Stream authentication: Bearer header first, then the `token` query parameter."""
    if authorization and authorization.startswith("Bearer "):
        auth_user = _authenticate_jwt(authorization[7:].strip())
    elif token:
        auth_user = _authenticate_jwt(token)
    else:
        raise HTTPException(status_code=401, detail="Authentication required")
    request.state.auth = auth_user
    return auth_user
