"""
Error taxonomy.

Every error carries an HTTP status and a stable code; the API renders them as
{"error": {"code", "message", "status"}}.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class AutopauseError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status_code,
            }
        }


class VerificationFailed(AutopauseError):
    """Webhook signature or timestamp verification failed."""

    status_code = 403
    code = "VERIFICATION_FAILED"


class MalformedRequest(AutopauseError):
    """Request is missing required headers or fields."""

    status_code = 400
    code = "MALFORMED_REQUEST"


class NotConfigured(AutopauseError):
    """Server not configured for EventSub (missing callback URL or secret)."""

    status_code = 503
    code = "NOT_CONFIGURED"


class NoLinkedAccount(AutopauseError):
    """User does not have a linked Twitch account."""

    status_code = 400
    code = "NO_LINKED_ACCOUNT"


class NotFound(AutopauseError):
    """Subscription not found."""

    status_code = 404
    code = "NOT_FOUND"


class RemoteApiError(AutopauseError):
    """The Twitch API returned a non-2xx response or could not be reached."""

    status_code = 502
    code = "REMOTE_API_ERROR"

    def __init__(self, message: str, remote_status: int | None = None, remote_body: str = ""):
        super().__init__(message)
        self.remote_status = remote_status
        self.remote_body = remote_body


async def autopause_error_handler(request: Request, exc: AutopauseError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
