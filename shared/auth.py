"""Bearer-token auth between the bot, the CLI and the reminders service.

All callers share a single ``SERVICE_AUTH_TOKEN``.  Protected endpoints
expect ``Authorization: Bearer <token>``::

    from shared.auth import require_service_auth

    @app.post("/broadcast")
    async def broadcast(body: BroadcastRequest, _=Depends(require_service_auth)):
        ...
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()


def get_service_auth_headers() -> dict[str, str]:
    """Return HTTP headers for calls into the reminders service.

    Returns an empty dict when no token is configured (dev mode).
    """
    token = get_settings().service_auth_token
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


async def require_service_auth(request: Request) -> None:
    """FastAPI dependency that validates the service auth token.

    Skips validation when ``service_auth_token`` is empty (dev mode).
    """
    expected = get_settings().service_auth_token
    if not expected:
        logger.warning(
            "service_auth_disabled",
            path=request.url.path,
            hint="Set SERVICE_AUTH_TOKEN in .env for production",
        )
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing service auth token")

    if not hmac.compare_digest(auth_header[7:], expected):
        logger.warning(
            "service_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Invalid service auth token")
