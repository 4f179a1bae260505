"""
Trigger authentication: X-API-Key checked against TRIGGER_API_KEY.

A single shared key: the on-demand trigger is an operator/ops surface, not
a per-user API.
"""

import hmac

import structlog
from fastapi import HTTPException, Request

from flowwatch.config import settings

logger = structlog.get_logger(__name__)


async def require_trigger_key(request: Request) -> None:
    """FastAPI dependency. Raises 401 unless X-API-Key matches."""
    key = request.headers.get("X-API-Key")
    if not key:
        raise HTTPException(
            status_code=401,
            detail={"error": "missing_api_key", "message": "X-API-Key header required"},
        )

    expected = settings.trigger_api_key
    if not expected:
        logger.warning("trigger_key_not_configured")
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_api_key", "message": "Trigger key not configured"},
        )

    if not hmac.compare_digest(key.encode(), expected.encode()):
        logger.warning("api_key_rejected", key_prefix=key[:4])
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_api_key", "message": "Invalid API key"},
        )
