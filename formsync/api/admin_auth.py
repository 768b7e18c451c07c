"""
Admin key guard for the management endpoints.
Clients send the key in the X-Admin-Key header; it is compared in constant time.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException

from formsync.config import get_settings

logger = logging.getLogger(__name__)


async def require_admin_key(
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """Dependency that rejects calls without a valid admin key."""
    settings = get_settings()
    expected = settings.admin_api_key

    if not expected:
        if settings.app_env == "production":
            logger.error("ADMIN_API_KEY not set in production - management API locked")
            raise HTTPException(status_code=401, detail="Admin API key not configured")
        logger.warning(
            "ADMIN_API_KEY not set - allowing management call without authentication. "
            "Set this key before exposing the service."
        )
        return

    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin key")
