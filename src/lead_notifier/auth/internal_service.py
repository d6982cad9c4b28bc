"""Internal API key authentication for service-to-service and operator calls."""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from lead_notifier.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


async def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(default=None, alias="X-Internal-API-Key"),
) -> None:
    """
    FastAPI dependency enforcing the internal API key.

    When ``internal_api_key_enabled`` is off every request is allowed.

    Raises:
        HTTPException: 401 on a missing or wrong key, 500 when enabled without a key
    """
    if not settings.internal_api_key_enabled:
        return

    if not settings.internal_api_key:
        logger.error("Internal API key auth is enabled but no key is configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal API key authentication is misconfigured",
        )

    if not x_internal_api_key or not secrets.compare_digest(
        x_internal_api_key, settings.internal_api_key
    ):
        logger.warning("Rejected request with missing or invalid internal API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
            headers={"WWW-Authenticate": "X-Internal-API-Key"},
        )


async def check_internal_api_key(x_internal_api_key: Optional[str] = None) -> bool:
    """Non-raising variant: True only for a valid key while auth is enabled."""
    if not settings.internal_api_key_enabled or not settings.internal_api_key:
        return False
    if not x_internal_api_key:
        return False
    return secrets.compare_digest(x_internal_api_key, settings.internal_api_key)


InternalAuthDep = Depends(require_internal_api_key)
