"""
Authentication Dependencies

Devices authenticate with a shared secret in the `x-api-key` header.

Usage:
    from trustgate.dependencies.auth import require_api_key

    @router.post("/data", dependencies=[Depends(require_api_key)])
    async def submit(...):
        # Caller presented the shared key
        pass
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from ..common.config import Settings
from ..common.exceptions import AuthError
from ..common.logging_setup import get_service_logger
from .state import get_app_settings

logger = get_service_logger("gateway.auth")

# Tells FastAPI to look for "x-api-key: <secret>"
api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def verify_api_key(presented: Optional[str], expected: str) -> None:
    """
    Constant-time key check. An unset expected key accepts nothing.

    Raises:
        AuthError: If the key is missing or wrong
    """
    if not expected:
        raise AuthError("no api key configured")
    if not presented:
        raise AuthError("missing api key")
    if not secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise AuthError("invalid api key")


async def require_api_key(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Reject the request before any side effect unless the key matches.

    Raises:
        HTTPException 401: Missing or wrong key
    """
    try:
        verify_api_key(api_key, settings.api_key)
    except AuthError as e:
        logger.warning(f"Rejected submission: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
