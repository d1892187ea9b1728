"""FastAPI dependencies for the caller identity."""

import logging
import os
from typing import Optional

from fastapi import Header, HTTPException, status

from .models import User

logger = logging.getLogger(__name__)


def _authentication_enabled() -> bool:
    # Defaults to true for security
    return os.environ.get("ENABLE_AUTHENTICATION", "true").lower() == "true"


async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> User:
    """
    FastAPI dependency to get the current authenticated user.

    Token validation happens upstream; the gateway forwards the verified
    identity in ``X-User-Id`` (and optionally ``X-User-Email``).

    When ENABLE_AUTHENTICATION=false, a missing header yields an anonymous
    user. This should only be used in development/testing.

    Raises:
        HTTPException: 401 if the identity header is missing (when auth enabled)
    """
    if x_user_id:
        return User(user_id=x_user_id, email=x_user_email or "")

    if not _authentication_enabled():
        logger.warning("Authentication is DISABLED via ENABLE_AUTHENTICATION=false - returning anonymous user")
        return User(user_id="anonymous", email="anonymous@local.dev", name="Anonymous User")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required.",
    )
