"""
Bearer token verification.

Tokens are issued by the platform's login endpoint (HS256, claims
``id``, ``email``, ``role`` and optionally ``name``). This module only
verifies them:

- ``decode_token`` for the WebSocket handshake
- ``get_current_user`` / ``require_admin`` as FastAPI dependencies
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import ValidationError

from atira_chat.core.config import settings
from atira_chat.core.logging import get_logger
from atira_chat.models.models import VerifiedIdentity

logger = get_logger(__name__)


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be verified."""


def decode_token(token: str, secret: Optional[str] = None, algorithm: Optional[str] = None) -> VerifiedIdentity:
    """
    Verify a bearer token and return its identity claims.

    Raises:
        InvalidTokenError: bad signature, expired, or missing ``id`` claim
    """
    try:
        claims = jwt.decode(
            token,
            secret or settings.JWT_SECRET,
            algorithms=[algorithm or settings.JWT_ALGORITHM],
        )
        return VerifiedIdentity(**claims)
    except (JWTError, ValidationError) as e:
        raise InvalidTokenError(str(e)) from e


def identity_from_token(token: Optional[str]) -> Optional[VerifiedIdentity]:
    """
    Verify a token offered at connect time.

    A missing or invalid token yields ``None``: the connection continues
    unauthenticated and can only join as an anonymous participant.
    """
    if not token:
        return None
    try:
        return decode_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Rejected socket token: {e}")
        return None


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def get_current_user(request: Request) -> VerifiedIdentity:
    """
    Get the authenticated caller from the Authorization header.
    Use as dependency for protected endpoints.
    """
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Access token required")
    try:
        return decode_token(token)
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


async def require_admin(current_user: VerifiedIdentity = Depends(get_current_user)) -> VerifiedIdentity:
    if current_user.role != "admin":
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required")
    return current_user
