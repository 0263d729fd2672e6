"""
Authentication utilities.
Handles JWT tokens issued by the main application.

The gateway never issues tokens to clients; sign_jwt exists for tooling
and tests that need a token accepted by verify_jwt.
"""

from __future__ import annotations

import time
from typing import Any

import jwt
from fastapi import HTTPException, status

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)


def sign_jwt(payload: dict[str, Any], ttl_seconds: int = 3600) -> str:
    """
    Sign a JWT token with the given payload.

    Args:
        payload: Claims to include in the token (id or userId, login, ...).
        ttl_seconds: Token lifetime in seconds.

    Returns:
        Signed JWT token string.
    """
    now = int(time.time())
    data = {
        **payload,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(data, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Signature and expiry are checked by PyJWT. The payload must identify
    the user with an ``id`` or ``userId`` claim.

    Args:
        token: The JWT token string.

    Returns:
        Decoded token claims.

    Raises:
        HTTPException: If token is invalid, expired, or has no user ID.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        # Log the actual error for debugging, but return generic message to client
        logger.warning("JWT validation failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    if not payload.get("id") and not payload.get("userId"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload - missing user ID",
        )

    return payload


def extract_user_identity(claims: dict[str, Any]) -> tuple[str, str]:
    """
    Extract (user_id, username) from verified claims.

    ``id`` takes precedence over ``userId``; the username comes from
    ``login`` and falls back to "unknown".
    """
    user_id = claims.get("id") or claims.get("userId")
    username = claims.get("login") or "unknown"
    return str(user_id), str(username)


def get_bearer_token(authorization: str | None) -> str:
    """
    Extract bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or malformed.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: Bearer <token>",
        )
    return authorization.split(" ", 1)[1].strip()
