"""
Access tokens
=============

Actor identity travels as an HS256 Bearer JWT carrying the user id (``sub``)
and role. Tokens are minted by the identity provider; ``create_access_token``
exists for operators and tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.models.user import User, UserRole


def create_access_token(
    user_id: int,
    role: UserRole,
    *,
    expires_minutes: Optional[int] = None,
) -> tuple[str, datetime]:
    """Create a short-lived access token.

    Returns:
        Tuple of (token_string, expiration_datetime).
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "exp": expires_at,
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is otherwise invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


async def get_current_user(db: AsyncSession, token: str) -> User:
    """Decode an access token and return the user it names.

    Raises:
        ValueError: If the token is invalid, expired, or the user is unknown.
    """
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise ValueError("Access token has expired.")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid access token.")

    if payload.get("type") != "access":
        raise ValueError("Invalid token type. Expected an access token.")

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("Invalid token: malformed subject.")

    user = await db.get(User, user_id)
    if user is None:
        raise ValueError("User not found.")
    if payload.get("role") and payload["role"] != user.role.value:
        raise ValueError("Token role does not match the user's current role.")
    return user
