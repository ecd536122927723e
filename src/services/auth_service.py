"""
Authentication service for the Doers marketplace core.

Issues and verifies the JWT access tokens the HTTP API and the Socket.IO
server accept.  Login and registration belong to the outer account
service; this module only resolves a bearer token to an active ``User``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.models.user import User, UserStatus


# ---------------------------------------------------------------------------
# JWT token generation
# ---------------------------------------------------------------------------

def create_access_token(user: User) -> tuple[str, datetime]:
    """Create a short-lived access token carrying the user's role.

    Returns:
        Tuple of (token_string, expiration_datetime).
    """
    expires_at = datetime.now(timezone.utc) + timedelta(
        minutes=settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "type": "access",
        "exp": expires_at,
        "iat": datetime.now(timezone.utc),
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


# ---------------------------------------------------------------------------
# Token -> user
# ---------------------------------------------------------------------------

async def get_current_user(
    db: AsyncSession,
    token: str,
) -> User:
    """Decode a JWT access token and return the corresponding user.

    Raises:
        ValueError: If the token is invalid, expired, or user not found.
    """
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise ValueError("Access token has expired.")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid access token.")

    if payload.get("type") != "access":
        raise ValueError("Invalid token type. Expected an access token.")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise ValueError("Invalid token: missing subject.")

    try:
        user_id = uuid.UUID(user_id_str)
    except (ValueError, AttributeError):
        raise ValueError("Invalid token: malformed subject.")

    user = await db.get(User, user_id)
    if user is None:
        raise ValueError("User not found.")
    if user.status in (UserStatus.BANNED, UserStatus.SUSPENDED):
        raise ValueError("Account is no longer active.")

    return user
