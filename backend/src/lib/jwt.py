"""JWT token generation and validation utilities.

Uses the algorithm and secret from settings.
Tokens carry the standard claims (exp, iat, sub) plus a custom role claim;
for providers `sub` is the numeric provider id.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from src.lib.settings import settings


TOKEN_EXPIRY_HOURS = 24

ROLE_ADMIN = "admin"
ROLE_PROVIDER = "provider"


def create_access_token(
    subject: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token.

    Args:
        subject: Caller id (stored in 'sub' claim)
        role: admin or provider
        expires_delta: Optional custom expiration time

    Example:
        >>> token = create_access_token("42", "provider")
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRY_HOURS)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject),
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a token.

    Raises:
        jwt.exceptions.InvalidTokenError: expired, bad signature or malformed
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def can_access_provider(claims: dict, provider_id: int) -> bool:
    """Admins may read any provider; providers only themselves."""
    role = claims.get("role")
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_PROVIDER:
        return str(claims.get("sub")) == str(provider_id)
    return False
