"""
API dependencies for FastAPI dependency injection.

Provides the database session, the collaborator record store and the
provider access check.
"""
from fastapi import Depends, Path
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from src.api.middleware.error_handler import ForbiddenException, UnauthorizedException
from src.lib.db import SessionLocal, get_db as get_db_session
from src.lib.jwt import can_access_provider, verify_token
from src.lib.logging import bind_log_context, get_logger
from src.services.record_store import RecordStore, SqlRecordStore


logger = get_logger(__name__)

# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_record_store() -> RecordStore:
    """Record store opening its own session per query."""
    return SqlRecordStore(SessionLocal)


async def get_current_claims(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Decode the bearer token.

    Raises:
        UnauthorizedException: missing, expired or malformed token
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")

    try:
        claims = verify_token(credentials.credentials)
    except jwt.exceptions.InvalidTokenError as e:
        logger.warning(f"Rejected token: {e}")
        raise UnauthorizedException("Invalid authentication token") from e

    if not claims.get("sub") or not claims.get("role"):
        raise UnauthorizedException("Invalid authentication token")
    return claims


async def require_provider_access(
    provider_id: int = Path(..., ge=1, description="Provider id"),
    claims: dict = Depends(get_current_claims),
) -> int:
    """
    Admins may read any provider, providers only their own analytics.

    Returns:
        The provider id from the path
    """
    if not can_access_provider(claims, provider_id):
        raise ForbiddenException(f"Not allowed to access provider {provider_id}")
    bind_log_context(provider_id=provider_id, role=claims["role"])
    return provider_id
