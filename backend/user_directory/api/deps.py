"""
FastAPI dependencies for authentication and authorization.

Authentication resolves the bearer token to a stored user; authorization is
delegated to the matrix in ``user_directory.core.authorization``.
"""

import uuid

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from user_directory.core.authorization import PUBLIC_ACTIONS, Action, Caller, authorize
from user_directory.core.database import get_db
from user_directory.core.exceptions import AuthenticationError, AuthorizationError
from user_directory.core.logging import get_logger
from user_directory.core.security import TOKEN_TYPE, decode_token
from user_directory.models.user import User
from user_directory.services.user_service import UserService

logger = get_logger("deps")

# Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


async def _resolve_user(token: str, db: AsyncSession) -> User:
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    if payload.get("type") != TOKEN_TYPE:
        raise AuthenticationError("Invalid token type")

    try:
        user_id = uuid.UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthenticationError("Invalid token payload") from None

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthorizationError("Account is not active")

    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Validate the JWT and return the current user.
    Raises 401 if the token is missing or invalid, 403 if the account is not ACTIVE.
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return await _resolve_user(credentials.credentials, db)


async def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Caller | None:
    """Caller identity if a token was sent, otherwise None (anonymous)."""
    if credentials is None:
        return None
    user = await _resolve_user(credentials.credentials, db)
    return Caller(id=user.id, role=user.role)


def require(action: Action):
    """
    Dependency factory: the caller must be allowed ``action`` with no target record.
    Public actions never look at credentials or open a session, so a stale
    token cannot fail them.
    """
    if action in PUBLIC_ACTIONS:

        async def public() -> None:
            return None

        return public

    async def dependency(caller: Caller | None = Depends(get_optional_caller)) -> Caller | None:
        authorize(action, caller)
        return caller

    return dependency


def require_on_target(action: Action):
    """Dependency factory: the caller must be allowed ``action`` on path param ``user_id``."""

    async def dependency(
        user_id: uuid.UUID,
        caller: Caller | None = Depends(get_optional_caller),
    ) -> Caller:
        authorize(action, caller, target_id=user_id)
        return caller

    return dependency
