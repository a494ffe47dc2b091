"""
Credentials for directory accounts.

Passwords are stored only as Argon2 hashes. Login issues a short-lived HS256
access token whose ``sub`` is the user id; the caller's role is always
re-read from the store, so the ``role`` claim is informational.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import JWTError, jwt

from user_directory.core.config import get_settings

settings = get_settings()

TOKEN_TYPE = "access"

password_hasher = PasswordHasher(time_cost=2, memory_cost=65536, parallelism=2)


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """False for a wrong password and for a stored value that is not an Argon2 hash."""
    try:
        return password_hasher.verify(hashed_password, plain_password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Sign ``data`` (normally ``sub`` and ``role``) as an access token.
    Expiry defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime, "type": TOKEN_TYPE}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """Claims of a correctly signed, unexpired token; None otherwise."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
