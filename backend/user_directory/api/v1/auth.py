"""
Authentication endpoints: login and current-user lookup.
"""

from fastapi import APIRouter, Depends

from user_directory.api.deps import get_current_user, get_user_service
from user_directory.core.config import get_settings
from user_directory.core.exceptions import AuthenticationError, AuthorizationError
from user_directory.core.logging import get_logger
from user_directory.core.security import create_access_token
from user_directory.models.user import User
from user_directory.schemas.user import LoginRequest, Token, UserResponse
from user_directory.services.user_service import UserService

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger("auth")
settings = get_settings()


@router.post("/login", response_model=Token)
async def login(
    login_data: LoginRequest,
    service: UserService = Depends(get_user_service),
):
    """Authenticate with username and password and return a bearer token."""
    user = await service.authenticate(login_data.username, login_data.password)
    if user is None:
        logger.warning("Failed login for username: %s", login_data.username)
        raise AuthenticationError("Invalid username or password")

    if not user.is_active:
        raise AuthorizationError("Account is not active")

    await service.record_login(user.username)

    access_token = create_access_token({"sub": str(user.id), "role": user.role.value})
    logger.info("User logged in: %s", user.username)
    return Token(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get the current user's profile."""
    return current_user
