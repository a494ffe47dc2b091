"""
User directory endpoints.

Every route declares the matrix action it needs; the check runs in a
dependency before the handler body touches the service.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Response, status

from user_directory.api.deps import get_user_service, require, require_on_target
from user_directory.core.authorization import Action, Caller, authorize, required_actions_for_update
from user_directory.core.config import get_settings
from user_directory.core.logging import get_logger
from user_directory.schemas.user import (
    SortDirection,
    SortField,
    UserCreate,
    UserPage,
    UserResponse,
    UserStatistics,
    UserUpdate,
)
from user_directory.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])
logger = get_logger("users")
settings = get_settings()


# ── Collections ─────────────────────────────────────────────────────────────
@router.get(
    "",
    response_model=UserPage,
    dependencies=[Depends(require(Action.LIST_USERS))],
)
async def list_users(
    page: int = Query(0, ge=0),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: str = Query(SortField.CREATED_AT.value),
    sort_dir: str = Query(SortDirection.ASC.value),
    service: UserService = Depends(get_user_service),
):
    """[Admin/Manager] Paginated user list."""
    return await service.list_users(page=page, size=size, sort_by=sort_by, sort_dir=sort_dir)


@router.get(
    "/all",
    response_model=list[UserResponse],
    dependencies=[Depends(require(Action.LIST_ALL_USERS))],
)
async def list_all_users(service: UserService = Depends(get_user_service)):
    """[Admin] Every user, unpaginated."""
    return await service.list_all_users()


@router.get(
    "/statistics",
    response_model=UserStatistics,
    dependencies=[Depends(require(Action.VIEW_STATISTICS))],
)
async def get_statistics(service: UserService = Depends(get_user_service)):
    """[Admin/Manager] Counts by status and role."""
    return await service.get_statistics()


@router.get(
    "/search",
    response_model=list[UserResponse],
    dependencies=[Depends(require(Action.SEARCH_USERS))],
)
async def search_users(
    name: str = Query(..., min_length=1),
    service: UserService = Depends(get_user_service),
):
    """[Admin/Manager] Case-insensitive search on the full name."""
    return await service.search_by_name(name)


@router.get(
    "/role/{role}",
    response_model=list[UserResponse],
    dependencies=[Depends(require(Action.LIST_BY_ROLE))],
)
async def list_by_role(role: str, service: UserService = Depends(get_user_service)):
    """[Admin/Manager] Users holding a role."""
    return await service.list_by_role(role)


@router.get(
    "/status/{user_status}",
    response_model=list[UserResponse],
    dependencies=[Depends(require(Action.LIST_BY_STATUS))],
)
async def list_by_status(user_status: str, service: UserService = Depends(get_user_service)):
    """[Admin/Manager] Users in a status."""
    return await service.list_by_status(user_status)


# ── Single-user lookups ─────────────────────────────────────────────────────
@router.get(
    "/username/{username}",
    response_model=UserResponse,
    dependencies=[Depends(require(Action.GET_USER_BY_USERNAME))],
)
async def get_user_by_username(username: str, service: UserService = Depends(get_user_service)):
    return await service.get_user_by_username(username)


@router.get(
    "/email/{email}",
    response_model=UserResponse,
    dependencies=[Depends(require(Action.GET_USER_BY_EMAIL))],
)
async def get_user_by_email(email: str, service: UserService = Depends(get_user_service)):
    return await service.get_user_by_email(email)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_on_target(Action.GET_USER))],
)
async def get_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    """[Admin/Manager, or the user themself] Get a user by ID."""
    return await service.get_user(user_id)


# ── Mutations ────────────────────────────────────────────────────────────────
@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    user_data: UserCreate,
    caller: Caller = Depends(require(Action.CREATE_USER)),
    service: UserService = Depends(get_user_service),
):
    """[Admin/Manager] Create a user. Role defaults to USER, status to ACTIVE."""
    user = await service.create_user(user_data)
    logger.info("Caller %s created user %s", caller.id, user.id)
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    updates: UserUpdate,
    caller: Caller = Depends(require_on_target(Action.UPDATE_USER)),
    service: UserService = Depends(get_user_service),
):
    """
    [Admin/Manager, or the user themself] Update a user.
    Changing role or status additionally needs the matching transition right.
    """
    current = await service.get_user(user_id)
    role_change = updates.role if updates.role not in (None, current.role) else None
    status_change = updates.status if updates.status not in (None, current.status) else None
    for action in required_actions_for_update(role=role_change, status=status_change):
        authorize(action, caller, target_id=user_id)

    return await service.update_user(user_id, updates)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_user(
    user_id: uuid.UUID,
    caller: Caller = Depends(require_on_target(Action.DELETE_USER)),
    service: UserService = Depends(get_user_service),
):
    """[Admin] Permanently delete a user."""
    await service.delete_user(user_id)
    logger.info("Caller %s deleted user %s", caller.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{user_id}/activate",
    response_model=UserResponse,
    dependencies=[Depends(require_on_target(Action.ACTIVATE_USER))],
)
async def activate_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    """[Admin/Manager] Set status to ACTIVE."""
    return await service.activate_user(user_id)


@router.patch(
    "/{user_id}/deactivate",
    response_model=UserResponse,
    dependencies=[Depends(require_on_target(Action.DEACTIVATE_USER))],
)
async def deactivate_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    """[Admin/Manager] Set status to INACTIVE."""
    return await service.deactivate_user(user_id)


@router.patch(
    "/{user_id}/suspend",
    response_model=UserResponse,
    dependencies=[Depends(require_on_target(Action.SUSPEND_USER))],
)
async def suspend_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    """[Admin] Set status to SUSPENDED."""
    return await service.suspend_user(user_id)


@router.patch(
    "/{user_id}/role/{role}",
    response_model=UserResponse,
    dependencies=[Depends(require_on_target(Action.CHANGE_ROLE))],
)
async def change_role(
    user_id: uuid.UUID,
    role: str,
    service: UserService = Depends(get_user_service),
):
    """[Admin] Overwrite a user's role."""
    return await service.change_role(user_id, role)
