"""
Authorization matrix.

All access rules for the directory live in ``PERMISSIONS``: one row per action
naming the roles that may perform it, plus the roles that may perform it on
their own record. ``is_allowed`` is the only place a decision is made; route
handlers call ``authorize`` before touching the service.

Actions that have no row are denied. Anonymous callers are denied everything
except ``PUBLIC_ACTIONS``.
"""

import enum
import uuid
from dataclasses import dataclass

from user_directory.core.exceptions import AuthenticationError, AuthorizationError
from user_directory.core.logging import get_logger
from user_directory.models.user import UserRole, UserStatus

logger = get_logger("authorization")


class Action(str, enum.Enum):
    HEALTH_CHECK = "health_check"
    LIST_USERS = "list_users"
    LIST_ALL_USERS = "list_all_users"
    LIST_BY_ROLE = "list_by_role"
    LIST_BY_STATUS = "list_by_status"
    SEARCH_USERS = "search_users"
    VIEW_STATISTICS = "view_statistics"
    GET_USER = "get_user"
    GET_USER_BY_USERNAME = "get_user_by_username"
    GET_USER_BY_EMAIL = "get_user_by_email"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    ACTIVATE_USER = "activate_user"
    DEACTIVATE_USER = "deactivate_user"
    SUSPEND_USER = "suspend_user"
    CHANGE_ROLE = "change_role"


@dataclass(frozen=True)
class Caller:
    """Resolved identity of the requester."""
    id: uuid.UUID
    role: UserRole


@dataclass(frozen=True)
class Rule:
    roles: frozenset[UserRole]
    owner_roles: frozenset[UserRole] = frozenset()


STAFF = frozenset({UserRole.ADMIN, UserRole.MANAGER})
ADMIN_ONLY = frozenset({UserRole.ADMIN})
EVERYONE = frozenset(UserRole)

PUBLIC_ACTIONS: frozenset[Action] = frozenset({Action.HEALTH_CHECK})

PERMISSIONS: dict[Action, Rule] = {
    Action.LIST_USERS: Rule(STAFF),
    Action.LIST_BY_ROLE: Rule(STAFF),
    Action.LIST_BY_STATUS: Rule(STAFF),
    Action.SEARCH_USERS: Rule(STAFF),
    Action.VIEW_STATISTICS: Rule(STAFF),
    Action.LIST_ALL_USERS: Rule(ADMIN_ONLY),
    Action.GET_USER: Rule(STAFF, owner_roles=frozenset({UserRole.USER, UserRole.GUEST})),
    Action.GET_USER_BY_USERNAME: Rule(STAFF),
    Action.GET_USER_BY_EMAIL: Rule(STAFF),
    Action.CREATE_USER: Rule(STAFF),
    Action.UPDATE_USER: Rule(STAFF, owner_roles=EVERYONE),
    Action.DELETE_USER: Rule(ADMIN_ONLY),
    Action.ACTIVATE_USER: Rule(STAFF),
    Action.DEACTIVATE_USER: Rule(STAFF),
    Action.SUSPEND_USER: Rule(ADMIN_ONLY),
    Action.CHANGE_ROLE: Rule(ADMIN_ONLY),
}

# Setting a status through an update needs the same right as the dedicated transition.
STATUS_ACTIONS: dict[UserStatus, Action] = {
    UserStatus.ACTIVE: Action.ACTIVATE_USER,
    UserStatus.INACTIVE: Action.DEACTIVATE_USER,
    UserStatus.PENDING_VERIFICATION: Action.DEACTIVATE_USER,
    UserStatus.SUSPENDED: Action.SUSPEND_USER,
}


def is_allowed(
    action: Action,
    caller: Caller | None,
    target_id: uuid.UUID | None = None,
) -> bool:
    if action in PUBLIC_ACTIONS:
        return True
    if caller is None:
        return False

    rule = PERMISSIONS.get(action)
    if rule is None:
        return False
    if caller.role in rule.roles:
        return True
    return (
        caller.role in rule.owner_roles
        and target_id is not None
        and caller.id == target_id
    )


def authorize(
    action: Action,
    caller: Caller | None,
    target_id: uuid.UUID | None = None,
) -> None:
    """Raise unless ``caller`` may perform ``action`` on ``target_id``."""
    if is_allowed(action, caller, target_id):
        return

    if caller is None:
        raise AuthenticationError("Not authenticated")

    logger.warning(
        "Denied %s for caller %s (role=%s, target=%s)",
        action.value, caller.id, caller.role.value, target_id,
    )
    raise AuthorizationError(f"Not permitted to {action.value.replace('_', ' ')}")


def required_actions_for_update(
    role: UserRole | None = None,
    status: UserStatus | None = None,
) -> list[Action]:
    """Actions an update payload needs, given the role/status it carries."""
    actions = [Action.UPDATE_USER]
    if role is not None:
        actions.append(Action.CHANGE_ROLE)
    if status is not None:
        actions.append(STATUS_ACTIONS[status])
    return actions
