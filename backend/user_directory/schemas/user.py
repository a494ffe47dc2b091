"""
Pydantic schemas for user operations and authentication.
"""

import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from user_directory.core.validators import (
    NAME_MAX_LENGTH,
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    PHONE_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
)
from user_directory.models.user import UserRole, UserStatus


# ── Create / Update ──────────────────────────────────────────────────────────
class UserCreate(BaseModel):
    """Schema for creating a new user. Status is always ACTIVE on creation."""
    username: str = Field(..., min_length=USERNAME_MIN_LENGTH, max_length=USERNAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    last_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    phone_number: str | None = Field(None, max_length=PHONE_MAX_LENGTH)
    role: UserRole | None = None


class UserUpdate(BaseModel):
    """Schema for updating a user. Only fields that are sent are applied."""
    username: str | None = Field(None, min_length=USERNAME_MIN_LENGTH, max_length=USERNAME_MAX_LENGTH)
    email: EmailStr | None = None
    first_name: str | None = Field(None, min_length=1, max_length=NAME_MAX_LENGTH)
    last_name: str | None = Field(None, min_length=1, max_length=NAME_MAX_LENGTH)
    phone_number: str | None = Field(None, max_length=PHONE_MAX_LENGTH)
    role: UserRole | None = None
    status: UserStatus | None = None


# ── Login ────────────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    """Schema for login requests."""
    username: str
    password: str


class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# ── User Responses ───────────────────────────────────────────────────────────
class UserResponse(BaseModel):
    """Public user view (never carries the password hash)."""
    id: uuid.UUID
    username: str
    email: str
    first_name: str
    last_name: str
    phone_number: str | None
    role: UserRole
    status: UserStatus
    created_at: datetime
    updated_at: datetime
    last_login: datetime | None

    model_config = {"from_attributes": True}


class UserPage(BaseModel):
    """One page of users plus totals."""
    items: list[UserResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int


class UserStatistics(BaseModel):
    """Aggregate counts over the whole directory."""
    total: int
    by_status: dict[UserStatus, int]
    by_role: dict[UserRole, int]
    active_percentage: float


# ── Sorting ──────────────────────────────────────────────────────────────────
class SortField(str, enum.Enum):
    ID = "id"
    USERNAME = "username"
    EMAIL = "email"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    ROLE = "role"
    STATUS = "status"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    LAST_LOGIN = "last_login"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"
