"""
User service: business logic for the user directory.
Validation, uniqueness, status/role transitions, search, paging and statistics.
"""

import math
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from user_directory.core.config import get_settings
from user_directory.core.exceptions import ConflictError, NotFoundError, ValidationError
from user_directory.core.logging import get_logger
from user_directory.core.security import hash_password, verify_password
from user_directory.core.validators import (
    normalize_email,
    parse_role,
    parse_status,
    validate_password,
    validate_user_fields,
)
from user_directory.models.user import User, UserRole, UserStatus, utcnow
from user_directory.schemas.user import SortDirection, SortField, UserCreate, UserUpdate

logger = get_logger("user_service")
settings = get_settings()

PROFILE_FIELDS = ("username", "email", "first_name", "last_name", "phone_number")


def conflicting_field(error_message: str) -> str | None:
    """
    Name the unique column a driver error reports, or None if the error is not
    a uniqueness violation. Only the first line is read: PostgreSQL repeats the
    offending value in its DETAIL line, SQLite names the column up front.
    """
    lines = error_message.lower().splitlines()
    headline = lines[0] if lines else ""
    if "unique" not in headline and "duplicate" not in headline:
        return None
    for field in ("username", "email"):
        markers = (f"ix_users_{field}", f"users_{field}_key", f"users.{field}")
        if any(marker in headline for marker in markers):
            return field
    return None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserService:
    """Handles user CRUD, lifecycle and reporting operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Lookups ──────────────────────────────────────────────────────────
    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("id", user_id)
        return user

    async def get_user_by_username(self, username: str) -> User:
        result = await self.db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("username", username)
        return user

    async def get_user_by_email(self, email: str) -> User:
        normalized = normalize_email(email)
        result = await self.db.execute(select(User).where(User.email == normalized))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("email", email)
        return user

    # ── Uniqueness ───────────────────────────────────────────────────────
    async def _is_taken(self, column, value: str, exclude_id: uuid.UUID | None) -> bool:
        query = select(User.id).where(column == value)
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.first() is not None

    async def _ensure_unique(
        self,
        username: str | None = None,
        email: str | None = None,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        if username is not None and await self._is_taken(User.username, username, exclude_id):
            raise ConflictError("username", username)
        if email is not None and await self._is_taken(User.email, email, exclude_id):
            raise ConflictError("email", email)

    async def _flush(self, user: User) -> None:
        """
        Flush pending changes. The unique indexes are the final guard against a
        concurrent writer slipping past ``_ensure_unique``.
        """
        username, email = user.username, user.email
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            field = conflicting_field(str(exc.orig))
            if field is None:
                raise
            logger.warning("Unique constraint rejected write for %s / %s", username, email)
            raise ConflictError(field, email if field == "email" else username) from exc
        await self.db.refresh(user)

    # ── Create / Update / Delete ─────────────────────────────────────────
    async def create_user(self, data: UserCreate) -> User:
        """Create a user. Role defaults to USER and status is always ACTIVE."""
        fields = data.model_dump(include=set(PROFILE_FIELDS))
        validate_user_fields(fields)
        validate_password(data.password)

        username = fields["username"].strip()
        email = normalize_email(fields["email"])
        await self._ensure_unique(username=username, email=email)

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(data.password),
            first_name=fields["first_name"].strip(),
            last_name=fields["last_name"].strip(),
            phone_number=fields.get("phone_number"),
            role=parse_role(data.role) if data.role is not None else UserRole.USER,
            status=UserStatus.ACTIVE,
        )
        self.db.add(user)
        await self._flush(user)

        logger.info("User created: %s (role=%s)", user.username, user.role.value)
        return user

    async def update_user(self, user_id: uuid.UUID, data: UserUpdate) -> User:
        """
        Apply the fields present in ``data``. Username/email changes are
        re-checked against every other record before anything is written.
        """
        user = await self.get_user(user_id)

        changes = data.model_dump(exclude_unset=True)
        profile = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        validate_user_fields(profile, partial=True)

        if "username" in profile:
            profile["username"] = profile["username"].strip()
        if "email" in profile:
            profile["email"] = normalize_email(profile["email"])
        for name_field in ("first_name", "last_name"):
            if name_field in profile:
                profile[name_field] = profile[name_field].strip()

        new_username = profile.get("username")
        new_email = profile.get("email")
        await self._ensure_unique(
            username=new_username if new_username not in (None, user.username) else None,
            email=new_email if new_email not in (None, user.email) else None,
            exclude_id=user.id,
        )

        for field, value in profile.items():
            setattr(user, field, value)
        if changes.get("role") is not None:
            user.role = parse_role(changes["role"])
        if changes.get("status") is not None:
            user.status = parse_status(changes["status"])

        await self._flush(user)
        logger.info("User updated: %s (fields=%s)", user.username, sorted(changes))
        return user

    async def delete_user(self, user_id: uuid.UUID) -> None:
        """Hard delete. There is no tombstone; ids are never handed out again."""
        user = await self.get_user(user_id)
        await self.db.delete(user)
        await self.db.flush()
        logger.info("User deleted: %s (%s)", user.username, user_id)

    # ── Status & Role ────────────────────────────────────────────────────
    async def _set_status(self, user_id: uuid.UUID, status: UserStatus) -> User:
        user = await self.get_user(user_id)
        if user.status == status:
            logger.info("User %s already %s", user.username, status.value)
            return user

        previous = user.status
        user.status = status
        await self._flush(user)
        logger.info(
            "User %s status changed: %s -> %s",
            user.username, previous.value, status.value,
        )
        return user

    async def activate_user(self, user_id: uuid.UUID) -> User:
        return await self._set_status(user_id, UserStatus.ACTIVE)

    async def deactivate_user(self, user_id: uuid.UUID) -> User:
        return await self._set_status(user_id, UserStatus.INACTIVE)

    async def suspend_user(self, user_id: uuid.UUID) -> User:
        return await self._set_status(user_id, UserStatus.SUSPENDED)

    async def change_role(self, user_id: uuid.UUID, role: UserRole | str) -> User:
        new_role = parse_role(role)
        user = await self.get_user(user_id)
        if user.role == new_role:
            return user

        previous = user.role
        user.role = new_role
        await self._flush(user)
        logger.info(
            "User %s role changed: %s -> %s",
            user.username, previous.value, new_role.value,
        )
        return user

    # ── Listing & Search ─────────────────────────────────────────────────
    async def list_users(
        self,
        page: int = 0,
        size: int | None = None,
        sort_by: SortField | str = SortField.CREATED_AT,
        sort_dir: SortDirection | str = SortDirection.ASC,
    ) -> dict:
        """One page of users ordered by ``sort_by``; id breaks ties."""
        size = settings.DEFAULT_PAGE_SIZE if size is None else size
        if page < 0:
            raise ValidationError.for_field("page", "Page index must not be negative")
        if size < 1 or size > settings.MAX_PAGE_SIZE:
            raise ValidationError.for_field(
                "size", f"Page size must be between 1 and {settings.MAX_PAGE_SIZE}"
            )
        try:
            sort_field = SortField(sort_by)
        except ValueError:
            allowed = ", ".join(f.value for f in SortField)
            raise ValidationError.for_field(
                "sort_by", f"Cannot sort by {sort_by}. Allowed: {allowed}"
            ) from None
        try:
            direction = SortDirection(str(getattr(sort_dir, "value", sort_dir)).lower())
        except ValueError:
            raise ValidationError.for_field(
                "sort_dir", f"Sort direction must be asc or desc, got {sort_dir}"
            ) from None

        total = (await self.db.execute(select(func.count(User.id)))).scalar() or 0

        column = getattr(User, sort_field.value)
        ordering = column.desc() if direction is SortDirection.DESC else column.asc()
        result = await self.db.execute(
            select(User)
            .order_by(ordering, User.id)
            .offset(page * size)
            .limit(size)
        )

        return {
            "items": list(result.scalars().all()),
            "page": page,
            "size": size,
            "total_elements": total,
            "total_pages": math.ceil(total / size),
        }

    async def list_all_users(self) -> list[User]:
        result = await self.db.execute(select(User).order_by(User.created_at, User.id))
        return list(result.scalars().all())

    async def list_by_role(self, role: UserRole | str) -> list[User]:
        parsed = parse_role(role)
        result = await self.db.execute(
            select(User).where(User.role == parsed).order_by(User.created_at, User.id)
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: UserStatus | str) -> list[User]:
        parsed = parse_status(status)
        result = await self.db.execute(
            select(User).where(User.status == parsed).order_by(User.created_at, User.id)
        )
        return list(result.scalars().all())

    async def search_by_name(self, name: str) -> list[User]:
        """
        Case-insensitive substring match on "first_name last_name".
        Tokens are not reordered: "jo do" does not match "John Doe".
        """
        if name is None or not name.strip():
            raise ValidationError.for_field("name", "Search term is required")

        full_name = User.first_name + " " + User.last_name
        result = await self.db.execute(
            select(User)
            .where(full_name.ilike(f"%{_escape_like(name)}%", escape="\\"))
            .order_by(User.created_at, User.id)
        )
        return list(result.scalars().all())

    # ── Statistics ───────────────────────────────────────────────────────
    async def get_statistics(self) -> dict:
        """
        Counts per role and status from a single grouped query, so every
        figure comes from the same snapshot.
        """
        result = await self.db.execute(
            select(User.role, User.status, func.count(User.id))
            .group_by(User.role, User.status)
        )

        by_role = {role: 0 for role in UserRole}
        by_status = {status: 0 for status in UserStatus}
        for role, status, count in result.all():
            by_role[role] += count
            by_status[status] += count

        total = sum(by_role.values())
        active = by_status[UserStatus.ACTIVE]
        return {
            "total": total,
            "by_status": by_status,
            "by_role": by_role,
            "active_percentage": (active / total * 100) if total else 0.0,
        }

    # ── Authentication ───────────────────────────────────────────────────
    async def authenticate(self, username: str, password: str) -> User | None:
        result = await self.db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None or not verify_password(password, user.hashed_password):
            return None
        return user

    async def reset_password(self, user_id: uuid.UUID, password: str) -> User:
        validate_password(password)
        user = await self.get_user(user_id)
        user.hashed_password = hash_password(password)
        await self._flush(user)
        logger.info("Password reset for %s", user.username)
        return user

    async def record_login(self, username: str) -> User:
        """Stamp ``last_login``. This is the only path that writes that field."""
        user = await self.get_user_by_username(username)
        user.last_login = utcnow()
        await self._flush(user)
        logger.info("Login recorded for %s", user.username)
        return user
