"""
Field validators for user records.

These run in the service layer on every create/update regardless of the entry
point (HTTP, admin CLI), so a record that reaches the store always satisfies
the length, required and format rules below. Request schemas reuse the same
limits.

Uniqueness is not checked here; it needs the store and lives in UserService.
"""

from email_validator import EmailNotValidError, validate_email

from user_directory.core.exceptions import ValidationError
from user_directory.models.user import UserRole, UserStatus

# ── Field limits ─────────────────────────────────────────────────────────────
USERNAME_MIN_LENGTH: int = 3
USERNAME_MAX_LENGTH: int = 20
EMAIL_MAX_LENGTH: int = 50
NAME_MAX_LENGTH: int = 50
PHONE_MAX_LENGTH: int = 15
PASSWORD_MIN_LENGTH: int = 8
PASSWORD_MAX_LENGTH: int = 128

REQUIRED_FIELDS: tuple[str, ...] = ("username", "email", "first_name", "last_name")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _check_username(value: str) -> str | None:
    length = len(value.strip())
    if length < USERNAME_MIN_LENGTH or length > USERNAME_MAX_LENGTH:
        return (
            f"Username must be between {USERNAME_MIN_LENGTH} "
            f"and {USERNAME_MAX_LENGTH} characters"
        )
    return None


def _check_email(value: str) -> str | None:
    if len(value) > EMAIL_MAX_LENGTH:
        return f"Email must be at most {EMAIL_MAX_LENGTH} characters"
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return "Email should be valid"
    return None


def _check_name(label: str):
    def check(value: str) -> str | None:
        if len(value) > NAME_MAX_LENGTH:
            return f"{label} must be at most {NAME_MAX_LENGTH} characters"
        return None
    return check


def _check_phone(value: str | None) -> str | None:
    if value is not None and len(value) > PHONE_MAX_LENGTH:
        return f"Phone number must be at most {PHONE_MAX_LENGTH} characters"
    return None


_FIELD_CHECKS = {
    "username": _check_username,
    "email": _check_email,
    "first_name": _check_name("First name"),
    "last_name": _check_name("Last name"),
    "phone_number": _check_phone,
}


def validate_user_fields(fields: dict, partial: bool = False) -> None:
    """
    Check every supplied profile field and raise a single ValidationError
    listing all violations.

    With ``partial=True`` (updates) absent keys are skipped, but a required
    field that is present must still be non-blank.
    """
    errors: list[dict[str, str]] = []

    for field in REQUIRED_FIELDS:
        if field not in fields and partial:
            continue
        if _is_blank(fields.get(field)):
            label = field.replace("_", " ").capitalize()
            errors.append({"field": field, "message": f"{label} is required"})

    failed = {e["field"] for e in errors}
    for field, check in _FIELD_CHECKS.items():
        if field not in fields or field in failed:
            continue
        value = fields[field]
        if value is None and field not in REQUIRED_FIELDS:
            continue
        message = check(value)
        if message:
            errors.append({"field": field, "message": message})

    if errors:
        raise ValidationError("Invalid user data", errors=errors)


def validate_password(password: str | None) -> None:
    if password is None or not (PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH):
        raise ValidationError.for_field(
            "password",
            f"Password must be between {PASSWORD_MIN_LENGTH} "
            f"and {PASSWORD_MAX_LENGTH} characters",
        )


# ── Enumeration tokens ───────────────────────────────────────────────────────
def parse_role(token: str | UserRole) -> UserRole:
    """Case-insensitive role lookup. Unknown tokens are rejected, never ignored."""
    if isinstance(token, UserRole):
        return token
    try:
        return UserRole(token.strip().upper())
    except (ValueError, AttributeError):
        allowed = ", ".join(r.value for r in UserRole)
        raise ValidationError.for_field(
            "role", f"Invalid role: {token}. Allowed: {allowed}"
        ) from None


def parse_status(token: str | UserStatus) -> UserStatus:
    """Case-insensitive status lookup. Unknown tokens are rejected, never ignored."""
    if isinstance(token, UserStatus):
        return token
    try:
        return UserStatus(token.strip().upper())
    except (ValueError, AttributeError):
        allowed = ", ".join(s.value for s in UserStatus)
        raise ValidationError.for_field(
            "status", f"Invalid status: {token}. Allowed: {allowed}"
        ) from None
