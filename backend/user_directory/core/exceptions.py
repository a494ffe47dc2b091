"""
Domain error kinds.

Every failure a caller is expected to handle has its own exception class with
the HTTP status it maps to. The API layer renders them through a single
exception handler (see ``user_directory.main``).
"""

from typing import Any


class DirectoryError(Exception):
    """Base class for all recoverable user-directory errors."""

    status_code: int = 400

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(DirectoryError):
    """A field is malformed, missing, out of range or not a known enum token."""

    status_code = 422

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    @property
    def fields(self) -> list[str]:
        return [e["field"] for e in self.errors]


class ConflictError(DirectoryError):
    """A unique value (username or email) is already taken."""

    status_code = 409

    def __init__(self, field: str, value: str):
        message = f"{field.capitalize()} already exists: {value}"
        super().__init__(message, errors=[{"field": field, "message": message}])
        self.field = field


class NotFoundError(DirectoryError):
    """The targeted user does not exist."""

    status_code = 404

    def __init__(self, lookup: str, value: Any):
        super().__init__(f"User not found with {lookup}: {value}")
        self.lookup = lookup


class AuthenticationError(DirectoryError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class AuthorizationError(DirectoryError):
    """The caller's role or identity does not permit the requested action."""

    status_code = 403
