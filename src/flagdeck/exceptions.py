"""
Flagdeck exceptions.

Every error the repository and distribution cache raise on purpose derives from
FlagdeckError and carries the HTTP status it maps to at the API boundary.
"""

from typing import Any


class FlagdeckError(Exception):
    """
    Base error with enough context to render an API response.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
    """

    default_error_code = "FLAGDECK_ERROR"
    default_status_code = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.status_code = status_code or self.default_status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class ValidationError(FlagdeckError):
    """Malformed or missing input."""

    default_error_code = "VALIDATION_ERROR"
    default_status_code = 400


class ConflictError(FlagdeckError):
    """Uniqueness violation (flag key or tag name already taken)."""

    default_error_code = "CONFLICT"
    default_status_code = 409


class AuthorizationError(FlagdeckError):
    """Caller is neither the owner of the application nor an admin."""

    default_error_code = "FORBIDDEN"
    default_status_code = 403


class NotFoundError(FlagdeckError):
    """Unknown id or access key."""

    default_error_code = "NOT_FOUND"
    default_status_code = 404


__all__ = [
    "FlagdeckError",
    "ValidationError",
    "ConflictError",
    "AuthorizationError",
    "NotFoundError",
]
