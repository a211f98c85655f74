"""
Consistent error shapes for the integration hub.

Errors raised across the store boundary inherit from AppError so the API
layer in front of this package can render them uniformly. Secret values are
NEVER placed in messages or details.

Standard HTTP status codes:
- 400: Bad Request (validation errors)
- 404: Not Found
- 409: Conflict (duplicate display name)
- 500: Internal Server Error
"""

from http import HTTPStatus
from typing import Any, Optional


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors crossing the store boundary should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
        )


class ConflictError(AppError):
    """Resource conflict (409)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="CONFLICT",
            message=message,
            status_code=HTTPStatus.CONFLICT,
            details=details,
        )
