"""
Application-level exceptions.

Every error that is allowed to reach the HTTP layer derives from `AppError`,
which knows how to render itself (`to_payload()`) and which status code it
maps to (`http_status()`).
"""

from typing import Iterable


class AppError(Exception):
    """
    Base exception for repository/service errors.

    - message: human-friendly message (safe to show to clients)
    - fields: optional list of field names related to the error (e.g., ['content'])
    - constraint: optional DB constraint name or identifier (for logs only)
    - error_code: canonical short code (e.g., 'duplicate', 'not_found') used by clients
    """

    # Map canonical error_code -> default HTTP status.
    ERROR_CODE_TO_STATUS = {
        "invalid_input": 400,
        "unauthorized": 401,
        "forbidden": 403,
        "not_found": 404,
        "duplicate": 409,
        "invalid_field": 422,
        "storage_error": 500,
    }

    default_code: str | None = None

    def __init__(self, message: str, *, fields: Iterable[str] | None = None,
                 constraint: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields) if fields else None
        self.constraint = constraint
        self.error_code = error_code or self.default_code

    def __str__(self) -> str:
        base = self.message
        parts = []
        if self.fields:
            parts.append(f"fields: {', '.join(self.fields)}")
        if self.constraint:
            parts.append(f"constraint: {self.constraint}")
        if self.error_code:
            parts.append(f"code: {self.error_code}")
        if parts:
            return f"{base} ({'; '.join(parts)})"
        return base

    def to_payload(self) -> dict:
        """
        Return a JSON-serializable dict suitable for HTTP responses.

            {
                "detail": "Conversation not found",
                "code": "not_found",
                "fields": ["conversation_id"]
            }

        `constraint` is never part of the payload.
        """
        payload = {"detail": self.message}
        if self.error_code:
            payload["code"] = self.error_code
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload

    def http_status(self) -> int:
        """Status looked up from `error_code`; 400 when the code is unknown or absent."""
        if self.error_code:
            return self.ERROR_CODE_TO_STATUS.get(self.error_code, 400)
        return 400


class RepositoryError(AppError):
    """Storage failure. Fatal to the request that hit it."""
    default_code = "storage_error"


class NotFoundError(AppError):
    default_code = "not_found"

    def __init__(self, message: str = "Not found", *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields)


class ForbiddenError(AppError):
    """The resource exists but belongs to someone else."""
    default_code = "forbidden"

    def __init__(self, message: str = "Access denied", *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields)


class UnauthorizedError(AppError):
    default_code = "unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class DuplicateError(AppError):
    default_code = "duplicate"

    def __init__(self, message: str, *, fields: Iterable[str] | None = None, constraint: str | None = None):
        super().__init__(message, fields=fields, constraint=constraint)


class InvalidFieldError(AppError):
    """Raised when the caller passes unexpected/unknown fields to repository methods."""
    default_code = "invalid_field"

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields)


class ValidationError(AppError):
    """Bad client input (empty message, content too long, ...)."""
    default_code = "invalid_input"

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields)


__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthorizedError",
    "DuplicateError",
    "InvalidFieldError",
    "ValidationError",
]
