"""
Errors raised by the generation backend.

A failure is classified exactly once, where it is caught (provider or
generation client), into a `GenerationErrorKind` plus a `retryable` flag.
Everything downstream branches on those two values and never on message text.
"""

from enum import Enum


class GenerationErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def suggested_status(self) -> int:
        """HTTP status a caller could use if it chose to surface this failure."""
        return _SUGGESTED_STATUS[self]

    @property
    def default_retryable(self) -> bool:
        return self in (GenerationErrorKind.RATE_LIMITED, GenerationErrorKind.TIMEOUT)


_SUGGESTED_STATUS = {
    GenerationErrorKind.UNAUTHORIZED: 401,
    GenerationErrorKind.RATE_LIMITED: 429,
    GenerationErrorKind.NOT_FOUND: 404,
    GenerationErrorKind.FORBIDDEN: 403,
    GenerationErrorKind.TIMEOUT: 504,
    GenerationErrorKind.UNKNOWN: 500,
}

# Client-facing text per kind; provider messages are logged, not shown.
_DEFAULT_MESSAGES = {
    GenerationErrorKind.UNAUTHORIZED: "Invalid API key or authentication failed",
    GenerationErrorKind.RATE_LIMITED: "API quota exceeded. Please try again later.",
    GenerationErrorKind.NOT_FOUND: "AI model not found or not available",
    GenerationErrorKind.FORBIDDEN: "Access denied to AI service",
    GenerationErrorKind.TIMEOUT: "AI response timeout",
    GenerationErrorKind.UNKNOWN: "Failed to generate AI response",
}


class GenerationError(Exception):
    """
    A classified generation failure.

    `retryable` defaults from the kind (rate limit and timeout are transient)
    but can be forced, e.g. network failures and provider 5xx are UNKNOWN yet
    retryable.
    """

    def __init__(self, kind: GenerationErrorKind, message: str | None = None, *,
                 retryable: bool | None = None):
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.retryable = kind.default_retryable if retryable is None else retryable
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"GenerationError(kind={self.kind.value!r}, retryable={self.retryable}, message={self.message!r})"


__all__ = ["GenerationErrorKind", "GenerationError"]
