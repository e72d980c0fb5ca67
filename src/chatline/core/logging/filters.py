"""
Logging filters.

RequestIdFilter
    Guarantees every record has a `request_id` attribute. The id lives in a
    `ContextVar` so it follows a request across `await` points; the HTTP
    middleware sets it, the filter reads it.

RedactFilter
    Masks secrets before a record reaches any handler: sensitive `extra`
    keys (api_key, authorization, tokens, ...) and API keys that slipped into
    the message text (e.g. a provider URL with `?key=...`).
"""

import contextvars
import logging
import re
from logging import LogRecord

_request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

REDACTED = "***REDACTED***"


def set_request_id(request_id: str | None):
    """Set the request id for the current context. Returns a token for `reset_request_id`."""
    return _request_id_ctx.set(request_id)


def reset_request_id(token) -> None:
    _request_id_ctx.reset(token)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


class RequestIdFilter(logging.Filter):
    """
    Attach `record.request_id`: an explicit `extra={"request_id": ...}` wins,
    then the contextvar, then "-".
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = getattr(record, "request_id", None) or get_request_id() or "-"
        return True


class RedactFilter(logging.Filter):
    SENSITIVE = {
        "password",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "authorization",
        "api_key",
        "gemini_api_key",
        "x-goog-api-key",
        "x_goog_api_key",
    }

    # key=..., api_key: ..., "x-goog-api-key": "..."
    _INLINE_SECRET = re.compile(
        r'(?i)\b((?:api[_-]?key|x-goog-api-key|key|token|authorization)["\']?\s*[=:]\s*["\']?)([^\s&"\',]+)'
    )

    def filter(self, record: LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.SENSITIVE:
                record.__dict__[key] = REDACTED

        if isinstance(record.msg, str) and not record.args:
            record.msg = self._INLINE_SECRET.sub(rf"\1{REDACTED}", record.msg)
        return True
