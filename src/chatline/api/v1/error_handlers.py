"""
FastAPI exception handlers that map application exceptions to HTTP responses.

Services and repositories raise `chatline.exceptions.base.*`; the status code
comes from `exc.http_status()` and the body from `exc.to_payload()`:

    {"detail": "Conversation not found", "code": "not_found", "fields": ["conversation_id"]}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatline.exceptions.base import AppError, RepositoryError

logger = logging.getLogger(__name__)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Expected client-level errors (400/401/403/404/409/422)."""
    logger.info(
        "api.app_error",
        extra={"method": request.method, "path": request.url.path, "code": exc.error_code, "fields": exc.fields},
    )
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Storage failures -> 500. The message is already sanitized by the mapper."""
    logger.error(
        "api.repository_error",
        extra={"method": request.method, "path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Body/path validation failures -> 400 with the first error's message.

    A ValueError raised by a field validator reaches us as "Value error, <msg>";
    only "<msg>" is returned.
    """
    errors = exc.errors()
    first = errors[0] if errors else {}
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    fields = [str(part) for part in first.get("loc", ())[1:]] or None

    logger.info(
        "api.validation_error",
        extra={"method": request.method, "path": request.url.path, "error_count": len(errors)},
    )
    payload = {"detail": message, "code": "invalid_input"}
    if fields:
        payload["fields"] = fields
    return JSONResponse(status_code=400, content=payload)


def register_exception_handlers(app: FastAPI) -> None:
    # Most specific first
    app.add_exception_handler(RepositoryError, repository_error_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
