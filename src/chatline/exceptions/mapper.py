"""
Translate SQLAlchemy failures into application errors.

Repositories wrap their database work in `db_error_handler`; anything raised
inside comes out as an `AppError` subclass with a sanitized message. Raw
driver text is only ever logged at DEBUG.
"""
import re
import logging
from contextlib import asynccontextmanager
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .base import AppError, DuplicateError, RepositoryError

logger = logging.getLogger(__name__)


class ConstraintKind(str, Enum):
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    UNKNOWN = "unknown"


# https://www.postgresql.org/docs/current/errcodes-appendix.html
PGCODE_TO_KIND = {
    "23505": ConstraintKind.UNIQUE,
    "23502": ConstraintKind.NOT_NULL,
    "23503": ConstraintKind.FOREIGN_KEY,
    "23514": ConstraintKind.CHECK,
}

_MESSAGE_KEYWORDS = [
    (ConstraintKind.UNIQUE, ("unique constraint", "unique failed", "unique violation", "duplicate")),
    (ConstraintKind.NOT_NULL, ("not null constraint", "not null", "null value in column")),
    (ConstraintKind.FOREIGN_KEY, ("foreign key constraint", "foreign key", "is not present in table")),
    (ConstraintKind.CHECK, ("check constraint", "check failed")),
]


def classify_integrity_error(exc: IntegrityError) -> tuple[ConstraintKind, str | None]:
    """
    Classify an IntegrityError by constraint kind.

    Postgres exposes a pgcode and diagnostics, so prefer those; SQLite only
    gives a message, which is matched by keyword.

    Returns:
        (ConstraintKind, constraint name if the driver reported one)
    """
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode:
        diag = getattr(orig, "diag", None)
        constraint_name = getattr(diag, "constraint_name", None) if diag else None
        kind = PGCODE_TO_KIND.get(pgcode, ConstraintKind.UNKNOWN)
        logger.debug("mapper.pg_diagnostic", extra={"pgcode": pgcode, "constraint_name": constraint_name})
        return kind, constraint_name

    normalized = str(orig).lower()
    for kind, keywords in _MESSAGE_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return kind, None

    logger.warning("mapper.unknown_integrity_message", extra={"message_snippet": normalized[:200]})
    return ConstraintKind.UNKNOWN, None


def extract_columns_from_integrity(exc: IntegrityError) -> list[str] | None:
    """Best-effort extraction of column names from Postgres or SQLite messages."""
    msg = str(exc.orig) if exc.orig is not None else str(exc)

    # Postgres: 'null value in column "title"'
    m = re.search(r'null value in column "(?P<col>[^"]+)"', msg, flags=re.IGNORECASE)
    if m:
        return [m.group("col")]

    # Postgres: 'Key (email, username)=(...) already exists.'
    m = re.search(r'key \((?P<cols>[^)]+)\)=', msg, flags=re.IGNORECASE)
    if m:
        return [c.strip().strip('"') for c in m.group("cols").split(",")]

    # SQLite: 'UNIQUE constraint failed: users.email'
    m = re.search(r'(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>.+)$', msg, flags=re.IGNORECASE)
    if m:
        return [c.split('.')[-1].strip() for c in re.split(r',\s*', m.group("cols"))]

    return None


def map_integrity_error(exc: IntegrityError, model_name: str | None = None) -> AppError:
    """Build (not raise) the app-level error for an IntegrityError."""
    kind, constraint_name = classify_integrity_error(exc)
    columns = extract_columns_from_integrity(exc)
    model_part = model_name or "Record"

    if kind is ConstraintKind.UNIQUE:
        # Expected client-level scenario (409)
        logger.info(
            "mapper.duplicate_detected",
            extra={"model": model_part, "fields": columns, "constraint": constraint_name},
        )
        if columns:
            return DuplicateError(f"{model_part} already exists for field(s): {', '.join(columns)}",
                                  fields=columns, constraint=constraint_name)
        return DuplicateError(f"{model_part} already exists", constraint=constraint_name)

    if kind is ConstraintKind.NOT_NULL:
        logger.info("mapper.not_null_violation", extra={"model": model_part, "fields": columns})
        return RepositoryError(f"Missing required field for {model_part}", fields=columns,
                               constraint=constraint_name)

    if kind is ConstraintKind.FOREIGN_KEY:
        logger.info("mapper.foreign_key_violation", extra={"model": model_part, "constraint": constraint_name})
        return RepositoryError(f"{model_part} referenced entity not found", constraint=constraint_name)

    if kind is ConstraintKind.CHECK:
        logger.debug("mapper.check_constraint_failure", extra={"model": model_part, "raw": str(exc.orig)})
        return RepositoryError(f"{model_part} business rule violated", constraint=constraint_name)

    logger.warning("mapper.unknown_integrity_error", extra={"model": model_part, "constraint": constraint_name})
    logger.debug("mapper.unknown_integrity_raw", extra={"model": model_part, "raw": str(exc.orig)})
    return RepositoryError(f"{model_part} database integrity error")


@asynccontextmanager
async def db_error_handler(db: AsyncSession, model_name: str | None = None):
    """
    Usage:
        async with db_error_handler(self.db, self.model.__name__):
            ... DB ops that may raise IntegrityError ...

    Rolls back on error. App errors raised inside the block pass through
    unchanged; everything else is converted to a sanitized `AppError`.
    """
    try:
        yield
    except AppError:
        raise
    except IntegrityError as exc:
        await _safe_rollback(db, model_name)
        raise map_integrity_error(exc, model_name) from exc
    except Exception as exc:
        await _safe_rollback(db, model_name)
        logger.exception("repository.unexpected_error", extra={"model": model_name})
        raise RepositoryError(f"Failed to operate on {model_name or 'database'}") from exc


async def _safe_rollback(db: AsyncSession, model_name: str | None) -> None:
    try:
        await db.rollback()
    except Exception:
        logger.exception("repository.rollback_failed", extra={"model": model_name})
