# chatline/
# │
# ├── exceptions/
# │   ├── __init__.py
# │   ├── base.py          # App-level errors (NotFoundError, ForbiddenError, RepositoryError, ...)
# │   ├── mapper.py        # Map SQL-level / DB-specific errors to app-level errors
# │   └── generation.py    # Classified generation backend failures

from .base import (
    AppError,
    RepositoryError,
    NotFoundError,
    ForbiddenError,
    UnauthorizedError,
    DuplicateError,
    InvalidFieldError,
    ValidationError,
)
from .generation import GenerationError, GenerationErrorKind

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthorizedError",
    "DuplicateError",
    "InvalidFieldError",
    "ValidationError",
    "GenerationError",
    "GenerationErrorKind",
]
