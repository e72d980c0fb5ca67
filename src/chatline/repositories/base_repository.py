"""
Base repository class providing common database operations.

Model-specific repositories inherit from `BaseRepository` and add their own
queries. Repositories never commit: they `flush()` so ids and defaults are
available, and leave transaction boundaries to the service layer (the send
orchestrator commits twice per request, see `services.send_orchestrator`).
"""
from chatline.exceptions.base import (
    RepositoryError,
    DuplicateError,
    NotFoundError,
    InvalidFieldError
)
from chatline.exceptions.mapper import db_error_handler
from chatline.validators.model_validators import (
    find_unknown_model_kwargs,
    get_required_columns,
    find_unique_conflicts
)
from chatline.database.base import Base
from chatline.database.types import utcnow

import time
import logging
from typing import TypeVar, Generic, Type, Any
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func

# Type variable for the model class
ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelType]):
    """
    Generic base repository providing common CRUD operations.

    Type Parameters:
        ModelType: The SQLAlchemy model class this repository manages.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Args:
            model: The SQLAlchemy model class (e.g. `Message`, not `Message()`)
            db: The async database session, usually injected via a FastAPI dependency
        """
        self.model = model
        self.db = db

    # =================================================================================================================
    # Create
    # =================================================================================================================

    async def create(self, **kwargs) -> ModelType:
        """
        Validate and insert an entity.

        Checks run in order: unknown fields, missing required fields, unique
        pre-check. Then the row is flushed and refreshed so server-side values
        are populated.

        Raises:
            InvalidFieldError: unknown keyword for the model
            RepositoryError: missing required field or unexpected DB failure
            DuplicateError: a unique constraint would be violated
        """
        model_name = self.model.__name__
        logger.debug(
            "repo.create.start",
            extra={"model": model_name, "provided_keys": sorted(kwargs.keys())},
        )

        unknown = find_unknown_model_kwargs(self.model, kwargs)
        if unknown:
            logger.info("repo.create.invalid_fields", extra={"model": model_name, "invalid_fields": sorted(unknown)})
            raise InvalidFieldError(f"Unknown field(s) for {model_name}: {', '.join(unknown)}", fields=unknown)

        # consider missing if not provided or explicitly None (since NOT NULL)
        missing = [c for c in get_required_columns(self.model) if kwargs.get(c) is None]
        if missing:
            logger.info("repo.create.missing_required", extra={"model": model_name, "missing_fields": sorted(missing)})
            raise RepositoryError(f"Missing required field(s): {', '.join(missing)} for {model_name}", fields=missing)

        start = time.perf_counter()

        async with db_error_handler(self.db, model_name):
            conflicts = await find_unique_conflicts(self.db, self.model, kwargs)
            if conflicts:
                logger.info(
                    "repo.create.duplicate_precheck",
                    extra={"model": model_name, "conflict_fields": sorted(conflicts)},
                )
                raise DuplicateError(
                    f"{model_name} already exists for field(s): {', '.join(sorted(conflicts))}",
                    fields=sorted(conflicts),
                )

            entity = self.model(**kwargs)
            self.db.add(entity)
            await self.db.flush()
            await self.db.refresh(entity)

        logger.info(
            "repo.create.success",
            extra={
                "model": model_name,
                "id": str(getattr(entity, "id", None)),
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return entity

    # =================================================================================================================
    # Read
    # =================================================================================================================

    async def get_by_id(self, entity_id: UUID) -> ModelType | None:
        """Return the entity with `entity_id`, or None."""
        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(
                select(self.model).where(self.model.id == entity_id)
            )
            return result.scalar_one_or_none()

    async def get_by_id_or_raise(self, entity_id: UUID) -> ModelType:
        """Like `get_by_id`, but raise `NotFoundError` instead of returning None."""
        entity = await self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        return entity

    async def exists(self, entity_id: UUID) -> bool:
        # Only the id column is selected; cheaper than get_by_id
        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(select(self.model.id).where(self.model.id == entity_id))
            return result.scalar() is not None

    async def count(self, **filters: Any) -> int:
        """
        Count entities with optional equality filters.

        Unknown fields and None values are ignored, so `count(title=None)` counts
        every row rather than rows with a NULL title.
        """
        query = select(func.count(self.model.id))
        for field, value in filters.items():
            if hasattr(self.model, field) and value is not None:
                query = query.where(getattr(self.model, field) == value)

        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(query)
            return result.scalar() or 0

    # =================================================================================================================
    # Update
    # =================================================================================================================

    async def update(self, entity_id: UUID, **kwargs) -> ModelType | None:
        """
        Partially update an entity by id.

        None and empty-string values are dropped so callers cannot blank a
        field by accident. `updated_at` is stamped when the model has one.

        Returns:
            The refreshed entity, or None if no row has that id.
        """
        update_data = {k: v for k, v in kwargs.items() if v is not None and v != ""}
        if not update_data:
            logger.warning("repo.update.empty", extra={"model": self.model.__name__, "id": str(entity_id)})
            return await self.get_by_id(entity_id)

        if hasattr(self.model, "updated_at") and "updated_at" not in update_data:
            update_data["updated_at"] = utcnow()

        stmt = (
            update(self.model)
            .where(self.model.id == entity_id)
            .values(**update_data)
            .execution_options(synchronize_session="fetch")
        )

        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(stmt)
            if result.rowcount == 0:
                logger.warning("repo.update.not_found", extra={"model": self.model.__name__, "id": str(entity_id)})
                return None

        logger.debug("repo.update.success", extra={"model": self.model.__name__, "id": str(entity_id)})
        return await self.get_by_id(entity_id)

    # =================================================================================================================
    # Delete
    # =================================================================================================================

    async def delete(self, entity_id: UUID) -> bool:
        """
        Delete an entity by id.

        Returns:
            True if a row was deleted, False if none matched (delete is idempotent).
        """
        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(delete(self.model).where(self.model.id == entity_id))

        if result.rowcount > 0:
            logger.debug("repo.delete.success", extra={"model": self.model.__name__, "id": str(entity_id)})
            return True

        logger.warning("repo.delete.not_found", extra={"model": self.model.__name__, "id": str(entity_id)})
        return False
