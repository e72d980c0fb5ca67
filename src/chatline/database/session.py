from typing import AsyncGenerator
from functools import lru_cache

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)

from chatline.config import get_settings


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, *, echo: bool = False, **kwargs) -> AsyncEngine:
    """
    Create an AsyncEngine for `database_url`.

    SQLite URLs get foreign key enforcement; other backends get connection health checks.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo, **kwargs)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,     # Enables connection health checks
        **kwargs,
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use (not at import time)."""
    settings = get_settings()
    return build_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)


@lru_cache()
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the process-wide engine.

    `expire_on_commit=False` keeps ORM objects readable after the orchestrator
    commits mid-request (the user message is committed before generation starts).
    """
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency. Yields a session; commits on success, rolls back on error.

    Usage:
        async def endpoint(db: AsyncSession = Depends(get_async_session)):
            await db.execute(...)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
