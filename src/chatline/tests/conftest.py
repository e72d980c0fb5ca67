"""
Core pytest configuration for the entire test suite.

This module provides only the database setup and logging that ALL tests share
(repositories, services, API, client).

Domain-specific fixtures live in:
- tests/test_fixtures/repository_fixtures.py
- tests/test_fixtures/service_fixtures.py
- tests/test_fixtures/client_fixtures.py
- tests/test_fixtures/api_fixtures.py
"""

from __future__ import annotations

# -------------------------------
# Standard library imports
# -------------------------------
import os
import logging
from pathlib import Path
from urllib.parse import urlparse
from typing import AsyncGenerator

# -------------------------------
# Early logging tuning
# -------------------------------
# Silence noisy third-party loggers before anything imports them
# (Faker and SQLAlchemy log a lot during collection).
NOISY_LOGGERS = (
    "faker",
    "faker.factory",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "asyncio",
    "httpx",
    "aiosqlite",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

# -------------------------------
# Third-party / project imports
# -------------------------------
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatline.config import get_settings
from chatline.core.logging.builder import setup_logging
from chatline.database.base import Base
from chatline.database.session import build_engine
from chatline.models import user, conversation, message  # noqa: F401 – import to register models with Base.metadata

settings = get_settings()
logger = logging.getLogger(__name__)


# -------------------------------
# Logging
# -------------------------------

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """
    Install application logging for the entire test session.

    Calls `setup_logging(settings)` so tests run with the same formatters and
    filters as the app (request_id, redaction). pytest attaches its capture
    handlers per test phase, so `caplog` keeps working after dictConfig.
    """
    setup_logging(settings)
    yield


# ------------------------------------------------------------------------------------------------
# Test database URL
# ------------------------------------------------------------------------------------------------

def safe_log_db_url(db_url: str) -> str:
    """Database URL without credentials, for logging."""
    parsed = urlparse(db_url)
    if parsed.scheme.startswith("sqlite"):
        return f"{parsed.scheme}://{parsed.path}"
    return f"{parsed.scheme}://{parsed.hostname}:{parsed.port or ''}/{parsed.path.lstrip('/')}"


def get_test_database_url(tmp_path: Path) -> str:
    """
    Determine the test database URL.

    1. `TEST_DATABASE_URL` environment variable (CI/CD override, e.g. PostgreSQL)
    2. App's `DATABASE_URL` when `TESTING=true` and `TEST_POSTGRES_DB` is set
    3. A throwaway SQLite file under the test's tmp_path

    A file (not `:memory:`) is used for SQLite because the send pipeline and the
    pending reply job open their own sessions, and every session must see the
    same committed data.
    """
    if test_url := os.getenv("TEST_DATABASE_URL"):
        return test_url

    if settings.TESTING and settings.TEST_POSTGRES_DB:
        return settings.DATABASE_URL

    return f"sqlite+aiosqlite:///{tmp_path / 'test_chatline.db'}"


# ------------------------------------------------------------------------------------------------
# DATABASE FIXTURES
# ------------------------------------------------------------------------------------------------

@pytest.fixture()
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Fresh schema per test.

    Services commit (the user message is committed before generation), so a
    rolled-back outer transaction cannot isolate tests; the tables are created
    and dropped around each test instead.
    """
    url = get_test_database_url(tmp_path)
    logger.debug("tests.database", extra={"url": safe_log_db_url(url)})
    engine = build_engine(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Factory configured like the app's (`expire_on_commit=False`)."""
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# Fixtures shared across test packages
from .test_fixtures.repository_fixtures import (  # noqa: E402,F401
    faker_instance,
    user_repository,
    conversation_repository,
    message_repository,
    create_user,
    created_user,
    other_user,
    create_conversation,
    created_conversation,
)
from .test_fixtures.service_fixtures import (  # noqa: E402,F401
    sleep_recorder,
    fake_provider,
    title_provider,
    generation_client,
    title_synthesizer,
    make_orchestrator,
    pending_settings,
)
from .test_fixtures.client_fixtures import (  # noqa: E402,F401
    fake_api,
    make_store,
)
from .test_fixtures.api_fixtures import (  # noqa: E402,F401
    reply_scheduler,
    app,
    api_client,
)
