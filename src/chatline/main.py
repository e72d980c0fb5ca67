"""
Application factory.

    uvicorn chatline.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatline.api.v1 import api_router, register_exception_handlers
from chatline.config.settings import Settings, get_settings
from chatline.core.logging import RequestIDMiddleware, setup_logging, stop_queue_logging
from chatline.database.base import Base
from chatline.database.session import dispose_engine, get_engine
from chatline.utils.project import get_project_version

import chatline.models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        if settings.DB_AUTO_CREATE:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("app.tables_created")
        logger.info(
            "app.startup",
            extra={"env": settings.ENV, "provider": settings.GENERATION_PROVIDER},
        )
        try:
            yield
        finally:
            logger.info("app.shutdown")
            await dispose_engine()
            stop_queue_logging()

    app = FastAPI(title="chatline", version=get_project_version(), lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


app = create_app()
