from fastapi import APIRouter

from .conversations import router as conversations_router
from .health import router as health_router
from .error_handlers import register_exception_handlers

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(conversations_router)
api_router.include_router(health_router)

__all__ = ["api_router", "register_exception_handlers"]
