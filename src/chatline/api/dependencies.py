"""
FastAPI dependencies.

Everything a route needs is obtained through one of these functions, so tests
can swap any of them with `app.dependency_overrides`.
"""

from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from chatline.config.settings import get_settings
from chatline.database.session import get_async_session
from chatline.exceptions.base import UnauthorizedError
from chatline.repositories.user_repository import UserRepository
from chatline.services.conversation_service import ConversationService
from chatline.services.generation_client import GenerationClient, build_generation_client
from chatline.services.pending_reply import ReplyScheduler, build_reply_scheduler
from chatline.services.send_orchestrator import SendOrchestrator
from chatline.services.title_synthesizer import TitleSynthesizer


# Request-scoped session (commit on success, rollback on error)
get_db_session = get_async_session


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    db: AsyncSession = Depends(get_db_session),
) -> UUID:
    """
    Identity of the caller, as asserted by the upstream auth gateway.

    Raises:
        UnauthorizedError: header missing, not a UUID, or no active user with that id
    """
    if not x_user_id:
        raise UnauthorizedError("Authentication required")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user identity") from None

    if await UserRepository(db).get_active_user(user_id) is None:
        raise UnauthorizedError("Unknown or inactive user")
    return user_id


@lru_cache()
def get_generation_client() -> GenerationClient:
    return build_generation_client(get_settings())


@lru_cache()
def get_title_synthesizer() -> TitleSynthesizer:
    settings = get_settings()
    client = build_generation_client(settings, max_retries=settings.TITLE_MAX_RETRIES)
    return TitleSynthesizer(client, threshold=settings.TITLE_MESSAGE_THRESHOLD)


def get_reply_scheduler() -> ReplyScheduler:
    return build_reply_scheduler(get_settings())


def get_conversation_service(db: AsyncSession = Depends(get_db_session)) -> ConversationService:
    return ConversationService(db)


def get_send_orchestrator(
    db: AsyncSession = Depends(get_db_session),
    client: GenerationClient = Depends(get_generation_client),
    titles: TitleSynthesizer = Depends(get_title_synthesizer),
) -> SendOrchestrator:
    return SendOrchestrator(db, client, titles)
