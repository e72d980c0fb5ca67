"""
Completion of replies that could not be produced during the send request.

When a send ends as `Processing`, the route schedules `complete_pending_reply`
as a background task. It runs after the response is sent, on its own session,
and stores the reply the client is polling for.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatline.config.settings import Settings, get_settings
from chatline.database.session import get_session_factory
from chatline.exceptions.base import AppError
from chatline.exceptions.generation import GenerationError
from chatline.models.message import Message, MessageRole
from chatline.repositories.conversation_repository import ConversationRepository
from chatline.repositories.message_repository import MessageRepository
from .generation_client import GenerationClient, build_generation_client
from .send_orchestrator import apply_auto_title, build_history, next_timestamp
from .title_synthesizer import TitleSynthesizer

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)

ReplyScheduler = Callable[[UUID, UUID], Awaitable[Message | None]]


async def complete_pending_reply(
    conversation_id: UUID,
    user_message_id: UUID,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    client: GenerationClient | None = None,
    titles: TitleSynthesizer | None = None,
    settings: Settings | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Message | None:
    """
    Generate and store the reply to `user_message_id`.

    Waits `PENDING_REPLY_DELAY_SECONDS` before each of up to
    `PENDING_REPLY_ATTEMPTS` attempts. Gives up quietly (logged) when the
    conversation or message is gone, a reply already follows the message, a
    terminal generation error occurs, or attempts run out.

    Returns:
        The stored AI message, or None if nothing was stored.
    """
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    client = client or build_generation_client(settings)
    log_extra = {"conversation_id": str(conversation_id), "message_id": str(user_message_id)}

    async with session_factory() as db:
        try:
            return await _complete(db, conversation_id, user_message_id, client, titles, settings, sleep, log_extra)
        except AppError:
            logger.exception("pending_reply.storage_error", extra=log_extra)
            await db.rollback()
            return None


async def _complete(db, conversation_id, user_message_id, client, titles, settings, sleep, log_extra):
    conversations = ConversationRepository(db)
    messages = MessageRepository(db)

    for attempt in range(1, settings.PENDING_REPLY_ATTEMPTS + 1):
        await sleep(settings.PENDING_REPLY_DELAY_SECONDS)

        conversation = await conversations.get_with_messages(conversation_id)
        if conversation is None:
            logger.info("pending_reply.conversation_gone", extra=log_extra)
            return None

        user_message = next((m for m in conversation.messages if m.id == user_message_id), None)
        if user_message is None:
            logger.info("pending_reply.message_gone", extra=log_extra)
            return None

        if await _answered(messages, conversation_id, user_message):
            logger.info("pending_reply.already_answered", extra=log_extra)
            return None

        prior = [m for m in conversation.messages if m.created_at < user_message.created_at]
        try:
            text = await client.generate(user_message.content, build_history(prior))
        except GenerationError as error:
            if not error.retryable:
                logger.warning("pending_reply.failed", extra={**log_extra, "kind": error.kind.value})
                return None
            logger.info("pending_reply.retry", extra={**log_extra, "attempt": attempt, "kind": error.kind.value})
            continue

        # another worker may have answered while generating
        following = await messages.get_next_message(conversation_id, user_message.created_at)
        if following is not None and following.role is MessageRole.AI:
            logger.info("pending_reply.already_answered", extra=log_extra)
            return None

        # the reply goes directly after the message it answers, even when later
        # messages were sent meanwhile
        created_at = (
            user_message.created_at + _TICK if following is not None
            else next_timestamp(user_message.created_at)
        )
        ai_message = await messages.create_message(conversation_id, text, MessageRole.AI, created_at=created_at)
        await db.commit()
        logger.info("pending_reply.completed", extra={**log_extra, "attempt": attempt})

        await apply_auto_title(db, titles, conversations, conversation_id, conversation.title,
                               sorted([*conversation.messages, ai_message], key=lambda m: m.created_at))
        return ai_message

    logger.warning("pending_reply.exhausted", extra=log_extra)
    return None


async def _answered(messages: MessageRepository, conversation_id: UUID, user_message: Message) -> bool:
    """True when the message right after `user_message` is an AI reply."""
    following = await messages.get_next_message(conversation_id, user_message.created_at)
    return following is not None and following.role is MessageRole.AI


def build_reply_scheduler(settings: Settings) -> ReplyScheduler:
    """The callable routes hand to `BackgroundTasks` for `Processing` sends."""

    async def schedule(conversation_id: UUID, user_message_id: UUID) -> Message | None:
        titles = TitleSynthesizer(
            build_generation_client(settings, max_retries=settings.TITLE_MAX_RETRIES),
            threshold=settings.TITLE_MESSAGE_THRESHOLD,
        )
        return await complete_pending_reply(
            conversation_id,
            user_message_id,
            settings=settings,
            titles=titles,
        )

    return schedule
