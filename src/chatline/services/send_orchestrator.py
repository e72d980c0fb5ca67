"""
Send pipeline for one user message.

    load conversation (404 / 403)
    persist USER message -> commit
    generate reply (retries inside the generation client)
    persist AI message   -> commit
    auto-title (best effort)

The user message is committed before generation starts, so it survives any
generation failure. The outcome is reported as a `SendResult`:

    Completed(user_message, ai_message)   reply generated and stored
    Processing(user_message)              transient failure; reply may still arrive
    Failed(user_message, error_text)      permanent failure; no reply will come

Generation failures never raise out of `send`. Storage failures do.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from chatline.database.types import utcnow
from chatline.exceptions.generation import GenerationError
from chatline.models.message import Message, MessageRole
from chatline.repositories.conversation_repository import ConversationRepository
from chatline.repositories.message_repository import MessageRepository
from .conversation_service import get_owned_conversation
from .generation_client import GenerationClient
from .providers import HistoryEntry
from .title_synthesizer import TitleSynthesizer

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class Completed:
    user_message: Message
    ai_message: Message


@dataclass(frozen=True)
class Processing:
    user_message: Message
    retryable: bool = True


@dataclass(frozen=True)
class Failed:
    user_message: Message
    error_text: str


SendResult = Union[Completed, Processing, Failed]


def build_history(messages: Sequence[Message]) -> list[HistoryEntry]:
    """Prior messages as generation history, oldest first. USER -> "user", AI -> "model"."""
    ordered = sorted(messages, key=lambda m: m.created_at)
    return [{"role": m.role.history_role, "content": m.content} for m in ordered]


def next_timestamp(after: datetime | None) -> datetime:
    """Current time, bumped if needed so it sorts strictly after `after`."""
    now = utcnow()
    if after is not None and now <= after:
        return after + _TICK
    return now


class SendOrchestrator:
    """
    Runs the send pipeline on one session.

    Args:
        db: session used for the whole request; committed twice
        client: generation client for replies
        titles: title synthesizer; None disables automatic titles
    """

    def __init__(self, db: AsyncSession, client: GenerationClient, titles: TitleSynthesizer | None = None):
        self.db = db
        self.client = client
        self.titles = titles
        self.conversations = ConversationRepository(db)
        self.messages = MessageRepository(db)

    async def send(self, user_id: UUID, conversation_id: UUID, content: str) -> SendResult:
        conversation = await get_owned_conversation(self.conversations, user_id, conversation_id)
        prior = list(conversation.messages)
        current_title = conversation.title
        history = build_history(prior)

        user_message = await self.messages.create_message(
            conversation_id,
            content,
            MessageRole.USER,
            created_at=next_timestamp(prior[-1].created_at if prior else None),
        )
        await self.db.commit()
        logger.info(
            "orchestrator.send.user_persisted",
            extra={"conversation_id": str(conversation_id), "message_id": str(user_message.id)},
        )

        try:
            text = await self.client.generate(content, history)
        except GenerationError as error:
            if error.retryable:
                logger.warning(
                    "orchestrator.send.processing",
                    extra={"conversation_id": str(conversation_id), "kind": error.kind.value},
                )
                return Processing(user_message)
            logger.warning(
                "orchestrator.send.failed",
                extra={"conversation_id": str(conversation_id), "kind": error.kind.value},
            )
            return Failed(user_message, error.message)

        ai_message = await self.messages.create_message(
            conversation_id,
            text,
            MessageRole.AI,
            created_at=next_timestamp(user_message.created_at),
        )
        await self.db.commit()
        logger.info(
            "orchestrator.send.completed",
            extra={"conversation_id": str(conversation_id), "message_id": str(ai_message.id)},
        )

        await apply_auto_title(self.db, self.titles, self.conversations, conversation_id, current_title,
                               [*prior, user_message, ai_message])
        return Completed(user_message, ai_message)


async def apply_auto_title(
    db: AsyncSession,
    titles: TitleSynthesizer | None,
    conversations: ConversationRepository,
    conversation_id: UUID,
    current_title: str | None,
    messages: Sequence[Message],
) -> None:
    """Run the auto-title policy and commit a new title. Never raises."""
    if titles is None:
        return
    try:
        outcome = await titles.maybe_auto_title(conversations, conversation_id, current_title, messages)
        if outcome is not None and outcome.generated:
            await db.commit()
    except Exception:
        logger.exception("orchestrator.title.failed", extra={"conversation_id": str(conversation_id)})
        await db.rollback()
