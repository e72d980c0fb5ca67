"""
Message repository for message-specific database operations.

Messages are append-only: they are created by the send pipeline and removed
only together with their conversation.
"""

from datetime import datetime
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import logging

from chatline.models.message import Message, MessageRole
from chatline.models.conversation import Conversation
from chatline.exceptions.base import NotFoundError
from chatline.exceptions.mapper import db_error_handler
from chatline.database.types import utcnow
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[Message]):
    """Repository for Message entity operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(Message, db)

    # =================================================================================================================
    # Create Operations
    # =================================================================================================================

    async def create_message(
        self,
        conversation_id: UUID,
        content: str,
        role: MessageRole,
        created_at: datetime | None = None
    ) -> Message:
        """
        Create a new message in a conversation.

        The conversation's `updated_at` is bumped to the message timestamp (or
        to now, for a reply slotted in behind a later message) so the
        conversation list reflects the latest activity.

        Args:
            conversation_id: UUID of the conversation.
            content: The message content (already validated by the caller).
            role: USER or AI.
            created_at: Explicit timestamp. Used for replies, which must sort
                directly after the message they answer.

        Raises:
            NotFoundError: If the conversation does not exist.
            RepositoryError: If any database-related error occurs.
        """
        async with db_error_handler(self.db, "Message"):
            exists = await self.db.execute(
                select(Conversation.id).where(Conversation.id == conversation_id)
            )
            if exists.scalar_one_or_none() is None:
                raise NotFoundError("Conversation not found", fields=["conversation_id"])

        timestamp = created_at or utcnow()
        message = await self.create(
            conversation_id=conversation_id,
            content=content,
            role=role,
            created_at=timestamp,
        )

        async with db_error_handler(self.db, "Message"):
            await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=max(timestamp, utcnow()))
                .execution_options(synchronize_session="fetch")
            )

        logger.debug(
            "message.created",
            extra={"conversation_id": str(conversation_id), "message_id": str(message.id), "role": role.value},
        )
        return message

    # =================================================================================================================
    # Read Operations
    # =================================================================================================================

    async def get_conversation_history(
        self,
        conversation_id: UUID,
        limit: int | None = None
    ) -> list[Message]:
        """
        Messages of a conversation in chronological (oldest-first) order.

        With `limit`, only the most recent N messages are returned, still
        oldest-first.
        """
        if limit is None:
            query = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc())
            )
        else:
            # newest N, then flipped back to chronological order below
            query = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc())
                .limit(limit)
            )

        async with db_error_handler(self.db, "Message"):
            result = await self.db.execute(query)
            messages = list(result.scalars().all())

        if limit is not None:
            messages.reverse()
        return messages

    async def get_next_message(self, conversation_id: UUID, after: datetime) -> Message | None:
        """The first message of the conversation timestamped strictly after `after`, if any."""
        async with db_error_handler(self.db, "Message"):
            result = await self.db.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id, Message.created_at > after)
                .order_by(Message.created_at.asc())
                .limit(1)
            )
            return result.scalars().first()

