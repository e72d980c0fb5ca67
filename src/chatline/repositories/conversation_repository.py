"""
Conversation repository for handling conversation-specific database operations.

Extends BaseRepository with user-scoped listing (each conversation paired with
its most recent message), eager message loading, and deletes that remove a
conversation's messages along with it.
"""

from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, and_, func
from sqlalchemy.orm import selectinload
import logging

from chatline.models.conversation import Conversation, DEFAULT_CONVERSATION_TITLE
from chatline.models.message import Message
from chatline.models.user import User
from chatline.exceptions.base import NotFoundError
from chatline.exceptions.mapper import db_error_handler
from chatline.validators.normalizers import normalize_title
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository[Conversation]):
    """
    Repository for Conversation entity operations.

    Ownership is not enforced here; `services.conversation_service` decides
    between 404 and 403 after loading by id.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Conversation, db)

    # =================================================================================================================
    # Create Operations
    # =================================================================================================================

    async def create_conversation(self, user_id: UUID, title: str | None = None) -> Conversation:
        """
        Create a new conversation owned by `user_id`.

        A blank or missing title falls back to "New Conversation", which keeps
        the conversation eligible for an automatically synthesized title.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with db_error_handler(self.db, "Conversation"):
            user_result = await self.db.execute(select(User.id).where(User.id == user_id))
            if user_result.scalar_one_or_none() is None:
                raise NotFoundError("User not found", fields=["user_id"])

        conversation = await self.create(
            user_id=user_id,
            title=normalize_title(title) or DEFAULT_CONVERSATION_TITLE,
        )
        logger.info(
            "conversation.created",
            extra={"conversation_id": str(conversation.id), "user_id": str(user_id)},
        )
        return conversation

    # =================================================================================================================
    # Read Operations
    # =================================================================================================================

    async def get_with_messages(self, conversation_id: UUID) -> Conversation | None:
        """
        Retrieve a conversation with its messages eagerly loaded, oldest first.

        Returns None if no conversation has that id.
        """
        query = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .options(selectinload(Conversation.messages))
            # Re-read rows already in the identity map so replies committed by
            # another session (the pending reply job) are visible.
            .execution_options(populate_existing=True)
        )
        async with db_error_handler(self.db, "Conversation"):
            result = await self.db.execute(query)
            conversation = result.scalar_one_or_none()

        logger.debug(
            "conversation.loaded",
            extra={"conversation_id": str(conversation_id), "found": conversation is not None},
        )
        return conversation

    async def get_by_user(
        self,
        user_id: UUID,
        offset: int = 0,
        limit: int = 50
    ) -> list[tuple[Conversation, Message | None]]:
        """
        Conversations of `user_id`, most recently updated first, each paired
        with its latest message (None for an empty conversation).

        The latest message is resolved with a grouped subquery and a LEFT JOIN,
        so the list costs one round-trip regardless of its length.
        """
        latest = (
            select(
                Message.conversation_id.label("conversation_id"),
                func.max(Message.created_at).label("latest_at"),
            )
            .group_by(Message.conversation_id)
            .subquery()
        )

        query = (
            select(Conversation, Message)
            .outerjoin(latest, latest.c.conversation_id == Conversation.id)
            .outerjoin(
                Message,
                and_(
                    Message.conversation_id == Conversation.id,
                    Message.created_at == latest.c.latest_at,
                ),
            )
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .offset(offset)
            .limit(limit)
        )

        async with db_error_handler(self.db, "Conversation"):
            result = await self.db.execute(query)
            rows = [(conversation, message) for conversation, message in result.all()]

        logger.debug("conversation.listed", extra={"user_id": str(user_id), "count": len(rows)})
        return rows

    # =================================================================================================================
    # Update Operations
    # =================================================================================================================

    async def update_title(self, conversation_id: UUID, title: str) -> Conversation | None:
        logger.info("conversation.title_updated", extra={"conversation_id": str(conversation_id)})
        return await self.update(conversation_id, title=normalize_title(title))

    # =================================================================================================================
    # Delete Operations
    # =================================================================================================================

    async def delete_conversation(self, conversation_id: UUID) -> bool:
        """
        Delete a conversation and all of its messages.

        Messages are removed explicitly first: the bulk DELETE below bypasses
        ORM cascades, and SQLite only honours ON DELETE CASCADE when foreign
        keys are enabled on the connection.

        Returns:
            True if the conversation existed and was deleted.
        """
        async with db_error_handler(self.db, "Conversation"):
            removed = await self.db.execute(
                delete(Message).where(Message.conversation_id == conversation_id)
            )

        deleted = await self.delete(conversation_id)
        if deleted:
            logger.info(
                "conversation.deleted",
                extra={"conversation_id": str(conversation_id), "messages_removed": removed.rowcount},
            )
        return deleted
