"""
Conversation use cases: create, list, read and delete, with ownership checks.

Ownership is resolved in two steps so callers can tell "does not exist" (404)
from "exists but is not yours" (403).
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from chatline.exceptions.base import ForbiddenError, NotFoundError
from chatline.models.conversation import Conversation
from chatline.models.message import Message
from chatline.repositories.conversation_repository import ConversationRepository

logger = logging.getLogger(__name__)


async def get_owned_conversation(
    repo: ConversationRepository,
    user_id: UUID,
    conversation_id: UUID,
) -> Conversation:
    """
    Load a conversation (messages included) and check it belongs to `user_id`.

    Raises:
        NotFoundError: no conversation with that id
        ForbiddenError: the conversation belongs to another user
    """
    conversation = await repo.get_with_messages(conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found", fields=["conversation_id"])
    if conversation.user_id != user_id:
        logger.warning(
            "conversation.access_denied",
            extra={"conversation_id": str(conversation_id), "user_id": str(user_id)},
        )
        raise ForbiddenError("You do not have access to this conversation")
    return conversation


class ConversationService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationRepository(db)

    async def create(self, user_id: UUID, title: str | None = None) -> Conversation:
        conversation = await self.conversations.create_conversation(user_id, title)
        await self.db.commit()
        return conversation

    async def list_for_user(
        self, user_id: UUID, offset: int = 0, limit: int = 50
    ) -> list[tuple[Conversation, Message | None]]:
        return await self.conversations.get_by_user(user_id, offset=offset, limit=limit)

    async def get(self, user_id: UUID, conversation_id: UUID) -> Conversation:
        return await get_owned_conversation(self.conversations, user_id, conversation_id)

    async def delete(self, user_id: UUID, conversation_id: UUID) -> None:
        await get_owned_conversation(self.conversations, user_id, conversation_id)
        await self.conversations.delete_conversation(conversation_id)
        await self.db.commit()
