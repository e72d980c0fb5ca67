from sqlalchemy import String, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from datetime import datetime
from chatline.database.base import Base
from chatline.database.types import UTCDateTime, utcnow
import uuid
from typing import TYPE_CHECKING

# Avoid circular import issues when using type hints for related models
if TYPE_CHECKING:
    from .user import User
    from .message import Message

# Title a conversation carries until it is renamed or a title is synthesized.
DEFAULT_CONVERSATION_TITLE = "New Conversation"


class Conversation(Base):
    """
    SQLAlchemy model for a Conversation.

    A conversation is owned by exactly one user and holds an ordered sequence of
    messages. Deleting it deletes its messages.
    """
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    # Nullable for legacy rows; new conversations start with the sentinel title.
    title: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        default=DEFAULT_CONVERSATION_TITLE
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    # Bumped by the send pipeline whenever a reply lands
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )

    # --- Relationships ---

    user: Mapped["User"] = relationship(
        "User",
        back_populates="conversations"
    )

    # Always ordered by timestamp; "last message" and prompt history rely on it.
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
        order_by="Message.created_at"
    )

    @property
    def has_default_title(self) -> bool:
        return not self.title or self.title == DEFAULT_CONVERSATION_TITLE

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id!r}, title={self.title!r}, user_id={self.user_id!r})>"
