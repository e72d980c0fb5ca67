from sqlalchemy import ForeignKey, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from datetime import datetime
from enum import Enum as PyEnum
from chatline.database.base import Base
from chatline.database.types import UTCDateTime, utcnow
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .conversation import Conversation


class MessageRole(str, PyEnum):
    """Who authored a message."""
    USER = "USER"   # Sent by the user
    AI = "AI"       # Produced by the generation backend

    @property
    def history_role(self) -> str:
        """Role name used in generation history ("user" / "model")."""
        return "user" if self is MessageRole.USER else "model"


class Message(Base):
    """
    SQLAlchemy model representing one turn of a conversation.

    `created_at` is assigned in the application with microsecond resolution so
    that a reply can always be stamped strictly after the message it answers.
    """
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    role: Mapped[MessageRole] = mapped_column(
        SQLEnum(MessageRole, name="message_role"),
        nullable=False,
        index=True
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    # --- Relationships ---

    conversation: Mapped["Conversation"] = relationship(
        "Conversation",
        back_populates="messages"
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id!r}, role={self.role.value!r}, conversation_id={self.conversation_id!r})>"
