"""
Request and response bodies for the chat API.

JSON keys are camelCase on the wire (`conversationId`, `lastMessage`, ...);
Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from chatline.config.settings import get_settings
from chatline.models.conversation import Conversation
from chatline.models.message import Message, MessageRole
from chatline.services.send_orchestrator import Completed, Failed, Processing, SendResult
from chatline.validators.normalizers import normalize_message_content, normalize_title


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRead(CamelModel):
    id: UUID
    conversation_id: UUID
    role: MessageRole
    content: str
    timestamp: datetime

    @classmethod
    def from_model(cls, message: Message) -> "MessageRead":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role,
            content=message.content,
            timestamp=message.created_at,
        )


class ConversationSummary(CamelModel):
    id: UUID
    title: str | None
    created_at: datetime
    updated_at: datetime
    last_message: MessageRead | None = None

    @classmethod
    def from_model(cls, conversation: Conversation, last_message: Message | None = None) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            last_message=MessageRead.from_model(last_message) if last_message else None,
        )


class ConversationRead(CamelModel):
    id: UUID
    title: str | None
    user_id: UUID
    created_at: datetime
    updated_at: datetime
    messages: list[MessageRead] = Field(default_factory=list)

    @classmethod
    def from_model(cls, conversation: Conversation, include_messages: bool = True) -> "ConversationRead":
        return cls(
            id=conversation.id,
            title=conversation.title,
            user_id=conversation.user_id,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            messages=[MessageRead.from_model(m) for m in conversation.messages] if include_messages else [],
        )


class ConversationCreate(CamelModel):
    title: str | None = Field(default=None, max_length=200)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return normalize_title(v) if isinstance(v, str) else v


class SendMessageRequest(CamelModel):
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Non-empty after stripping, at most MESSAGE_MAX_LENGTH characters."""
        return normalize_message_content(v, get_settings().MESSAGE_MAX_LENGTH)


class SendMessageResponse(CamelModel):
    user_message: MessageRead
    ai_message: MessageRead | None = None
    error: str | None = None
    processing_status: Literal["completed", "processing", "failed"]
    retryable: bool | None = None

    @classmethod
    def from_result(cls, result: SendResult) -> "SendMessageResponse":
        user_message = MessageRead.from_model(result.user_message)
        if isinstance(result, Completed):
            return cls(
                user_message=user_message,
                ai_message=MessageRead.from_model(result.ai_message),
                processing_status="completed",
            )
        if isinstance(result, Processing):
            return cls(
                user_message=user_message,
                error="The AI response is taking longer than expected. It will appear shortly.",
                processing_status="processing",
                retryable=result.retryable,
            )
        if isinstance(result, Failed):
            return cls(
                user_message=user_message,
                error=result.error_text,
                processing_status="failed",
                retryable=False,
            )
        raise TypeError(f"Unknown send result: {type(result).__name__}")


class TitleResponse(CamelModel):
    title: str


class HealthResponse(CamelModel):
    status: str = "ok"
    version: str
