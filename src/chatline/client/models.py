"""
Client-side views of the chat API payloads.

Messages with an id starting with `temp-` exist only on the client: they are
inserted optimistically while a send is in flight and are replaced by the
server-confirmed message afterwards.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Union

TEMP_ID_PREFIX = "temp-"


def _parse_ts(value: str | datetime) -> datetime:
    ts = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MessageView:
    id: str
    conversation_id: str
    role: str
    content: str
    timestamp: datetime

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    @property
    def is_ai(self) -> bool:
        return self.role == "AI"

    @classmethod
    def from_json(cls, data: dict) -> "MessageView":
        return cls(
            id=str(data["id"]),
            conversation_id=str(data["conversationId"]),
            role=str(data["role"]),
            content=data["content"],
            timestamp=_parse_ts(data["timestamp"]),
        )


def new_temporary_message(conversation_id: str, content: str) -> MessageView:
    return MessageView(
        id=f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
        conversation_id=conversation_id,
        role="USER",
        content=content,
        timestamp=datetime.now(timezone.utc),
    )


def merge_messages(existing: Iterable[MessageView], incoming: Iterable[MessageView]) -> list[MessageView]:
    """Union keyed by message id (incoming wins), ordered by timestamp."""
    by_id = {m.id: m for m in existing}
    for message in incoming:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: m.timestamp)


@dataclass
class ConversationView:
    id: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    user_id: str | None = None
    messages: list[MessageView] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict) -> "ConversationView":
        return cls(
            id=str(data["id"]),
            title=data.get("title"),
            user_id=str(data["userId"]) if data.get("userId") else None,
            created_at=_parse_ts(data["createdAt"]),
            updated_at=_parse_ts(data["updatedAt"]),
            messages=sorted(
                (MessageView.from_json(m) for m in data.get("messages") or []),
                key=lambda m: m.timestamp,
            ),
        )


@dataclass
class ConversationSummary:
    id: str
    title: str | None
    updated_at: datetime
    last_message: MessageView | None = None

    @classmethod
    def from_json(cls, data: dict) -> "ConversationSummary":
        last = data.get("lastMessage")
        return cls(
            id=str(data["id"]),
            title=data.get("title"),
            updated_at=_parse_ts(data["updatedAt"]),
            last_message=MessageView.from_json(last) if last else None,
        )

    @classmethod
    def from_conversation(cls, conversation: ConversationView) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            title=conversation.title,
            updated_at=conversation.updated_at,
            last_message=conversation.messages[-1] if conversation.messages else None,
        )


# --- send outcomes, as reported by POST /conversations/{id}/messages ---

@dataclass(frozen=True)
class Completed:
    user_message: MessageView
    ai_message: MessageView


@dataclass(frozen=True)
class Processing:
    user_message: MessageView
    retryable: bool = True


@dataclass(frozen=True)
class Failed:
    user_message: MessageView
    error_text: str


SendOutcome = Union[Completed, Processing, Failed]


def parse_send_response(data: dict) -> SendOutcome:
    """
    Decode a send response into its outcome variant.

    A response without `processingStatus` is treated as completed when it
    carries an `aiMessage`.
    """
    user_message = MessageView.from_json(data["userMessage"])
    status = data.get("processingStatus") or ("completed" if data.get("aiMessage") else "failed")

    if status == "completed":
        return Completed(user_message, MessageView.from_json(data["aiMessage"]))
    if status == "processing":
        return Processing(user_message, retryable=bool(data.get("retryable", True)))
    return Failed(user_message, data.get("error") or "Failed to generate AI response")
