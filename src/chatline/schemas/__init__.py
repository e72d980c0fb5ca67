from .chat import (
    MessageRead,
    ConversationRead,
    ConversationSummary,
    ConversationCreate,
    SendMessageRequest,
    SendMessageResponse,
    TitleResponse,
    HealthResponse,
)

__all__ = [
    "MessageRead",
    "ConversationRead",
    "ConversationSummary",
    "ConversationCreate",
    "SendMessageRequest",
    "SendMessageResponse",
    "TitleResponse",
    "HealthResponse",
]
