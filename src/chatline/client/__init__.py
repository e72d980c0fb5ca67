"""
Async client for the chat API plus the state engine a UI builds on.
"""

from .api import ChatApi, ApiRequestError, TransientNetworkError
from .models import (
    MessageView,
    ConversationView,
    ConversationSummary,
    Completed,
    Processing,
    Failed,
    SendOutcome,
    parse_send_response,
)
from .store import ChatStore, SyncPhase, SOFT_TIMEOUT_NOTICE

__all__ = [
    "ChatApi",
    "ApiRequestError",
    "TransientNetworkError",
    "MessageView",
    "ConversationView",
    "ConversationSummary",
    "Completed",
    "Processing",
    "Failed",
    "SendOutcome",
    "parse_send_response",
    "ChatStore",
    "SyncPhase",
    "SOFT_TIMEOUT_NOTICE",
]
