"""
Single import point for the ORM models.

    from chatline.models import User, Conversation, Message, MessageRole

Importing this package also registers every table on `Base.metadata`.
"""

from .user import User
from .conversation import Conversation, DEFAULT_CONVERSATION_TITLE
from .message import Message, MessageRole

__all__ = [
    "User",
    "Conversation",
    "DEFAULT_CONVERSATION_TITLE",
    "Message",
    "MessageRole"
]
