"""Real-time messaging and presence.

Point-to-point messages between connected doctors and vendors, delivered
live over WebSocket rooms and persisted in DuckDB for offline readers.
"""
from .errors import (
    AuthError,
    ChatError,
    InvalidPairError,
    MessageNotFoundError,
    NotAuthorizedError,
    PersistenceError,
    ValidationError,
)
from .hub import ChatHub, get_chat_hub, set_chat_hub
from .rooms import room_id
from .schemas import Conversation, Message

__all__ = [
    "AuthError",
    "ChatError",
    "ChatHub",
    "Conversation",
    "InvalidPairError",
    "Message",
    "MessageNotFoundError",
    "NotAuthorizedError",
    "PersistenceError",
    "ValidationError",
    "get_chat_hub",
    "room_id",
    "set_chat_hub",
]
