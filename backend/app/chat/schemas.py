"""Pydantic schemas for the messaging core.

Defines the persisted Message record, the derived Conversation view, and one
tagged payload schema per client event. Payloads are validated at the
WebSocket boundary, before any handler runs; unknown extra keys (including
the ``type`` tag itself) are ignored.

These schemas are used by:
    - MessageRepository: DuckDB storage layer
    - EventRouter: WebSocket payload validation
    - router: HTTP read path responses
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ClientEvent(str, Enum):
    """Event names a client may send over the live connection."""
    JOIN_ROOM = "joinRoom"
    LEAVE_ROOM = "leaveRoom"
    SEND_MESSAGE = "sendMessage"
    TYPING = "typing"
    STOP_TYPING = "stopTyping"
    PING = "ping"


class ServerEvent(str, Enum):
    """Event names the server emits over the live connection."""
    CONNECTED = "connected"
    USER_ONLINE = "userOnline"
    USER_OFFLINE = "userOffline"
    NEW_MESSAGE = "newMessage"
    MESSAGE_SENT = "messageSent"
    MESSAGE_ERROR = "messageError"
    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    ROOM_JOINED = "roomJoined"
    ROOM_LEFT = "roomLeft"
    ERROR = "error"
    PONG = "pong"


class Message(BaseModel):
    """A persisted point-to-point message.

    Attributes:
        id: Unique message identifier (UUID assigned by the store).
        sender: Identity of the author.
        recipient: Identity of the addressee.
        content: Trimmed message text.
        createdAt: Server timestamp (UTC) at persistence time.
        read: Whether the recipient has read the message. Only moves false -> true.
        readAt: When ``read`` flipped to true.
    """
    id: str = Field(..., description="Unique message ID")
    sender: str = Field(..., description="Sender identity")
    recipient: str = Field(..., description="Recipient identity")
    content: str = Field(..., description="Message content")
    createdAt: datetime = Field(..., description="Creation time (UTC)")
    read: bool = Field(default=False, description="Read by recipient")
    readAt: Optional[datetime] = Field(default=None, description="When read (UTC)")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


class Conversation(BaseModel):
    """A partner the caller has exchanged at least one message with."""
    partnerId: str
    lastMessage: Message
    unreadCount: int = 0


# =============================================================================
# Client event payloads
# =============================================================================


class RoomPayload(BaseModel):
    """Payload of ``joinRoom`` / ``leaveRoom``."""
    roomId: str = Field(..., min_length=1)


class SendMessagePayload(BaseModel):
    """Payload of ``sendMessage``.

    ``timestamp`` is accepted for client compatibility; the stored
    ``createdAt`` always comes from the server clock.
    """
    recipient: str = Field(..., min_length=1)
    content: str
    timestamp: Optional[Any] = None


class TypingPayload(BaseModel):
    """Payload of ``typing`` / ``stopTyping``."""
    roomId: str = Field(..., min_length=1)
    recipientId: Optional[str] = None


# =============================================================================
# HTTP request bodies
# =============================================================================


class SendMessageRequest(BaseModel):
    """Body of POST /api/chat/send."""
    recipientId: str = Field(..., min_length=1)
    content: str
