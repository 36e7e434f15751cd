"""Message dispatch pipeline: validate, authorize, persist, fan out.

A message is durably written before any live delivery is attempted. Room
membership is read only after the write returns, because other connections
may have joined, left or disconnected while the write was in flight.
"""
import asyncio
import logging
from typing import List, Optional, Tuple

from .connection import ConnectionHandle, Outbound
from .errors import NotAuthorizedError, ValidationError
from .repository import PersistenceGateway
from .rooms import RoomRouter
from .schemas import Message, ServerEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 5000


class MessageDispatcher:
    """Sends one message from a sender to a recipient's room."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        rooms: RoomRouter,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._gateway = gateway
        self._rooms = rooms
        self.max_message_length = max_message_length

    def validate_content(self, content: Optional[str]) -> str:
        """Return the trimmed content or raise ValidationError."""
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required")
        if len(text) > self.max_message_length:
            raise ValidationError(
                f"Message content exceeds {self.max_message_length} characters"
            )
        return text

    async def send(
        self,
        sender: str,
        recipient: str,
        content: Optional[str],
        origin: Optional[ConnectionHandle] = None,
    ) -> Tuple[Message, List[Outbound]]:
        """Persist a message and build its live deliveries.

        Args:
            sender: Identity of the author.
            recipient: Identity of the addressee.
            content: Raw message text (trimmed before storage).
            origin: The sender's connection, if the send came over one. It
                receives the ``messageSent`` confirmation.

        Returns:
            Tuple of (stored message, outbound events). Outbound is empty
            for the room when nobody has joined it (offline delivery).

        Raises:
            ValidationError: Empty or oversized content.
            InvalidPairError: Missing recipient or a message to oneself.
            NotAuthorizedError: The pair is not connected.
            PersistenceError: The store failed; nothing was sent.
        """
        text = self.validate_content(content)
        room = self._rooms.room_id(sender, recipient)

        if not await self._gateway.is_authorized(sender, recipient):
            logger.warning(f"[Dispatch] {sender} may not message {recipient}")
            raise NotAuthorizedError("You can only send messages to connected users")

        # Once started, the write finishes even if the sender goes away
        message = await asyncio.shield(
            self._gateway.save_message(sender, recipient, text)
        )
        logger.info(f"[Dispatch] {message.id} {sender} -> {recipient}: {text[:50]}")

        payload = message.to_wire()
        members = self._rooms.members(room)
        outbound = []
        if members:
            outbound.append(Outbound(members, ServerEvent.NEW_MESSAGE.value, payload))
        else:
            logger.debug(f"[Dispatch] {room} has no members; {message.id} stored for later")
        outbound.extend(Outbound.to(origin, ServerEvent.MESSAGE_SENT.value, payload))
        return message, outbound

