"""Read path: conversation list, history, unread counts.

Everything here is recomputed from the persistence gateway on each call;
nothing is cached. ``get_history`` marks the partner's messages as read as a
side effect, which is how clients clear their unread badges.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import MessageNotFoundError, NotAuthorizedError
from .repository import PersistenceGateway
from .schemas import Conversation, Message

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 100


class ConversationService:
    """Reconstructs conversation state for clients that are not live."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._gateway = gateway
        self.page_size = page_size
        self.max_page_size = max_page_size

    async def list_conversations(self, identity: str) -> List[Conversation]:
        """One entry per partner, most recently active first."""
        messages = await self._gateway.messages_involving(identity)

        # messages arrive newest first, so the first hit per partner is the latest
        latest: Dict[str, Message] = {}
        unread: Dict[str, int] = {}
        for message in messages:
            partner = message.recipient if message.sender == identity else message.sender
            if partner == identity:
                continue
            latest.setdefault(partner, message)
            if message.recipient == identity and not message.read:
                unread[partner] = unread.get(partner, 0) + 1

        conversations = [
            Conversation(partnerId=partner, lastMessage=last, unreadCount=unread.get(partner, 0))
            for partner, last in latest.items()
        ]
        conversations.sort(key=lambda c: c.lastMessage.createdAt, reverse=True)
        return conversations

    async def get_history(
        self,
        identity: str,
        partner: str,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> Tuple[List[Message], bool]:
        """Messages between the pair, oldest first, and whether more exist.

        Page backwards with ``before_id`` (the first message of the previous
        page); ``before`` alone skips messages that share its timestamp.

        Every unread message from ``partner`` to ``identity`` is marked read,
        not only the ones on the returned page. The page itself reflects the
        state before marking.

        Raises:
            NotAuthorizedError: The pair is not connected.
            PersistenceError: The store failed.
        """
        if not await self._gateway.is_authorized(identity, partner):
            raise NotAuthorizedError("You can only chat with connected users")

        limit = min(limit or self.page_size, self.max_page_size)
        messages, has_more = await self._gateway.history(
            identity, partner, limit, before=before, before_id=before_id
        )
        marked = await self._gateway.mark_conversation_read(identity, partner)
        if marked:
            logger.info(f"[Conversations] {identity} read {marked} message(s) from {partner}")
        return messages, has_more

    async def unread_count(self, identity: str) -> int:
        return await self._gateway.unread_count(identity)

    async def mark_read(self, identity: str, message_id: str) -> Message:
        """Mark a single message read on behalf of its recipient.

        Raises:
            MessageNotFoundError: No message with that id.
            NotAuthorizedError: ``identity`` is not the recipient.
        """
        message = await self._gateway.get_message(message_id)
        if message is None:
            raise MessageNotFoundError("Message not found")
        if message.recipient != identity:
            raise NotAuthorizedError("Not authorized")
        if message.read:
            return message
        updated = await self._gateway.mark_message_read(message_id)
        if updated is None:
            raise MessageNotFoundError("Message not found")
        return updated
