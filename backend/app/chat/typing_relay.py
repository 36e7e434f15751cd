"""Typing indicator relay. Ephemeral: nothing is stored or acknowledged."""
import logging
from typing import List

from .connection import ConnectionHandle, Outbound
from .rooms import RoomRouter
from .schemas import ServerEvent

logger = logging.getLogger(__name__)


class TypingRelay:
    def __init__(self, rooms: RoomRouter) -> None:
        self._rooms = rooms

    def notify_typing(self, handle: ConnectionHandle, room: str, is_typing: bool) -> List[Outbound]:
        """Forward a typing start/stop signal to the other members of ``room``.

        A handle that has not joined ``room`` is ignored silently.
        """
        if not self._rooms.is_member(handle, room):
            logger.debug(f"[Typing] {handle.identity} not in {room}; dropped")
            return []
        others = [h for h in self._rooms.members(room) if h is not handle]
        if not others:
            return []
        event = ServerEvent.USER_TYPING if is_typing else ServerEvent.USER_STOPPED_TYPING
        return [Outbound(
            others,
            event.value,
            {"userId": handle.identity, "roomId": room, "isTyping": is_typing},
        )]
