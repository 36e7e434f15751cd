"""Per-event handler map for the live connection protocol.

Each inbound frame is a JSON object tagged by ``type``. The frame is checked
against the payload schema registered for that event before the handler
runs; handlers never see malformed input. A handler returns the outbound
events it produced instead of writing to sockets itself, so the whole
protocol can be exercised without a transport.

Protocol Message Types:
    - joinRoom / leaveRoom: Room membership (own rooms only)
    - sendMessage: Persist and fan out a message
    - typing / stopTyping: Typing indicator relay
    - ping: Application-level heartbeat
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError

from .connection import ConnectionHandle, Outbound
from .dispatch import MessageDispatcher
from .errors import ChatError, NotAuthorizedError, ValidationError
from .rooms import RoomRouter, room_belongs_to
from .schemas import (
    ClientEvent,
    RoomPayload,
    SendMessagePayload,
    ServerEvent,
    TypingPayload,
)
from .typing_relay import TypingRelay

logger = logging.getLogger(__name__)

Handler = Callable[[ConnectionHandle, BaseModel], Awaitable[List[Outbound]]]


class _Empty(BaseModel):
    pass


class EventRouter:
    """Routes validated client events to their handlers."""

    def __init__(
        self,
        rooms: RoomRouter,
        dispatcher: MessageDispatcher,
        typing_relay: TypingRelay,
    ) -> None:
        self._rooms = rooms
        self._dispatcher = dispatcher
        self._typing = typing_relay
        self._handlers: Dict[str, Tuple[Type[BaseModel], Handler]] = {
            ClientEvent.JOIN_ROOM.value: (RoomPayload, self._join_room),
            ClientEvent.LEAVE_ROOM.value: (RoomPayload, self._leave_room),
            ClientEvent.SEND_MESSAGE.value: (SendMessagePayload, self._send_message),
            ClientEvent.TYPING.value: (TypingPayload, self._typing_started),
            ClientEvent.STOP_TYPING.value: (TypingPayload, self._typing_stopped),
            ClientEvent.PING.value: (_Empty, self._ping),
        }

    @property
    def events(self) -> List[str]:
        return list(self._handlers)

    async def handle(self, handle: ConnectionHandle, frame: dict) -> List[Outbound]:
        """Validate ``frame`` and run its handler.

        Chat errors are turned into a frame for the originating handle only:
        ``messageError`` for sends, ``error`` for everything else. Any other
        exception propagates and ends the connection.
        """
        event = frame.get("type") if isinstance(frame, dict) else None
        entry = self._handlers.get(event) if isinstance(event, str) else None
        if entry is None:
            logger.warning(f"[WS] Unknown event {event!r} from {handle.identity}")
            return Outbound.to(
                handle,
                ServerEvent.ERROR.value,
                ValidationError(f"Unknown event type: {event}").to_payload(),
            )

        schema, handler = entry
        error_event = (
            ServerEvent.MESSAGE_ERROR if event == ClientEvent.SEND_MESSAGE.value
            else ServerEvent.ERROR
        )
        try:
            payload = schema.model_validate(frame)
        except PayloadValidationError as e:
            logger.debug(f"[WS] Malformed {event} from {handle.identity}: {e}")
            return Outbound.to(
                handle,
                error_event.value,
                ValidationError(f"Invalid {event} payload").to_payload(),
            )

        try:
            return await handler(handle, payload)
        except ChatError as e:
            logger.info(f"[WS] {event} from {handle.identity} failed: {e.code} {e.message}")
            return Outbound.to(handle, error_event.value, e.to_payload())

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _join_room(self, handle: ConnectionHandle, payload: RoomPayload) -> List[Outbound]:
        if not room_belongs_to(payload.roomId, handle.identity):
            raise NotAuthorizedError(f"Cannot join room {payload.roomId}")
        self._rooms.join(handle, payload.roomId)
        return Outbound.to(handle, ServerEvent.ROOM_JOINED.value, {"roomId": payload.roomId})

    async def _leave_room(self, handle: ConnectionHandle, payload: RoomPayload) -> List[Outbound]:
        self._rooms.leave(handle, payload.roomId)
        return Outbound.to(handle, ServerEvent.ROOM_LEFT.value, {"roomId": payload.roomId})

    async def _send_message(
        self, handle: ConnectionHandle, payload: SendMessagePayload
    ) -> List[Outbound]:
        _, outbound = await self._dispatcher.send(
            handle.identity, payload.recipient, payload.content, origin=handle
        )
        return outbound

    async def _typing_started(self, handle: ConnectionHandle, payload: TypingPayload) -> List[Outbound]:
        return self._typing.notify_typing(handle, payload.roomId, True)

    async def _typing_stopped(self, handle: ConnectionHandle, payload: TypingPayload) -> List[Outbound]:
        return self._typing.notify_typing(handle, payload.roomId, False)

    async def _ping(self, handle: ConnectionHandle, payload: Optional[BaseModel]) -> List[Outbound]:
        return Outbound.to(handle, ServerEvent.PONG.value, {})
