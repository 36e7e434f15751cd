"""Chat router providing the WebSocket endpoint and the HTTP read path.

This module provides:
    - WebSocket /ws/chat: Live messaging, presence and typing
    - GET  /api/chat/conversations: Conversation list with unread counts
    - GET  /api/chat/messages/{user_id}: History with one partner (marks read)
    - POST /api/chat/send: Non-live send with opportunistic fan-out
    - PUT  /api/chat/mark-read/{message_id}: Mark one message read
    - GET  /api/chat/unread-count: Total unread messages
    - GET  /api/chat/online: Online identities (debug mode only)

Protocol Flow (WebSocket):
    1. Client connects with a bearer token (header, ?token=, or subprotocol)
       → invalid token: socket closed with 1008, nothing registered
       → Server sends: {type: "connected", userId, handleId, onlineUsers}
       → Server broadcasts to others: {type: "userOnline", userId, isOnline: true}
    2. Client sends: {type: "joinRoom", roomId: "chat_<a>_<b>"}
       → Server replies: {type: "roomJoined", roomId}
    3. Client sends: {type: "sendMessage", recipient, content}
       → Room members receive: {type: "newMessage", ...message}
       → Sender receives: {type: "messageSent", ...message}
       → On failure sender receives: {type: "messageError", error, message}
    4. Client sends: {type: "typing" | "stopTyping", roomId}
       → Other room members receive: {type: "userTyping" | "userStoppedTyping", ...}
    5. On disconnect or heartbeat timeout
       → Others receive: {type: "userOffline", userId, isOnline: false}
         unless a newer connection for the same user is still live
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from app.config import get_config

from .auth import bearer_from_header, credential_from_handshake
from .connection import ConnectionHandle, Outbound, deliver
from .errors import AuthError, ChatError, ValidationError
from .hub import ChatHub, get_chat_hub
from .schemas import SendMessageRequest, ServerEvent

logger = logging.getLogger(__name__)

router = APIRouter()

# WebSocket close codes
POLICY_VIOLATION = 1008
GOING_AWAY = 1001
INTERNAL_ERROR = 1011


def _hub() -> ChatHub:
    hub = get_chat_hub()
    if hub is None:
        raise HTTPException(status_code=503, detail="Chat service is not initialised")
    return hub


def _current_identity(
    authorization: Optional[str] = Header(None),
    hub: ChatHub = Depends(_hub),
) -> str:
    """Resolve the caller's identity from the Authorization header."""
    try:
        return hub.authenticator.authenticate(bearer_from_header(authorization))
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def _error_response(error: ChatError) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error.code, "message": error.message},
        status_code=error.status_code
    )


# =============================================================================
# HTTP read path
# =============================================================================


@router.get("/api/chat/conversations")
async def list_conversations(
    identity: str = Depends(_current_identity),
    hub: ChatHub = Depends(_hub),
) -> JSONResponse:
    """List everyone the caller has exchanged messages with.

    Returns:
        JSON with conversations sorted by last message time, newest first.
    """
    try:
        conversations = await hub.conversations.list_conversations(identity)
    except ChatError as e:
        return _error_response(e)
    return JSONResponse({
        "success": True,
        "conversations": [c.model_dump(mode="json") for c in conversations]
    })


@router.get("/api/chat/messages/{user_id}")
async def get_messages(
    user_id: str,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    before: Optional[datetime] = Query(None, description="Only messages created before this time"),
    before_id: Optional[str] = Query(
        None, alias="beforeId", description="Only messages older than this message (paging cursor)"
    ),
    identity: str = Depends(_current_identity),
    hub: ChatHub = Depends(_hub),
) -> JSONResponse:
    """Get message history with one partner, oldest first.

    Side effect: every unread message from ``user_id`` to the caller is
    marked read.

    Example:
        GET /api/chat/messages/bob?limit=50
        GET /api/chat/messages/bob?before=2025-01-01T12:00:00Z&limit=50
        GET /api/chat/messages/bob?beforeId=<id of first message on the page>&limit=50
    """
    try:
        messages, has_more = await hub.conversations.get_history(
            identity, user_id, limit, before=before, before_id=before_id
        )
    except ChatError as e:
        return _error_response(e)
    return JSONResponse({
        "success": True,
        "messages": [m.to_wire() for m in messages],
        "hasMore": has_more
    })


@router.post("/api/chat/send", status_code=201)
async def send_message(
    body: SendMessageRequest,
    identity: str = Depends(_current_identity),
    hub: ChatHub = Depends(_hub),
) -> JSONResponse:
    """Send a message without a live connection.

    Validation, authorization and persistence match the WebSocket path.
    If anyone has joined the pair's room, they receive ``newMessage``.
    """
    try:
        message, outbound = await hub.dispatcher.send(identity, body.recipientId, body.content)
    except ChatError as e:
        return _error_response(e)
    await deliver(outbound)
    return JSONResponse({"success": True, "message": message.to_wire()}, status_code=201)


@router.put("/api/chat/mark-read/{message_id}")
async def mark_read(
    message_id: str,
    identity: str = Depends(_current_identity),
    hub: ChatHub = Depends(_hub),
) -> JSONResponse:
    try:
        message = await hub.conversations.mark_read(identity, message_id)
    except ChatError as e:
        return _error_response(e)
    return JSONResponse({"success": True, "message": message.to_wire()})


@router.get("/api/chat/unread-count")
async def unread_count(
    identity: str = Depends(_current_identity),
    hub: ChatHub = Depends(_hub),
) -> JSONResponse:
    try:
        count = await hub.conversations.unread_count(identity)
    except ChatError as e:
        return _error_response(e)
    return JSONResponse({"success": True, "count": count})


@router.get("/api/chat/online")
async def online_users(hub: ChatHub = Depends(_hub)) -> dict:
    """Online identities. Only available with ``server.debug`` enabled."""
    if not get_config().server.debug:
        raise HTTPException(status_code=404, detail="Not Found")
    users = hub.presence.online_identities()
    return {"onlineUsers": users, "count": len(users)}


# =============================================================================
# WebSocket
# =============================================================================


def _offered_bearer_subprotocol(websocket: WebSocket) -> Optional[str]:
    offered = [p.strip().lower() for p in websocket.headers.get("sec-websocket-protocol", "").split(",")]
    return "bearer" if offered and offered[0] == "bearer" else None


async def _receive_frame(websocket: WebSocket, timeout: float) -> Optional[dict]:
    """Wait for one JSON frame. Returns None for a frame that is not a JSON object.

    Text and binary frames are both accepted; binary frames must hold UTF-8
    encoded JSON.

    Raises:
        asyncio.TimeoutError: No frame within ``timeout`` seconds.
        WebSocketDisconnect: The client went away.
    """
    message = await asyncio.wait_for(websocket.receive(), timeout=timeout)
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

    data = message.get("text")
    if data is None:
        data = message.get("bytes")
    if data is None:
        return None
    try:
        frame = json.loads(data)
    except ValueError:
        return None
    return frame if isinstance(frame, dict) else None


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for live messaging.

    Each connection is served by this coroutine alone, so its frames are
    handled strictly in arrival order.

    Args:
        websocket: The WebSocket connection.
    """
    hub = get_chat_hub()
    if hub is None:
        logger.error("[WS] Chat hub not initialised; refusing connection")
        await websocket.close(code=INTERNAL_ERROR)
        return

    credential = credential_from_handshake(websocket.headers, websocket.query_params)
    try:
        handle = hub.lifecycle.authenticate(credential, transport=websocket)
    except AuthError as e:
        logger.warning(f"[WS] Connection refused: {e.message}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept(subprotocol=_offered_bearer_subprotocol(websocket))

    # Sent before registration, so no broadcast can overtake it
    await handle.send(ServerEvent.CONNECTED.value, {
        "userId": handle.identity,
        "handleId": handle.handle_id,
        "onlineUsers": [u for u in hub.presence.online_identities() if u != handle.identity],
    })
    try:
        await deliver(hub.lifecycle.connect(handle))

        while True:
            try:
                frame = await _receive_frame(websocket, hub.heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.info(f"[WS] Heartbeat timeout for {handle.identity} ({handle.handle_id[:8]})")
                await websocket.close(code=GOING_AWAY)
                break

            if frame is None:
                await deliver(Outbound.to(
                    handle,
                    ServerEvent.ERROR.value,
                    ValidationError("Frames must be JSON objects").to_payload(),
                ))
                continue

            logger.debug("[WS] %s received: type=%s", handle.identity, frame.get("type", "?"))
            await deliver(await hub.events.handle(handle, frame))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"[WS] Connection error for {handle.identity}: {e}", exc_info=True)
        await _close_quietly(websocket, handle)
    finally:
        await deliver(hub.lifecycle.disconnect(handle))


async def _close_quietly(websocket: WebSocket, handle: ConnectionHandle) -> None:
    try:
        await websocket.close(code=INTERNAL_ERROR)
    except Exception as e:
        logger.debug(f"[WS] Close after error failed for {handle.handle_id[:8]}: {e}")
