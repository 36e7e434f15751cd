"""Connection lifecycle: authenticate, register presence, clean up.

State machine per handle::

    connecting -> authenticated -> active -> disconnected

Authentication failure never produces a handle. Disconnect (client close,
network failure, heartbeat timeout, or an unexpected handler error) is
terminal: presence is released with the stale-deregistration guard, an
offline broadcast goes out only if this handle still owned the presence
entry, and all room memberships are dropped.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from .auth import TokenAuthenticator
from .connection import ConnectionHandle, ConnectionState, Outbound
from .presence import PresenceRegistry
from .rooms import RoomRouter
from .schemas import ServerEvent

logger = logging.getLogger(__name__)


class ConnectionLifecycleManager:
    """Owns the set of live handles and their presence bookkeeping."""

    def __init__(
        self,
        authenticator: TokenAuthenticator,
        presence: PresenceRegistry,
        rooms: RoomRouter,
    ) -> None:
        self._authenticator = authenticator
        self._presence = presence
        self._rooms = rooms
        # handle_id -> handle, every connection not yet disconnected
        self._handles: Dict[str, ConnectionHandle] = {}
        self._lock = threading.Lock()

    def authenticate(self, credential: Optional[str], transport: Any = None) -> ConnectionHandle:
        """Verify ``credential`` and build an authenticated handle.

        Raises:
            AuthError: Propagated from the authenticator; nothing is registered.
        """
        identity = self._authenticator.authenticate(credential)
        handle = ConnectionHandle(identity=identity, transport=transport)
        logger.info(f"[WS] Authenticated {identity} (handle {handle.handle_id[:8]})")
        return handle

    def connect(self, handle: ConnectionHandle) -> List[Outbound]:
        """Register presence for an authenticated handle and announce it."""
        with self._lock:
            self._handles[handle.handle_id] = handle
        self._presence.register(handle.identity, handle)
        handle.state = ConnectionState.ACTIVE

        others = self.live_handles(exclude=handle)
        logger.info(
            f"[Presence] {handle.identity} online; notifying {len(others)} connection(s)"
        )
        return [Outbound(
            others,
            ServerEvent.USER_ONLINE.value,
            {"userId": handle.identity, "isOnline": True},
        )]

    def disconnect(self, handle: ConnectionHandle) -> List[Outbound]:
        """Tear down ``handle``. Safe to call more than once."""
        with self._lock:
            if self._handles.pop(handle.handle_id, None) is None:
                return []
        handle.state = ConnectionState.DISCONNECTED

        released = self._rooms.leave_all(handle)
        removed = self._presence.deregister(handle.identity, handle)
        logger.info(
            f"[WS] {handle.identity} disconnected (handle {handle.handle_id[:8]}, "
            f"released {len(released)} room(s), presence removed={removed})"
        )
        if not removed:
            # A newer connection for this identity is still live
            return []

        return [Outbound(
            self.live_handles(exclude=handle),
            ServerEvent.USER_OFFLINE.value,
            {"userId": handle.identity, "isOnline": False},
        )]

    def live_handles(self, exclude: Optional[ConnectionHandle] = None) -> List[ConnectionHandle]:
        with self._lock:
            return [h for h in self._handles.values() if h is not exclude]

    def connection_count(self) -> int:
        return len(self._handles)
