"""Room identifiers and room membership.

A room is the channel shared by exactly two identities. Its id is derived,
never stored: ``chat_<lower>_<higher>`` with the two identities sorted
lexicographically, so clients can compute it themselves and join ahead of
the first message. The ``_`` separator is reserved: an identity containing
it would make ``chat_a_b_c`` ambiguous between ``a_b``/``c`` and ``a``/``b_c``.
"""
import logging
import threading
from typing import Dict, List, Set

from .connection import ConnectionHandle
from .errors import InvalidPairError

logger = logging.getLogger(__name__)

ROOM_PREFIX = "chat_"
ROOM_SEPARATOR = "_"


def is_valid_identity(identity: str) -> bool:
    """Non-empty and free of the room separator."""
    return bool(identity) and ROOM_SEPARATOR not in identity


def room_id(identity_a: str, identity_b: str) -> str:
    """Return the order-independent room id for two identities.

    Raises:
        InvalidPairError: If either identity is empty or contains ``_``,
            or both are the same.
    """
    if not identity_a or not identity_b:
        raise InvalidPairError("Room participants must be non-empty identities")
    if not is_valid_identity(identity_a) or not is_valid_identity(identity_b):
        raise InvalidPairError(f"Identities may not contain '{ROOM_SEPARATOR}'")
    if identity_a == identity_b:
        raise InvalidPairError(f"Cannot create a room for {identity_a} with itself")
    lower, higher = sorted((str(identity_a), str(identity_b)))
    return f"{ROOM_PREFIX}{lower}{ROOM_SEPARATOR}{higher}"


def room_belongs_to(room: str, identity: str) -> bool:
    """Check whether ``room`` is a well-formed room id naming ``identity``."""
    if not is_valid_identity(identity) or not room.startswith(ROOM_PREFIX):
        return False
    parts = room[len(ROOM_PREFIX):].split(ROOM_SEPARATOR)
    if len(parts) != 2 or identity not in parts:
        return False
    other = parts[1] if parts[0] == identity else parts[0]
    return bool(other) and other != identity and room_id(identity, other) == room


class RoomRouter:
    """Tracks which connection handles have joined which rooms."""

    def __init__(self) -> None:
        # room_id -> handles currently joined, in join order
        self._members: Dict[str, List[ConnectionHandle]] = {}
        self._lock = threading.Lock()

    room_id = staticmethod(room_id)

    def join(self, handle: ConnectionHandle, room: str) -> bool:
        """Add ``handle`` to ``room``. Returns False if it was already a member."""
        with self._lock:
            members = self._members.setdefault(room, [])
            if handle in members:
                return False
            members.append(handle)
            handle.rooms.add(room)
        logger.info(f"[Rooms] {handle.identity} ({handle.handle_id[:8]}) joined {room}")
        return True

    def leave(self, handle: ConnectionHandle, room: str) -> bool:
        """Remove ``handle`` from ``room``. Returns False if it was not a member."""
        with self._lock:
            handle.rooms.discard(room)
            members = self._members.get(room)
            if not members or handle not in members:
                return False
            members.remove(handle)
            if not members:
                del self._members[room]
        logger.info(f"[Rooms] {handle.identity} ({handle.handle_id[:8]}) left {room}")
        return True

    def leave_all(self, handle: ConnectionHandle) -> List[str]:
        """Release every room membership held by ``handle``."""
        rooms = sorted(handle.rooms)
        for room in rooms:
            self.leave(handle, room)
        return rooms

    def members(self, room: str) -> List[ConnectionHandle]:
        """Snapshot of the handles currently in ``room``."""
        with self._lock:
            return list(self._members.get(room, []))

    def is_member(self, handle: ConnectionHandle, room: str) -> bool:
        with self._lock:
            return handle in self._members.get(room, [])

    def rooms(self) -> Set[str]:
        with self._lock:
            return set(self._members)
