"""In-memory presence registry: identity -> current connection handle.

Last-connected-wins: registering a new handle for an identity replaces the
entry, while the superseded handle stays connected until it disconnects on
its own. Deregistration only removes the entry if it still points at the
handle being removed, so a late disconnect of an old connection cannot
clobber a newer one.

Thread Safety:
    A lock guards each read-modify-write; callers may sit on more than one
    thread (e.g. the test client portal).
"""
import logging
import threading
from typing import Dict, List, Optional

from .connection import ConnectionHandle

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Maps each online identity to exactly one live connection handle."""

    def __init__(self) -> None:
        self._entries: Dict[str, ConnectionHandle] = {}
        self._lock = threading.Lock()

    def register(self, identity: str, handle: ConnectionHandle) -> None:
        """Record ``handle`` as the current connection for ``identity``."""
        with self._lock:
            previous = self._entries.get(identity)
            self._entries[identity] = handle
        if previous is not None and previous is not handle:
            logger.info(
                f"[Presence] {identity} superseded handle {previous.handle_id[:8]} "
                f"with {handle.handle_id[:8]}"
            )

    def deregister(self, identity: str, handle: ConnectionHandle) -> bool:
        """Remove the entry for ``identity`` if it still belongs to ``handle``.

        Returns:
            True if the entry was removed, False if it was absent or owned
            by a different handle.
        """
        with self._lock:
            if self._entries.get(identity) is not handle:
                return False
            del self._entries[identity]
            return True

    def is_online(self, identity: str) -> bool:
        return identity in self._entries

    def handle_for(self, identity: str) -> Optional[ConnectionHandle]:
        return self._entries.get(identity)

    def online_identities(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
