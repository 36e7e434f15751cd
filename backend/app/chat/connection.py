"""Live connection handles and outbound event delivery."""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Set

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


@dataclass(eq=False)
class ConnectionHandle:
    """One authenticated transport connection.

    The owning identity is fixed for the lifetime of the handle. ``transport``
    is anything with an async ``send_json`` (a Starlette ``WebSocket`` in
    production, a recorder in tests). Handles compare by object identity.
    """
    identity: str
    transport: Any = None
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    authenticated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    rooms: Set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.AUTHENTICATED

    @property
    def is_live(self) -> bool:
        return self.state != ConnectionState.DISCONNECTED

    async def send(self, event: str, payload: dict) -> bool:
        """Send one event frame. Returns False if the transport failed."""
        if self.transport is None or not self.is_live:
            return False
        try:
            await self.transport.send_json({"type": event, **payload})
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to handle {self.handle_id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"ConnectionHandle({self.identity!r}, {self.handle_id[:8]}, {self.state.value})"


@dataclass
class Outbound:
    """An event addressed to a fixed list of handles."""
    targets: List[ConnectionHandle]
    event: str
    payload: dict

    @classmethod
    def to(cls, target: Optional[ConnectionHandle], event: str, payload: dict) -> List["Outbound"]:
        if target is None:
            return []
        return [cls([target], event, payload)]


async def deliver(outbound: List[Outbound]) -> None:
    """Send every outbound event, each one concurrently across its targets.

    Events are sent in list order so a single recipient sees them in the
    order they were produced.
    """
    for item in outbound:
        if not item.targets:
            continue
        results = await asyncio.gather(
            *[handle.send(item.event, item.payload) for handle in item.targets],
            return_exceptions=True
        )
        failed = [h for h, ok in zip(item.targets, results) if ok is not True]
        if failed:
            logger.debug(f"{item.event}: {len(failed)} of {len(item.targets)} deliveries failed")
