"""ChatHub: the process-wide messaging core, wired from config.

Bundles the presence registry, room router, lifecycle manager, dispatch
pipeline, typing relay, read-path service and the persistence gateway. A
module-level singleton is initialised in ``app/main.py`` at startup and
discarded at shutdown; nothing in-memory needs flushing.
"""
import logging
from typing import Optional

from app.config import AppConfig

from .auth import TokenAuthenticator
from .conversations import ConversationService
from .dispatch import MessageDispatcher
from .events import EventRouter
from .lifecycle import ConnectionLifecycleManager
from .presence import PresenceRegistry
from .repository import MessageRepository, PersistenceGateway
from .rooms import RoomRouter
from .typing_relay import TypingRelay

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_hub: Optional["ChatHub"] = None


def get_chat_hub() -> Optional["ChatHub"]:
    """Return the global ChatHub, or None if not yet initialised."""
    return _hub


def set_chat_hub(hub: Optional["ChatHub"]) -> None:
    """Set (or clear, with None) the global ChatHub instance."""
    global _hub
    _hub = hub


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------

class ChatHub:
    """Holds one instance of every messaging component.

    Args:
        gateway: Persistence gateway (messages + authorization hook).
        authenticator: Bearer token verifier.
        max_message_length: Upper bound on trimmed message length.
        page_size: Default history page size.
        max_page_size: Largest history page a client may request.
        heartbeat_timeout: Seconds without an inbound frame before a live
            connection is closed.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        authenticator: TokenAuthenticator,
        max_message_length: int = 5000,
        page_size: int = 100,
        max_page_size: int = 100,
        heartbeat_timeout: float = 60.0,
    ) -> None:
        self.gateway = gateway
        self.authenticator = authenticator
        self.heartbeat_timeout = heartbeat_timeout
        self.presence = PresenceRegistry()
        self.rooms = RoomRouter()
        self.lifecycle = ConnectionLifecycleManager(authenticator, self.presence, self.rooms)
        self.dispatcher = MessageDispatcher(gateway, self.rooms, max_message_length)
        self.typing = TypingRelay(self.rooms)
        self.conversations = ConversationService(gateway, page_size, max_page_size)
        self.events = EventRouter(self.rooms, self.dispatcher, self.typing)

    @classmethod
    def from_config(cls, config: AppConfig) -> "ChatHub":
        gateway = MessageRepository(config.database.path)
        logger.info("Chat hub ready: database=%s", config.database.path)
        return cls(
            gateway=gateway,
            authenticator=TokenAuthenticator.from_config(config),
            max_message_length=config.chat.max_message_length,
            page_size=config.chat.history_page_size,
            max_page_size=config.chat.max_history_page_size,
            heartbeat_timeout=config.chat.heartbeat_timeout_seconds,
        )

    def close(self) -> None:
        close = getattr(self.gateway, "close", None)
        if close is not None:
            close()
