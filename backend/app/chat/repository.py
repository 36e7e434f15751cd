"""Persistence gateway for messages and connection authorization.

The messaging core talks to durable storage only through
:class:`PersistenceGateway`. The shipped implementation keeps everything in
DuckDB, an embedded analytical database, with one connection per process.

Database Schema:
    messages table:
        - seq: Monotonic sequence number (ordering tie-breaker)
        - id: UUID primary key
        - sender / recipient: Identities
        - content: Trimmed message text
        - created_at: Server timestamp (UTC, stored naive)
        - read: Read flag (false -> true only)
        - read_at: When the flag flipped

    connections table:
        - user_a / user_b: Sorted identity pair with an accepted connection

Thread Safety:
    The DuckDB connection is NOT thread-safe, so every statement runs under
    a lock. Statements are short; the async methods do not yield while the
    lock is held.

Usage:
    gateway = MessageRepository("chat_messages.duckdb")
    message = await gateway.save_message("alice", "bob", "hello")
    unread = await gateway.unread_count("bob")
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

import duckdb

from .errors import PersistenceError
from .schemas import Message

logger = logging.getLogger(__name__)


class PersistenceGateway(ABC):
    """Durable store for messages plus the connection-authorization hook.

    Every method may raise :class:`PersistenceError` when the store is
    unavailable; callers never treat a store failure as "not authorized".
    """

    @abstractmethod
    async def is_authorized(self, identity_a: str, identity_b: str) -> bool:
        """Whether the two identities may exchange messages."""

    @abstractmethod
    async def save_message(self, sender: str, recipient: str, content: str) -> Message:
        """Create a new unread message and return the stored record."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[Message]:
        """Fetch one message by id."""

    @abstractmethod
    async def messages_involving(self, identity: str) -> List[Message]:
        """All messages sent or received by ``identity``, newest first."""

    @abstractmethod
    async def history(
        self,
        identity_a: str,
        identity_b: str,
        limit: int,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> Tuple[List[Message], bool]:
        """Most recent ``limit`` messages between the pair, oldest first.

        ``before_id`` names the oldest message of the previous page; it wins
        over ``before`` and also separates messages sharing that timestamp.
        Returns the page and whether older messages exist.
        """

    @abstractmethod
    async def mark_conversation_read(self, reader: str, partner: str) -> int:
        """Mark every unread partner -> reader message read. Returns the count."""

    @abstractmethod
    async def mark_message_read(self, message_id: str) -> Optional[Message]:
        """Mark one message read (no-op if already read) and return it."""

    @abstractmethod
    async def unread_count(self, identity: str) -> int:
        """Number of unread messages addressed to ``identity``."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


_MESSAGE_COLUMNS = "id, sender, recipient, content, created_at, read, read_at"


def _row_to_message(row) -> Message:
    return Message(
        id=row[0],
        sender=row[1],
        recipient=row[2],
        content=row[3],
        createdAt=_as_utc(row[4]),
        read=bool(row[5]),
        readAt=_as_utc(row[6]),
    )


class MessageRepository(PersistenceGateway):
    """DuckDB-backed persistence gateway.

    Attributes:
        db_path: Path to the DuckDB database file, or ``":memory:"``.
    """

    def __init__(self, db_path: str = "chat_messages.duckdb") -> None:
        self.db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._closed = False
        self._lock = threading.Lock()
        with self._store("initialize"):
            self._initialize_db()

    # =========================================================================
    # Connection management
    # =========================================================================

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._closed:
            raise PersistenceError("Message store is closed")
        if self._connection is None:
            self._connection = duckdb.connect(self.db_path)
        return self._connection

    @contextmanager
    def _store(self, operation: str) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run statements under the lock, translating store failures."""
        with self._lock:
            try:
                yield self._get_connection()
            except duckdb.Error as e:
                logger.error(f"[Store] {operation} failed: {e}")
                raise PersistenceError(f"Message store unavailable during {operation}") from e

    def _initialize_db(self) -> None:
        """Create tables and sequences if they don't exist (idempotent)."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq'),
                id VARCHAR PRIMARY KEY,
                sender VARCHAR NOT NULL,
                recipient VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                read BOOLEAN NOT NULL DEFAULT FALSE,
                read_at TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS connections (
                user_a VARCHAR NOT NULL,
                user_b VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                PRIMARY KEY (user_a, user_b)
            )
        """)

    def close(self) -> None:
        """Close the database connection. Later operations raise PersistenceError."""
        with self._lock:
            self._closed = True
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # Connection store (authorization hook)
    # =========================================================================

    @staticmethod
    def _pair(identity_a: str, identity_b: str) -> Tuple[str, str]:
        lower, higher = sorted((identity_a, identity_b))
        return lower, higher

    def add_connection(self, identity_a: str, identity_b: str) -> None:
        """Record an accepted connection between two identities."""
        if identity_a == identity_b:
            raise ValueError("An identity cannot be connected to itself")
        pair = self._pair(identity_a, identity_b)
        with self._store("add_connection") as conn:
            conn.execute(
                """
                INSERT INTO connections (user_a, user_b, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                [pair[0], pair[1], _utcnow()]
            )

    def remove_connection(self, identity_a: str, identity_b: str) -> None:
        pair = self._pair(identity_a, identity_b)
        with self._store("remove_connection") as conn:
            conn.execute(
                "DELETE FROM connections WHERE user_a = ? AND user_b = ?",
                list(pair)
            )

    async def is_authorized(self, identity_a: str, identity_b: str) -> bool:
        if not identity_a or not identity_b or identity_a == identity_b:
            return False
        pair = self._pair(identity_a, identity_b)
        with self._store("is_authorized") as conn:
            row = conn.execute(
                "SELECT 1 FROM connections WHERE user_a = ? AND user_b = ?",
                list(pair)
            ).fetchone()
        return row is not None

    # =========================================================================
    # Messages
    # =========================================================================

    async def save_message(self, sender: str, recipient: str, content: str) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            sender=sender,
            recipient=recipient,
            content=content,
            createdAt=datetime.now(timezone.utc),
        )
        with self._store("save_message") as conn:
            conn.execute(
                """
                INSERT INTO messages (id, sender, recipient, content, created_at, read, read_at)
                VALUES (?, ?, ?, ?, ?, FALSE, NULL)
                """,
                [message.id, sender, recipient, content, _naive_utc(message.createdAt)]
            )
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        with self._store("get_message") as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",
                [message_id]
            ).fetchone()
        return _row_to_message(row) if row else None

    async def messages_involving(self, identity: str) -> List[Message]:
        with self._store("messages_involving") as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE sender = ? OR recipient = ?
                ORDER BY created_at DESC, seq DESC
                """,
                [identity, identity]
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    async def history(
        self,
        identity_a: str,
        identity_b: str,
        limit: int,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> Tuple[List[Message], bool]:
        params: list = [identity_a, identity_b, identity_b, identity_a]
        with self._store("history") as conn:
            cursor_clause = ""
            if before_id is not None:
                boundary = conn.execute(
                    """
                    SELECT created_at, seq FROM messages
                    WHERE id = ? AND ((sender = ? AND recipient = ?) OR (sender = ? AND recipient = ?))
                    """,
                    [before_id, *params]
                ).fetchone()
                if boundary is None:
                    return [], False
                # (created_at, seq) is the total order; seq breaks timestamp ties
                cursor_clause = "AND (created_at < ? OR (created_at = ? AND seq < ?))"
                params.extend([boundary[0], boundary[0], boundary[1]])
            elif before is not None:
                cursor_clause = "AND created_at < ?"
                params.append(_naive_utc(before))
            # One extra row tells us whether an older page exists
            params.append(limit + 1)
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE ((sender = ? AND recipient = ?) OR (sender = ? AND recipient = ?))
                {cursor_clause}
                ORDER BY created_at DESC, seq DESC
                LIMIT ?
                """,
                params
            ).fetchall()
        has_more = len(rows) > limit
        page = [_row_to_message(row) for row in rows[:limit]]
        page.reverse()
        return page, has_more

    async def mark_conversation_read(self, reader: str, partner: str) -> int:
        with self._store("mark_conversation_read") as conn:
            (pending,) = conn.execute(
                """
                SELECT COUNT(*) FROM messages
                WHERE sender = ? AND recipient = ? AND read = FALSE
                """,
                [partner, reader]
            ).fetchone()
            if pending:
                conn.execute(
                    """
                    UPDATE messages SET read = TRUE, read_at = ?
                    WHERE sender = ? AND recipient = ? AND read = FALSE
                    """,
                    [_utcnow(), partner, reader]
                )
        return int(pending)

    async def mark_message_read(self, message_id: str) -> Optional[Message]:
        with self._store("mark_message_read") as conn:
            conn.execute(
                "UPDATE messages SET read = TRUE, read_at = ? WHERE id = ? AND read = FALSE",
                [_utcnow(), message_id]
            )
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",
                [message_id]
            ).fetchone()
        return _row_to_message(row) if row else None

    async def unread_count(self, identity: str) -> int:
        with self._store("unread_count") as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE recipient = ? AND read = FALSE",
                [identity]
            ).fetchone()
        return int(count)

    def count_messages(self) -> int:
        """Total number of stored messages."""
        with self._store("count_messages") as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM messages").fetchone()
        return int(count)
