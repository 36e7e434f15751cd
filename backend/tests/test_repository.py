"""Tests for the DuckDB persistence gateway."""
import asyncio
import os
import tempfile

import pytest

from app.chat.errors import PersistenceError
from app.chat.repository import MessageRepository


@pytest.fixture
def repo():
    """An in-memory repository with alice<->bob connected."""
    repository = MessageRepository(":memory:")
    repository.add_connection("alice", "bob")
    yield repository
    repository.close()


class TestConnectionStore:
    """Tests for the authorization hook."""

    def test_connected_pair_is_authorized_both_ways(self, repo):
        assert asyncio.run(repo.is_authorized("alice", "bob"))
        assert asyncio.run(repo.is_authorized("bob", "alice"))

    def test_unconnected_pair_is_not_authorized(self, repo):
        assert not asyncio.run(repo.is_authorized("alice", "carol"))

    def test_self_is_never_authorized(self, repo):
        assert not asyncio.run(repo.is_authorized("alice", "alice"))

    def test_add_connection_twice(self, repo):
        repo.add_connection("bob", "alice")
        assert asyncio.run(repo.is_authorized("alice", "bob"))

    def test_remove_connection(self, repo):
        repo.remove_connection("bob", "alice")
        assert not asyncio.run(repo.is_authorized("alice", "bob"))

    def test_self_connection_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.add_connection("alice", "alice")


class TestMessages:
    """Tests for message storage and read state."""

    def test_save_message_creates_unread_record(self, repo):
        message = asyncio.run(repo.save_message("alice", "bob", "hello"))
        assert message.id
        assert message.read is False
        assert message.readAt is None
        assert message.createdAt.tzinfo is not None

        stored = asyncio.run(repo.get_message(message.id))
        assert stored == message
        assert repo.count_messages() == 1

    def test_get_unknown_message(self, repo):
        assert asyncio.run(repo.get_message("missing")) is None

    def test_history_is_oldest_first(self, repo):
        for text in ("one", "two", "three"):
            asyncio.run(repo.save_message("alice", "bob", text))
        asyncio.run(repo.save_message("bob", "alice", "four"))

        messages, has_more = asyncio.run(repo.history("alice", "bob", limit=10))
        assert [m.content for m in messages] == ["one", "two", "three", "four"]
        assert has_more is False

    def test_history_returns_most_recent_page(self, repo):
        for i in range(5):
            asyncio.run(repo.save_message("alice", "bob", f"m{i}"))

        messages, has_more = asyncio.run(repo.history("bob", "alice", limit=2))
        assert [m.content for m in messages] == ["m3", "m4"]
        assert has_more is True

    def test_history_before_cursor(self, repo):
        saved = [asyncio.run(repo.save_message("alice", "bob", f"m{i}")) for i in range(4)]

        messages, _ = asyncio.run(repo.history("alice", "bob", limit=10, before=saved[2].createdAt))
        assert [m.content for m in messages] == ["m0", "m1"]

    def test_history_pages_through_equal_timestamps(self, repo):
        for i in range(3):
            asyncio.run(repo.save_message("alice", "bob", f"m{i}"))
        with repo._store("test") as conn:
            conn.execute("UPDATE messages SET created_at = TIMESTAMP '2025-01-01 12:00:00'")

        page, has_more = asyncio.run(repo.history("alice", "bob", limit=2))
        assert [m.content for m in page] == ["m1", "m2"]
        assert has_more is True

        older, has_more = asyncio.run(
            repo.history("alice", "bob", limit=2, before=page[0].createdAt, before_id=page[0].id)
        )
        assert [m.content for m in older] == ["m0"]
        assert has_more is False

    def test_history_before_id_from_another_pair(self, repo):
        repo.add_connection("alice", "carol")
        other = asyncio.run(repo.save_message("alice", "carol", "not for bob"))
        asyncio.run(repo.save_message("alice", "bob", "for bob"))

        messages, has_more = asyncio.run(repo.history("alice", "bob", limit=10, before_id=other.id))
        assert messages == []
        assert has_more is False

    def test_history_excludes_other_pairs(self, repo):
        repo.add_connection("alice", "carol")
        asyncio.run(repo.save_message("alice", "carol", "not for bob"))
        asyncio.run(repo.save_message("alice", "bob", "for bob"))

        messages, _ = asyncio.run(repo.history("alice", "bob", limit=10))
        assert [m.content for m in messages] == ["for bob"]

    def test_mark_conversation_read_only_touches_partner_messages(self, repo):
        asyncio.run(repo.save_message("bob", "alice", "from bob 1"))
        asyncio.run(repo.save_message("bob", "alice", "from bob 2"))
        own = asyncio.run(repo.save_message("alice", "bob", "from alice"))

        assert asyncio.run(repo.mark_conversation_read("alice", "bob")) == 2
        assert asyncio.run(repo.unread_count("alice")) == 0
        assert asyncio.run(repo.unread_count("bob")) == 1
        assert asyncio.run(repo.get_message(own.id)).read is False

        # Already read: nothing left to mark
        assert asyncio.run(repo.mark_conversation_read("alice", "bob")) == 0

    def test_mark_message_read_keeps_first_read_at(self, repo):
        message = asyncio.run(repo.save_message("alice", "bob", "hi"))

        first = asyncio.run(repo.mark_message_read(message.id))
        second = asyncio.run(repo.mark_message_read(message.id))
        assert first.read is True
        assert first.readAt is not None
        assert second.readAt == first.readAt

    def test_messages_involving_newest_first(self, repo):
        asyncio.run(repo.save_message("alice", "bob", "first"))
        asyncio.run(repo.save_message("bob", "alice", "second"))

        messages = asyncio.run(repo.messages_involving("alice"))
        assert [m.content for m in messages] == ["second", "first"]


class TestPersistenceFailures:
    """Store failures surface as PersistenceError."""

    def test_closed_in_memory_store_fails(self):
        repository = MessageRepository(":memory:")
        repository.close()
        with pytest.raises(PersistenceError):
            asyncio.run(repository.save_message("alice", "bob", "hello"))
        repository.close()

    def test_closed_file_store_is_not_reopened(self):
        db_path = tempfile.mktemp(suffix=".duckdb")
        try:
            repository = MessageRepository(db_path)
            repository.add_connection("alice", "bob")
            repository.close()

            with pytest.raises(PersistenceError):
                asyncio.run(repository.is_authorized("alice", "bob"))
            with pytest.raises(PersistenceError):
                repository.count_messages()
            assert repository._connection is None
        finally:
            for path in (db_path, db_path + ".wal"):
                if os.path.exists(path):
                    os.remove(path)

    def test_file_store_survives_reopen(self):
        db_path = tempfile.mktemp(suffix=".duckdb")
        try:
            repository = MessageRepository(db_path)
            repository.add_connection("alice", "bob")
            asyncio.run(repository.save_message("alice", "bob", "persisted"))
            repository.close()

            reopened = MessageRepository(db_path)
            assert reopened.count_messages() == 1
            assert asyncio.run(reopened.is_authorized("alice", "bob"))
            reopened.close()
        finally:
            for path in (db_path, db_path + ".wal"):
                if os.path.exists(path):
                    os.remove(path)
