"""Tests for the presence registry and room router."""
import pytest

from app.chat.connection import ConnectionHandle
from app.chat.errors import InvalidPairError
from app.chat.presence import PresenceRegistry
from app.chat.rooms import RoomRouter, room_belongs_to, room_id


class TestPresenceRegistry:
    """Tests for last-connected-wins presence with the stale guard."""

    def test_register_makes_identity_online(self):
        registry = PresenceRegistry()
        handle = ConnectionHandle(identity="alice")
        registry.register("alice", handle)
        assert registry.is_online("alice")
        assert registry.handle_for("alice") is handle

    def test_unknown_identity_is_offline(self):
        registry = PresenceRegistry()
        assert not registry.is_online("nobody")
        assert registry.handle_for("nobody") is None

    def test_newer_handle_replaces_older(self):
        registry = PresenceRegistry()
        h1 = ConnectionHandle(identity="alice")
        h2 = ConnectionHandle(identity="alice")
        registry.register("alice", h1)
        registry.register("alice", h2)
        assert registry.handle_for("alice") is h2

    def test_stale_deregister_is_noop(self):
        """An old handle's disconnect must not remove a newer registration."""
        registry = PresenceRegistry()
        h1 = ConnectionHandle(identity="alice")
        h2 = ConnectionHandle(identity="alice")
        registry.register("alice", h1)
        registry.register("alice", h2)

        assert registry.deregister("alice", h1) is False
        assert registry.handle_for("alice") is h2
        assert registry.is_online("alice")

    def test_deregister_current_handle(self):
        registry = PresenceRegistry()
        handle = ConnectionHandle(identity="alice")
        registry.register("alice", handle)
        assert registry.deregister("alice", handle) is True
        assert not registry.is_online("alice")
        assert registry.deregister("alice", handle) is False

    def test_online_identities(self):
        registry = PresenceRegistry()
        registry.register("alice", ConnectionHandle(identity="alice"))
        registry.register("bob", ConnectionHandle(identity="bob"))
        assert sorted(registry.online_identities()) == ["alice", "bob"]
        assert len(registry) == 2


class TestRoomId:
    """Tests for deterministic room ids."""

    @pytest.mark.parametrize("a,b", [
        ("alice", "bob"),
        ("64f1c0a2", "64f1c0a1"),
        ("user_1", "user_10"),
        ("Zed", "abe"),
    ])
    def test_order_independent(self, a, b):
        assert room_id(a, b) == room_id(b, a)

    def test_format(self):
        assert room_id("bob", "alice") == "chat_alice_bob"

    def test_lexicographic_not_numeric(self):
        assert room_id("9", "10") == "chat_10_9"

    def test_self_pair_rejected(self):
        with pytest.raises(InvalidPairError):
            room_id("alice", "alice")

    def test_empty_identity_rejected(self):
        with pytest.raises(InvalidPairError):
            room_id("", "bob")

    def test_room_belongs_to_participants(self):
        room = room_id("alice", "bob")
        assert room_belongs_to(room, "alice")
        assert room_belongs_to(room, "bob")
        assert not room_belongs_to(room, "carol")

    @pytest.mark.parametrize("pair", [("a_b", "c"), ("a", "b_c"), ("user_a", "bob")])
    def test_separator_in_identity_rejected(self, pair):
        with pytest.raises(InvalidPairError):
            room_id(*pair)

    def test_ambiguous_room_not_claimable(self):
        # "chat_a_b_c" could be a_b/c or a/b_c; nobody may join it
        assert not room_belongs_to("chat_a_b_c", "a")
        assert not room_belongs_to("chat_a_b_c", "c")
        assert not room_belongs_to("chat_a_b_c", "a_b")

    def test_room_belongs_to_rejects_malformed(self):
        assert not room_belongs_to("lobby", "alice")
        assert not room_belongs_to("chat_alice", "alice")
        assert not room_belongs_to("chat_bob_alice", "alice")


class TestRoomRouter:
    """Tests for room membership bookkeeping."""

    def test_join_is_idempotent(self):
        rooms = RoomRouter()
        handle = ConnectionHandle(identity="alice")
        assert rooms.join(handle, "chat_alice_bob") is True
        assert rooms.join(handle, "chat_alice_bob") is False
        assert rooms.members("chat_alice_bob") == [handle]
        assert handle.rooms == {"chat_alice_bob"}

    def test_leave_not_joined_is_noop(self):
        rooms = RoomRouter()
        handle = ConnectionHandle(identity="alice")
        assert rooms.leave(handle, "chat_alice_bob") is False
        assert rooms.members("chat_alice_bob") == []

    def test_leave_removes_membership(self):
        rooms = RoomRouter()
        a = ConnectionHandle(identity="alice")
        b = ConnectionHandle(identity="bob")
        rooms.join(a, "chat_alice_bob")
        rooms.join(b, "chat_alice_bob")
        rooms.leave(a, "chat_alice_bob")
        assert rooms.members("chat_alice_bob") == [b]
        assert not rooms.is_member(a, "chat_alice_bob")
        assert a.rooms == set()

    def test_empty_room_disappears(self):
        rooms = RoomRouter()
        handle = ConnectionHandle(identity="alice")
        rooms.join(handle, "chat_alice_bob")
        rooms.leave(handle, "chat_alice_bob")
        assert "chat_alice_bob" not in rooms.rooms()

    def test_leave_all(self):
        rooms = RoomRouter()
        handle = ConnectionHandle(identity="alice")
        rooms.join(handle, "chat_alice_bob")
        rooms.join(handle, "chat_alice_carol")
        released = rooms.leave_all(handle)
        assert released == ["chat_alice_bob", "chat_alice_carol"]
        assert rooms.rooms() == set()
        assert handle.rooms == set()

    def test_same_identity_two_handles_both_members(self):
        rooms = RoomRouter()
        h1 = ConnectionHandle(identity="alice")
        h2 = ConnectionHandle(identity="alice")
        rooms.join(h1, "chat_alice_bob")
        rooms.join(h2, "chat_alice_bob")
        assert rooms.members("chat_alice_bob") == [h1, h2]
