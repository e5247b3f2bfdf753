"""Tests for the membership tracker, typing aggregator and connection registry."""

from chatrelay.chat.connection import Connection
from chatrelay.chat.membership import RoomMembershipTracker
from chatrelay.chat.registry import ConnectionRegistry
from chatrelay.chat.schemas import (
    ConnectionState,
    DeclaredIdentity,
    RoomSummary,
    VerifiedIdentity,
)
from chatrelay.chat.typing_state import TypingAggregator

from conftest import FakeWebSocket

ALICE = VerifiedIdentity(user_id="u-alice", username="alice")
BOB = DeclaredIdentity(user_id="u-bob", username="bob")


class TestRoomMembershipTracker:

    def test_join_adds_member(self):
        tracker = RoomMembershipTracker()
        assert tracker.join("general", ALICE) is True
        assert [u.userId for u in tracker.members("general")] == ["u-alice"]

    def test_rejoin_keeps_single_entry(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", ALICE)
        assert tracker.join("general", ALICE) is False
        # A freshly built identity with the same userId is the same member
        assert tracker.join("general", VerifiedIdentity("u-alice", "alice")) is False

        assert tracker.member_count("general") == 1

    def test_join_leave_sequences_never_duplicate(self):
        tracker = RoomMembershipTracker()
        for _ in range(5):
            tracker.join("general", ALICE)
            tracker.join("general", ALICE)
            tracker.leave("general", user_id="u-alice")
            tracker.join("general", ALICE)
            users = [u.userId for u in tracker.members("general")]
            assert users.count("u-alice") == 1

    def test_rejoin_with_new_username_updates_entry(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", DeclaredIdentity("u-1", "old"))
        tracker.join("general", DeclaredIdentity("u-1", "new"))

        assert [u.username for u in tracker.members("general")] == ["new"]

    def test_leave_by_user_id(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", ALICE)
        tracker.join("general", BOB)

        removed = tracker.leave("general", user_id="u-alice")

        assert removed.username == "alice"
        assert [u.userId for u in tracker.members("general")] == ["u-bob"]

    def test_leave_by_username_fallback(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", BOB)

        removed = tracker.leave("general", username="bob")

        assert removed.userId == "u-bob"
        assert tracker.member_count("general") == 0

    def test_leave_when_absent_is_noop(self):
        tracker = RoomMembershipTracker()
        assert tracker.leave("general", user_id="u-alice") is None
        tracker.join("general", BOB)
        assert tracker.leave("general", user_id="u-alice") is None
        assert tracker.leave("general") is None
        assert tracker.member_count("general") == 1

    def test_empty_room_persists(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", ALICE)
        tracker.leave("general", user_id="u-alice")

        assert "general" in tracker.known_rooms()
        assert tracker.member_count("general") == 0

    def test_leave_all(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", ALICE)
        tracker.join("random", ALICE)
        tracker.join("random", BOB)

        left = tracker.leave_all(ALICE)

        assert sorted(room for room, _ in left) == ["general", "random"]
        assert tracker.rooms_for("u-alice") == []
        assert tracker.rooms_for("u-bob") == ["random"]
        # Idempotent
        assert tracker.leave_all(ALICE) == []

    def test_list_rooms_merges_membership_and_history(self):
        tracker = RoomMembershipTracker()
        tracker.join("general", ALICE)
        tracker.join("general", BOB)
        tracker.join("lobby", BOB)

        rooms = tracker.list_rooms(["general", "archive"])

        assert rooms == [
            RoomSummary(name="general", userCount=2, hasHistory=True),
            RoomSummary(name="lobby", userCount=1, hasHistory=False),
            RoomSummary(name="archive", userCount=0, hasHistory=True),
        ]


class TestTypingAggregator:

    def test_start_typing_reports_change_once(self):
        typing = TypingAggregator()
        assert typing.start_typing("general", "alice") is True
        assert typing.start_typing("general", "alice") is False
        assert typing.typing_users("general") == ["alice"]

    def test_order_is_first_typed(self):
        typing = TypingAggregator()
        typing.start_typing("general", "bob")
        typing.start_typing("general", "alice")
        assert typing.typing_users("general") == ["bob", "alice"]

    def test_stop_typing_when_absent(self):
        typing = TypingAggregator()
        assert typing.stop_typing("general", "alice") is False
        assert typing.typing_users("general") == []

    def test_rooms_are_independent(self):
        typing = TypingAggregator()
        typing.start_typing("general", "alice")
        assert typing.is_typing("general", "alice")
        assert not typing.is_typing("random", "alice")

    def test_clear(self):
        typing = TypingAggregator()
        typing.start_typing("general", "alice")
        assert typing.clear("general", "alice") is True
        assert typing.clear("general", "alice") is False


class TestConnectionRegistry:

    def test_register_emits_online(self):
        registry = ConnectionRegistry()
        conn = Connection(FakeWebSocket())

        frame = registry.register(ALICE, conn)

        assert frame == {
            "type": "user_status_changed",
            "userId": "u-alice",
            "username": "alice",
            "status": "online",
        }
        assert registry.get("u-alice") is conn
        assert registry.is_online("u-alice")

    def test_reregister_replaces_handle(self):
        registry = ConnectionRegistry()
        first, second = Connection(FakeWebSocket()), Connection(FakeWebSocket())

        registry.register(ALICE, first)
        registry.register(ALICE, second)

        assert registry.get("u-alice") is second
        assert registry.online_users() == [ALICE]

    def test_unregister_emits_offline(self):
        registry = ConnectionRegistry()
        registry.register(ALICE, Connection(FakeWebSocket()))

        frame = registry.unregister("u-alice")

        assert frame["status"] == "offline"
        assert not registry.is_online("u-alice")

    def test_unregister_unknown_is_noop(self):
        assert ConnectionRegistry().unregister("nobody") is None

    def test_unregister_stale_connection_keeps_newer(self):
        registry = ConnectionRegistry()
        old, new = Connection(FakeWebSocket()), Connection(FakeWebSocket())
        registry.register(ALICE, old)
        registry.register(ALICE, new)

        assert registry.unregister("u-alice", old) is None
        assert registry.get("u-alice") is new


class TestConnection:

    def test_lifecycle(self):
        conn = Connection(FakeWebSocket())
        assert conn.state == ConnectionState.CONNECTING

        conn.bind("u-1", "alice")
        assert conn.state == ConnectionState.AUTHENTICATED

        conn.subscribe("general")
        assert conn.state == ConnectionState.IN_ROOM

        conn.unsubscribe("general")
        assert conn.state == ConnectionState.NO_ROOM

        conn.close()
        assert conn.state == ConnectionState.DISCONNECTED
        assert not conn.is_open

    def test_bind_only_once(self):
        conn = Connection(FakeWebSocket())
        first = conn.bind("u-1", "alice")
        assert conn.bind("u-2", "mallory") is None
        assert conn.identity == first

    def test_declared_user_id_falls_back_to_connection_id(self):
        conn = Connection(FakeWebSocket())
        identity = conn.bind(None, "alice")

        assert isinstance(identity, DeclaredIdentity)
        assert identity.user_id == conn.id
        assert identity.verified is False

    def test_principal_wins_over_declared(self):
        conn = Connection(FakeWebSocket(), principal=ALICE)
        identity = conn.bind("u-mallory", "mallory")

        assert identity == ALICE
        assert identity.verified is True

    def test_resolve_uses_payload_when_unbound(self):
        conn = Connection(FakeWebSocket())
        identity = conn.resolve("u-9", "zed")

        assert identity == DeclaredIdentity("u-9", "zed")
        assert conn.identity is None

    def test_knows_user_id_only_when_not_synthetic(self):
        conn = Connection(FakeWebSocket())
        assert conn.knows_user_id(None) is False
        assert conn.knows_user_id("u-9") is True

        conn.bind(None, "alice")
        assert conn.knows_user_id(None) is True
        assert Connection(FakeWebSocket(), principal=ALICE).knows_user_id(None) is True
