import asyncio

import pytest

from conftest import seat_players
from models.game import RoomExists


class TestRooms:
    def test_create_and_lookup(self, registry):
        room = registry.create_room("R1")
        assert registry.get_room("R1") is room
        assert registry.get_room("nope") is None
        assert registry.get_room(None) is None

    def test_duplicate_room_rejected(self, registry):
        registry.create_room("R1")
        with pytest.raises(RoomExists):
            registry.create_room("R1")

    def test_discard_only_empty_rooms(self, registry):
        registry.create_room("R1")
        registry.discard_room("R1")
        assert registry.get_room("R1") is None

        seat_players(registry, "R2", ["Cap"])
        registry.discard_room("R2")
        assert registry.get_room("R2") is not None


class TestConnections:
    def test_connection_lookup(self, registry):
        seat_players(registry, "R1", ["Cap", "Ann"])
        assert registry.get_connection_room("conn-Ann") == "R1"
        assert registry.get_connection_room("conn-missing") is None
        assert registry.count("R1") == 2

    def test_remove_connection_removes_player(self, registry):
        room, _ = seat_players(registry, "R1", ["Cap", "Ann"])
        assert registry.remove_connection("conn-Cap") == "R1"
        assert list(room.state.players) == ["Ann"]
        assert room.captain.nickname == "Ann"
        assert registry.remove_connection("conn-Cap") is None

    def test_last_player_leaving_destroys_room_and_notifies(self, registry):
        closed = []
        registry.on_room_closed(closed.append)
        seat_players(registry, "R1", ["Cap", "Ann"])

        registry.remove_connection("conn-Cap")
        assert closed == []
        registry.remove_connection("conn-Ann")
        assert registry.get_room("R1") is None
        assert closed == ["R1"]


class TestBroadcast:
    def test_reaches_only_room_members(self, registry):
        _, r1 = seat_players(registry, "R1", ["Cap", "Ann"])
        _, r2 = seat_players(registry, "R2", ["Bob"])

        assert asyncio.run(registry.broadcast_to_room("R1", {"type": "PING_TEST"})) is True
        assert r1["Cap"].events("PING_TEST") and r1["Ann"].events("PING_TEST")
        assert r2["Bob"].sent == []

    def test_unknown_room(self, registry):
        assert asyncio.run(registry.broadcast_to_room("nope", {"type": "X"})) is False

    def test_failed_send_drops_connection_and_continues(self, registry):
        room, sockets = seat_players(registry, "R1", ["Cap", "Ann", "Bob"])
        sockets["Ann"].fail = True

        asyncio.run(registry.broadcast_state("R1"))

        assert sockets["Cap"].events("GAME_STATE")
        assert sockets["Bob"].events("GAME_STATE")
        assert registry.get_connection_room("conn-Ann") is None
        assert "Ann" not in room.state.players

    def test_send_to_single_connection(self, registry):
        _, sockets = seat_players(registry, "R1", ["Cap", "Ann"])
        asyncio.run(registry.send_to("conn-Ann", {"type": "PRIVATE"}))
        assert sockets["Ann"].events("PRIVATE")
        assert sockets["Cap"].sent == []

    def test_snapshot_written_when_store_configured(self):
        from services.room_registry import RoomRegistry

        class Store:
            def __init__(self):
                self.saved = {}

            async def save_room(self, room_id, snapshot):
                self.saved[room_id] = snapshot

            async def delete_room(self, room_id):
                self.saved.pop(room_id, None)

        store = Store()
        registry = RoomRegistry(snapshot_store=store)
        seat_players(registry, "R1", ["Cap"])
        asyncio.run(registry.save_snapshot("R1"))
        assert store.saved["R1"]["id"] == "R1"
        assert store.saved["R1"]["players"]["Cap"]["is_captain"] is True
