"""
Room Registry — owns every live room and every connection's room membership.

One instance per process, created by the app lifespan and handed to the
Phase Controller and the WebSocket hub. Safe for the asyncio single-threaded
event loop: no method yields between reading and writing its tables.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from agents.game_master import GameMaster, MAX_CYCLES
from models.game import RoomExists, game_state_event

logger = logging.getLogger(__name__)


class Connection:
    """A transport endpoint bound to one room. ``socket`` needs ``async send_text(str)``."""

    __slots__ = ("connection_id", "socket", "room_id")

    def __init__(self, connection_id: str, socket: Any, room_id: str):
        self.connection_id = connection_id
        self.socket = socket
        self.room_id = room_id


class RoomRegistry:

    def __init__(self, max_cycles: int = MAX_CYCLES, snapshot_store=None):
        self.max_cycles = max_cycles
        self.snapshot_store = snapshot_store
        self._rooms: Dict[str, GameMaster] = {}
        self._connections: Dict[str, Connection] = {}
        self._room_closed_listeners: List[Callable[[str], None]] = []

    # ── Rooms ─────────────────────────────────────────────────────────────────

    def create_room(self, room_id: str) -> GameMaster:
        if room_id in self._rooms:
            raise RoomExists()
        room = GameMaster(room_id, max_cycles=self.max_cycles)
        self._rooms[room_id] = room
        logger.info("[%s] Room created", room_id)
        return room

    def get_room(self, room_id: Optional[str]) -> Optional[GameMaster]:
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def on_room_closed(self, listener: Callable[[str], None]) -> None:
        """Register a callback fired (synchronously) when a room is destroyed."""
        self._room_closed_listeners.append(listener)

    def discard_room(self, room_id: str) -> None:
        """Destroy a room nobody managed to join."""
        room = self._rooms.get(room_id)
        if room is not None and room.is_empty():
            self._close_room(room_id)

    def _close_room(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
        logger.info("[%s] Room empty — destroyed", room_id)
        for listener in self._room_closed_listeners:
            try:
                listener(room_id)
            except Exception:
                logger.exception("[%s] room-closed listener failed", room_id)
        if self.snapshot_store is not None:
            asyncio.create_task(self.snapshot_store.delete_room(room_id))

    # ── Connections ───────────────────────────────────────────────────────────

    def register_connection(self, connection_id: str, socket: Any, room_id: str) -> None:
        self._connections[connection_id] = Connection(connection_id, socket, room_id)
        logger.debug("[%s] %s registered (%d total)", room_id, connection_id, self.count(room_id))

    def get_connection_room(self, connection_id: str) -> Optional[str]:
        conn = self._connections.get(connection_id)
        return conn.room_id if conn else None

    def count(self, room_id: str) -> int:
        return sum(1 for c in self._connections.values() if c.room_id == room_id)

    def remove_connection(self, connection_id: str) -> Optional[str]:
        """
        Drop a connection and the player bound to it.
        Destroys the room when its last player leaves.
        Returns the room id the connection belonged to, or None if unknown.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None

        room = self._rooms.get(conn.room_id)
        if room is not None:
            nickname = room.player_for_connection(connection_id)
            if nickname is not None:
                room.remove_player(nickname)
                logger.info("[%s] %s disconnected", conn.room_id, nickname)
            if room.is_empty():
                self._close_room(conn.room_id)
        return conn.room_id

    # ── Sending ───────────────────────────────────────────────────────────────

    async def send_to(self, connection_id: str, event: Dict[str, Any]) -> None:
        """Send a private event to a single connection."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        try:
            await conn.socket.send_text(json.dumps(event))
        except Exception as exc:
            logger.warning("[%s] send_to %s failed: %s", conn.room_id, connection_id, exc)
            self.remove_connection(connection_id)

    async def broadcast_to_room(self, room_id: str, event: Dict[str, Any]) -> bool:
        """
        Send an event to every connection in a room. A connection whose send
        fails is treated as disconnected; delivery to the rest continues.
        """
        if room_id not in self._rooms:
            return False

        message = json.dumps(event)
        targets = [c for c in self._connections.values() if c.room_id == room_id]
        for conn in targets:
            if conn.connection_id not in self._connections:
                continue
            try:
                await conn.socket.send_text(message)
            except Exception as exc:
                logger.warning("[%s] broadcast to %s failed: %s", room_id, conn.connection_id, exc)
                self.remove_connection(conn.connection_id)
        return True

    async def broadcast_state(self, room_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        return await self.broadcast_to_room(room_id, game_state_event(room.get_game_state()))

    # ── Snapshots ─────────────────────────────────────────────────────────────

    async def save_snapshot(self, room_id: str) -> None:
        """Best-effort write of the room's state; never raises."""
        room = self._rooms.get(room_id)
        if room is None or self.snapshot_store is None:
            return
        await self.snapshot_store.save_room(room_id, room.state.model_dump(mode="json"))
