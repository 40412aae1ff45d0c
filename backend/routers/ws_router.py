"""
WebSocket Hub — real-time connection handling for Spacescape rooms.

URL: /ws

Connection flow:
  1. Accept connection → assign an opaque connection id
  2. Message loop (_handle_message dispatcher); the first CREATE_ROOM or
     JOIN_ROOM binds the connection to a room
  3. On disconnect: drop the player, destroy the room if it is now empty,
     otherwise broadcast the new state to whoever is left

Client → server message types handled here:
  PING              — keep-alive heartbeat → responds with "PONG"
  CREATE_ROOM       — create a room and join it as captain
  JOIN_ROOM         — join an existing room as a passenger
  PLAYER_READY      — toggle ready in the lobby
  START_GAME        — captain starts the game once everyone is ready
  CHAT_MESSAGE      — one message per player per round
  CAPTAIN_DECISION  — captain's final pick of pods to leave behind

Round transitions are never driven from here: START_GAME arms the
Phase Controller and the clock takes it from there.
"""
import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from agents.phase_controller import PhaseController
from models.game import (
    WSMessage, GameError, RoomNotFound, PlayerNotFound, AlreadyInRoom,
    game_state_event, chat_event, error_event,
)
from services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _reply(ws: WebSocket, event: Dict[str, Any]) -> None:
    await ws.send_text(json.dumps(event))


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    registry: RoomRegistry = ws.app.state.registry
    controller: PhaseController = ws.app.state.controller

    await ws.accept()
    connection_id = uuid.uuid4().hex[:8]
    logger.info("Client connected: %s", connection_id)

    try:
        while True:
            raw = await ws.receive_text()
            await _handle_message(ws, connection_id, raw, registry, controller)
    except WebSocketDisconnect:
        pass
    finally:
        room_id = registry.remove_connection(connection_id)
        logger.info("Client disconnected: %s", connection_id)
        if room_id and registry.get_room(room_id) is not None:
            await registry.broadcast_state(room_id)
            await registry.save_snapshot(room_id)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(
    ws: WebSocket,
    connection_id: str,
    raw: str,
    registry: RoomRegistry,
    controller: PhaseController,
) -> None:
    try:
        msg = WSMessage.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        await _reply(ws, error_event("Invalid message"))
        return

    if msg.type != "PING":
        logger.info("Received %s from %s", msg.type, connection_id)

    try:
        await _dispatch_message(ws, connection_id, msg, registry, controller)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        await _reply(ws, error_event(str(exc)))
    except Exception:
        logger.exception("Unhandled error in _handle_message (type=%s)", msg.type)
        await _reply(ws, error_event("Server error"))


async def _dispatch_message(
    ws: WebSocket,
    connection_id: str,
    msg: WSMessage,
    registry: RoomRegistry,
    controller: PhaseController,
) -> None:
    if msg.type == "PING":
        await _reply(ws, {"type": "PONG", "timestamp": int(time.time() * 1000)})

    elif msg.type == "CREATE_ROOM":
        await _on_create_room(ws, connection_id, msg, registry)

    elif msg.type == "JOIN_ROOM":
        await _on_join_room(ws, connection_id, msg, registry)

    elif msg.type == "PLAYER_READY":
        await _on_player_ready(connection_id, msg, registry)

    elif msg.type == "START_GAME":
        await _on_start_game(connection_id, msg, registry, controller)

    elif msg.type == "CHAT_MESSAGE":
        await _on_chat(ws, connection_id, msg, registry)

    elif msg.type == "CAPTAIN_DECISION":
        await _on_captain_decision(connection_id, msg, registry, controller)

    else:
        await _reply(ws, error_event(f"Unknown message type: '{msg.type}'"))


# ── Handlers ──────────────────────────────────────────────────────────────────

def _room_for(connection_id: str, registry: RoomRegistry):
    """The room this connection belongs to, else RoomNotFound."""
    room = registry.get_room(registry.get_connection_room(connection_id))
    if room is None:
        raise RoomNotFound()
    return room


def _player_for(connection_id: str, registry: RoomRegistry, claimed: Optional[str] = None):
    """
    (room, nickname) bound to this connection. A nickname claimed in the
    message body must match it; identity always comes from the connection.
    """
    room = _room_for(connection_id, registry)
    nickname = room.player_for_connection(connection_id)
    if nickname is None or (claimed and str(claimed).strip() != nickname):
        raise PlayerNotFound()
    return room, nickname


async def _on_create_room(ws: WebSocket, connection_id: str, msg: WSMessage, registry: RoomRegistry) -> None:
    if not msg.roomId or not msg.playerNickname:
        await _reply(ws, error_event("Invalid room creation data"))
        return
    if registry.get_connection_room(connection_id):
        raise AlreadyInRoom()

    room = registry.create_room(msg.roomId)
    try:
        state = room.add_player(msg.playerNickname, connection_id)
    except GameError:
        registry.discard_room(msg.roomId)
        raise

    registry.register_connection(connection_id, ws, msg.roomId)
    await _reply(ws, {"type": "ROOM_CREATED", "roomId": msg.roomId, "payload": state})
    await _reply(ws, game_state_event(state))
    await registry.save_snapshot(msg.roomId)


async def _on_join_room(ws: WebSocket, connection_id: str, msg: WSMessage, registry: RoomRegistry) -> None:
    if registry.get_connection_room(connection_id):
        raise AlreadyInRoom()
    room = registry.get_room(msg.roomId)
    if room is None:
        raise RoomNotFound()

    room.add_player(msg.playerNickname or "", connection_id)
    registry.register_connection(connection_id, ws, room.room_id)
    await registry.broadcast_state(room.room_id)
    await registry.save_snapshot(room.room_id)


async def _on_player_ready(connection_id: str, msg: WSMessage, registry: RoomRegistry) -> None:
    room, nickname = _player_for(connection_id, registry, msg.playerNickname)
    room.set_ready(nickname, True if msg.isReady is None else msg.isReady)
    await registry.broadcast_state(room.room_id)
    await registry.save_snapshot(room.room_id)


async def _on_start_game(
    connection_id: str, msg: WSMessage, registry: RoomRegistry, controller: PhaseController
) -> None:
    room, nickname = _player_for(connection_id, registry, msg.playerNickname)
    if msg.roomId and msg.roomId != room.room_id:
        raise RoomNotFound()
    announcement = room.start_game(nickname)

    await registry.broadcast_state(room.room_id)
    await registry.broadcast_to_room(room.room_id, chat_event(announcement))
    controller.start_phase(room.room_id)


async def _on_chat(ws: WebSocket, connection_id: str, msg: WSMessage, registry: RoomRegistry) -> None:
    payload = msg.payload
    room, sender = _player_for(connection_id, registry, payload.get("sender"))
    text = str(payload.get("text", "")).strip()[:500]
    if not text:
        return
    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, (int, float)):
        timestamp = None

    message = room.add_message(sender, text, timestamp)
    if message.isPrivate:
        # Passenger answers reach the room only through translation
        await _reply(ws, chat_event(message))
    else:
        await registry.broadcast_to_room(room.room_id, chat_event(message))
    await registry.save_snapshot(room.room_id)


async def _on_captain_decision(
    connection_id: str, msg: WSMessage, registry: RoomRegistry, controller: PhaseController
) -> None:
    room, nickname = _player_for(connection_id, registry)
    room_key = msg.payload.get("roomKey")
    if room_key and room_key != room.room_id:
        raise RoomNotFound()
    selected = msg.payload.get("selectedPassengers") or []
    if not isinstance(selected, list):
        selected = []
    logger.info("[%s] Captain's decision from %s: %s", room.room_id, nickname, selected)
    await controller.handle_captain_decision(room.room_id, nickname, selected)
