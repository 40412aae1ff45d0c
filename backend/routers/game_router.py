"""
Room HTTP endpoints.

Routes:
  GET  /api/rooms                — Live room ids and their status
  GET  /api/rooms/{room_id}      — Room status summary (for lobby links / polling)

Everything that changes a room goes through the WebSocket hub.
"""
import logging

from fastapi import APIRouter, HTTPException, Request

from services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def _summary(room) -> dict:
    return {
        "roomId": room.room_id,
        "status": room.state.status.value,
        "playerCount": len(room.state.players),
    }


@router.get("/rooms")
async def list_rooms(request: Request):
    registry: RoomRegistry = request.app.state.registry
    rooms = [registry.get_room(room_id) for room_id in registry.room_ids()]
    return {"rooms": [_summary(room) for room in rooms if room is not None]}


@router.get("/rooms/{room_id}")
async def get_room(room_id: str, request: Request):
    registry: RoomRegistry = request.app.state.registry
    room = registry.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return _summary(room)
