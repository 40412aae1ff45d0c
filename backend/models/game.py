from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
import time


def _now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit clients send and expect."""
    return int(time.time() * 1000)


class RoomStatus(str, Enum):
    WAITING = "waiting"      # lobby: players join and ready up
    PLAYING = "playing"
    COMPLETED = "completed"


class Round(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"
    TRANSLATION = "translation"


# Passenger slots shown to the captain during translation
SLOTS: List[int] = [1, 2, 3, 4]
MAX_PASSENGERS = len(SLOTS)

NICKNAME_MIN = 2
NICKNAME_MAX = 15

NO_MESSAGE_SENT = "NO_MESSAGE_SENT"
DEFAULT_QUESTION = "What were you doing before the catastrophe started?"

SYSTEM_SENDER = "System"
TRANSLATOR_SENDER = "DigiTranslate 3000"


# ── Errors ────────────────────────────────────────────────────────────────────

class GameError(Exception):
    """A rejected player action. The message is shown to the player as-is."""

    message = "Invalid action"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)

    def __str__(self) -> str:
        return self.args[0]


class AlreadyInProgress(GameError):
    message = "Game already in progress"


class NameTaken(GameError):
    message = "Nickname already taken in this room"


class InvalidNickname(GameError):
    message = f"Nickname must be {NICKNAME_MIN}-{NICKNAME_MAX} characters"


class RoomFull(GameError):
    message = "Room is full"


class PlayerNotFound(GameError):
    message = "Player not found"


class NotHost(GameError):
    message = "Only the host can start the game"


class NotAllReady(GameError):
    message = "Not all players are ready"


class AlreadySentThisRound(GameError):
    message = "You can only send one message per round"


class NotAcceptingMessages(GameError):
    message = "Messages are not accepted right now"


class RoomNotFound(GameError):
    message = "Room not found"


class RoomExists(GameError):
    message = "Room already exists"


class AlreadyInRoom(GameError):
    message = "Connection already belongs to a room"


# ── Room state ────────────────────────────────────────────────────────────────

class PlayerState(BaseModel):
    nickname: str
    ready: bool = False
    is_captain: bool = False
    connection_id: Optional[str] = None
    has_sent_message: bool = False

    def to_public(self) -> Dict[str, Any]:
        """Client shape — connection ids stay on the server."""
        return {
            "nickname": self.nickname,
            "ready": self.ready,
            "isCaptain": self.is_captain,
            "hasSentMessage": self.has_sent_message,
        }


class RoomState(BaseModel):
    id: str
    status: RoomStatus = RoomStatus.WAITING
    round: Round = Round.QUESTION
    cycle_count: int = 0
    countdown: Optional[int] = None
    # Insertion order is display order; captaincy lives on PlayerState.is_captain
    players: Dict[str, PlayerState] = {}
    scores: Dict[str, int] = {}
    pending_messages: Dict[str, str] = {}
    passenger_mapping: Optional[Dict[str, int]] = None
    decision_made: bool = False


class ChatMessage(BaseModel):
    roomKey: str
    sender: str
    text: str
    timestamp: int = Field(default_factory=_now_ms)
    isPrivate: bool = False


# ── WebSocket message shapes ──────────────────────────────────────────────────

class WSMessage(BaseModel):
    """Inbound envelope. Fields beyond ``type`` depend on the event."""
    type: str
    roomId: Optional[str] = None
    playerNickname: Optional[str] = None
    isReady: Optional[bool] = None
    payload: Dict[str, Any] = {}


def game_state_event(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "GAME_STATE", "payload": payload}


def chat_event(message: ChatMessage) -> Dict[str, Any]:
    return {"type": "CHAT_MESSAGE", "payload": message.model_dump()}


def error_event(reason: str) -> Dict[str, Any]:
    return {"type": "ERROR", "payload": reason}
