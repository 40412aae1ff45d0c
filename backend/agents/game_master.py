"""
Game Master — Pure deterministic Python, no LLM, no I/O, no timers.

One GameMaster per room. It owns the authoritative RoomState and every rule
that mutates it:
- Lobby membership (captain is the first player; promoted on captain leave)
- Game start and the random passenger slot mapping
- One message per player per round, with round-based scoring
- Round cycling (question → answer → translation → question) and game over
- Captain's final decision scoring and the passenger reveal

Every operation validates first and raises a GameError before touching state,
so a rejected action never leaves a room half-updated.
"""
import logging
import random
from typing import Optional, Dict, Any, List

from models.game import (
    RoomState, RoomStatus, Round, PlayerState, ChatMessage,
    SLOTS, MAX_PASSENGERS, NICKNAME_MIN, NICKNAME_MAX,
    NO_MESSAGE_SENT, DEFAULT_QUESTION, SYSTEM_SENDER,
    AlreadyInProgress, NameTaken, InvalidNickname, RoomFull, PlayerNotFound,
    NotHost, NotAllReady, AlreadySentThisRound, NotAcceptingMessages,
)

logger = logging.getLogger(__name__)

MAX_CYCLES = 10

# Scoring
CAPTAIN_QUESTION_POINTS = 10
PASSENGER_ANSWER_POINTS = 5
CORRECT_IDENTIFICATION_POINTS = 50
WRONG_IDENTIFICATION_PENALTY = 30
PASSENGER_SAVED_POINTS = 20

GAME_START_TEXT = (
    "The game has commenced. Captain will ask questions to determine which "
    "pods hold androids. Don't get left behind."
)
GAME_OVER_TEXT = (
    "<b>Game Over!</b> The maximum number of rounds has been reached. "
    "The captain must now decide which pod(s) to leave behind."
)


class GameMaster:
    """Deterministic rules engine for a single room."""

    def __init__(
        self,
        room_id: str,
        max_cycles: int = MAX_CYCLES,
        rng: Optional[random.Random] = None,
    ):
        self.state = RoomState(id=room_id)
        self.max_cycles = max_cycles
        self._rng = rng or random.Random()

    @property
    def room_id(self) -> str:
        return self.state.id

    # ── Lookups ───────────────────────────────────────────────────────────────

    @property
    def captain(self) -> Optional[PlayerState]:
        for player in self.state.players.values():
            if player.is_captain:
                return player
        return None

    def is_captain(self, nickname: str) -> bool:
        player = self.state.players.get(nickname)
        return bool(player and player.is_captain)

    def passengers(self) -> List[str]:
        """Non-captain nicknames in join order."""
        return [n for n, p in self.state.players.items() if not p.is_captain]

    def player_for_connection(self, connection_id: str) -> Optional[str]:
        for nickname, player in self.state.players.items():
            if player.connection_id == connection_id:
                return nickname
        return None

    def is_empty(self) -> bool:
        return not self.state.players

    # ── Player management ─────────────────────────────────────────────────────

    def add_player(self, nickname: str, connection_id: Optional[str] = None) -> Dict[str, Any]:
        """Add a player to the lobby. The first player becomes the captain and is auto-ready."""
        if self.state.status != RoomStatus.WAITING:
            raise AlreadyInProgress()

        nickname = (nickname or "").strip()
        if not NICKNAME_MIN <= len(nickname) <= NICKNAME_MAX:
            raise InvalidNickname()
        if nickname in self.state.players:
            raise NameTaken()
        if len(self.state.players) >= 1 + MAX_PASSENGERS:
            raise RoomFull()

        is_first = not self.state.players
        self.state.players[nickname] = PlayerState(
            nickname=nickname,
            ready=is_first,
            is_captain=is_first,
            connection_id=connection_id,
        )
        self.state.scores[nickname] = 0
        logger.info("[%s] %s joined (%s)", self.room_id, nickname, "captain" if is_first else "passenger")
        return self.get_game_state()

    def remove_player(self, nickname: str) -> bool:
        """
        Remove a player. Scores are kept for end-of-game display.
        If the captain leaves, the earliest remaining player takes over and is
        forced ready so the lobby can never stall waiting for a host.
        """
        player = self.state.players.pop(nickname, None)
        if player is None:
            return False

        if player.is_captain and self.state.players:
            new_captain = next(iter(self.state.players.values()))
            new_captain.is_captain = True
            new_captain.ready = True
            logger.info("[%s] Captain %s left — %s promoted", self.room_id, nickname, new_captain.nickname)
        return True

    def set_ready(self, nickname: str, ready: bool) -> Dict[str, Any]:
        player = self.state.players.get(nickname)
        if player is None:
            raise PlayerNotFound()
        player.ready = bool(ready)
        return self.get_game_state()

    # ── Game start ────────────────────────────────────────────────────────────

    def start_game(self, nickname: str) -> ChatMessage:
        if self.state.status != RoomStatus.WAITING:
            raise AlreadyInProgress()
        if not self.is_captain(nickname):
            raise NotHost()
        if not all(p.ready for p in self.state.players.values()):
            raise NotAllReady()

        self.state.passenger_mapping = self._create_passenger_mapping()
        self.state.status = RoomStatus.PLAYING
        self.state.round = Round.QUESTION
        logger.info("[%s] Game started — %d passenger(s)", self.room_id, len(self.state.passenger_mapping))
        return self._system_message(GAME_START_TEXT)

    def _create_passenger_mapping(self) -> Dict[str, int]:
        """Shuffle the four slots and hand them out to passengers in join order.

        Slots left over after every passenger is seated are fabricated.
        """
        slots = list(SLOTS)
        self._rng.shuffle(slots)
        return dict(zip(self.passengers(), slots))

    # ── Messages ──────────────────────────────────────────────────────────────

    def add_message(self, sender: str, text: str, timestamp: Optional[int] = None) -> ChatMessage:
        """
        Record a player's single message for this round and award points.
        Captain messages are public; passenger messages are echoed privately
        because they are shown to the room only after translation.
        """
        player = self.state.players.get(sender)
        if player is None:
            raise PlayerNotFound()
        if self.state.status != RoomStatus.PLAYING or self.state.round == Round.TRANSLATION:
            raise NotAcceptingMessages()
        if player.has_sent_message:
            raise AlreadySentThisRound()

        is_host = player.is_captain
        player.has_sent_message = True
        self.state.pending_messages[sender] = text

        if is_host and self.state.round == Round.QUESTION:
            self.state.scores[sender] = self.state.scores.get(sender, 0) + CAPTAIN_QUESTION_POINTS
        elif not is_host and self.state.round == Round.ANSWER:
            self.state.scores[sender] = self.state.scores.get(sender, 0) + PASSENGER_ANSWER_POINTS

        message = ChatMessage(roomKey=self.room_id, sender=sender, text=text, isPrivate=not is_host)
        if timestamp is not None:
            message.timestamp = int(timestamp)
        return message

    def ensure_captain_question(self) -> bool:
        """Store the default question for the captain if none was asked.

        Returns True when the default had to be used.
        """
        captain = self.captain
        if captain is None or self.state.pending_messages.get(captain.nickname):
            return False
        self.state.pending_messages[captain.nickname] = DEFAULT_QUESTION
        return True

    # ── Round flow ────────────────────────────────────────────────────────────

    def set_countdown(self, seconds: Optional[int]) -> None:
        self.state.countdown = seconds

    def tick(self) -> Optional[int]:
        """Take one second off the visible countdown, never going below zero."""
        if self.state.countdown is not None and self.state.countdown > 0:
            self.state.countdown -= 1
        return self.state.countdown

    def advance_round(self) -> Optional[ChatMessage]:
        """
        question → answer → translation → question.
        Leaving translation completes one cycle: messages and send flags are
        reset. When the cycle limit is reached the game completes instead and
        the game-over announcement is returned.
        """
        if self.state.status != RoomStatus.PLAYING:
            return None

        current = self.state.round
        if current == Round.QUESTION:
            self.state.round = Round.ANSWER
        elif current == Round.ANSWER:
            self.state.round = Round.TRANSLATION
        else:
            self.state.round = Round.QUESTION
            self.state.cycle_count += 1
            self.state.pending_messages = {}
            for player in self.state.players.values():
                player.has_sent_message = False

            if self.state.cycle_count >= self.max_cycles:
                self.state.status = RoomStatus.COMPLETED
                self.state.countdown = None
                logger.info("[%s] Game over after %d cycles", self.room_id, self.state.cycle_count)
                return self._system_message(GAME_OVER_TEXT)

        logger.info(
            "[%s] Round: %s → %s (cycle %d)",
            self.room_id, current.value, self.state.round.value, self.state.cycle_count,
        )
        return None

    # ── Captain decision ──────────────────────────────────────────────────────

    def real_slots(self) -> Dict[int, str]:
        """slot → nickname for every seated passenger."""
        return {slot: nick for nick, slot in (self.state.passenger_mapping or {}).items() if slot in SLOTS}

    def process_captain_decision(self, selected: List[bool]) -> ChatMessage:
        """
        Score the captain's choice of pods to leave behind.
        Captain: +50 per fabricated slot selected, -30 per real slot selected.
        Passengers: +20 each when their slot was not selected.
        """
        flags = [bool(s) for s in list(selected or [])[:len(SLOTS)]]
        flags += [False] * (len(SLOTS) - len(flags))
        real = self.real_slots()

        correct = sum(1 for slot, chosen in zip(SLOTS, flags) if chosen and slot not in real)
        incorrect = sum(1 for slot, chosen in zip(SLOTS, flags) if chosen and slot in real)

        captain = self.captain
        if captain is not None:
            self.state.scores[captain.nickname] = (
                self.state.scores.get(captain.nickname, 0)
                + correct * CORRECT_IDENTIFICATION_POINTS
                - incorrect * WRONG_IDENTIFICATION_PENALTY
            )

        for slot, nickname in real.items():
            if not flags[slot - 1]:
                self.state.scores[nickname] = self.state.scores.get(nickname, 0) + PASSENGER_SAVED_POINTS

        self.state.decision_made = True
        logger.info("[%s] Captain decision: %d correct, %d incorrect", self.room_id, correct, incorrect)

        lines = ["<b>Final Scores:</b>"]
        for nickname, score in self.state.scores.items():
            color = "#4ade80" if score >= 0 else "#f87171"
            lines.append(f'{nickname}: <span style="color: {color};">{score} points</span>')
        return self._system_message("<br>".join(lines) + "<br>")

    def get_passenger_reveal(self) -> ChatMessage:
        real = self.real_slots()
        lines = ["<b>Passenger Reveal:</b>"]
        for slot in SLOTS:
            if slot in real:
                lines.append(f'Passenger {slot}: <span style="color: #4ade80;">Real Player ({real[slot]})</span>')
            else:
                lines.append(f'Passenger {slot}: <span style="color: #f87171;">AI-Generated</span>')
        return self._system_message("<br>".join(lines) + "<br>")

    # ── Translation input ─────────────────────────────────────────────────────

    def get_captain_question(self) -> str:
        captain = self.captain
        if captain is None:
            return DEFAULT_QUESTION
        return self.state.pending_messages.get(captain.nickname) or DEFAULT_QUESTION

    def get_player_messages(self) -> Dict[str, Any]:
        """
        The translator's input: one entry per slot (real message, NO_MESSAGE_SENT
        sentinel, or None for a fabricated slot), the fabricated slot numbers,
        the captain's question, and the raw real message texts.
        """
        real = self.real_slots()
        players: List[Dict[str, Any]] = []
        empty_positions: List[int] = []

        for slot in SLOTS:
            nickname = real.get(slot)
            if nickname is not None:
                players.append({
                    "player": f"Passenger {slot}",
                    "message": self.state.pending_messages.get(nickname) or NO_MESSAGE_SENT,
                    "isRealPlayer": True,
                    "originalNickname": nickname,
                })
            else:
                empty_positions.append(slot)
                players.append({
                    "player": f"Passenger {slot}",
                    "message": None,
                    "isRealPlayer": False,
                })

        return {
            "players": players,
            "emptyPositions": empty_positions,
            "captainQuestion": self.get_captain_question(),
            "realPlayerMessages": [
                msg for msg in self.state.pending_messages.values()
                if msg and msg != NO_MESSAGE_SENT
            ],
        }

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def get_game_state(self) -> Dict[str, Any]:
        """Full room snapshot in the client's shape."""
        s = self.state
        return {
            "room": {
                "id": s.id,
                "status": s.status.value,
                "round": s.round.value,
                "countdown": s.countdown,
                "cycleCount": s.cycle_count,
                "players": {n: p.to_public() for n, p in s.players.items()},
                "scores": dict(s.scores),
            },
            "pendingMessages": dict(s.pending_messages),
            "passengerMapping": dict(s.passenger_mapping) if s.passenger_mapping is not None else None,
        }

    def _system_message(self, text: str) -> ChatMessage:
        return ChatMessage(roomKey=self.room_id, sender=SYSTEM_SENDER, text=text, isPrivate=False)
