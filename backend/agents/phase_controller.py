"""
Phase Controller — the clock that drives every room through its rounds.

Per room it owns at most one phase task and at most one countdown ticker:

  question     timed (default 20s)  → captain's question; default used if silent
  answer       timed (default 30s)  → passengers answer privately
  translation  untimed              → one translator call, bounded by its own
                                      deadline; success or not, the room moves
                                      on to the next question (or game over)

Arming a room always cancels whatever was armed before, and every task carries
the generation it was armed with. A task that wakes up to find a newer
generation (or none: the room was stopped) exits without touching state.
The translator never raises into this module; any other error inside a task
is logged and resolved by re-arming or by the fallback translation, so a room
can never sit in a phase forever.
"""
import asyncio
import itertools
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from config import settings
from agents.game_master import GameMaster
from agents.translator_agent import (
    Translator, FALLBACK_TEXT, merge_translation, format_translation,
)
from models.game import (
    RoomStatus, Round, ChatMessage, DEFAULT_QUESTION, SYSTEM_SENDER, TRANSLATOR_SENDER,
    chat_event,
)
from services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)

CAPTAIN_UNREACHABLE_TEXT = (
    "*static* Captain's pod communication systems are not reachable at this moment. "
    f"While we attempt to restore connection, please share: {DEFAULT_QUESTION}"
)
PROCESSING_TEXT = "<i>Processing communication translations...</i>"


class PhaseTimings(BaseModel):
    question_seconds: int = 20
    answer_seconds: int = 30
    translation_timeout: float = 10.0
    # Wall-clock length of one game second
    tick: float = 1.0

    @classmethod
    def from_settings(cls) -> "PhaseTimings":
        return cls(
            question_seconds=settings.question_seconds,
            answer_seconds=settings.answer_seconds,
            translation_timeout=settings.translation_timeout_seconds,
        )


class RoomTimers:
    """The armed handles for one room."""

    def __init__(self, generation: int):
        self.generation = generation
        self.phase_task: Optional[asyncio.Task] = None
        self.ticker_task: Optional[asyncio.Task] = None

    def live_tasks(self) -> List[asyncio.Task]:
        return [t for t in (self.phase_task, self.ticker_task) if t is not None and not t.done()]

    def cancel(self) -> None:
        """Cancel both handles, except the task doing the cancelling."""
        current = asyncio.current_task()
        for task in (self.phase_task, self.ticker_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.phase_task = None
        self.ticker_task = None


class PhaseController:

    def __init__(
        self,
        registry: RoomRegistry,
        translator: Optional[Translator] = None,
        timings: Optional[PhaseTimings] = None,
    ):
        self.registry = registry
        self.timings = timings or PhaseTimings.from_settings()
        self.translator = translator or Translator(timeout=self.timings.translation_timeout)
        self._timers: Dict[str, RoomTimers] = {}
        self._generations = itertools.count(1)
        registry.on_room_closed(self.stop)

    # ── Arming ────────────────────────────────────────────────────────────────

    def start_phase(self, room_id: str) -> bool:
        """
        (Re)arm the room for its current round. Synchronous, so two calls in a
        row can never leave two sets of live timers behind.
        """
        room = self.registry.get_room(room_id)
        if room is None or room.state.status != RoomStatus.PLAYING:
            self.stop(room_id)
            return False

        old = self._timers.get(room_id)
        if old is not None:
            old.cancel()
        timers = RoomTimers(next(self._generations))
        self._timers[room_id] = timers

        current_round = room.state.round
        if current_round == Round.TRANSLATION:
            room.set_countdown(None)
            timers.phase_task = asyncio.create_task(
                self._run_translation(room_id, timers.generation)
            )
        else:
            seconds = (
                self.timings.question_seconds
                if current_round == Round.QUESTION
                else self.timings.answer_seconds
            )
            room.set_countdown(seconds)
            timers.phase_task = asyncio.create_task(
                self._run_timed_phase(room_id, timers.generation, current_round, seconds)
            )
            timers.ticker_task = asyncio.create_task(
                self._run_ticker(room_id, timers.generation)
            )
        logger.debug("[%s] Armed %s (generation %d)", room_id, current_round.value, timers.generation)
        return True

    def stop(self, room_id: str) -> None:
        timers = self._timers.pop(room_id, None)
        if timers is not None:
            timers.cancel()
            logger.debug("[%s] Timers stopped", room_id)

    def shutdown(self) -> None:
        for room_id in list(self._timers):
            self.stop(room_id)

    def live_tasks(self, room_id: str) -> List[asyncio.Task]:
        timers = self._timers.get(room_id)
        return timers.live_tasks() if timers else []

    def _is_current(self, room_id: str, generation: int) -> bool:
        timers = self._timers.get(room_id)
        return timers is not None and timers.generation == generation

    def _stop_ticker(self, room_id: str) -> None:
        timers = self._timers.get(room_id)
        if timers is not None and timers.ticker_task is not None:
            if timers.ticker_task is not asyncio.current_task():
                timers.ticker_task.cancel()
            timers.ticker_task = None

    # ── Timed phases ──────────────────────────────────────────────────────────

    async def _run_ticker(self, room_id: str, generation: int) -> None:
        try:
            while True:
                await asyncio.sleep(self.timings.tick)
                room = self.registry.get_room(room_id)
                if room is None or not self._is_current(room_id, generation):
                    return
                if not room.state.countdown:
                    return
                room.tick()
                await self.registry.broadcast_state(room_id)
        except Exception:
            # The phase task still drives the transition; only the display stops.
            logger.exception("[%s] Countdown ticker failed", room_id)

    async def _run_timed_phase(
        self, room_id: str, generation: int, phase: Round, seconds: int
    ) -> None:
        try:
            await self.registry.broadcast_state(room_id)
            await self.registry.save_snapshot(room_id)
            await asyncio.sleep(seconds * self.timings.tick)
            if not self._is_current(room_id, generation):
                return
            await self._on_phase_expired(room_id, generation, phase)
        except Exception:
            logger.exception("[%s] %s timer failed — re-arming", room_id, phase.value)
            if self._is_current(room_id, generation):
                self.start_phase(room_id)

    async def _on_phase_expired(self, room_id: str, generation: int, phase: Round) -> None:
        room = self.registry.get_room(room_id)
        if room is None:
            self.stop(room_id)
            return
        self._stop_ticker(room_id)

        if room.state.round != phase:
            # Someone moved the room on already; just follow it.
            self.start_phase(room_id)
            return

        if phase == Round.QUESTION and room.ensure_captain_question():
            logger.info("[%s] Captain silent — using default question", room_id)
            await self.registry.broadcast_to_room(
                room_id, chat_event(self._message(room, SYSTEM_SENDER, CAPTAIN_UNREACHABLE_TEXT))
            )
            if not self._is_current(room_id, generation):
                return

        room.advance_round()
        self.start_phase(room_id)

    # ── Translation ───────────────────────────────────────────────────────────

    async def _run_translation(self, room_id: str, generation: int) -> None:
        delivered = False
        try:
            await self.registry.broadcast_state(room_id)
            room = self.registry.get_room(room_id)
            if room is None:
                return
            await self.registry.broadcast_to_room(
                room_id, chat_event(self._message(room, TRANSLATOR_SENDER, PROCESSING_TEXT))
            )
            delivered = await self.process_pending_messages(room_id, generation)
        except Exception:
            logger.exception("[%s] Translation phase failed", room_id)

        if not self._is_current(room_id, generation):
            return
        try:
            if not delivered:
                await self.send_fallback(room_id)
        except Exception:
            logger.exception("[%s] Could not send fallback translation", room_id)
        if self._is_current(room_id, generation):
            await self._complete_translation(room_id)

    async def process_pending_messages(self, room_id: str, generation: int) -> bool:
        """
        Run the translator once for this round and broadcast the result.
        Returns False when the fallback is needed (timeout, bad response, error).
        """
        room = self.registry.get_room(room_id)
        if room is None or room.state.round != Round.TRANSLATION:
            return False

        player_messages = room.get_player_messages()
        outcome = await self.translator.translate(player_messages, room_id)
        if not self._is_current(room_id, generation):
            # Superseded while waiting; the caller stops here too.
            return True
        if not outcome.ok:
            logger.warning("[%s] Translation unavailable (%s) — using fallback", room_id, outcome.status.value)
            return False

        text = format_translation(merge_translation(player_messages, outcome.slots))
        await self.registry.broadcast_to_room(
            room_id, chat_event(self._message(room, TRANSLATOR_SENDER, text))
        )
        return True

    async def send_fallback(self, room_id: str) -> None:
        room = self.registry.get_room(room_id)
        if room is None:
            return
        await self.registry.broadcast_to_room(
            room_id, chat_event(self._message(room, TRANSLATOR_SENDER, FALLBACK_TEXT))
        )

    async def _complete_translation(self, room_id: str) -> None:
        room = self.registry.get_room(room_id)
        if room is None:
            self.stop(room_id)
            return

        game_over = room.advance_round()
        if game_over is not None:
            self.stop(room_id)
            await self.registry.broadcast_to_room(room_id, chat_event(game_over))
            await self.registry.broadcast_state(room_id)
            await self.registry.save_snapshot(room_id)
            return

        self.start_phase(room_id)

    # ── Captain decision ──────────────────────────────────────────────────────

    async def handle_captain_decision(self, room_id: str, nickname: str, selected: List[bool]) -> bool:
        """
        Score the captain's final choice and reveal the pods.
        Only from the captain, only once, only after game over.
        """
        room = self.registry.get_room(room_id)
        if room is None:
            return False
        if not room.is_captain(nickname):
            logger.info("[%s] Captain decision from non-captain %s ignored", room_id, nickname)
            return False
        if room.state.status != RoomStatus.COMPLETED or room.state.decision_made:
            logger.info("[%s] Captain decision ignored (status=%s)", room_id, room.state.status.value)
            return False

        summary = room.process_captain_decision(selected)
        reveal = room.get_passenger_reveal()
        await self.registry.broadcast_to_room(room_id, chat_event(summary))
        await self.registry.broadcast_to_room(room_id, chat_event(reveal))
        await self.registry.broadcast_state(room_id)
        await self.registry.save_snapshot(room_id)
        return True

    @staticmethod
    def _message(room: GameMaster, sender: str, text: str) -> ChatMessage:
        return ChatMessage(roomKey=room.room_id, sender=sender, text=text, isPrivate=False)
