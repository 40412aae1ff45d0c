"""
Translator Agent — LLM-backed "DigiTranslate 3000" for Spacescape.

Uses gemini-2.5-flash (text-only) once per translation phase to:
  1. Rephrase every real passenger's answer, keeping its meaning and details
  2. Answer on behalf of seated passengers who sent nothing
  3. Fabricate answers for the empty pods so the captain cannot count humans

The Phase Controller only sees ``Translator.translate``, which never raises:
it returns a tagged TranslationOutcome (ok / timeout / malformed / failed).
The underlying ``generate(prompt) -> str`` coroutine is injectable.
"""
import asyncio
import json
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel

from config import settings
from models.game import SLOTS, NO_MESSAGE_SENT

logger = logging.getLogger(__name__)

Generate = Callable[[str], Awaitable[str]]

NO_MESSAGE_TEXT = "Did not send a message"

FALLBACK_TEXT = (
    "<b>System Alert:</b> Translation buffer overflow detected. "
    "<br><i>Communication fragments recovered:</i><br>"
    "<b>Passenger 1</b>: \"*static* Signal interference... can't establish clear connection.\"<br>"
    "<b>Passenger 2</b>: \"*static* ...systems malfunction... retry communication...\"<br>"
    "<b>Passenger 3</b>: \"*static* ...please standby for connection reattempt...\"<br>"
    "<b>Passenger 4</b>: \"*static* Emergency protocols activated... communication disrupted...\""
)


# ── Prompt ────────────────────────────────────────────────────────────────────

_SYSTEM = """Game context: you are assisting with a game called 'Spacescape' where players are passengers on a spaceship with a failing reactor.
The captain (a human player) is trying to identify which passengers are AI androids and which are real humans.
Some passengers are real human players, while others are AI-generated.
Your primary role is to REPHRASE real player messages so the captain cannot tell real and AI passengers apart."""

_TASKS = """TASK 1 - REPHRASE REAL PLAYER MESSAGES:
- Rephrase each message marked isRealPlayer:true completely
- Preserve the exact meaning, specific details and emotional tone
- Change the wording and structure significantly; never repeat the original verbatim

TASK 2 - HANDLE {no_message}:
- For any seated passenger marked {no_message}, write a natural answer to the captain's question: "{question}"

TASK 3 - FILL EMPTY POSITIONS:
- For empty passenger positions ({empty}), write a new answer to the captain's question: "{question}"
- Give each a distinct personality; casual language or small typos are fine
- Never reference other passengers' answers

OUTPUT FORMAT:
Return valid JSON exactly like this:
{{"players": [
  {{"player": "Passenger 1", "message": "..."}},
  {{"player": "Passenger 2", "message": "..."}},
  {{"player": "Passenger 3", "message": "..."}},
  {{"player": "Passenger 4", "message": "..."}}
]}}"""


def build_translation_prompt(player_messages: Dict[str, Any]) -> str:
    question = player_messages.get("captainQuestion", "")
    empty = ", ".join(str(p) for p in player_messages.get("emptyPositions", [])) or "none"
    tasks = _TASKS.format(no_message=NO_MESSAGE_SENT, question=question, empty=empty)
    return (
        f"{tasks}\n\n"
        f"PASSENGER MESSAGES TO PROCESS:\n{json.dumps(player_messages.get('players', []), indent=2)}\n\n"
        f"CAPTAIN'S QUESTION: \"{question}\"\n\n"
        f"REAL PLAYER INPUT REFERENCE:\n{json.dumps(player_messages.get('realPlayerMessages', []))}"
    )


# ── Gemini ────────────────────────────────────────────────────────────────────

# Module-level Gemini client cache, created once on first use
_genai_client: Optional[genai.Client] = None


async def call_gemini(prompt: str) -> str:
    """Default collaborator: async text generation via Gemini. Raises on failure."""
    global _genai_client

    if not settings.gemini_api_key:
        raise RuntimeError("GEMINI_API_KEY not set — translator disabled")
    if _genai_client is None:
        _genai_client = genai.Client(api_key=settings.gemini_api_key)

    response = await _genai_client.aio.models.generate_content(
        model=settings.translator_model,
        contents=prompt,
        config=types.GenerateContentConfig(
            system_instruction=_SYSTEM,
            temperature=settings.translator_temperature,
            max_output_tokens=settings.translator_max_tokens,
            response_mime_type="application/json",
        ),
    )
    return response.text or ""


# ── Parsing and rendering ─────────────────────────────────────────────────────

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_SLOT = re.compile(r"(\d+)")


def parse_translation(raw: str) -> Dict[int, str]:
    """
    Read ``{"players": [{"player": "Passenger N", "message": "..."}]}``.
    Entries outside slots 1-4 or without a usable message are skipped.
    Raises ValueError when the response is not that shape at all.
    """
    data = json.loads(_FENCE.sub("", (raw or "").strip()))
    if not isinstance(data, dict) or not isinstance(data.get("players"), list):
        raise ValueError("response has no 'players' list")

    slots: Dict[int, str] = {}
    for entry in data["players"]:
        if not isinstance(entry, dict):
            continue
        match = _SLOT.search(str(entry.get("player", "")))
        message = entry.get("message")
        if not match or not isinstance(message, str) or not message.strip():
            continue
        slot = int(match.group(1))
        if slot in SLOTS and slot not in slots:
            slots[slot] = message.strip()
    return slots


def merge_translation(player_messages: Dict[str, Any], translated: Dict[int, str]) -> List[Dict[str, Any]]:
    """
    One entry per slot, in slot order. A real passenger's slot keeps its
    identity and takes the rephrased text; an empty slot takes the
    fabricated text and is marked fabricated.
    """
    by_slot = {}
    for entry in player_messages.get("players", []):
        match = _SLOT.search(entry.get("player", ""))
        if match:
            by_slot[int(match.group(1))] = entry

    merged = []
    for slot in SLOTS:
        original = by_slot.get(slot, {})
        is_real = bool(original.get("isRealPlayer"))
        merged.append({
            "slot": slot,
            "message": translated.get(slot),
            "isRealPlayer": is_real,
            "fabricated": not is_real and slot in translated,
        })
    return merged


def format_translation(merged: List[Dict[str, Any]]) -> str:
    return "<br>".join(
        f"<b>Passenger {entry['slot']}</b>: \"{entry['message'] or NO_MESSAGE_TEXT}\""
        for entry in merged
    )


# ── Translator ────────────────────────────────────────────────────────────────

class TranslationStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    FAILED = "failed"


class TranslationOutcome(BaseModel):
    status: TranslationStatus
    slots: Dict[int, str] = {}
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == TranslationStatus.OK


class Translator:
    """Races the collaborator against a deadline and tags the result."""

    def __init__(self, generate: Optional[Generate] = None, timeout: Optional[float] = None):
        self.generate = generate or call_gemini
        self.timeout = settings.translation_timeout_seconds if timeout is None else timeout

    async def translate(self, player_messages: Dict[str, Any], room_id: str = "") -> TranslationOutcome:
        prompt = build_translation_prompt(player_messages)
        try:
            task = asyncio.ensure_future(self.generate(prompt))
        except Exception as exc:
            logger.warning("[%s] Translator call failed: %s", room_id, exc)
            return TranslationOutcome(status=TranslationStatus.FAILED, detail=str(exc))

        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            # Stop waiting; a late answer is discarded when it lands.
            task.add_done_callback(_discard_late_result)
            logger.warning("[%s] Translator timed out after %.1fs", room_id, self.timeout)
            return TranslationOutcome(status=TranslationStatus.TIMEOUT, detail="timeout")

        exc = asyncio.CancelledError("translator call cancelled") if task.cancelled() else task.exception()
        if exc is not None:
            logger.warning("[%s] Translator call failed: %s", room_id, exc)
            return TranslationOutcome(status=TranslationStatus.FAILED, detail=str(exc))

        try:
            slots = parse_translation(task.result())
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError
            logger.warning("[%s] Translator response malformed: %s", room_id, exc)
            return TranslationOutcome(status=TranslationStatus.MALFORMED, detail=str(exc))

        logger.info("[%s] Translator returned %d slot(s)", room_id, len(slots))
        return TranslationOutcome(status=TranslationStatus.OK, slots=slots)


def _discard_late_result(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()
