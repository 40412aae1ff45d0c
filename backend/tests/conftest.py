"""Shared fakes for the room, registry and controller tests."""
import asyncio
import json
import random

import pytest

from agents.phase_controller import PhaseController, PhaseTimings
from agents.translator_agent import Translator
from services.room_registry import RoomRegistry


class FakeSocket:
    """Records every event sent to it; can be told to fail like a dead connection."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(text))

    def events(self, event_type: str):
        return [e for e in self.sent if e["type"] == event_type]

    def chat_texts(self):
        return [e["payload"]["text"] for e in self.events("CHAT_MESSAGE")]


def translation_json(*messages: str) -> str:
    return json.dumps({
        "players": [
            {"player": f"Passenger {i}", "message": text}
            for i, text in enumerate(messages, start=1)
        ]
    })


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll until predicate() is true, failing the test after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


def seat_players(registry: RoomRegistry, room_id: str, nicknames, start: bool = False):
    """Create a room, join every nickname on its own FakeSocket, optionally start."""
    room = registry.create_room(room_id)
    room._rng = random.Random(7)
    sockets = {}
    for nickname in nicknames:
        connection_id = f"conn-{nickname}"
        room.add_player(nickname, connection_id)
        sockets[nickname] = FakeSocket()
        registry.register_connection(connection_id, sockets[nickname], room_id)
    if start:
        for nickname in nicknames:
            room.set_ready(nickname, True)
        room.start_game(nicknames[0])
    return room, sockets


@pytest.fixture
def registry():
    return RoomRegistry()


def make_controller(registry, generate=None, **timings):
    values = {"question_seconds": 100, "answer_seconds": 100, "translation_timeout": 0.05, "tick": 0.01}
    values.update(timings)
    timing = PhaseTimings(**values)

    async def never_called(prompt):
        raise AssertionError("translator should not be called")

    translator = Translator(generate=generate or never_called, timeout=timing.translation_timeout)
    return PhaseController(registry, translator=translator, timings=timing)
