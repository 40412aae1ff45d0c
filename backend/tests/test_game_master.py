import random

import pytest

from agents.game_master import GameMaster, GAME_OVER_TEXT
from models.game import (
    RoomStatus, Round, DEFAULT_QUESTION, NO_MESSAGE_SENT,
    AlreadyInProgress, NameTaken, InvalidNickname, RoomFull, PlayerNotFound,
    NotHost, NotAllReady, AlreadySentThisRound, NotAcceptingMessages,
)


def lobby(*nicknames, ready=False):
    room = GameMaster("R1", rng=random.Random(42))
    for nickname in nicknames:
        room.add_player(nickname, f"conn-{nickname}")
        if ready:
            room.set_ready(nickname, True)
    return room


def started(*nicknames):
    room = lobby(*nicknames, ready=True)
    room.start_game(nicknames[0])
    return room


# =====================================================================
# Lobby
# =====================================================================

class TestAddPlayer:
    def test_first_player_is_ready_captain(self):
        room = lobby("Cap", "Ann")
        assert room.captain.nickname == "Cap"
        assert room.state.players["Cap"].ready is True
        assert room.state.players["Ann"].ready is False
        assert room.state.scores == {"Cap": 0, "Ann": 0}

    def test_returns_public_state(self):
        room = GameMaster("R1")
        state = room.add_player("Cap", "c1")
        assert state["room"]["id"] == "R1"
        assert state["room"]["players"]["Cap"]["isCaptain"] is True
        assert "connection_id" not in state["room"]["players"]["Cap"]

    def test_duplicate_nickname_rejected(self):
        room = lobby("Cap")
        with pytest.raises(NameTaken):
            room.add_player("Cap", "other")

    def test_nickname_is_trimmed_and_length_checked(self):
        room = lobby()
        room.add_player("  Cap  ", "c1")
        assert "Cap" in room.state.players
        with pytest.raises(InvalidNickname):
            room.add_player("x", "c2")
        with pytest.raises(InvalidNickname):
            room.add_player("a" * 16, "c3")

    def test_join_after_start_rejected(self):
        room = started("Cap", "Ann")
        with pytest.raises(AlreadyInProgress):
            room.add_player("Bob", "c3")
        assert "Bob" not in room.state.players

    def test_fifth_passenger_rejected(self):
        room = lobby("Cap", "P1", "P2", "P3", "P4")
        with pytest.raises(RoomFull):
            room.add_player("P5", "c6")


class TestRemovePlayer:
    def test_absent_player_is_noop(self):
        room = lobby("Cap")
        assert room.remove_player("Ghost") is False

    def test_passenger_removal_keeps_order_and_scores(self):
        room = lobby("Cap", "Ann", "Bob", "Cid")
        assert room.remove_player("Bob") is True
        assert list(room.state.players) == ["Cap", "Ann", "Cid"]
        assert room.captain.nickname == "Cap"
        assert "Bob" in room.state.scores

    def test_captain_removal_promotes_next_and_readies(self):
        room = lobby("Cap", "Ann", "Bob")
        room.remove_player("Cap")
        assert room.captain.nickname == "Ann"
        assert room.state.players["Ann"].ready is True
        assert room.state.players["Bob"].is_captain is False

    def test_rejoin_is_a_fresh_entry(self):
        room = lobby("Cap", "Ann")
        room.set_ready("Ann", True)
        room.remove_player("Ann")
        room.add_player("Ann", "new-conn")
        assert room.state.players["Ann"].ready is False
        assert list(room.state.players) == ["Cap", "Ann"]


class TestStartGame:
    def test_only_captain_can_start(self):
        room = lobby("Cap", "Ann", ready=True)
        with pytest.raises(NotHost):
            room.start_game("Ann")
        assert room.state.status == RoomStatus.WAITING

    def test_everyone_must_be_ready(self):
        room = lobby("Cap", "Ann")
        with pytest.raises(NotAllReady):
            room.start_game("Cap")
        assert room.state.passenger_mapping is None

    def test_unknown_player_on_ready(self):
        room = lobby("Cap")
        with pytest.raises(PlayerNotFound):
            room.set_ready("Ghost", True)

    def test_mapping_is_injective_into_slots(self):
        room = started("Cap", "P1", "P2", "P3")
        mapping = room.state.passenger_mapping
        assert set(mapping) == {"P1", "P2", "P3"}
        assert len(set(mapping.values())) == 3
        assert set(mapping.values()) <= {1, 2, 3, 4}
        assert room.state.status == RoomStatus.PLAYING
        assert room.state.round == Round.QUESTION

    def test_second_start_does_not_reshuffle(self):
        room = started("Cap", "Ann", "Bob")
        mapping = dict(room.state.passenger_mapping)
        with pytest.raises(AlreadyInProgress):
            room.start_game("Cap")
        assert room.state.passenger_mapping == mapping

    def test_returns_public_system_announcement(self):
        room = lobby("Cap", "Ann", ready=True)
        message = room.start_game("Cap")
        assert message.sender == "System"
        assert message.isPrivate is False


# =====================================================================
# Messages and rounds
# =====================================================================

class TestAddMessage:
    def test_captain_question_is_public_and_scores(self):
        room = started("Cap", "Ann")
        message = room.add_message("Cap", "Who are you?", 1234)
        assert message.isPrivate is False
        assert message.timestamp == 1234
        assert room.state.scores["Cap"] == 10
        assert room.state.pending_messages["Cap"] == "Who are you?"

    def test_passenger_answer_is_private_and_scores_in_answer_round(self):
        room = started("Cap", "Ann")
        room.advance_round()
        message = room.add_message("Ann", "A human", None)
        assert message.isPrivate is True
        assert room.state.scores["Ann"] == 5

    def test_no_points_outside_scoring_round(self):
        room = started("Cap", "Ann")
        room.add_message("Ann", "early", None)
        room.advance_round()
        room.add_message("Cap", "late", None)
        assert room.state.scores == {"Cap": 0, "Ann": 0}

    def test_second_message_in_round_rejected(self):
        room = started("Cap", "Ann")
        room.add_message("Cap", "first", None)
        for text in ("second", "first", ""):
            with pytest.raises(AlreadySentThisRound):
                room.add_message("Cap", text, None)
        assert room.state.pending_messages["Cap"] == "first"
        assert room.state.scores["Cap"] == 10

    def test_unknown_sender(self):
        room = started("Cap", "Ann")
        with pytest.raises(PlayerNotFound):
            room.add_message("Ghost", "hi", None)

    def test_rejected_in_lobby_and_translation(self):
        room = lobby("Cap", "Ann")
        with pytest.raises(NotAcceptingMessages):
            room.add_message("Cap", "hi", None)

        room = started("Cap", "Ann")
        room.advance_round()
        room.advance_round()
        with pytest.raises(NotAcceptingMessages):
            room.add_message("Ann", "too late", None)
        assert room.state.players["Ann"].has_sent_message is False


class TestAdvanceRound:
    def test_full_cycle_resets_round_state(self):
        room = started("Cap", "Ann")
        room.add_message("Cap", "q", None)
        room.advance_round()
        room.add_message("Ann", "a", None)

        assert room.advance_round() is None
        assert room.state.round == Round.TRANSLATION
        assert room.advance_round() is None

        assert room.state.round == Round.QUESTION
        assert room.state.cycle_count == 1
        assert room.state.pending_messages == {}
        assert not any(p.has_sent_message for p in room.state.players.values())

    def test_completes_exactly_at_cycle_limit(self):
        room = started("Cap", "Ann")
        announcements = []
        for cycle in range(10):
            assert room.state.status == RoomStatus.PLAYING
            for _ in range(3):
                result = room.advance_round()
                if result is not None:
                    announcements.append((cycle, result))

        assert room.state.status == RoomStatus.COMPLETED
        assert room.state.cycle_count == 10
        assert len(announcements) == 1
        assert announcements[0][0] == 9
        assert announcements[0][1].text == GAME_OVER_TEXT
        # Further calls do nothing
        assert room.advance_round() is None
        assert room.state.cycle_count == 10

    def test_tick_never_goes_negative(self):
        room = started("Cap", "Ann")
        room.set_countdown(1)
        assert room.tick() == 0
        assert room.tick() == 0
        room.set_countdown(None)
        assert room.tick() is None


# =====================================================================
# Translation input, decision and reveal
# =====================================================================

class TestPlayerMessages:
    def test_slots_sentinels_and_question(self):
        room = started("Cap", "Ann", "Bob")
        room.state.passenger_mapping = {"Ann": 1, "Bob": 3}
        room.add_message("Cap", "Where were you?", None)
        room.add_message("Ann", "In the galley", None)

        data = room.get_player_messages()
        by_slot = {p["player"]: p for p in data["players"]}
        assert by_slot["Passenger 1"]["message"] == "In the galley"
        assert by_slot["Passenger 1"]["originalNickname"] == "Ann"
        assert by_slot["Passenger 3"]["message"] == NO_MESSAGE_SENT
        assert by_slot["Passenger 2"]["isRealPlayer"] is False
        assert by_slot["Passenger 2"]["message"] is None
        assert data["emptyPositions"] == [2, 4]
        assert data["captainQuestion"] == "Where were you?"
        assert "In the galley" in data["realPlayerMessages"]

    def test_default_question(self):
        room = started("Cap", "Ann")
        assert room.get_captain_question() == DEFAULT_QUESTION
        assert room.ensure_captain_question() is True
        assert room.state.pending_messages["Cap"] == DEFAULT_QUESTION
        assert room.ensure_captain_question() is False


class TestCaptainDecision:
    def test_scores_selected_and_saved_slots(self):
        room = started("Cap", "A1", "B1")
        room.state.passenger_mapping = {"A1": 1, "B1": 2}
        room.state.scores = {"Cap": 100, "A1": 0, "B1": 0}

        summary = room.process_captain_decision([True, False, True, False])

        assert room.state.scores["Cap"] == 120
        assert room.state.scores["B1"] == 20
        assert room.state.scores["A1"] == 0
        assert "Final Scores" in summary.text
        assert room.state.decision_made is True

    def test_short_selection_is_padded(self):
        room = started("Cap", "Ann")
        room.state.passenger_mapping = {"Ann": 4}
        room.process_captain_decision([True])
        assert room.state.scores["Cap"] == 50
        assert room.state.scores["Ann"] == 20

    def test_reveal_lists_every_slot(self):
        room = started("Cap", "Ann")
        room.state.passenger_mapping = {"Ann": 2}
        text = room.get_passenger_reveal().text
        assert "Passenger 2: <span style=\"color: #4ade80;\">Real Player (Ann)</span>" in text
        for slot in (1, 3, 4):
            assert f"Passenger {slot}: <span style=\"color: #f87171;\">AI-Generated</span>" in text
