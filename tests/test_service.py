"""Tests for the tournament engine end to end on SQLite."""

import threading
from unittest.mock import MagicMock

import pytest

from conftest import make_participants
from tourney.errors import Conflict, InsufficientParticipants, NotFound, UnsupportedKind
from tourney.models import BracketKind, BracketStatus, MatchStatus, SetScore
from tourney.service import TournamentEngine
from tourney.validation import ValidationError


def win(p1_sets, p2_sets):
    """Sets where slot 1 wins p1_sets and slot 2 wins p2_sets (11-5 each)."""
    sets = [SetScore(i, 11, 5) for i in range(1, p1_sets + 1)]
    sets += [SetScore(len(sets) + i, 5, 11) for i in range(1, p2_sets + 1)]
    return sets


def match_for(response, node_id):
    return next(m for m in response.matches if m.bracket_node_id == node_id)


class TestGenerateBracket:
    """Bracket generation through the engine."""

    def test_four_participants(self, engine, register):
        register("t1", "open", "A", "B", "C", "D")

        response = engine.generate_bracket("t1", "open")

        assert response.bracket.status == BracketStatus.GENERATED
        assert response.bracket.total_rounds == 2
        assert [(m.participant1_id, m.participant2_id) for m in response.matches] == [("A", "B"), ("C", "D")]
        assert all(m.match_status == "scheduled" for m in response.matches)
        assert [p.seed for p in response.participants] == [1, 2, 3, 4]

    def test_second_generation_conflicts(self, engine, register):
        register("t1", "open", "A", "B")
        engine.generate_bracket("t1", "open")

        with pytest.raises(Conflict) as exc:
            engine.generate_bracket("t1", "open", kind=BracketKind.ROUND_ROBIN)

        assert exc.value.meta == "BRACKET_EXISTS"
        assert exc.value.status_code == 409

    def test_null_category_is_its_own_scope(self, engine, register):
        register("t1", None, "A", "B")
        register("t1", "open", "C", "D")

        engine.generate_bracket("t1")
        engine.generate_bracket("t1", "open")

        assert len(engine.list_brackets("t1")) == 2
        with pytest.raises(Conflict):
            engine.generate_bracket("t1", None)

    def test_insufficient_and_unsupported(self, engine, register):
        register("t1", "solo", "A")
        register("t1", "open", "A", "B", "C")

        with pytest.raises(InsufficientParticipants):
            engine.generate_bracket("t1", "solo")
        with pytest.raises(UnsupportedKind):
            engine.generate_bracket("t1", "open", kind=BracketKind.SWISS)

        # Nothing was stored
        with pytest.raises(NotFound):
            engine.get_bracket("t1", "open")

    def test_seed_order_controls_pairing(self, engine, register):
        register("t1", None, "A", "B", "C", "D")

        response = engine.generate_bracket("t1", seed_order=["D", "C"])

        assert [(m.participant1_id, m.participant2_id) for m in response.matches] == [("D", "C"), ("A", "B")]

    def test_custom_resolver(self, db):
        resolver = MagicMock()
        resolver.list.return_value = make_participants("X", "Y")
        engine = TournamentEngine(db, resolver=resolver)

        response = engine.generate_bracket("t9", "c1", kind=BracketKind.ROUND_ROBIN)

        resolver.list.assert_called_with("t9", "c1")
        assert len(response.matches) == 1

    def test_get_bracket_by_category(self, engine, register):
        register("t1", "open", "A", "B")
        engine.generate_bracket("t1", "open")

        response = engine.get_category_bracket("open")

        assert response.bracket.category_id == "open"
        with pytest.raises(NotFound) as exc:
            engine.get_category_bracket("missing")
        assert exc.value.meta == "BRACKET_NOT_FOUND"

    def test_reset_bracket(self, engine, register):
        register("t1", None, "A", "B", "C", "D")
        engine.generate_bracket("t1")

        assert engine.reset_bracket("t1") == 2

        with pytest.raises(NotFound):
            engine.get_bracket("t1")
        engine.generate_bracket("t1", kind=BracketKind.ROUND_ROBIN)


class TestRecordResult:
    """Results move the bracket and the standings."""

    def test_single_elimination_run(self, engine, register):
        register("t1", None, "A", "B", "C", "D")
        response = engine.generate_bracket("t1")

        engine.record_result(match_for(response, "round_1_match_1").id, win(3, 1))
        bracket = engine.get_bracket("t1")
        assert bracket.bracket.status == BracketStatus.IN_PROGRESS

        # The final is created as soon as the first winner arrives
        final = match_for(bracket, "round_2_match_1")
        assert (final.participant1_id, final.participant2_id) == ("A", None)

        engine.record_result(match_for(response, "round_1_match_2").id, win(0, 3))
        final = match_for(engine.get_bracket("t1"), "round_2_match_1")
        assert (final.participant1_id, final.participant2_id) == ("A", "D")

        engine.record_result(final.id, win(1, 3))
        done = engine.get_bracket("t1")
        assert done.bracket.status == BracketStatus.COMPLETED
        assert done.bracket.current_round == 2
        assert {p.id for p in done.participants if p.eliminated} == {"A", "B", "C"}

        standings = engine.get_standings("t1").entries
        assert standings[0].participant_id == "D"
        assert standings[0].points == 6
        assert {e.participant_id: e.elimination_round for e in standings}["A"] == "Final"

    def test_bye_advances_without_playing(self, engine, register):
        register("t1", None, "A", "B", "C")
        response = engine.generate_bracket("t1")

        bye = match_for(response, "round_1_match_1")
        assert bye.match_status == "bye"
        assert bye.winner_id == "A"

        with pytest.raises(Conflict) as exc:
            engine.record_result(bye.id, win(3, 0))
        assert exc.value.meta == "MATCH_NOT_PLAYABLE"

        final = match_for(response, "round_2_match_1")
        with pytest.raises(ValidationError):
            engine.record_result(final.id, win(3, 0))

    def test_elimination_result_cannot_be_recorded_twice(self, engine, register):
        register("t1", None, "A", "B")
        match = engine.generate_bracket("t1").matches[0]
        engine.record_result(match.id, win(3, 0))

        with pytest.raises(Conflict) as exc:
            engine.record_result(match.id, win(0, 3))
        assert exc.value.meta == "MATCH_ALREADY_COMPLETED"

    def test_draws_only_in_round_robin(self, engine, register):
        register("t1", "rr", "A", "B")
        register("t1", "ko", "C", "D")
        rr_match = engine.generate_bracket("t1", "rr", kind=BracketKind.ROUND_ROBIN).matches[0]
        ko_match = engine.generate_bracket("t1", "ko").matches[0]

        record = engine.record_result(rr_match.id, win(1, 1), is_draw=True)
        assert record.is_draw
        with pytest.raises(ValidationError):
            engine.record_result(ko_match.id, win(1, 1), is_draw=True)

        entries = engine.get_standings("t1", "rr").entries
        assert [e.points for e in entries] == [1, 1]
        assert engine.get_bracket("t1", "rr").bracket.status == BracketStatus.COMPLETED

    def test_walkover(self, engine, register):
        register("t1", None, "A", "B")
        match = engine.generate_bracket("t1").matches[0]

        record = engine.record_result(match.id, [], winner_id="B", is_walkover=True)

        assert record.status == MatchStatus.WALKOVER
        assert record.winner_id == "B"
        assert engine.get_bracket("t1").bracket.status == BracketStatus.COMPLETED

    def test_unknown_match(self, engine):
        with pytest.raises(NotFound) as exc:
            engine.record_result(999, win(3, 0))
        assert exc.value.meta == "MATCH_NOT_FOUND"

    def test_double_elimination_reset(self, engine, register):
        register("t1", None, "A", "B")
        response = engine.generate_bracket("t1", kind=BracketKind.DOUBLE_ELIMINATION)
        assert response.bracket.total_rounds == 3

        engine.record_result(response.matches[0].id, win(3, 0))
        grand_final = match_for(engine.get_bracket("t1"), "grand_final")
        assert (grand_final.participant1_id, grand_final.participant2_id) == ("A", "B")
        assert grand_final.round_type == "GF"

        engine.record_result(grand_final.id, win(0, 3))
        bracket = engine.get_bracket("t1")
        assert bracket.bracket.status == BracketStatus.IN_PROGRESS
        reset = match_for(bracket, "grand_final_reset")

        engine.record_result(reset.id, win(0, 3))
        bracket = engine.get_bracket("t1")
        assert bracket.bracket.status == BracketStatus.COMPLETED
        assert [p.id for p in bracket.participants if p.eliminated] == ["A"]


class TestStandings:
    """Standings recompute, read and adjustment."""

    def play_round_robin(self, engine, register):
        register("t1", None, "A", "B", "C")
        response = engine.generate_bracket("t1", kind=BracketKind.ROUND_ROBIN)
        by_pair = {(m.participant1_id, m.participant2_id): m.id for m in response.matches}
        engine.record_result(by_pair[("A", "B")], win(3, 0))
        engine.record_result(by_pair[("A", "C")], win(0, 3))
        engine.record_result(by_pair[("B", "C")], win(3, 2))
        return by_pair

    def test_equal_points_better_goal_difference_first(self, engine, register):
        self.play_round_robin(engine, register)

        entries = engine.get_standings("t1").entries

        # Everyone has 3 points and one win; C +12, A 0, B -12
        assert [e.points for e in entries] == [3, 3, 3]
        assert [e.participant_id for e in entries] == ["C", "A", "B"]
        assert [e.goal_difference for e in entries] == [12, 0, -12]
        assert [e.position for e in entries] == [1, 2, 3]

    def test_consecutive_full_recomputes_are_identical(self, engine, register):
        self.play_round_robin(engine, register)

        engine.update_standings("t1", recalculate_all=True)
        first = engine.get_standings("t1").entries
        engine.update_standings("t1", recalculate_all=True)
        second = engine.get_standings("t1").entries

        assert first == second

    def test_full_and_incremental_counts(self, engine, register):
        by_pair = self.play_round_robin(engine, register)

        assert engine.update_standings("t1").updated_records == 3
        update = engine.update_standings("t1", recalculate_all=False, match_ids=[by_pair[("A", "B")]])
        assert update.updated_records == 2

        with pytest.raises(NotFound):
            engine.update_standings("t1", recalculate_all=False, match_ids=[12345])

    def test_standings_include_registered_participants_without_matches(self, engine, register):
        register("t1", None, "A", "B", "C", "D")
        engine.generate_bracket("t1")

        update = engine.update_standings("t1")

        assert update.updated_records == 4
        entries = engine.get_standings("t1", None).entries
        assert all(e.matches_played == 0 for e in entries)

    def test_get_standings_requires_scope_and_data(self, engine):
        with pytest.raises(ValidationError):
            engine.get_standings()
        with pytest.raises(NotFound) as exc:
            engine.get_standings("nothing")
        assert exc.value.meta == "STANDINGS_NOT_FOUND"

    def test_standings_by_category_across_tournaments(self, engine, register):
        for tournament_id in ("t1", "t2"):
            register(tournament_id, "open", "A", "B")
            engine.generate_bracket(tournament_id, "open")
            engine.update_standings(tournament_id, "open")

        response = engine.get_standings(category_id="open")

        assert {e.tournament_id for e in response.entries} == {"t1", "t2"}
        assert response.last_updated is not None

    def test_adjust_standing_reranks(self, engine, register):
        self.play_round_robin(engine, register)

        entry = engine.adjust_standing("t1", None, "B", bonus_points=2)

        assert entry.points == 5
        assert entry.position == 1
        # Adjustments survive a full recompute
        engine.update_standings("t1")
        assert engine.get_standings("t1").entries[0].participant_id == "B"

        with pytest.raises(ValidationError):
            engine.adjust_standing("t1", None, "B", penalty_points=-1)
        with pytest.raises(NotFound):
            engine.adjust_standing("t1", None, "Z", bonus_points=1)


class TestBroadcastAndLocking:
    """Side-channel events and per-scope serialization."""

    def test_events_published(self, engine, register, broadcaster):
        register("t1", "open", "A", "B")
        match = engine.generate_bracket("t1", "open").matches[0]
        engine.record_result(match.id, win(3, 0))
        engine.update_standings("t1", "open")

        reasons = [e.reason for e in broadcaster.events]
        assert reasons == ["bracket_generated", "result_recorded", "standings_updated"]
        assert all(e.category_id == "open" for e in broadcaster.events)

    def test_broadcast_failure_does_not_fail_operation(self, db):
        failing = MagicMock()
        failing.publish.side_effect = ConnectionError("socket closed")
        engine = TournamentEngine(db, broadcaster=failing)
        engine.register_participants("t1", None, make_participants("A", "B"))

        response = engine.generate_bracket("t1")

        assert response.bracket.id is not None
        failing.publish.assert_called_once()

    def test_scope_locks(self, engine):
        assert engine.locks.for_scope("t1", None) is engine.locks.for_scope("t1", None)
        assert engine.locks.for_scope("t1", None) is not engine.locks.for_scope("t1", "open")

    def test_concurrent_generation_creates_one_bracket(self, engine, register):
        register("t1", None, "A", "B", "C", "D")
        outcomes = []

        def attempt():
            try:
                engine.generate_bracket("t1")
                outcomes.append("ok")
            except Conflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]
        assert len(engine.list_brackets("t1")) == 1

    def test_duplicate_registration(self, engine, register):
        register("t1", None, "A")
        with pytest.raises(Conflict) as exc:
            register("t1", None, "A")
        assert exc.value.meta == "PARTICIPANT_EXISTS"
