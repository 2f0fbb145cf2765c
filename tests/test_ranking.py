"""Tests for ranking and the tie-break chain."""

import random

from conftest import make_participants
from tourney.bracket import generate, record_result
from tourney.models import BracketKind, StandingsEntry
from tourney.ranking import mark_eliminations, rank


def entry(participant_id, name=None, **stats):
    return StandingsEntry(
        tournament_id="t1",
        category_id=None,
        participant_id=participant_id,
        participant_name=name or participant_id,
        **stats,
    )


def order(entries):
    return [e.participant_id for e in entries]


def test_points_first():
    ranked = rank([entry("A", points=3), entry("B", points=6), entry("C", points=0)])

    assert order(ranked) == ["B", "A", "C"]
    assert [e.position for e in ranked] == [1, 2, 3]


def test_equal_points_better_goal_difference_ranks_higher():
    a = entry("A", points=6, matches_won=2, points_scored=50, points_conceded=45)
    b = entry("B", points=6, matches_won=2, points_scored=60, points_conceded=40)

    ranked = rank([a, b])

    assert order(ranked) == ["B", "A"]


def test_matches_won_before_goal_difference():
    a = entry("A", points=6, matches_won=2, points_scored=10, points_conceded=30)
    b = entry("B", points=6, matches_won=1, points_scored=90, points_conceded=10)

    assert order(rank([b, a])) == ["A", "B"]


def test_games_then_sets_difference():
    """Games difference decides before sets difference."""
    a = entry("A", points=3, games_won=20, games_lost=10, sets_won=1, sets_lost=3)
    b = entry("B", points=3, games_won=15, games_lost=10, sets_won=5, sets_lost=0)
    c = entry("C", points=3, games_won=15, games_lost=10, sets_won=3, sets_lost=0)

    assert order(rank([c, b, a])) == ["A", "B", "C"]


def test_name_then_id_breaks_remaining_ties():
    ranked = rank([entry("z2", "Same"), entry("z1", "Same"), entry("a9", "Other")])

    assert order(ranked) == ["a9", "z1", "z2"]


def test_rank_is_idempotent():
    rng = random.Random(3)
    entries = [
        entry(f"P{i}", points=rng.randint(0, 3), matches_won=rng.randint(0, 2), sets_won=rng.randint(0, 4))
        for i in range(20)
    ]

    first = [(e.participant_id, e.position) for e in rank(entries)]
    rng.shuffle(entries)
    second = [(e.participant_id, e.position) for e in rank(rank(entries))]

    assert first == second


def test_mark_eliminations_from_graph():
    graph, _ = generate(BracketKind.SINGLE_ELIMINATION, make_participants("A", "B", "C", "D"))
    record_result(graph, "round_1_match_1", "A")
    entries = [entry("A"), entry("B"), entry("C", is_eliminated=True, elimination_round="stale")]

    mark_eliminations(entries, graph)

    by_id = {e.participant_id: e for e in entries}
    assert not by_id["A"].is_eliminated
    assert by_id["B"].is_eliminated and by_id["B"].elimination_round == "Semifinal"
    assert not by_id["C"].is_eliminated and by_id["C"].elimination_round is None


def test_round_robin_never_eliminates():
    graph, _ = generate(BracketKind.ROUND_ROBIN, make_participants("A", "B"))
    record_result(graph, "rr_match_1", "A")
    entries = [entry("A"), entry("B")]

    mark_eliminations(entries, graph)

    assert not any(e.is_eliminated for e in entries)
