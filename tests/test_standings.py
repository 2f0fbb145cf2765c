"""Tests for standings calculation."""

from datetime import datetime, timedelta

from tourney.models import MatchRecord, MatchStatus, Participant, SetScore, StandingsEntry
from tourney.standings import PointsScheme, build_entry, compute, participants_of, recompute_entries

BASE_TIME = datetime(2026, 3, 1, 12, 0)


def make_match(match_id, p1, p2, sets, winner_id, status=MatchStatus.COMPLETED, minutes=0):
    return MatchRecord(
        id=match_id,
        tournament_id="t1",
        category_id=None,
        participant1_id=p1,
        participant2_id=p2,
        status=status,
        winner_id=winner_id,
        sets=[SetScore(i, a, b) for i, (a, b) in enumerate(sets, start=1)],
        completed_at=BASE_TIME + timedelta(minutes=minutes),
    )


def test_compute_wins_losses_sets_and_games():
    """Test aggregation over sets and games for both slots."""
    matches = [
        make_match(1, "A", "B", [(11, 5), (11, 7), (9, 11), (11, 9)], "A"),
        make_match(2, "C", "A", [(11, 8), (11, 6), (11, 4)], "C", minutes=10),
    ]

    stats = compute("A", matches)

    assert stats.matches_played == 2
    assert stats.matches_won == 1
    assert stats.matches_lost == 1
    assert stats.sets_won == 3
    assert stats.sets_lost == 4
    assert stats.games_won == 42 + 18
    assert stats.games_lost == 32 + 33
    # No point detail: scores stand in for points
    assert stats.points_scored == stats.games_won
    assert stats.points_conceded == stats.games_lost
    assert stats.form == ["W", "L"]


def test_compute_uses_point_detail_when_present():
    match = MatchRecord(
        id=1,
        tournament_id="t1",
        category_id=None,
        participant1_id="A",
        participant2_id="B",
        status=MatchStatus.COMPLETED,
        winner_id="A",
        sets=[SetScore(1, 6, 4, 30, 22), SetScore(2, 7, 5, 35, 31)],
    )

    stats = compute("B", [match])

    assert stats.games_won == 9
    assert stats.games_lost == 13
    assert stats.points_scored == 53
    assert stats.points_conceded == 65


def test_only_completed_and_walkover_count():
    matches = [
        make_match(1, "A", "B", [], "A", status=MatchStatus.WALKOVER),
        make_match(2, "A", "C", [], None, status=MatchStatus.SCHEDULED),
        make_match(3, "A", "D", [], "A", status=MatchStatus.BYE),
        make_match(4, "A", "E", [], None, status=MatchStatus.CANCELLED),
    ]

    stats = compute("A", matches)

    assert stats.matches_played == 1
    assert stats.matches_won == 1
    assert stats.sets_won == 0


def test_draw_counts_as_draw():
    match = make_match(1, "A", "B", [(2, 1), (1, 2)], None)

    stats = compute("B", [match])

    assert stats.matches_drawn == 1
    assert stats.matches_won == 0
    assert stats.form == ["D"]


def test_form_keeps_last_five_in_completion_order():
    results = ["A", "B", "A", "A", "B", "B", "A"]
    matches = [
        make_match(i, "A", "B", [(1, 0)] if w == "A" else [(0, 1)], w, minutes=i)
        for i, w in enumerate(results, start=1)
    ]
    # Stored order must not matter
    matches.reverse()

    stats = compute("A", matches)

    assert stats.form == ["W", "W", "L", "L", "W"]


def test_points_scheme():
    stats = compute("A", [
        make_match(1, "A", "B", [(1, 0)], "A"),
        make_match(2, "A", "C", [(1, 1)], None, minutes=1),
        make_match(3, "A", "D", [(0, 1)], "D", minutes=2),
    ])

    assert PointsScheme().points_for(stats) == 4
    assert PointsScheme(win=2, draw=1, loss=1).points_for(stats) == 4
    assert PointsScheme(win=1, draw=0, loss=0).points_for(stats) == 1


def test_build_entry_keeps_adjustments():
    previous = StandingsEntry(
        tournament_id="t1",
        category_id=None,
        participant_id="A",
        participant_name="Old Name",
        bonus_points=2,
        penalty_points=1,
    )
    matches = [make_match(1, "A", "B", [(1, 0)], "A")]

    entry = build_entry("t1", None, "A", matches, participant=Participant("A", "Alpha"), previous=previous)

    assert entry.participant_name == "Alpha"
    assert entry.points == 3 + 2 - 1
    assert entry.bonus_points == 2
    assert entry.goal_difference == 1


def test_participants_of():
    matches = [make_match(1, "A", "B", [], "A"), make_match(2, "C", None, [], None)]
    assert participants_of(matches) == {"A", "B", "C"}


def test_full_recompute_drops_stale_entries():
    """Full mode covers registered and playing participants only."""
    participants = [Participant("A", "A"), Participant("B", "B")]
    matches = [make_match(1, "A", "C", [(1, 0)], "A")]
    stale = StandingsEntry(tournament_id="t1", category_id=None, participant_id="Z", participant_name="Z")

    entries, recomputed = recompute_entries("t1", None, matches, participants, {"Z": stale})

    assert recomputed == 3
    assert sorted(e.participant_id for e in entries) == ["A", "B", "C"]


def test_incremental_recompute_keeps_other_entries():
    participants = [Participant("A", "A"), Participant("B", "B"), Participant("C", "C")]
    untouched = StandingsEntry(
        tournament_id="t1", category_id=None, participant_id="C", participant_name="C", points=9
    )
    matches = [make_match(1, "A", "B", [(1, 0)], "A")]

    entries, recomputed = recompute_entries(
        "t1", None, matches, participants, {"C": untouched}, affected={"A", "B"}
    )

    by_id = {e.participant_id: e for e in entries}
    assert recomputed == 2
    assert by_id["C"] is untouched
    assert by_id["A"].points == 3
    assert by_id["B"].points == 0
