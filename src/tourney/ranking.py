"""Ranking sorter with the tie-break chain."""

from typing import Optional

from tourney.bracket import elimination_rounds
from tourney.models import BracketGraph, StandingsEntry


def sort_key(entry: StandingsEntry):
    """Tie-break chain, best first.

    1. points (desc)
    2. matches won (desc)
    3. goal difference (desc)
    4. games won - games lost (desc)
    5. sets won - sets lost (desc)
    6. participant name (asc)
    7. participant id (asc), separates identical names
    """
    return (
        -entry.points,
        -entry.matches_won,
        -entry.goal_difference,
        -entry.game_difference,
        -entry.set_difference,
        entry.participant_name,
        entry.participant_id,
    )


def rank(entries: list[StandingsEntry]) -> list[StandingsEntry]:
    """Order entries by the tie-break chain and assign positions 1..n.

    Ranking an already ranked list gives the same order.

    Args:
        entries: Standings entries of one scope

    Returns:
        Sorted list of the same entries with position set
    """
    ranked = sorted(entries, key=sort_key)
    for position, entry in enumerate(ranked, start=1):
        entry.position = position
    return ranked


def mark_eliminations(entries: list[StandingsEntry], graph: Optional[BracketGraph]) -> None:
    """Set is_eliminated and elimination_round from the bracket graph.

    Entries of participants still alive are cleared. Without a graph, or for
    round robin, nobody is eliminated.
    """
    eliminated = elimination_rounds(graph) if graph is not None else {}
    for entry in entries:
        label = eliminated.get(entry.participant_id)
        entry.is_eliminated = label is not None
        entry.elimination_round = label
