"""Standings calculator.

Aggregates per-participant statistics from match results and turns them
into standings entries with tournament points.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from tourney.models import MatchRecord, Participant, ParticipantStats, StandingsEntry

FORM_LENGTH = 5


@dataclass(frozen=True)
class PointsScheme:
    """Tournament points per match outcome (default 3/1/0)."""

    win: int = 3
    draw: int = 1
    loss: int = 0

    def points_for(self, stats: ParticipantStats) -> int:
        return stats.matches_won * self.win + stats.matches_drawn * self.draw + stats.matches_lost * self.loss


def _match_order(match: MatchRecord):
    return (match.completed_at or datetime.min, match.id)


def compute(participant_id: str, matches: Iterable[MatchRecord]) -> ParticipantStats:
    """Compute statistics for one participant.

    Only COMPLETED and WALKOVER matches count. Per match:
    - win, loss or draw (a counted match with no winner is a draw)
    - sets won/lost: sub-results won by each side
    - games won/lost: own and opponent scores summed over the sub-results
    - points scored/conceded: the point detail of each sub-result when
      present, otherwise its score

    Args:
        participant_id: Participant to compute
        matches: Matches of the scope (others are ignored)

    Returns:
        ParticipantStats, form holding the last results oldest first

    Examples:
        >>> compute("A", []).matches_played
        0
    """
    stats = ParticipantStats(participant_id=participant_id)
    form = []

    played = sorted(
        (m for m in matches if m.is_counted and m.involves(participant_id)),
        key=_match_order,
    )
    for match in played:
        own_slot = 1 if match.participant1_id == participant_id else 2

        stats.matches_played += 1
        if match.winner_id is None:
            stats.matches_drawn += 1
            form.append("D")
        elif match.winner_id == participant_id:
            stats.matches_won += 1
            form.append("W")
        else:
            stats.matches_lost += 1
            form.append("L")

        for set_score in match.sets:
            if own_slot == 1:
                own, other = set_score.participant1_score, set_score.participant2_score
            else:
                own, other = set_score.participant2_score, set_score.participant1_score

            if set_score.winner_slot == own_slot:
                stats.sets_won += 1
            elif set_score.winner_slot is not None:
                stats.sets_lost += 1

            stats.games_won += own
            stats.games_lost += other

            if set_score.has_point_detail:
                if own_slot == 1:
                    own, other = set_score.participant1_points, set_score.participant2_points
                else:
                    own, other = set_score.participant2_points, set_score.participant1_points
            stats.points_scored += own
            stats.points_conceded += other

    stats.form = form[-FORM_LENGTH:]
    return stats


def participants_of(matches: Iterable[MatchRecord]) -> set[str]:
    """IDs of every participant appearing in the matches."""
    ids = set()
    for match in matches:
        for participant_id in (match.participant1_id, match.participant2_id):
            if participant_id is not None:
                ids.add(participant_id)
    return ids


def build_entry(
    tournament_id: str,
    category_id: Optional[str],
    participant_id: str,
    matches: Sequence[MatchRecord],
    participant: Optional[Participant] = None,
    previous: Optional[StandingsEntry] = None,
    scheme: PointsScheme = PointsScheme(),
) -> StandingsEntry:
    """Recompute one standings entry.

    Bonus and penalty points are administrative corrections and are carried
    over from the previous entry.

    Args:
        tournament_id: Tournament ID
        category_id: Category ID (None for the tournament-wide scope)
        participant_id: Participant to compute
        matches: Matches of the scope
        participant: Registration snapshot for name and type
        previous: Stored entry, if any
        scheme: Points per outcome

    Returns:
        Fresh StandingsEntry without a position
    """
    if participant is not None:
        name, participant_type = participant.display_name, participant.participant_type
    elif previous is not None:
        name, participant_type = previous.participant_name, previous.participant_type
    else:
        name, participant_type = participant_id, "team"

    entry = StandingsEntry(
        tournament_id=tournament_id,
        category_id=category_id,
        participant_id=participant_id,
        participant_name=name,
        participant_type=participant_type,
    )
    if previous is not None:
        entry.bonus_points = previous.bonus_points
        entry.penalty_points = previous.penalty_points

    stats = compute(participant_id, matches)
    entry.apply_stats(stats)
    entry.points = scheme.points_for(stats) + entry.bonus_points - entry.penalty_points
    return entry


def recompute_entries(
    tournament_id: str,
    category_id: Optional[str],
    matches: Sequence[MatchRecord],
    participants: Sequence[Participant],
    previous: dict[str, StandingsEntry],
    affected: Optional[set[str]] = None,
    scheme: PointsScheme = PointsScheme(),
) -> tuple[list[StandingsEntry], int]:
    """Recompute standings for a scope, fully or incrementally.

    Full recompute (affected None) rebuilds every registered participant and
    everyone appearing in the matches; stored entries outside that set are
    dropped. Incremental recompute rebuilds only the affected participants
    and keeps the other stored entries as they are. Positions are not
    assigned here; the caller re-ranks the whole scope.

    Returns:
        Tuple of (all entries of the scope, number of recomputed entries)
    """
    by_id = {p.id: p for p in participants}
    if affected is None:
        targets = set(by_id) | participants_of(m for m in matches if m.is_counted)
        entries: dict[str, StandingsEntry] = {}
    else:
        targets = set(affected)
        entries = dict(previous)

    for participant_id in sorted(targets):
        entries[participant_id] = build_entry(
            tournament_id,
            category_id,
            participant_id,
            matches,
            participant=by_id.get(participant_id),
            previous=previous.get(participant_id),
            scheme=scheme,
        )

    return list(entries.values()), len(targets)
