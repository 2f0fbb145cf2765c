"""Turn bracket nodes into schedulable matches."""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from tourney.bracket import node_round_type
from tourney.models import (
    BracketGraph,
    BracketNode,
    MatchRecord,
    MatchStatus,
    NewMatch,
)

DEFAULT_DELAY_HOURS = 24


def default_schedule_time(delay_hours: int = DEFAULT_DELAY_HOURS) -> datetime:
    """Default scheduled time for generated matches (now + delay)."""
    return datetime.utcnow() + timedelta(hours=delay_hours)


def build_new_match(
    node: BracketNode,
    graph: BracketGraph,
    tournament_id: str,
    category_id: Optional[str],
    scheduled_at: datetime,
) -> NewMatch:
    """Build the match for a node.

    BYE nodes become matches with status BYE and their winner preset.
    Round robin matches are staggered one day per schedule round.
    """
    if node.schedule_round:
        scheduled_at = scheduled_at + timedelta(days=node.schedule_round - 1)

    status = MatchStatus.SCHEDULED
    winner_id = None
    if node.is_bye and node.completed:
        status = MatchStatus.BYE
        winner_id = node.winner_id

    return NewMatch(
        tournament_id=tournament_id,
        category_id=category_id,
        participant1_id=node.participant1_id,
        participant2_id=node.participant2_id,
        round_number=node.round,
        match_number=node.position,
        round_type=node_round_type(graph, node),
        bracket_node_id=node.node_id,
        status=status,
        winner_id=winner_id,
        scheduled_at=scheduled_at,
        metadata={"bracket_node_id": node.node_id, "generated": True, "section": node.section.value},
    )


def materialize_node(
    node: BracketNode,
    graph: BracketGraph,
    tournament_id: str,
    category_id: Optional[str],
    match_repo,
    scheduled_at: Optional[datetime] = None,
) -> MatchRecord:
    """Create the match for a single node and link it back.

    Args:
        node: Node with at least one participant and no match yet
        graph: Graph the node belongs to
        tournament_id: Tournament ID
        category_id: Category ID (None for the tournament-wide scope)
        match_repo: MatchRepository bound to the current unit of work
        scheduled_at: Scheduled time (default: now + 24h)

    Returns:
        Created match record
    """
    if scheduled_at is None:
        scheduled_at = default_schedule_time()

    match_orm = match_repo.create(build_new_match(node, graph, tournament_id, category_id, scheduled_at))
    node.match_id = match_orm.id
    return match_orm.to_record()


def materialize(
    graph: BracketGraph,
    tournament_id: str,
    category_id: Optional[str],
    match_repo,
    scheduled_at: Optional[datetime] = None,
) -> list[MatchRecord]:
    """Create one match per node that has at least one real participant.

    Placeholder nodes (winner still to be decided) are skipped; their
    matches are created once a participant advances into them. Each created
    match stores its node id, and the node receives the match id.

    Args:
        graph: Generated graph, updated in place with match ids
        tournament_id: Tournament ID
        category_id: Category ID (None for the tournament-wide scope)
        match_repo: MatchRepository bound to the current unit of work
        scheduled_at: Scheduled time (default: now + 24h)

    Returns:
        List of created match records in graph order
    """
    if scheduled_at is None:
        scheduled_at = default_schedule_time()

    created = []
    for node in graph.all_nodes():
        if node.match_id is not None or not node.has_participant:
            continue
        created.append(materialize_node(node, graph, tournament_id, category_id, match_repo, scheduled_at))

    logger.debug("Materialized {} matches for tournament {} category {}", len(created), tournament_id, category_id)
    return created
