"""Bracket generator.

Builds single elimination, double elimination and round robin graphs from
an ordered list of participants, and moves participants through a graph as
results come in.
"""

import math
from typing import Any, Optional, Sequence

from loguru import logger

from tourney.errors import Inconsistent, InsufficientParticipants, UnsupportedKind
from tourney.models import (
    BracketGraph,
    BracketKind,
    BracketNode,
    DoubleEliminationGraph,
    Participant,
    RoundRobinGraph,
    RoundType,
    Section,
    SingleEliminationGraph,
)

SE_NODE_ID = "round_{round}_match_{position}"
WB_NODE_ID = "wb_round_{round}_match_{position}"
LB_NODE_ID = "lb_round_{round}_match_{position}"
RR_NODE_ID = "rr_match_{number}"
GRAND_FINAL_ID = "grand_final"
BRACKET_RESET_ID = "grand_final_reset"

ROUND_TYPES_BY_SIZE = {
    2: RoundType.FINAL,
    4: RoundType.SEMIFINAL,
    8: RoundType.QUARTERFINAL,
    16: RoundType.ROUND_OF_16,
    32: RoundType.ROUND_OF_32,
    64: RoundType.ROUND_OF_64,
    128: RoundType.ROUND_OF_128,
}


def next_power_of_2(n: int) -> int:
    """Return the next power of 2 >= n.

    Examples:
        >>> next_power_of_2(5)
        8
        >>> next_power_of_2(8)
        8
        >>> next_power_of_2(15)
        16
    """
    if n <= 0:
        return 1
    return 2 ** math.ceil(math.log2(n))


def rounds_for(participant_count: int) -> int:
    """Number of elimination rounds for a field, ceil(log2(n)).

    Examples:
        >>> rounds_for(2)
        1
        >>> rounds_for(5)
        3
    """
    if participant_count < 2:
        return 0
    return int(math.log2(next_power_of_2(participant_count)))


def get_round_type_for_size(bracket_size: int) -> RoundType:
    """Get the RoundType for a round that starts with bracket_size slots.

    Args:
        bracket_size: Power of 2 (2, 4, 8, etc.)

    Returns:
        RoundType for that round, KNOCKOUT for rounds larger than 128
    """
    return ROUND_TYPES_BY_SIZE.get(bracket_size, RoundType.KNOCKOUT)


def round_label(round_number: int, total_rounds: int) -> str:
    """Human-readable name of an elimination round.

    Examples:
        >>> round_label(3, 3)
        'Final'
        >>> round_label(1, 4)
        'Round of 16'
    """
    remaining = 2 ** (total_rounds - round_number + 1)
    if remaining == 2:
        return "Final"
    elif remaining == 4:
        return "Semifinal"
    elif remaining == 8:
        return "Quarterfinal"
    return f"Round of {remaining}"


def losers_round_label(round_number: int, total_rounds: int) -> str:
    """Name of a losers bracket round.

    Examples:
        >>> losers_round_label(4, 4)
        'Losers Final'
        >>> losers_round_label(1, 4)
        'Losers Round 1'
    """
    if round_number == total_rounds:
        return "Losers Final"
    elif round_number == total_rounds - 1:
        return "Losers Semifinal"
    return f"Losers Round {round_number}"


def node_label(graph: BracketGraph, node: BracketNode) -> str:
    """Round name of a node, used for elimination_round."""
    if node.section == Section.GRAND_FINAL:
        return "Grand Final Reset" if node.node_id == BRACKET_RESET_ID else "Grand Final"
    if node.section == Section.LOSERS:
        return losers_round_label(node.round, graph.losers_rounds)
    if node.section == Section.WINNERS:
        return "Winners " + round_label(node.round, graph.winners_rounds)
    if isinstance(graph, RoundRobinGraph):
        return "Round Robin"
    return round_label(node.round, max(n.round for n in graph.all_nodes()))


def node_round_type(graph: BracketGraph, node: BracketNode) -> RoundType:
    """RoundType stored on the match created for a node."""
    if isinstance(graph, RoundRobinGraph):
        return RoundType.ROUND_ROBIN
    if node.section == Section.LOSERS:
        return RoundType.LOSERS
    if node.section == Section.GRAND_FINAL:
        if node.node_id == BRACKET_RESET_ID:
            return RoundType.GRAND_FINAL_RESET
        return RoundType.GRAND_FINAL
    if isinstance(graph, DoubleEliminationGraph):
        total_rounds = graph.winners_rounds
    else:
        total_rounds = max(n.round for n in graph.all_nodes())
    return get_round_type_for_size(2 ** (total_rounds - node.round + 1))


def get_bye_positions(num_participants: int, bracket_size: int) -> set[int]:
    """Get the BYE slot positions (1-based) for a bracket.

    BYEs only go to even slots, so in the pairs (1,2), (3,4), ... a BYE
    always faces a real participant and two BYEs never meet. Even slots are
    taken alternately from the top and the bottom of the bracket so BYEs
    spread over both halves.

    Examples:
        >>> sorted(get_bye_positions(3, 4))
        [2]
        >>> sorted(get_bye_positions(5, 8))
        [2, 4, 8]
    """
    num_byes = bracket_size - num_participants
    if num_byes <= 0:
        return set()

    all_even = list(range(2, bracket_size + 1, 2))
    # Interleave from ends
    bye_order = []
    left, right = 0, len(all_even) - 1
    while left <= right:
        if left == right:
            bye_order.append(all_even[left])
        else:
            bye_order.append(all_even[left])
            bye_order.append(all_even[right])
        left += 1
        right -= 1
    return set(bye_order[:num_byes])


def seed_participants(
    participants: Sequence[Participant],
    seed_order: Optional[Sequence[str]] = None,
) -> list[Participant]:
    """Order participants for round-1 pairing.

    With a seed_order, participants follow it and anyone missing from it is
    appended in original order; unknown or repeated ids in seed_order are
    ignored. Without one, participants carrying a seed come first by seed,
    the rest keep their original order.

    Args:
        participants: Registered participants
        seed_order: Optional list of participant ids, best first

    Returns:
        Seeded list of participants
    """
    if seed_order is None:
        return sorted(participants, key=lambda p: (p.seed is None, p.seed or 0))

    by_id = {p.id: p for p in participants}
    ordered: list[Participant] = []
    seen: set[str] = set()
    for participant_id in seed_order:
        if participant_id in by_id and participant_id not in seen:
            ordered.append(by_id[participant_id])
            seen.add(participant_id)
    ordered.extend(p for p in participants if p.id not in seen)
    return ordered


# ============================================================================
# Generators
# ============================================================================


def generate(
    kind: BracketKind,
    participants: Sequence[Participant],
    seed_order: Optional[Sequence[str]] = None,
    settings: Optional[dict[str, Any]] = None,
) -> tuple[BracketGraph, int]:
    """Generate the bracket graph for a list of participants.

    Generation is deterministic: the same kind, participants and seed order
    always give the same node ids and pairings. settings are stored with the
    bracket by the caller and do not change the graph.

    Args:
        kind: Bracket format
        participants: Registered participants (at least 2)
        seed_order: Optional participant ids, best first
        settings: Free-form bracket settings

    Returns:
        Tuple of (graph, total_rounds)

    Raises:
        InsufficientParticipants: If fewer than 2 participants
        UnsupportedKind: For Swiss and group stage brackets
    """
    kind = BracketKind(kind)
    if len(participants) < 2:
        raise InsufficientParticipants(
            f"At least 2 participants are required to generate a bracket, got {len(participants)}"
        )

    seeded = seed_participants(participants, seed_order)

    if kind == BracketKind.SINGLE_ELIMINATION:
        graph = build_single_elimination(seeded)
        total_rounds = rounds_for(len(seeded))
    elif kind == BracketKind.ROUND_ROBIN:
        graph = build_round_robin(seeded)
        total_rounds = len(seeded) - 1 if len(seeded) % 2 == 0 else len(seeded)
    elif kind == BracketKind.DOUBLE_ELIMINATION:
        graph = build_double_elimination(seeded)
        total_rounds = rounds_for(len(seeded)) + 2
    else:
        raise UnsupportedKind(f"Bracket kind '{kind.value}' cannot be generated")

    logger.debug(
        "Generated {} graph: {} participants, {} nodes, {} rounds",
        kind.value,
        len(seeded),
        len(graph.all_nodes()),
        total_rounds,
    )
    return graph, total_rounds


def _build_knockout(
    seeded: Sequence[Participant], node_id_format: str, section: Section
) -> list[list[BracketNode]]:
    """Build an elimination tree, one list of nodes per round.

    Round 1 pairs consecutive slots of the padded slot list. A node facing a
    BYE is decided at once and its participant is already placed in the
    next round.
    """
    bracket_size = next_power_of_2(len(seeded))
    total_rounds = rounds_for(len(seeded))
    bye_positions = get_bye_positions(len(seeded), bracket_size)

    remaining = iter(seeded)
    slots: list[Optional[Participant]] = [
        None if slot_number in bye_positions else next(remaining)
        for slot_number in range(1, bracket_size + 1)
    ]

    rounds: list[list[BracketNode]] = []
    for round_number in range(1, total_rounds + 1):
        nodes = []
        for position in range(1, (bracket_size >> round_number) + 1):
            node = BracketNode(
                node_id=node_id_format.format(round=round_number, position=position),
                round=round_number,
                position=position,
                section=section,
            )
            if round_number < total_rounds:
                node.next_node_id = node_id_format.format(
                    round=round_number + 1, position=(position + 1) // 2
                )
                node.next_slot = 1 if position % 2 == 1 else 2
            nodes.append(node)
        rounds.append(nodes)

    for node in rounds[0]:
        first = slots[2 * node.position - 2]
        second = slots[2 * node.position - 1]
        if first is not None:
            node.place(1, first.id, first.display_name)
        if second is not None:
            node.place(2, second.id, second.display_name)

        if first is None or second is None:
            sole = first or second
            node.is_bye = True
            node.winner_id = sole.id
            node.completed = True
            next_node = rounds[1][(node.position + 1) // 2 - 1]
            next_node.place(node.next_slot, sole.id, sole.display_name)

    return rounds


def build_single_elimination(seeded: Sequence[Participant]) -> SingleEliminationGraph:
    """Build a single elimination tree with node ids round_{r}_match_{p}."""
    rounds = _build_knockout(seeded, SE_NODE_ID, Section.MAIN)
    return SingleEliminationGraph(nodes=[node for nodes in rounds for node in nodes])


def circle_schedule(participant_ids: Sequence[str]) -> dict[frozenset, int]:
    """Round of every pairing under the circle method.

    The first entry stays fixed while the others rotate. An odd field gets a
    resting slot, so n participants need n-1 rounds when n is even, else n.

    Returns:
        Mapping of frozenset({id_a, id_b}) to round number (1-based)
    """
    ids: list[Optional[str]] = list(participant_ids)
    if len(ids) % 2 == 1:
        ids.append(None)
    n = len(ids)

    schedule: dict[frozenset, int] = {}
    for round_number in range(1, n):
        for i in range(n // 2):
            a, b = ids[i], ids[n - 1 - i]
            if a is not None and b is not None:
                schedule[frozenset((a, b))] = round_number
        ids = [ids[0], ids[-1], *ids[1:-1]]
    return schedule


def build_round_robin(seeded: Sequence[Participant]) -> RoundRobinGraph:
    """One node per unordered pair, all in round 1, ids rr_match_{k}.

    Pairs are listed in seeded order: (1,2), (1,3), ..., (2,3), ...
    """
    schedule = circle_schedule([p.id for p in seeded])
    nodes = []
    number = 0
    for i, first in enumerate(seeded):
        for second in seeded[i + 1:]:
            number += 1
            node = BracketNode(
                node_id=RR_NODE_ID.format(number=number),
                round=1,
                position=number,
                schedule_round=schedule[frozenset((first.id, second.id))],
            )
            node.place(1, first.id, first.display_name)
            node.place(2, second.id, second.display_name)
            nodes.append(node)
    return RoundRobinGraph(nodes=nodes)


def _supplies(feeder: Optional[BracketNode]) -> bool:
    """Check if a feeder will ever send a participant onwards.

    A winners-bracket node sends its loser, which a BYE node never has. A
    losers-bracket node always sends its winner.
    """
    if feeder is None:
        return False
    if feeder.section == Section.WINNERS:
        return not feeder.is_bye
    return True


def _build_losers(winners_rounds: list[list[BracketNode]]) -> list[BracketNode]:
    """Build the losers bracket fed by the drops of the winners bracket.

    For k winners rounds there are 2*(k-1) losers rounds:
    - round 1 pairs the losers of winners round 1 (nodes 2p-1 and 2p)
    - even round 2j: winner of losers node p (slot 1) meets the loser of
      winners round j+1 node p (slot 2)
    - odd round 2j+1: winners of losers nodes 2p-1 and 2p meet

    A losers node that would never receive anyone is not created; one that
    can only receive a single participant is a BYE node.
    """
    k = len(winners_rounds)
    if k < 2:
        return []

    nodes: list[BracketNode] = []
    previous: list[Optional[BracketNode]] = []
    for lb_round in range(1, 2 * (k - 1) + 1):
        if lb_round == 1:
            drops = winners_rounds[0]
            feeds = [(drops[2 * i], drops[2 * i + 1]) for i in range(len(drops) // 2)]
        elif lb_round % 2 == 0:
            feeds = list(zip(previous, winners_rounds[lb_round // 2]))
        else:
            feeds = [(previous[2 * i], previous[2 * i + 1]) for i in range(len(previous) // 2)]

        current: list[Optional[BracketNode]] = []
        for position, (feed1, feed2) in enumerate(feeds, start=1):
            supplied = _supplies(feed1) + _supplies(feed2)
            if supplied == 0:
                current.append(None)
                continue

            node = BracketNode(
                node_id=LB_NODE_ID.format(round=lb_round, position=position),
                round=lb_round,
                position=position,
                section=Section.LOSERS,
                is_bye=supplied == 1,
            )
            for slot, feeder in ((1, feed1), (2, feed2)):
                if not _supplies(feeder):
                    continue
                if feeder.section == Section.WINNERS:
                    feeder.loser_next_node_id = node.node_id
                    feeder.loser_next_slot = slot
                else:
                    feeder.next_node_id = node.node_id
                    feeder.next_slot = slot
            current.append(node)
            nodes.append(node)
        previous = current

    return nodes


def build_double_elimination(seeded: Sequence[Participant]) -> DoubleEliminationGraph:
    """Build winners bracket, losers bracket, grand final and bracket reset.

    The winners champion takes grand final slot 1 and the losers champion
    slot 2. With two participants there is no losers bracket and the loser
    of the only winners match goes straight to grand final slot 2.
    """
    winners_rounds = _build_knockout(seeded, WB_NODE_ID, Section.WINNERS)
    k = len(winners_rounds)

    grand_final = BracketNode(
        node_id=GRAND_FINAL_ID, round=k + 1, position=1, section=Section.GRAND_FINAL
    )
    bracket_reset = BracketNode(
        node_id=BRACKET_RESET_ID, round=k + 2, position=1, section=Section.GRAND_FINAL
    )

    winners_final = winners_rounds[-1][0]
    winners_final.next_node_id = GRAND_FINAL_ID
    winners_final.next_slot = 1

    losers = _build_losers(winners_rounds)
    if losers:
        losers_final = losers[-1]
        losers_final.next_node_id = GRAND_FINAL_ID
        losers_final.next_slot = 2
    else:
        winners_final.loser_next_node_id = GRAND_FINAL_ID
        winners_final.loser_next_slot = 2

    return DoubleEliminationGraph(
        winners=[node for nodes in winners_rounds for node in nodes],
        losers=losers,
        grand_final=grand_final,
        bracket_reset=bracket_reset,
    )


# ============================================================================
# Progress
# ============================================================================


def record_result(graph: BracketGraph, node_id: str, winner_id: Optional[str]) -> list[BracketNode]:
    """Decide a node and move its participants along the graph.

    The winner goes to next_node_id, the loser to loser_next_node_id. A BYE
    node that receives its sole participant is decided immediately. When the
    losers champion wins the grand final, both finalists enter the bracket
    reset. winner_id None records a draw, which only round robin allows.

    Args:
        graph: Bracket graph, updated in place
        node_id: Node the result belongs to
        winner_id: Winning participant, None for a draw

    Returns:
        Every node whose state changed, the decided node first

    Raises:
        Inconsistent: If the node or a linked node does not exist, the
            winner is not in the node, or a draw is recorded in elimination
    """
    node = graph.get_node(node_id)
    if node is None:
        raise Inconsistent(f"Bracket node '{node_id}' not found")

    if winner_id is None:
        if not isinstance(graph, RoundRobinGraph):
            raise Inconsistent(f"Bracket node '{node_id}' cannot end in a draw")
    elif winner_id not in node.participant_ids:
        raise Inconsistent(f"Participant '{winner_id}' is not playing in bracket node '{node_id}'")

    node.winner_id = winner_id
    node.completed = True
    touched = [node]
    if winner_id is not None:
        _move_on(graph, node, touched)
    return touched


def _move_on(graph: BracketGraph, node: BracketNode, touched: list[BracketNode]) -> None:
    winner_id = node.winner_id
    loser_id = node.loser_id

    if node.node_id == GRAND_FINAL_ID and isinstance(graph, DoubleEliminationGraph):
        if winner_id == node.participant2_id:
            reset = graph.bracket_reset
            reset.place(1, node.participant1_id, node.participant1_name)
            reset.place(2, node.participant2_id, node.participant2_name)
            touched.append(reset)
            logger.debug("Losers champion {} won the grand final, bracket reset activated", winner_id)
        return

    if node.next_node_id:
        _enter(graph, node.next_node_id, node.next_slot, winner_id, node.name_of(winner_id), touched)
    if loser_id and node.loser_next_node_id:
        _enter(graph, node.loser_next_node_id, node.loser_next_slot, loser_id, node.name_of(loser_id), touched)


def _enter(
    graph: BracketGraph,
    node_id: str,
    slot: int,
    participant_id: str,
    name: Optional[str],
    touched: list[BracketNode],
) -> None:
    target = graph.get_node(node_id)
    if target is None:
        raise Inconsistent(f"Bracket node '{node_id}' not found")

    target.place(slot, participant_id, name)
    touched.append(target)
    logger.debug("{} enters {} (slot {})", participant_id, node_id, slot)

    if target.is_bye and not target.completed:
        target.winner_id = participant_id
        target.completed = True
        _move_on(graph, target, touched)


def is_complete(graph: BracketGraph) -> bool:
    """Check if the final node of the bracket has been decided."""
    if isinstance(graph, RoundRobinGraph):
        return all(node.completed for node in graph.nodes)
    if isinstance(graph, DoubleEliminationGraph):
        final = graph.grand_final
        if not final.completed:
            return False
        return final.winner_id == final.participant1_id or graph.bracket_reset.completed
    return graph.final.completed


def current_round(graph: BracketGraph, total_rounds: int) -> int:
    """Lowest round that still has an undecided node.

    Round robin uses the circle-method schedule round. Double elimination
    follows the winners bracket, then the grand final and its reset.
    """
    if is_complete(graph):
        return total_rounds

    if isinstance(graph, RoundRobinGraph):
        return min(n.schedule_round or 1 for n in graph.nodes if not n.completed)

    if isinstance(graph, DoubleEliminationGraph):
        pending = [n.round for n in graph.winners if not n.completed]
        if pending:
            return min(pending)
        if not graph.grand_final.completed:
            return graph.grand_final.round
        return graph.bracket_reset.round

    return min(n.round for n in graph.nodes if not n.completed)


def elimination_rounds(graph: BracketGraph) -> dict[str, str]:
    """Participants knocked out so far, mapped to the round they lost in.

    A participant is out after losing a node with no loser path. In the
    grand final only the losers champion can be knocked out; if they win,
    the bracket reset decides. Round robin never eliminates anyone.
    """
    if isinstance(graph, RoundRobinGraph):
        return {}

    eliminated = {}
    for node in graph.all_nodes():
        loser_id = node.loser_id
        if not node.completed or loser_id is None or node.loser_next_node_id:
            continue
        if node.node_id == GRAND_FINAL_ID and node.winner_id == node.participant2_id:
            continue
        eliminated[loser_id] = node_label(graph, node)
    return eliminated


def furthest_round(graph: BracketGraph, participant_id: str) -> int:
    """Highest round reached outside the losers bracket."""
    rounds = [
        node.round
        for node in graph.all_nodes()
        if node.section != Section.LOSERS and participant_id in node.participant_ids
    ]
    return max(rounds, default=1)
