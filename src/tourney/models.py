"""Data models for tourney.

Domain model hierarchy:
- A scope is a (tournament, category) pair; category may be empty
- A scope has at most one Bracket
- Bracket holds a graph of BracketNodes (one potential match each)
- Match records the result of a node as a list of SetScores
- StandingsEntry aggregates a participant's results within the scope
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class BracketKind(str, Enum):
    """Bracket formats."""

    SINGLE_ELIMINATION = "single_elimination"
    DOUBLE_ELIMINATION = "double_elimination"
    ROUND_ROBIN = "round_robin"
    SWISS = "swiss"  # Declared, not generable
    GROUP_STAGE = "group_stage"  # Declared, not generable

    @property
    def is_elimination(self) -> bool:
        """Check if losing can knock a participant out."""
        return self in (BracketKind.SINGLE_ELIMINATION, BracketKind.DOUBLE_ELIMINATION)


class BracketStatus(str, Enum):
    """Bracket lifecycle."""

    NOT_GENERATED = "not_generated"
    GENERATED = "generated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MatchStatus(str, Enum):
    """Match status."""

    SCHEDULED = "scheduled"  # Waiting to be played
    IN_PROGRESS = "in_progress"  # Currently being played
    COMPLETED = "completed"  # Finished normally
    WALKOVER = "walkover"  # One participant didn't show up
    BYE = "bye"  # No opponent, sole participant advances
    CANCELLED = "cancelled"


class RoundType(str, Enum):
    """Tournament round types."""

    ROUND_ROBIN = "RR"
    KNOCKOUT = "KO"  # Unnamed early knockout round (brackets above 128)
    ROUND_OF_128 = "R128"
    ROUND_OF_64 = "R64"
    ROUND_OF_32 = "R32"
    ROUND_OF_16 = "R16"
    QUARTERFINAL = "QF"
    SEMIFINAL = "SF"
    FINAL = "F"
    LOSERS = "LB"
    GRAND_FINAL = "GF"
    GRAND_FINAL_RESET = "GFR"


class Section(str, Enum):
    """Part of a bracket a node belongs to."""

    MAIN = "main"  # Single elimination tree or round robin pool
    WINNERS = "winners"
    LOSERS = "losers"
    GRAND_FINAL = "grand_final"


# ============================================================================
# Participants and Results
# ============================================================================


@dataclass(frozen=True)
class Participant:
    """Participant snapshot taken when a bracket is generated."""

    id: str
    display_name: str
    seed: Optional[int] = None
    participant_type: str = "team"  # team, player, pair

    def __str__(self) -> str:
        """String representation."""
        seed_str = f"[{self.seed}] " if self.seed else ""
        return f"{seed_str}{self.display_name}"


@dataclass
class SetScore:
    """A single sub-result (set, game, period) within a match.

    participant*_points hold the point detail of the set when the sport
    tracks one (rallies inside a set); otherwise only the scores are kept.
    """

    set_number: int
    participant1_score: int
    participant2_score: int
    participant1_points: Optional[int] = None
    participant2_points: Optional[int] = None

    @property
    def winner_slot(self) -> Optional[int]:
        """Return 1 or 2 for the slot that won the set, None if level."""
        if self.participant1_score > self.participant2_score:
            return 1
        elif self.participant2_score > self.participant1_score:
            return 2
        return None

    @property
    def has_point_detail(self) -> bool:
        return self.participant1_points is not None and self.participant2_points is not None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "set_number": self.set_number,
            "participant1_score": self.participant1_score,
            "participant2_score": self.participant2_score,
        }
        if self.has_point_detail:
            data["participant1_points"] = self.participant1_points
            data["participant2_points"] = self.participant2_points
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SetScore":
        return cls(
            set_number=data["set_number"],
            participant1_score=data["participant1_score"],
            participant2_score=data["participant2_score"],
            participant1_points=data.get("participant1_points"),
            participant2_points=data.get("participant2_points"),
        )

    def __str__(self) -> str:
        """String representation."""
        return f"{self.participant1_score}-{self.participant2_score}"


@dataclass
class MatchRecord:
    """A stored match as seen by the standings calculator.

    Only COMPLETED and WALKOVER matches count. A counted match without a
    winner is a draw.
    """

    id: int
    tournament_id: str
    category_id: Optional[str]
    participant1_id: Optional[str]
    participant2_id: Optional[str]
    status: MatchStatus = MatchStatus.SCHEDULED
    winner_id: Optional[str] = None
    sets: list[SetScore] = field(default_factory=list)
    bracket_node_id: Optional[str] = None
    round_number: Optional[int] = None
    match_number: Optional[int] = None
    round_type: Optional[RoundType] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_counted(self) -> bool:
        """Check if the match contributes to standings."""
        return self.status in (MatchStatus.COMPLETED, MatchStatus.WALKOVER)

    @property
    def is_walkover(self) -> bool:
        return self.status == MatchStatus.WALKOVER

    @property
    def is_draw(self) -> bool:
        return self.is_counted and self.winner_id is None

    def involves(self, participant_id: str) -> bool:
        return participant_id in (self.participant1_id, self.participant2_id)

    def opponent_of(self, participant_id: str) -> Optional[str]:
        if participant_id == self.participant1_id:
            return self.participant2_id
        return self.participant1_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "category_id": self.category_id,
            "participant1_id": self.participant1_id,
            "participant2_id": self.participant2_id,
            "status": self.status.value,
            "winner_id": self.winner_id,
            "is_draw": self.is_draw,
            "sets": [s.to_dict() for s in self.sets],
            "bracket_node_id": self.bracket_node_id,
            "round_number": self.round_number,
            "match_number": self.match_number,
            "round_type": self.round_type.value if self.round_type else None,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __str__(self) -> str:
        """String representation."""
        won1 = sum(1 for s in self.sets if s.winner_slot == 1)
        won2 = sum(1 for s in self.sets if s.winner_slot == 2)
        score = f"{won1}-{won2}" if self.sets else "vs"
        return f"Match {self.id}: {self.participant1_id} {score} {self.participant2_id}"


@dataclass
class NewMatch:
    """Input for MatchRepository.create."""

    tournament_id: str
    category_id: Optional[str]
    participant1_id: Optional[str]
    participant2_id: Optional[str]
    round_number: int
    match_number: int
    round_type: RoundType
    bracket_node_id: Optional[str] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    winner_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Bracket Structure Models
# ============================================================================


@dataclass
class BracketNode:
    """One potential or scheduled match within a bracket.

    The winner moves to next_node_id (into next_slot). In double
    elimination the loser of a winners-bracket node drops to
    loser_next_node_id (into loser_next_slot).
    """

    node_id: str
    round: int
    position: int
    participant1_id: Optional[str] = None
    participant1_name: Optional[str] = None
    participant2_id: Optional[str] = None
    participant2_name: Optional[str] = None
    winner_id: Optional[str] = None
    next_node_id: Optional[str] = None
    next_slot: Optional[int] = None
    loser_next_node_id: Optional[str] = None
    loser_next_slot: Optional[int] = None
    section: Section = Section.MAIN
    is_bye: bool = False  # Only one slot will ever be filled
    completed: bool = False
    schedule_round: Optional[int] = None  # Round robin scheduling hint
    match_id: Optional[int] = None

    @property
    def participant_ids(self) -> list[str]:
        """IDs of the participants currently placed in the node."""
        return [pid for pid in (self.participant1_id, self.participant2_id) if pid is not None]

    @property
    def has_participant(self) -> bool:
        return bool(self.participant_ids)

    @property
    def is_ready(self) -> bool:
        """Both participants known and nothing decided yet."""
        return len(self.participant_ids) == 2 and not self.completed

    @property
    def loser_id(self) -> Optional[str]:
        if self.winner_id is None or len(self.participant_ids) < 2:
            return None
        if self.winner_id == self.participant1_id:
            return self.participant2_id
        return self.participant1_id

    def name_of(self, participant_id: str) -> Optional[str]:
        if participant_id == self.participant1_id:
            return self.participant1_name
        if participant_id == self.participant2_id:
            return self.participant2_name
        return None

    def place(self, slot: int, participant_id: str, name: Optional[str]) -> None:
        """Put a participant into slot 1 or 2."""
        if slot == 1:
            self.participant1_id = participant_id
            self.participant1_name = name
        elif slot == 2:
            self.participant2_id = participant_id
            self.participant2_name = name
        else:
            raise ValueError(f"Slot must be 1 or 2, got {slot}")

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        data["section"] = self.section.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BracketNode":
        values = dict(data)
        values["section"] = Section(values.get("section", Section.MAIN.value))
        return cls(**values)

    def __str__(self) -> str:
        """String representation."""
        p1 = self.participant1_name or ("BYE" if self.is_bye else "TBD")
        p2 = self.participant2_name or ("BYE" if self.is_bye else "TBD")
        return f"{self.node_id}: {p1} vs {p2}"


class BracketGraph:
    """Base class for the generated node collections.

    Each bracket kind has its own graph shape; all of them are stored as a
    JSON document tagged with the kind.
    """

    kind: BracketKind

    def all_nodes(self) -> list[BracketNode]:
        raise NotImplementedError

    def get_node(self, node_id: str) -> Optional[BracketNode]:
        for node in self.all_nodes():
            if node.node_id == node_id:
                return node
        return None

    def nodes_in_round(self, round_number: int, section: Optional[Section] = None) -> list[BracketNode]:
        nodes = [n for n in self.all_nodes() if n.round == round_number]
        if section is not None:
            nodes = [n for n in nodes if n.section == section]
        return sorted(nodes, key=lambda n: n.position)

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BracketGraph":
        """Rebuild a graph from its tagged JSON form."""
        kind = BracketKind(data["kind"])
        if kind == BracketKind.SINGLE_ELIMINATION:
            return SingleEliminationGraph(nodes=[BracketNode.from_dict(n) for n in data["nodes"]])
        if kind == BracketKind.ROUND_ROBIN:
            return RoundRobinGraph(nodes=[BracketNode.from_dict(n) for n in data["nodes"]])
        if kind == BracketKind.DOUBLE_ELIMINATION:
            return DoubleEliminationGraph(
                winners=[BracketNode.from_dict(n) for n in data["winners"]],
                losers=[BracketNode.from_dict(n) for n in data["losers"]],
                grand_final=BracketNode.from_dict(data["grand_final"]),
                bracket_reset=BracketNode.from_dict(data["bracket_reset"]),
            )
        raise ValueError(f"No graph shape for bracket kind '{kind.value}'")


@dataclass
class SingleEliminationGraph(BracketGraph):
    nodes: list[BracketNode] = field(default_factory=list)
    kind = BracketKind.SINGLE_ELIMINATION

    def all_nodes(self) -> list[BracketNode]:
        return list(self.nodes)

    @property
    def final(self) -> BracketNode:
        return max(self.nodes, key=lambda n: n.round)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "nodes": [n.to_dict() for n in self.nodes]}


@dataclass
class RoundRobinGraph(BracketGraph):
    nodes: list[BracketNode] = field(default_factory=list)
    kind = BracketKind.ROUND_ROBIN

    def all_nodes(self) -> list[BracketNode]:
        return list(self.nodes)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "nodes": [n.to_dict() for n in self.nodes]}


@dataclass
class DoubleEliminationGraph(BracketGraph):
    """Winners bracket, losers bracket, grand final and its conditional reset."""

    winners: list[BracketNode]
    losers: list[BracketNode]
    grand_final: BracketNode
    bracket_reset: BracketNode
    kind = BracketKind.DOUBLE_ELIMINATION

    def all_nodes(self) -> list[BracketNode]:
        return [*self.winners, *self.losers, self.grand_final, self.bracket_reset]

    @property
    def winners_rounds(self) -> int:
        return max(n.round for n in self.winners)

    @property
    def losers_rounds(self) -> int:
        return max((n.round for n in self.losers), default=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "winners": [n.to_dict() for n in self.winners],
            "losers": [n.to_dict() for n in self.losers],
            "grand_final": self.grand_final.to_dict(),
            "bracket_reset": self.bracket_reset.to_dict(),
        }


@dataclass
class Bracket:
    """Bracket for one (tournament, category) scope."""

    id: int
    tournament_id: str
    category_id: Optional[str]
    kind: BracketKind
    status: BracketStatus
    total_rounds: int
    current_round: int
    graph: BracketGraph
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "category_id": self.category_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "total_rounds": self.total_rounds,
            "current_round": self.current_round,
            "graph": self.graph.to_dict(),
            "settings": self.settings,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __str__(self) -> str:
        """String representation."""
        return f"Bracket {self.id} ({self.kind.value}, {self.status.value}, round {self.current_round}/{self.total_rounds})"


# ============================================================================
# Standings Models
# ============================================================================


@dataclass
class ParticipantStats:
    """Per-participant aggregate over the counted matches of a scope.

    form holds the most recent results (W, L, D), oldest first.
    """

    participant_id: str
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    matches_drawn: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    games_won: int = 0
    games_lost: int = 0
    points_scored: int = 0
    points_conceded: int = 0
    form: list[str] = field(default_factory=list)


STAT_FIELDS = (
    "matches_played",
    "matches_won",
    "matches_lost",
    "matches_drawn",
    "sets_won",
    "sets_lost",
    "games_won",
    "games_lost",
    "points_scored",
    "points_conceded",
)


def compute_ratio(won: int, lost: int) -> Optional[float]:
    """Compute won/lost ratio, None when nothing was lost.

    Examples:
        >>> compute_ratio(6, 3)
        2.0
        >>> compute_ratio(4, 0) is None
        True
    """
    if lost == 0:
        return None
    return won / lost


@dataclass
class StandingsEntry:
    """A participant's aggregated record and position within a scope."""

    tournament_id: str
    category_id: Optional[str]
    participant_id: str
    participant_name: str
    participant_type: str = "team"
    position: Optional[int] = None
    points: int = 0
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    matches_drawn: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    games_won: int = 0
    games_lost: int = 0
    points_scored: int = 0
    points_conceded: int = 0
    bonus_points: int = 0
    penalty_points: int = 0
    is_eliminated: bool = False
    elimination_round: Optional[str] = None
    form: list[str] = field(default_factory=list)
    last_updated: Optional[datetime] = field(default=None, compare=False)

    @property
    def goal_difference(self) -> int:
        return self.points_scored - self.points_conceded

    @property
    def game_difference(self) -> int:
        return self.games_won - self.games_lost

    @property
    def set_difference(self) -> int:
        return self.sets_won - self.sets_lost

    @property
    def win_percentage(self) -> float:
        if self.matches_played == 0:
            return 0.0
        return round(self.matches_won / self.matches_played * 100, 2)

    @property
    def set_ratio(self) -> Optional[float]:
        return compute_ratio(self.sets_won, self.sets_lost)

    @property
    def game_ratio(self) -> Optional[float]:
        return compute_ratio(self.games_won, self.games_lost)

    def apply_stats(self, stats: ParticipantStats) -> None:
        """Overwrite the statistic fields from a fresh computation."""
        for name in STAT_FIELDS:
            setattr(self, name, getattr(stats, name))
        self.form = list(stats.form)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "category_id": self.category_id,
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "participant_type": self.participant_type,
            "position": self.position,
            "points": self.points,
            **{name: getattr(self, name) for name in STAT_FIELDS},
            "goal_difference": self.goal_difference,
            "win_percentage": self.win_percentage,
            "set_ratio": self.set_ratio,
            "game_ratio": self.game_ratio,
            "bonus_points": self.bonus_points,
            "penalty_points": self.penalty_points,
            "is_eliminated": self.is_eliminated,
            "elimination_round": self.elimination_round,
            "form": list(self.form),
        }

    def __str__(self) -> str:
        """String representation."""
        pos = f"#{self.position}" if self.position else "unranked"
        return f"{pos} {self.participant_name}: {self.points}pts {self.matches_won}W-{self.matches_drawn}D-{self.matches_lost}L"


# ============================================================================
# Response Models
# ============================================================================


@dataclass
class BracketMatch:
    """A materialized match as shown with its bracket."""

    id: int
    bracket_node_id: Optional[str]
    round: Optional[int]
    position: Optional[int]
    round_type: Optional[str]
    participant1_id: Optional[str]
    participant1_name: Optional[str]
    participant2_id: Optional[str]
    participant2_name: Optional[str]
    winner_id: Optional[str]
    match_status: str
    scheduled_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        data["scheduled_at"] = self.scheduled_at.isoformat() if self.scheduled_at else None
        return data


@dataclass
class BracketParticipant:
    id: str
    name: str
    seed: int
    eliminated: bool = False
    current_round: int = 1

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class BracketResponse:
    bracket: Bracket
    matches: list[BracketMatch] = field(default_factory=list)
    participants: list[BracketParticipant] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bracket": self.bracket.to_dict(),
            "matches": [m.to_dict() for m in self.matches],
            "participants": [p.to_dict() for p in self.participants],
        }


@dataclass
class StandingsResponse:
    entries: list[StandingsEntry] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }
