"""SQL storage layer for tourney.

Provides ORM models, a unit of work and repositories for data persistence.
Repositories only flush; the unit of work commits or rolls back as a whole.
"""

import json
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from tourney.models import (
    STAT_FIELDS,
    Bracket,
    BracketGraph,
    BracketKind,
    BracketNode,
    BracketStatus,
    MatchRecord,
    MatchStatus,
    NewMatch,
    Participant,
    RoundType,
    SetScore,
    StandingsEntry,
)
from tourney.paths import get_default_db_path

Base = declarative_base()


def category_key(category_id: Optional[str]) -> str:
    """Column value for a category; the tournament-wide scope is ''."""
    return category_id if category_id is not None else ""


# ============================================================================
# ORM Models
# ============================================================================


class RegistrationORM(Base):
    """Registered participant of a tournament scope.

    Backs the default participant resolver.
    """

    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("tournament_id", "category_key", "participant_id", name="uq_registration_scope"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(String(64), nullable=False, index=True)
    category_id = Column(String(64), nullable=True)
    category_key = Column(String(64), nullable=False, default="")
    participant_id = Column(String(64), nullable=False)
    display_name = Column(String(200), nullable=False)
    seed = Column(Integer, nullable=True)  # 1 = best
    participant_type = Column(String(20), nullable=False, default="team")
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_participant(self) -> Participant:
        return Participant(
            id=self.participant_id,
            display_name=self.display_name,
            seed=self.seed,
            participant_type=self.participant_type,
        )


class BracketORM(Base):
    """Bracket table.

    One row per (tournament, category) scope, enforced by uq_bracket_scope.
    """

    __tablename__ = "brackets"
    __table_args__ = (UniqueConstraint("tournament_id", "category_key", name="uq_bracket_scope"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(String(64), nullable=False, index=True)
    category_id = Column(String(64), nullable=True, index=True)
    category_key = Column(String(64), nullable=False, default="")
    kind = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=BracketStatus.GENERATED.value)
    total_rounds = Column(Integer, nullable=False)
    current_round = Column(Integer, nullable=False, default=1)
    # Tagged graph document: {"kind": ..., "nodes": [...]} or winners/losers/...
    graph_json = Column(Text, nullable=False)
    settings_json = Column(Text, nullable=False, default="{}")
    # Participant snapshot in seeded order
    participants_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def graph(self) -> BracketGraph:
        """Get graph from JSON."""
        return BracketGraph.from_dict(json.loads(self.graph_json))

    @graph.setter
    def graph(self, value: BracketGraph):
        """Set graph as JSON."""
        self.graph_json = json.dumps(value.to_dict())

    @property
    def settings(self) -> dict:
        return json.loads(self.settings_json)

    @settings.setter
    def settings(self, value: dict):
        self.settings_json = json.dumps(value or {})

    @property
    def participants(self) -> list[Participant]:
        return [Participant(**p) for p in json.loads(self.participants_json)]

    @participants.setter
    def participants(self, value: list[Participant]):
        self.participants_json = json.dumps(
            [
                {"id": p.id, "display_name": p.display_name, "seed": p.seed, "participant_type": p.participant_type}
                for p in value
            ]
        )

    def to_bracket(self, graph: Optional[BracketGraph] = None) -> Bracket:
        return Bracket(
            id=self.id,
            tournament_id=self.tournament_id,
            category_id=self.category_id,
            kind=BracketKind(self.kind),
            status=BracketStatus(self.status),
            total_rounds=self.total_rounds,
            current_round=self.current_round,
            graph=graph if graph is not None else self.graph,
            settings=self.settings,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class MatchORM(Base):
    """Match table."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(String(64), nullable=False, index=True)
    category_id = Column(String(64), nullable=True)
    category_key = Column(String(64), nullable=False, default="")
    bracket_node_id = Column(String(64), nullable=True)  # Set for generated matches
    round_number = Column(Integer, nullable=True)
    match_number = Column(Integer, nullable=True)
    round_type = Column(String(10), nullable=False, default=RoundType.ROUND_ROBIN.value)
    participant1_id = Column(String(64), nullable=True)  # None for BYE or empty slot
    participant2_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=MatchStatus.SCHEDULED.value)
    winner_id = Column(String(64), nullable=True)
    # Store sets as JSON: [{"set_number": 1, "participant1_score": 11, "participant2_score": 9}, ...]
    sets_json = Column(Text, nullable=False, default="[]")
    metadata_json = Column(Text, nullable=False, default="{}")
    scheduled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def sets(self) -> list[SetScore]:
        """Get sets from JSON."""
        return [SetScore.from_dict(s) for s in json.loads(self.sets_json)]

    @sets.setter
    def sets(self, value: list[SetScore]):
        """Set sets as JSON."""
        self.sets_json = json.dumps([s.to_dict() for s in value])

    @property
    def match_metadata(self) -> dict:
        return json.loads(self.metadata_json)

    @match_metadata.setter
    def match_metadata(self, value: dict):
        self.metadata_json = json.dumps(value or {})

    def to_record(self) -> MatchRecord:
        return MatchRecord(
            id=self.id,
            tournament_id=self.tournament_id,
            category_id=self.category_id,
            participant1_id=self.participant1_id,
            participant2_id=self.participant2_id,
            status=MatchStatus(self.status),
            winner_id=self.winner_id,
            sets=self.sets,
            bracket_node_id=self.bracket_node_id,
            round_number=self.round_number,
            match_number=self.match_number,
            round_type=RoundType(self.round_type) if self.round_type else None,
            scheduled_at=self.scheduled_at,
            completed_at=self.completed_at,
        )


class StandingORM(Base):
    """Standings table."""

    __tablename__ = "standings"
    __table_args__ = (
        UniqueConstraint("tournament_id", "category_key", "participant_id", name="uq_standing_scope"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(String(64), nullable=False, index=True)
    category_id = Column(String(64), nullable=True, index=True)
    category_key = Column(String(64), nullable=False, default="")
    participant_id = Column(String(64), nullable=False)
    participant_name = Column(String(200), nullable=False)
    participant_type = Column(String(20), nullable=False, default="team")
    position = Column(Integer, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    matches_played = Column(Integer, nullable=False, default=0)
    matches_won = Column(Integer, nullable=False, default=0)
    matches_lost = Column(Integer, nullable=False, default=0)
    matches_drawn = Column(Integer, nullable=False, default=0)
    sets_won = Column(Integer, nullable=False, default=0)
    sets_lost = Column(Integer, nullable=False, default=0)
    games_won = Column(Integer, nullable=False, default=0)
    games_lost = Column(Integer, nullable=False, default=0)
    points_scored = Column(Integer, nullable=False, default=0)
    points_conceded = Column(Integer, nullable=False, default=0)
    goal_difference = Column(Integer, nullable=False, default=0)
    # Administrative corrections, kept across recomputes
    bonus_points = Column(Integer, nullable=False, default=0)
    penalty_points = Column(Integer, nullable=False, default=0)
    is_eliminated = Column(Boolean, nullable=False, default=False)
    elimination_round = Column(String(40), nullable=True)
    form_json = Column(Text, nullable=False, default="[]")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def form(self) -> list[str]:
        return json.loads(self.form_json)

    @form.setter
    def form(self, value: list[str]):
        self.form_json = json.dumps(value)

    def update_from(self, entry: StandingsEntry) -> None:
        """Copy every computed value of an entry into the row."""
        self.participant_name = entry.participant_name
        self.participant_type = entry.participant_type
        self.position = entry.position
        self.points = entry.points
        for name in STAT_FIELDS:
            setattr(self, name, getattr(entry, name))
        self.goal_difference = entry.goal_difference
        self.bonus_points = entry.bonus_points
        self.penalty_points = entry.penalty_points
        self.is_eliminated = entry.is_eliminated
        self.elimination_round = entry.elimination_round
        self.form = entry.form
        # onupdate only fires when a column value actually changed
        self.updated_at = datetime.utcnow()

    def to_entry(self) -> StandingsEntry:
        return StandingsEntry(
            tournament_id=self.tournament_id,
            category_id=self.category_id,
            participant_id=self.participant_id,
            participant_name=self.participant_name,
            participant_type=self.participant_type,
            position=self.position,
            points=self.points,
            **{name: getattr(self, name) for name in STAT_FIELDS},
            bonus_points=self.bonus_points,
            penalty_points=self.penalty_points,
            is_eliminated=self.is_eliminated,
            elimination_round=self.elimination_round,
            form=self.form,
            last_updated=self.updated_at,
        )


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages the database engine and units of work."""

    def __init__(self, db_path: Optional[str] = None, url: Optional[str] = None):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file (default: .tourney/tourney.sqlite)
            url: Full SQLAlchemy URL, used instead of db_path when given
        """
        if url:
            self.url = url
            self.engine = create_engine(url, echo=False)
        else:
            self.db_path = Path(db_path) if db_path else get_default_db_path()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.url = f"sqlite:///{self.db_path}"

            # Use NullPool for SQLite to avoid connection pool issues
            self.engine = create_engine(
                self.url,
                echo=False,
                poolclass=NullPool,
                connect_args={"check_same_thread": False},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def unit_of_work(self) -> Iterator["UnitOfWork"]:
        """Run a block in a single transaction.

        Commits when the block finishes, rolls back on any exception and
        always closes the session.

        Example:
            with db.unit_of_work() as uow:
                uow.matches.create(new_match)
        """
        session = self.SessionLocal()
        try:
            yield UnitOfWork(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class UnitOfWork:
    """Repositories sharing one session (one transaction)."""

    def __init__(self, session):
        self.session = session
        self.registrations = RegistrationRepository(session)
        self.matches = MatchRepository(session)
        self.brackets = BracketRepository(session)
        self.standings = StandingsRepository(session)


# ============================================================================
# Repositories
# ============================================================================


class RegistrationRepository:
    """Repository for registered participants.

    Also serves as the default participant resolver: list() returns the
    participants of a scope in registration order.
    """

    def __init__(self, session):
        self.session = session

    def add(self, participant: Participant, tournament_id: str, category_id: Optional[str] = None) -> RegistrationORM:
        """Register a participant in a scope.

        Args:
            participant: Participant to register
            tournament_id: Tournament ID
            category_id: Category ID (None for the tournament-wide scope)

        Returns:
            Created RegistrationORM instance
        """
        registration = RegistrationORM(
            tournament_id=tournament_id,
            category_id=category_id,
            category_key=category_key(category_id),
            participant_id=participant.id,
            display_name=participant.display_name,
            seed=participant.seed,
            participant_type=participant.participant_type,
        )
        self.session.add(registration)
        self.session.flush()
        return registration

    def get(self, tournament_id: str, category_id: Optional[str], participant_id: str) -> Optional[RegistrationORM]:
        return (
            self.session.query(RegistrationORM)
            .filter(
                RegistrationORM.tournament_id == tournament_id,
                RegistrationORM.category_key == category_key(category_id),
                RegistrationORM.participant_id == participant_id,
            )
            .first()
        )

    def list(self, tournament_id: str, category_id: Optional[str] = None) -> list[Participant]:
        """Get the participants of a scope in registration order."""
        rows = (
            self.session.query(RegistrationORM)
            .filter(
                RegistrationORM.tournament_id == tournament_id,
                RegistrationORM.category_key == category_key(category_id),
            )
            .order_by(RegistrationORM.id)
            .all()
        )
        return [row.to_participant() for row in rows]


class MatchRepository:
    """Repository for Match operations."""

    def __init__(self, session):
        self.session = session

    def create(self, new_match: NewMatch) -> MatchORM:
        """Create a new match in the database.

        Args:
            new_match: Match to create

        Returns:
            Created MatchORM instance (with its id)
        """
        match_orm = MatchORM(
            tournament_id=new_match.tournament_id,
            category_id=new_match.category_id,
            category_key=category_key(new_match.category_id),
            bracket_node_id=new_match.bracket_node_id,
            round_number=new_match.round_number,
            match_number=new_match.match_number,
            round_type=new_match.round_type.value,
            participant1_id=new_match.participant1_id,
            participant2_id=new_match.participant2_id,
            status=new_match.status.value,
            winner_id=new_match.winner_id,
            sets_json="[]",
            metadata_json=json.dumps(new_match.metadata),
            scheduled_at=new_match.scheduled_at,
        )
        self.session.add(match_orm)
        self.session.flush()
        return match_orm

    def get_by_id(self, match_id: int) -> Optional[MatchORM]:
        """Get match by ID.

        Args:
            match_id: Database ID

        Returns:
            MatchORM if found, None otherwise
        """
        return self.session.query(MatchORM).filter(MatchORM.id == match_id).first()

    def get_by_ids(self, match_ids: list[int]) -> list[MatchORM]:
        if not match_ids:
            return []
        return self.session.query(MatchORM).filter(MatchORM.id.in_(match_ids)).all()

    def get_by_node(self, tournament_id: str, category_id: Optional[str], node_id: str) -> Optional[MatchORM]:
        """Get the generated match of a bracket node."""
        return (
            self.session.query(MatchORM)
            .filter(
                MatchORM.tournament_id == tournament_id,
                MatchORM.category_key == category_key(category_id),
                MatchORM.bracket_node_id == node_id,
            )
            .first()
        )

    def find_by_scope(self, tournament_id: str, category_id: Optional[str] = None) -> list[MatchRecord]:
        """Get all matches of a scope as records.

        Args:
            tournament_id: Tournament ID
            category_id: Category ID (None for the tournament-wide scope)

        Returns:
            List of MatchRecord ordered by round and match number
        """
        rows = (
            self.session.query(MatchORM)
            .filter(
                MatchORM.tournament_id == tournament_id,
                MatchORM.category_key == category_key(category_id),
            )
            .order_by(MatchORM.round_number, MatchORM.match_number, MatchORM.id)
            .all()
        )
        return [row.to_record() for row in rows]

    def update_result(
        self,
        match_id: int,
        sets: list[SetScore],
        winner_id: Optional[str],
        status: MatchStatus,
    ) -> Optional[MatchORM]:
        """Update match result.

        Args:
            match_id: Match ID
            sets: Sub-results of the match
            winner_id: Winner participant ID (None for a draw)
            status: New match status

        Returns:
            Updated MatchORM instance, None if not found
        """
        match = self.get_by_id(match_id)
        if match:
            match.sets = sets
            match.winner_id = winner_id
            match.status = status.value
            match.completed_at = datetime.utcnow()
            self.session.flush()
        return match

    def sync_with_node(self, match: MatchORM, node: BracketNode) -> MatchORM:
        """Copy the participants of a node into its match.

        A BYE node decided on arrival turns its match into a BYE.
        """
        match.participant1_id = node.participant1_id
        match.participant2_id = node.participant2_id
        if node.is_bye and node.completed:
            match.status = MatchStatus.BYE.value
            match.winner_id = node.winner_id
        self.session.flush()
        return match

    def delete_generated(self, tournament_id: str, category_id: Optional[str] = None) -> int:
        """Delete all bracket-generated matches of a scope.

        Returns:
            Number of matches deleted
        """
        return (
            self.session.query(MatchORM)
            .filter(
                MatchORM.tournament_id == tournament_id,
                MatchORM.category_key == category_key(category_id),
                MatchORM.bracket_node_id.isnot(None),
            )
            .delete(synchronize_session=False)
        )


class BracketRepository:
    """Repository for Bracket operations."""

    def __init__(self, session):
        self.session = session

    def exists(self, tournament_id: str, category_id: Optional[str] = None) -> bool:
        return self.get_by_scope(tournament_id, category_id) is not None

    def create(
        self,
        tournament_id: str,
        category_id: Optional[str],
        kind: BracketKind,
        graph: BracketGraph,
        total_rounds: int,
        participants: list[Participant],
        settings: Optional[dict] = None,
    ) -> BracketORM:
        """Create a bracket in GENERATED state.

        Raises:
            sqlalchemy.exc.IntegrityError: If the scope already has a bracket
        """
        bracket = BracketORM(
            tournament_id=tournament_id,
            category_id=category_id,
            category_key=category_key(category_id),
            kind=kind.value,
            status=BracketStatus.GENERATED.value,
            total_rounds=total_rounds,
            current_round=1,
        )
        bracket.graph = graph
        bracket.settings = settings
        bracket.participants = participants
        self.session.add(bracket)
        self.session.flush()
        return bracket

    def get_by_id(self, bracket_id: int) -> Optional[BracketORM]:
        return self.session.query(BracketORM).filter(BracketORM.id == bracket_id).first()

    def get_by_scope(self, tournament_id: str, category_id: Optional[str] = None) -> Optional[BracketORM]:
        return (
            self.session.query(BracketORM)
            .filter(
                BracketORM.tournament_id == tournament_id,
                BracketORM.category_key == category_key(category_id),
            )
            .first()
        )

    def get_by_category(self, category_id: str) -> Optional[BracketORM]:
        return (
            self.session.query(BracketORM)
            .filter(BracketORM.category_id == category_id)
            .order_by(BracketORM.id)
            .first()
        )

    def get_by_tournament(self, tournament_id: str) -> list[BracketORM]:
        return (
            self.session.query(BracketORM)
            .filter(BracketORM.tournament_id == tournament_id)
            .order_by(BracketORM.category_key)
            .all()
        )

    def update(self, bracket: BracketORM, graph: Optional[BracketGraph] = None) -> BracketORM:
        """Flush a modified bracket, storing the graph when given."""
        if graph is not None:
            bracket.graph = graph
        self.session.flush()
        return bracket

    def delete(self, bracket: BracketORM) -> None:
        self.session.delete(bracket)
        self.session.flush()


class StandingsRepository:
    """Repository for standings rows."""

    def __init__(self, session):
        self.session = session

    def _scope_query(self, tournament_id: str, category_id: Optional[str]):
        return self.session.query(StandingORM).filter(
            StandingORM.tournament_id == tournament_id,
            StandingORM.category_key == category_key(category_id),
        )

    def get_by_scope(self, tournament_id: str, category_id: Optional[str] = None) -> list[StandingORM]:
        """Get the standings of a scope ordered by position."""
        return self._scope_query(tournament_id, category_id).order_by(StandingORM.position, StandingORM.id).all()

    def get_by_tournament(self, tournament_id: str) -> list[StandingORM]:
        """Get every standings row of a tournament, per category then position."""
        return (
            self.session.query(StandingORM)
            .filter(StandingORM.tournament_id == tournament_id)
            .order_by(StandingORM.category_key, StandingORM.position, StandingORM.id)
            .all()
        )

    def get_by_category(self, category_id: str) -> list[StandingORM]:
        return (
            self.session.query(StandingORM)
            .filter(StandingORM.category_id == category_id)
            .order_by(StandingORM.tournament_id, StandingORM.position, StandingORM.id)
            .all()
        )

    def get_entry(self, tournament_id: str, category_id: Optional[str], participant_id: str) -> Optional[StandingORM]:
        return (
            self._scope_query(tournament_id, category_id)
            .filter(StandingORM.participant_id == participant_id)
            .first()
        )

    def bulk_upsert(self, tournament_id: str, category_id: Optional[str], entries: list[StandingsEntry]) -> int:
        """Insert or update the rows of a scope from ranked entries.

        Returns:
            Number of rows written
        """
        existing = {row.participant_id: row for row in self._scope_query(tournament_id, category_id).all()}
        for entry in entries:
            row = existing.get(entry.participant_id)
            if row is None:
                row = StandingORM(
                    tournament_id=tournament_id,
                    category_id=category_id,
                    category_key=category_key(category_id),
                    participant_id=entry.participant_id,
                )
                self.session.add(row)
            row.update_from(entry)
        self.session.flush()
        return len(entries)

    def delete_missing(self, tournament_id: str, category_id: Optional[str], keep: set[str]) -> int:
        """Delete rows of a scope whose participant is not in keep.

        Returns:
            Number of rows deleted
        """
        stale = [row for row in self._scope_query(tournament_id, category_id).all() if row.participant_id not in keep]
        for row in stale:
            self.session.delete(row)
        self.session.flush()
        return len(stale)

    def set_adjustment(
        self,
        tournament_id: str,
        category_id: Optional[str],
        participant_id: str,
        bonus_points: int,
        penalty_points: int,
    ) -> Optional[StandingORM]:
        """Set the administrative bonus and penalty of a participant.

        Returns:
            Updated row, None if the participant has no standings row
        """
        row = self.get_entry(tournament_id, category_id, participant_id)
        if row:
            row.bonus_points = bonus_points
            row.penalty_points = penalty_points
            self.session.flush()
        return row
