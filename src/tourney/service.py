"""Tournament engine.

Entry point for the web API and the CLI. Every operation runs in one unit
of work, and operations on the same (tournament, category) scope are
serialized by a per-scope lock so positions are never reassigned by two
recomputes at once.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError

from tourney import bracket as bracket_gen
from tourney.broadcast import Broadcaster, BracketUpdate, LogBroadcaster, safe_publish
from tourney.errors import Conflict, Inconsistent, NotFound
from tourney.materializer import DEFAULT_DELAY_HOURS, default_schedule_time, materialize, materialize_node
from tourney.models import (
    Bracket,
    BracketGraph,
    BracketKind,
    BracketMatch,
    BracketParticipant,
    BracketResponse,
    BracketStatus,
    MatchRecord,
    MatchStatus,
    Participant,
    SetScore,
    StandingsEntry,
    StandingsResponse,
)
from tourney.ranking import mark_eliminations, rank
from tourney.standings import PointsScheme, participants_of, recompute_entries
from tourney.storage import BracketORM, DatabaseManager, MatchORM, UnitOfWork, category_key
from tourney.validation import ValidationError, validate_result


class ParticipantResolver(Protocol):
    """Source of the registered participants of a scope."""

    def list(self, tournament_id: str, category_id: Optional[str]) -> list[Participant]:
        ...


class ScopeLocks:
    """One lock per (tournament, category) scope."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.RLock] = {}

    def for_scope(self, tournament_id: str, category_id: Optional[str]) -> threading.RLock:
        key = (tournament_id, category_key(category_id))
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())


@dataclass
class StandingsUpdate:
    updated_records: int

    def to_dict(self) -> dict[str, Any]:
        return {"updated_records": self.updated_records}


class TournamentEngine:
    """Bracket generation, result recording and standings per scope."""

    def __init__(
        self,
        db: DatabaseManager,
        resolver: Optional[ParticipantResolver] = None,
        broadcaster: Optional[Broadcaster] = None,
        points: Optional[PointsScheme] = None,
        default_delay_hours: int = DEFAULT_DELAY_HOURS,
    ):
        """Initialize the engine.

        Args:
            db: Database manager
            resolver: Participant source (default: the registrations table)
            broadcaster: Realtime side-channel (default: log only)
            points: Points per outcome (default 3/1/0)
            default_delay_hours: Delay before generated matches are scheduled
        """
        self.db = db
        self.resolver = resolver
        self.broadcaster = broadcaster if broadcaster is not None else LogBroadcaster()
        self.points = points or PointsScheme()
        self.default_delay_hours = default_delay_hours
        self.locks = ScopeLocks()

    @classmethod
    def from_config(cls, config: dict[str, Any], broadcaster: Optional[Broadcaster] = None) -> "TournamentEngine":
        """Build an engine from a validated config (see config_loader)."""
        db = DatabaseManager(db_path=config["database"]["path"], url=config["database"]["url"])
        db.create_tables()
        return cls(
            db,
            broadcaster=broadcaster,
            points=PointsScheme(**config["points"]),
            default_delay_hours=config["scheduling"]["default_delay_hours"],
        )

    def _participants(self, uow: UnitOfWork, tournament_id: str, category_id: Optional[str]) -> list[Participant]:
        resolver = self.resolver if self.resolver is not None else uow.registrations
        return resolver.list(tournament_id, category_id)

    def _publish(self, tournament_id: str, category_id: Optional[str], reason: str) -> None:
        safe_publish(self.broadcaster, BracketUpdate(tournament_id=tournament_id, category_id=category_id, reason=reason))

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    def register_participants(
        self, tournament_id: str, category_id: Optional[str], participants: Sequence[Participant]
    ) -> int:
        """Register participants in a scope.

        Raises:
            Conflict: If a participant is already registered in the scope
        """
        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                for participant in participants:
                    if uow.registrations.get(tournament_id, category_id, participant.id) is not None:
                        raise Conflict(
                            f"Participant '{participant.id}' is already registered",
                            meta="PARTICIPANT_EXISTS",
                        )
                    uow.registrations.add(participant, tournament_id, category_id)
        logger.info("Registered {} participants in tournament {} category {}", len(participants), tournament_id, category_id)
        return len(participants)

    # ------------------------------------------------------------------
    # Brackets
    # ------------------------------------------------------------------

    def generate_bracket(
        self,
        tournament_id: str,
        category_id: Optional[str] = None,
        kind: BracketKind = BracketKind.SINGLE_ELIMINATION,
        seed_order: Optional[Sequence[str]] = None,
        settings: Optional[dict[str, Any]] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> BracketResponse:
        """Generate, materialize and store the bracket of a scope.

        Args:
            tournament_id: Tournament ID
            category_id: Category ID (None for the tournament-wide scope)
            kind: Bracket format
            seed_order: Optional participant ids, best first
            settings: Free-form settings stored with the bracket
            scheduled_at: Time for the generated matches (default: now + delay)

        Returns:
            BracketResponse with the bracket, its matches and participants

        Raises:
            Conflict: If the scope already has a bracket
            InsufficientParticipants: If fewer than 2 participants
            UnsupportedKind: For Swiss and group stage brackets
            Inconsistent: If another bracket was stored for the scope meanwhile
        """
        kind = BracketKind(kind)
        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                if uow.brackets.exists(tournament_id, category_id):
                    raise Conflict(f"A bracket already exists for tournament {tournament_id} category {category_id}")

                participants = self._participants(uow, tournament_id, category_id)
                graph, total_rounds = bracket_gen.generate(kind, participants, seed_order, settings)
                seeded = bracket_gen.seed_participants(participants, seed_order)

                try:
                    bracket_orm = uow.brackets.create(
                        tournament_id, category_id, kind, graph, total_rounds, seeded, settings
                    )
                except IntegrityError as e:
                    raise Inconsistent(
                        f"A bracket was stored concurrently for tournament {tournament_id} category {category_id}"
                    ) from e

                if scheduled_at is None:
                    scheduled_at = default_schedule_time(self.default_delay_hours)
                matches = materialize(graph, tournament_id, category_id, uow.matches, scheduled_at)
                uow.brackets.update(bracket_orm, graph)
                response = self._build_response(bracket_orm, graph, matches)

        logger.info(
            "Generated {} bracket for tournament {} category {}: {} participants, {} matches, {} rounds",
            kind.value,
            tournament_id,
            category_id,
            len(participants),
            len(matches),
            total_rounds,
        )
        self._publish(tournament_id, category_id, "bracket_generated")
        return response

    def _build_response(
        self, bracket_orm: BracketORM, graph: BracketGraph, matches: Sequence[MatchRecord]
    ) -> BracketResponse:
        snapshot = bracket_orm.participants
        names = {p.id: p.display_name for p in snapshot}
        eliminated = bracket_gen.elimination_rounds(graph)

        bracket_matches = [
            BracketMatch(
                id=match.id,
                bracket_node_id=match.bracket_node_id,
                round=match.round_number,
                position=match.match_number,
                round_type=match.round_type.value if match.round_type else None,
                participant1_id=match.participant1_id,
                participant1_name=names.get(match.participant1_id),
                participant2_id=match.participant2_id,
                participant2_name=names.get(match.participant2_id),
                winner_id=match.winner_id,
                match_status=match.status.value,
                scheduled_at=match.scheduled_at,
            )
            for match in matches
        ]
        participants = [
            BracketParticipant(
                id=participant.id,
                name=participant.display_name,
                seed=participant.seed if participant.seed is not None else index,
                eliminated=participant.id in eliminated,
                current_round=bracket_gen.furthest_round(graph, participant.id),
            )
            for index, participant in enumerate(snapshot, start=1)
        ]
        return BracketResponse(
            bracket=bracket_orm.to_bracket(graph),
            matches=bracket_matches,
            participants=participants,
        )

    def _load_response(self, uow: UnitOfWork, bracket_orm: BracketORM) -> BracketResponse:
        matches = [
            m
            for m in uow.matches.find_by_scope(bracket_orm.tournament_id, bracket_orm.category_id)
            if m.bracket_node_id is not None
        ]
        return self._build_response(bracket_orm, bracket_orm.graph, matches)

    def get_bracket(self, tournament_id: str, category_id: Optional[str] = None) -> BracketResponse:
        """Get the bracket of a scope with its matches.

        Raises:
            NotFound: If the scope has no bracket
        """
        with self.db.unit_of_work() as uow:
            bracket_orm = uow.brackets.get_by_scope(tournament_id, category_id)
            if bracket_orm is None:
                raise NotFound(
                    f"No bracket for tournament {tournament_id} category {category_id}",
                    meta="BRACKET_NOT_FOUND",
                )
            return self._load_response(uow, bracket_orm)

    def get_category_bracket(self, category_id: str) -> BracketResponse:
        """Get the bracket of a category.

        Raises:
            NotFound: If the category has no bracket
        """
        with self.db.unit_of_work() as uow:
            bracket_orm = uow.brackets.get_by_category(category_id)
            if bracket_orm is None:
                raise NotFound(f"No bracket for category {category_id}", meta="BRACKET_NOT_FOUND")
            return self._load_response(uow, bracket_orm)

    def list_brackets(self, tournament_id: str) -> list[Bracket]:
        """Get every bracket of a tournament.

        Raises:
            NotFound: If the tournament has no bracket
        """
        with self.db.unit_of_work() as uow:
            brackets = [b.to_bracket() for b in uow.brackets.get_by_tournament(tournament_id)]
        if not brackets:
            raise NotFound(f"No brackets for tournament {tournament_id}", meta="BRACKET_NOT_FOUND")
        return brackets

    def reset_bracket(self, tournament_id: str, category_id: Optional[str] = None) -> int:
        """Delete the bracket of a scope and its generated matches.

        The scope goes back to NOT_GENERATED; existing standings are
        recomputed from the remaining matches.

        Returns:
            Number of matches deleted

        Raises:
            NotFound: If the scope has no bracket
        """
        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                bracket_orm = uow.brackets.get_by_scope(tournament_id, category_id)
                if bracket_orm is None:
                    raise NotFound(
                        f"No bracket for tournament {tournament_id} category {category_id}",
                        meta="BRACKET_NOT_FOUND",
                    )
                deleted = uow.matches.delete_generated(tournament_id, category_id)
                uow.brackets.delete(bracket_orm)
                if uow.standings.get_by_scope(tournament_id, category_id):
                    self._recompute(uow, tournament_id, category_id)

        logger.info("Reset bracket of tournament {} category {} ({} matches deleted)", tournament_id, category_id, deleted)
        self._publish(tournament_id, category_id, "bracket_reset")
        return deleted

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _match_scope(self, match_id: int) -> tuple[str, Optional[str]]:
        with self.db.unit_of_work() as uow:
            match = uow.matches.get_by_id(match_id)
            if match is None:
                raise NotFound(f"Match {match_id} not found", meta="MATCH_NOT_FOUND")
            return match.tournament_id, match.category_id

    def record_result(
        self,
        match_id: int,
        sets: list[SetScore],
        winner_id: Optional[str] = None,
        is_walkover: bool = False,
        is_draw: bool = False,
    ) -> MatchRecord:
        """Store a match result and move the bracket on.

        The winner (and in double elimination the loser) advances into the
        linked nodes, whose matches are created when they get their first
        participant. The bracket becomes IN_PROGRESS, or COMPLETED once the
        final node is decided. Standings of both participants are then
        recomputed and the scope re-ranked.

        Args:
            match_id: Match to record
            sets: Sub-results (may be empty for a walkover)
            winner_id: Declared winner (required for a walkover)
            is_walkover: Result is a walkover
            is_draw: Result is a draw (round robin only)

        Returns:
            Updated match record

        Raises:
            NotFound: If the match does not exist
            Conflict: If the match is a BYE, cancelled, or an elimination
                match that already has a result
            ValidationError: If the result is invalid
        """
        tournament_id, category_id = self._match_scope(match_id)
        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                match = uow.matches.get_by_id(match_id)
                if match is None:
                    raise NotFound(f"Match {match_id} not found", meta="MATCH_NOT_FOUND")

                status = MatchStatus(match.status)
                if status in (MatchStatus.BYE, MatchStatus.CANCELLED):
                    raise Conflict(f"Match {match_id} is {status.value} and takes no result", meta="MATCH_NOT_PLAYABLE")

                bracket_orm = None
                if match.bracket_node_id is not None:
                    bracket_orm = uow.brackets.get_by_scope(tournament_id, category_id)
                kind = BracketKind(bracket_orm.kind) if bracket_orm is not None else None

                if status in (MatchStatus.COMPLETED, MatchStatus.WALKOVER) and kind is not None and kind.is_elimination:
                    raise Conflict(f"Match {match_id} already has a result", meta="MATCH_ALREADY_COMPLETED")

                winner = validate_result(
                    match.participant1_id,
                    match.participant2_id,
                    sets,
                    winner_id=winner_id,
                    is_walkover=is_walkover,
                    is_draw=is_draw,
                    allow_draw=kind is None or kind == BracketKind.ROUND_ROBIN,
                )
                new_status = MatchStatus.WALKOVER if is_walkover else MatchStatus.COMPLETED
                uow.matches.update_result(match_id, sets, winner, new_status)

                if bracket_orm is not None:
                    self._advance(uow, bracket_orm, match, winner)

                self._recompute(
                    uow,
                    tournament_id,
                    category_id,
                    affected={match.participant1_id, match.participant2_id},
                    bracket_orm=bracket_orm,
                )
                record = match.to_record()

        logger.info("Recorded result of match {}: winner={} status={}", match_id, winner, new_status.value)
        self._publish(tournament_id, category_id, "result_recorded")
        return record

    def _advance(self, uow: UnitOfWork, bracket_orm: BracketORM, match: MatchORM, winner_id: Optional[str]) -> None:
        graph = bracket_orm.graph
        touched = bracket_gen.record_result(graph, match.bracket_node_id, winner_id)

        scheduled_at = default_schedule_time(self.default_delay_hours)
        for node in touched[1:]:
            if node.match_id is None:
                if node.has_participant:
                    materialize_node(
                        node, graph, bracket_orm.tournament_id, bracket_orm.category_id, uow.matches, scheduled_at
                    )
                continue
            next_match = uow.matches.get_by_id(node.match_id)
            if next_match is None:
                raise Inconsistent(f"Match {node.match_id} of bracket node '{node.node_id}' is missing")
            uow.matches.sync_with_node(next_match, node)

        status = BracketStatus.COMPLETED if bracket_gen.is_complete(graph) else BracketStatus.IN_PROGRESS
        bracket_orm.status = status.value
        bracket_orm.current_round = bracket_gen.current_round(graph, bracket_orm.total_rounds)
        uow.brackets.update(bracket_orm, graph)

        if status == BracketStatus.COMPLETED:
            logger.info("Bracket {} completed", bracket_orm.id)

    # ------------------------------------------------------------------
    # Standings
    # ------------------------------------------------------------------

    def _recompute(
        self,
        uow: UnitOfWork,
        tournament_id: str,
        category_id: Optional[str],
        affected: Optional[set[str]] = None,
        bracket_orm: Optional[BracketORM] = None,
    ) -> int:
        """Recompute stats, re-rank the whole scope and store it.

        Returns:
            Number of recomputed entries
        """
        matches = uow.matches.find_by_scope(tournament_id, category_id)
        participants = self._participants(uow, tournament_id, category_id)
        previous = {row.participant_id: row.to_entry() for row in uow.standings.get_by_scope(tournament_id, category_id)}

        entries, recomputed = recompute_entries(
            tournament_id, category_id, matches, participants, previous, affected, self.points
        )

        if bracket_orm is None:
            bracket_orm = uow.brackets.get_by_scope(tournament_id, category_id)
        mark_eliminations(entries, bracket_orm.graph if bracket_orm is not None else None)

        ranked = rank(entries)
        uow.standings.bulk_upsert(tournament_id, category_id, ranked)
        if affected is None:
            uow.standings.delete_missing(tournament_id, category_id, {e.participant_id for e in ranked})
        return recomputed

    def update_standings(
        self,
        tournament_id: str,
        category_id: Optional[str] = None,
        recalculate_all: bool = True,
        match_ids: Optional[Sequence[int]] = None,
    ) -> StandingsUpdate:
        """Recompute the standings of a scope.

        Full recompute rebuilds every participant from the whole match
        history. Incremental recompute rebuilds the participants of
        match_ids only; either way the whole scope is re-ranked.

        Raises:
            NotFound: If a match id does not belong to the scope
        """
        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                affected = None
                if not recalculate_all:
                    wanted = list(match_ids or [])
                    rows = [
                        row
                        for row in uow.matches.get_by_ids(wanted)
                        if row.tournament_id == tournament_id and row.category_key == category_key(category_id)
                    ]
                    missing = set(wanted) - {row.id for row in rows}
                    if missing:
                        raise NotFound(
                            f"Matches not found in this scope: {sorted(missing)}",
                            meta="MATCH_NOT_FOUND",
                        )
                    affected = participants_of(row.to_record() for row in rows)

                updated = self._recompute(uow, tournament_id, category_id, affected)

        logger.info(
            "Updated standings of tournament {} category {} ({}, {} records)",
            tournament_id,
            category_id,
            "full" if recalculate_all else "incremental",
            updated,
        )
        self._publish(tournament_id, category_id, "standings_updated")
        return StandingsUpdate(updated_records=updated)

    def get_standings(self, tournament_id: Optional[str] = None, category_id: Optional[str] = None) -> StandingsResponse:
        """Get standings by tournament, by category, or for one scope.

        With both ids the single scope is returned; with only a tournament,
        every category of it; with only a category, that category across
        tournaments.

        Raises:
            NotFound: If there are no standings
        """
        if tournament_id is None and category_id is None:
            raise ValidationError("A tournament or a category is required")

        with self.db.unit_of_work() as uow:
            if tournament_id is not None and category_id is not None:
                rows = uow.standings.get_by_scope(tournament_id, category_id)
            elif tournament_id is not None:
                rows = uow.standings.get_by_tournament(tournament_id)
            else:
                rows = uow.standings.get_by_category(category_id)
            entries = [row.to_entry() for row in rows]

        if not entries:
            raise NotFound("No standings found", meta="STANDINGS_NOT_FOUND")
        updates = [e.last_updated for e in entries if e.last_updated is not None]
        return StandingsResponse(entries=entries, last_updated=max(updates) if updates else None)

    def adjust_standing(
        self,
        tournament_id: str,
        category_id: Optional[str],
        participant_id: str,
        bonus_points: int = 0,
        penalty_points: int = 0,
    ) -> StandingsEntry:
        """Set administrative bonus/penalty points and re-rank the scope.

        Raises:
            ValidationError: If an adjustment is negative
            NotFound: If the participant has no standings row
        """
        if bonus_points < 0 or penalty_points < 0:
            raise ValidationError("Bonus and penalty points cannot be negative")

        with self.locks.for_scope(tournament_id, category_id):
            with self.db.unit_of_work() as uow:
                row = uow.standings.set_adjustment(
                    tournament_id, category_id, participant_id, bonus_points, penalty_points
                )
                if row is None:
                    raise NotFound(f"No standings row for participant '{participant_id}'", meta="STANDING_NOT_FOUND")
                self._recompute(uow, tournament_id, category_id, affected={participant_id})
                entry = uow.standings.get_entry(tournament_id, category_id, participant_id).to_entry()

        logger.info(
            "Adjusted standing of {} in tournament {} category {}: bonus={} penalty={}",
            participant_id,
            tournament_id,
            category_id,
            bonus_points,
            penalty_points,
        )
        self._publish(tournament_id, category_id, "standings_updated")
        return entry
