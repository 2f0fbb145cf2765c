"""Request bodies of the web API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from tourney.models import BracketKind, Participant, SetScore


class ParticipantIn(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=200)
    seed: Optional[int] = Field(default=None, ge=1)
    participant_type: str = "team"

    def to_model(self) -> Participant:
        return Participant(
            id=self.id,
            display_name=self.display_name,
            seed=self.seed,
            participant_type=self.participant_type,
        )


class RegistrationRequest(BaseModel):
    category_id: Optional[str] = None
    participants: list[ParticipantIn]


class GenerateBracketRequest(BaseModel):
    category_id: Optional[str] = None
    kind: BracketKind = BracketKind.SINGLE_ELIMINATION
    seed_order: Optional[list[str]] = None
    settings: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: Optional[datetime] = None


class SetScoreIn(BaseModel):
    set_number: int = Field(ge=1)
    participant1_score: int = Field(ge=0)
    participant2_score: int = Field(ge=0)
    participant1_points: Optional[int] = Field(default=None, ge=0)
    participant2_points: Optional[int] = Field(default=None, ge=0)

    def to_model(self) -> SetScore:
        return SetScore(
            set_number=self.set_number,
            participant1_score=self.participant1_score,
            participant2_score=self.participant2_score,
            participant1_points=self.participant1_points,
            participant2_points=self.participant2_points,
        )


class MatchResultRequest(BaseModel):
    """Result of a match as submitted by a scorer."""

    sets: list[SetScoreIn] = Field(default_factory=list)
    winner_id: Optional[str] = None  # Required for a walkover
    is_walkover: bool = False
    is_draw: bool = False


class StandingsUpdateRequest(BaseModel):
    """Recompute request; a full recompute unless recalculate_all is false."""

    category_id: Optional[str] = None
    recalculate_all: Optional[bool] = None
    match_ids: Optional[list[int]] = None


class StandingAdjustmentRequest(BaseModel):
    category_id: Optional[str] = None
    bonus_points: int = Field(default=0, ge=0)
    penalty_points: int = Field(default=0, ge=0)
