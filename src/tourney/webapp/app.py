"""FastAPI application for the tourney engine.

Every response uses the envelope {"result": ..., "meta": "<CODE>"}; errors
use {"error": "<message>", "meta": "<CODE>"}.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from tourney.config_loader import resolve_config
from tourney.errors import TourneyError
from tourney.service import TournamentEngine
from tourney.validation import ValidationError
from tourney.webapp.schemas import (
    GenerateBracketRequest,
    MatchResultRequest,
    RegistrationRequest,
    StandingAdjustmentRequest,
    StandingsUpdateRequest,
)


def envelope(result: Any, meta: str, status_code: int = 200) -> JSONResponse:
    """Wrap a result in the response envelope."""
    return JSONResponse({"result": result, "meta": meta}, status_code=status_code)


def create_app(engine: Optional[TournamentEngine] = None, config: Optional[dict[str, Any]] = None) -> FastAPI:
    """Build the web application around an engine.

    Args:
        engine: Engine to serve (default: built from config)
        config: Validated config, used when no engine is given
            (default: $TOURNEY_CONFIG or built-in defaults)

    Returns:
        FastAPI application
    """
    if engine is None:
        engine = TournamentEngine.from_config(config or resolve_config())

    app = FastAPI(title="Tourney Engine")
    app.state.engine = engine

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------

    @app.exception_handler(TourneyError)
    async def tourney_error_handler(request: Request, exc: TourneyError):
        logger.info("{} {} -> {} {}", request.method, request.url.path, exc.status_code, exc.meta)
        return JSONResponse({"error": exc.message, "meta": exc.meta}, status_code=exc.status_code)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse({"error": str(exc), "meta": "INVALID_RESULT"}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": str(exc.errors()), "meta": "INVALID_REQUEST"}, status_code=422)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/health")
    def health():
        return envelope("ok", "OK")

    @app.post("/tournaments/{tournament_id}/participants")
    def register_participants(tournament_id: str, body: RegistrationRequest):
        count = engine.register_participants(
            tournament_id, body.category_id, [p.to_model() for p in body.participants]
        )
        return envelope({"registered": count}, "PARTICIPANTS_REGISTERED", status_code=201)

    @app.post("/tournaments/{tournament_id}/bracket")
    def generate_bracket(tournament_id: str, body: GenerateBracketRequest):
        response = engine.generate_bracket(
            tournament_id,
            category_id=body.category_id,
            kind=body.kind,
            seed_order=body.seed_order,
            settings=body.settings,
            scheduled_at=body.scheduled_at,
        )
        return envelope(response.to_dict(), "BRACKET_GENERATED", status_code=201)

    @app.get("/tournaments/{tournament_id}/bracket")
    def get_bracket(tournament_id: str, category_id: Optional[str] = None):
        response = engine.get_bracket(tournament_id, category_id)
        return envelope(response.to_dict(), "BRACKET_FETCHED")

    @app.delete("/tournaments/{tournament_id}/bracket")
    def reset_bracket(tournament_id: str, category_id: Optional[str] = None):
        deleted = engine.reset_bracket(tournament_id, category_id)
        return envelope({"deleted_matches": deleted}, "BRACKET_RESET")

    @app.get("/tournaments/{tournament_id}/brackets")
    def list_brackets(tournament_id: str):
        brackets = engine.list_brackets(tournament_id)
        return envelope([b.to_dict() for b in brackets], "BRACKETS_FETCHED")

    @app.get("/categories/{category_id}/bracket")
    def get_category_bracket(category_id: str):
        response = engine.get_category_bracket(category_id)
        return envelope(response.to_dict(), "BRACKET_FETCHED")

    @app.post("/matches/{match_id}/result")
    def record_result(match_id: int, body: MatchResultRequest):
        record = engine.record_result(
            match_id,
            [s.to_model() for s in body.sets],
            winner_id=body.winner_id,
            is_walkover=body.is_walkover,
            is_draw=body.is_draw,
        )
        return envelope(record.to_dict(), "RESULT_RECORDED")

    @app.post("/tournaments/{tournament_id}/standings")
    def update_standings(tournament_id: str, body: StandingsUpdateRequest):
        recalculate_all = True if body.recalculate_all is None else body.recalculate_all
        update = engine.update_standings(
            tournament_id,
            category_id=body.category_id,
            recalculate_all=recalculate_all,
            match_ids=body.match_ids,
        )
        return envelope(update.to_dict(), "STANDINGS_UPDATED")

    @app.get("/tournaments/{tournament_id}/standings")
    def get_tournament_standings(tournament_id: str, category_id: Optional[str] = None):
        response = engine.get_standings(tournament_id=tournament_id, category_id=category_id)
        return envelope(response.to_dict(), "STANDINGS_FETCHED")

    @app.get("/categories/{category_id}/standings")
    def get_category_standings(category_id: str):
        response = engine.get_standings(category_id=category_id)
        return envelope(response.to_dict(), "STANDINGS_FETCHED")

    @app.patch("/tournaments/{tournament_id}/standings/{participant_id}")
    def adjust_standing(tournament_id: str, participant_id: str, body: StandingAdjustmentRequest):
        entry = engine.adjust_standing(
            tournament_id,
            body.category_id,
            participant_id,
            bonus_points=body.bonus_points,
            penalty_points=body.penalty_points,
        )
        return envelope(entry.to_dict(), "STANDING_ADJUSTED")

    return app
