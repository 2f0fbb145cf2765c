"""Command-line interface for tourney."""

import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from tourney.models import BracketKind

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Send loguru output to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)
    if log_file:
        logger.add(log_file, rotation="1 day", retention="30 days", level="DEBUG")


def parse_set(value: str, set_number: int):
    """Parse '11-9' or '25-23:0-0' style set input into a SetScore.

    The optional part after ':' is the point detail of the set.
    """
    from tourney.models import SetScore

    try:
        score_part, _, points_part = value.partition(":")
        score1, score2 = (int(x) for x in score_part.split("-"))
        points1 = points2 = None
        if points_part:
            points1, points2 = (int(x) for x in points_part.split("-"))
    except ValueError:
        raise click.BadParameter(f"Invalid set '{value}', expected A-B or A-B:a-b")
    return SetScore(set_number, score1, score2, points1, points2)


def _engine(ctx: click.Context):
    from tourney.service import TournamentEngine

    return TournamentEngine.from_config(ctx.obj["config"])


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_path", required=False, help="Path to config YAML file (default: $TOURNEY_CONFIG)")
@click.option("--db", "db_path", required=False, help="Path to SQLite database file")
@click.option("--log-file", required=False, help="Also write logs to this file")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str], log_file: Optional[str]):
    """Tourney - bracket generation and standings engine."""
    from tourney.config_loader import ConfigError, resolve_config

    try:
        config = resolve_config(config_path)
    except ConfigError as e:
        click.echo(f"[ERROR] Config error: {e}", err=True)
        raise click.Abort()

    if db_path:
        config["database"] = {"path": db_path, "url": None}
    configure_logging(config["log_level"], log_file)
    ctx.obj = {"config": config}


@cli.command()
@click.pass_context
def init_db(ctx: click.Context):
    """Create the database tables."""
    from tourney.storage import DatabaseManager

    database = ctx.obj["config"]["database"]
    db = DatabaseManager(db_path=database["path"], url=database["url"])
    db.create_tables()
    click.echo(f"[SUCCESS] Database ready: {db.url}")


@cli.command()
@click.option("--csv", required=True, help="Path to participants CSV file")
@click.option("--tournament", required=True, help="Tournament ID")
@click.option("--category", required=False, help="Only import this category. If not specified, imports all categories.")
@click.pass_context
def import_participants(ctx: click.Context, csv: str, tournament: str, category: Optional[str]):
    """Register participants from CSV file.

    CSV must have columns: id,display_name (optional: seed,participant_type,category_id)

    Example:
        tourney import-participants --csv data/teams.csv --tournament spring-cup
    """
    from tourney.errors import TourneyError
    from tourney.io_csv import CSVImportError, import_participants_csv

    try:
        click.echo(f"[INFO] Reading CSV file: {csv}")
        rows = import_participants_csv(csv, category_filter=category)

        if not rows:
            click.echo("[WARNING] No participants to import (check category filter)")
            return

        by_category: dict[Optional[str], list] = {}
        for participant, category_id in rows:
            by_category.setdefault(category_id, []).append(participant)

        engine = _engine(ctx)
        for category_id, participants in by_category.items():
            count = engine.register_participants(tournament, category_id, participants)
            click.echo(f"[SUCCESS] {category_id or '(no category)'}: {count} participants registered")

    except CSVImportError as e:
        click.echo(f"[ERROR] CSV Import Error: {e}", err=True)
        raise click.Abort()
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message}", err=True)
        raise click.Abort()


@cli.command()
@click.option("--tournament", required=True, help="Tournament ID")
@click.option("--category", required=False, help="Category ID")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in BracketKind]),
    default="single_elimination",
    show_default=True,
)
@click.option("--seed-order", required=False, help="Comma-separated participant IDs, best first")
@click.pass_context
def generate_bracket(ctx: click.Context, tournament: str, category: Optional[str], kind: str, seed_order: Optional[str]):
    """Generate the bracket of a tournament/category.

    Example:
        tourney generate-bracket --tournament spring-cup --category open --kind double_elimination
    """
    from tourney.errors import TourneyError

    order = [s.strip() for s in seed_order.split(",") if s.strip()] if seed_order else None
    try:
        response = _engine(ctx).generate_bracket(tournament, category, kind=kind, seed_order=order)
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message} ({e.meta})", err=True)
        raise click.Abort()

    bracket = response.bracket
    click.echo(f"[SUCCESS] Bracket {bracket.id} generated: {bracket.kind.value}, {bracket.total_rounds} rounds")
    click.echo(f"  Participants: {len(response.participants)}")
    click.echo(f"  Matches created: {len(response.matches)}")
    byes = sum(1 for m in response.matches if m.match_status == "bye")
    if byes:
        click.echo(f"  BYEs: {byes}")


@cli.command()
@click.option("--match-id", type=int, required=True, help="Match ID")
@click.option("--set", "sets", multiple=True, help="Set score as A-B (repeat per set)")
@click.option("--winner", required=False, help="Winner participant ID (required for walkover)")
@click.option("--walkover", is_flag=True, help="Result is a walkover")
@click.option("--draw", is_flag=True, help="Result is a draw (round robin only)")
@click.pass_context
def record_result(ctx: click.Context, match_id: int, sets: tuple, winner: Optional[str], walkover: bool, draw: bool):
    """Record the result of a match.

    Example:
        tourney record-result --match-id 3 --set 11-9 --set 8-11 --set 11-5
    """
    from tourney.errors import TourneyError
    from tourney.validation import ValidationError

    set_scores = [parse_set(value, number) for number, value in enumerate(sets, start=1)]
    try:
        record = _engine(ctx).record_result(
            match_id, set_scores, winner_id=winner, is_walkover=walkover, is_draw=draw
        )
    except ValidationError as e:
        click.echo(f"[ERROR] Invalid result: {e}", err=True)
        raise click.Abort()
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message} ({e.meta})", err=True)
        raise click.Abort()

    outcome = f"winner {record.winner_id}" if record.winner_id else "draw"
    click.echo(f"[SUCCESS] Match {record.id} recorded: {outcome} ({record.status.value})")


@cli.command()
@click.option("--tournament", required=True, help="Tournament ID")
@click.option("--category", required=False, help="Category ID")
@click.option("--match-id", "match_ids", type=int, multiple=True, help="Only recompute participants of these matches")
@click.pass_context
def update_standings(ctx: click.Context, tournament: str, category: Optional[str], match_ids: tuple):
    """Recompute standings (full, or incremental with --match-id)."""
    from tourney.errors import TourneyError

    try:
        update = _engine(ctx).update_standings(
            tournament,
            category,
            recalculate_all=not match_ids,
            match_ids=list(match_ids),
        )
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message} ({e.meta})", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] {update.updated_records} standings records updated")


@cli.command()
@click.option("--tournament", required=True, help="Tournament ID")
@click.option("--category", required=False, help="Category ID")
@click.pass_context
def standings(ctx: click.Context, tournament: str, category: Optional[str]):
    """Show the standings table."""
    from tourney.errors import TourneyError

    try:
        response = _engine(ctx).get_standings(tournament_id=tournament, category_id=category)
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message} ({e.meta})", err=True)
        raise click.Abort()

    click.echo(f"{'Pos':>3}  {'Participant':<24} {'Pts':>4} {'W':>3} {'D':>3} {'L':>3} {'Diff':>5}  Form")
    for entry in response.entries:
        status = f"  (out: {entry.elimination_round})" if entry.is_eliminated else ""
        click.echo(
            f"{entry.position or '-':>3}  {entry.participant_name[:24]:<24} {entry.points:>4} "
            f"{entry.matches_won:>3} {entry.matches_drawn:>3} {entry.matches_lost:>3} "
            f"{entry.goal_difference:>5}  {''.join(entry.form)}{status}"
        )


@cli.command()
@click.option("--what", type=click.Choice(["standings", "bracket"]), required=True)
@click.option("--tournament", required=True, help="Tournament ID")
@click.option("--category", required=False, help="Category ID")
@click.option("--out", required=True, help="Output directory")
@click.pass_context
def export(ctx: click.Context, what: str, tournament: str, category: Optional[str], out: str):
    """Export standings or bracket to CSV."""
    from tourney.errors import TourneyError
    from tourney.io_csv import export_bracket_csv, export_standings_csv

    out_dir = Path(out)
    out_dir.mkdir(parents=True, exist_ok=True)
    suffix = f"{tournament}_{category}" if category else tournament
    path = out_dir / f"{what}_{suffix}.csv"

    engine = _engine(ctx)
    try:
        if what == "standings":
            export_standings_csv(engine.get_standings(tournament_id=tournament, category_id=category).entries, str(path))
        else:
            export_bracket_csv(engine.get_bracket(tournament, category), str(path))
    except TourneyError as e:
        click.echo(f"[ERROR] {e.message} ({e.meta})", err=True)
        raise click.Abort()

    click.echo(f"[SUCCESS] Exported {what} to {path}")


@cli.command()
@click.option("--host", required=False, help="Bind host (default from config)")
@click.option("--port", type=int, required=False, help="Bind port (default from config)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the HTTP API."""
    import uvicorn

    from tourney.webapp.app import create_app

    config = ctx.obj["config"]
    host = host or config["server"]["host"]
    port = port or config["server"]["port"]

    click.echo(f"[INFO] Serving on http://{host}:{port}")
    uvicorn.run(create_app(config=config), host=host, port=port, log_level=config["log_level"].lower())


if __name__ == "__main__":
    cli()
