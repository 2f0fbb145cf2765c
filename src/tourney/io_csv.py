"""CSV import/export utilities."""

import csv
from pathlib import Path
from typing import Optional

from loguru import logger

from tourney.models import BracketResponse, Participant, StandingsEntry

PARTICIPANT_TYPES = ("team", "player", "pair")


class CSVImportError(Exception):
    """Error during CSV import."""
    pass


def validate_participant_row(row: dict, row_num: int) -> dict:
    """Validate a participant row from CSV.

    Args:
        row: Dictionary with CSV columns
        row_num: Row number for error messages

    Returns:
        Validated dictionary with cleaned data

    Raises:
        CSVImportError: If validation fails
    """
    errors = []

    # Required fields
    for field in ("id", "display_name"):
        if field not in row or not (row[field] or "").strip():
            errors.append(f"Missing required field '{field}'")

    if errors:
        raise CSVImportError(f"Row {row_num}: {', '.join(errors)}")

    validated = {
        "id": row["id"].strip(),
        "display_name": row["display_name"].strip(),
    }

    # Seed (optional, 1 = best)
    seed = (row.get("seed") or "").strip()
    if seed:
        try:
            validated["seed"] = int(seed)
        except ValueError:
            raise CSVImportError(f"Row {row_num}: 'seed' must be a number, got '{seed}'")
        if validated["seed"] < 1:
            raise CSVImportError(f"Row {row_num}: 'seed' must be at least 1")
    else:
        validated["seed"] = None

    # Participant type (optional, default team)
    participant_type = (row.get("participant_type") or "team").strip().lower()
    if participant_type not in PARTICIPANT_TYPES:
        raise CSVImportError(
            f"Row {row_num}: 'participant_type' must be one of {', '.join(PARTICIPANT_TYPES)}, got '{participant_type}'"
        )
    validated["participant_type"] = participant_type

    # Category (optional, empty = tournament-wide scope)
    validated["category_id"] = (row.get("category_id") or "").strip() or None

    return validated


def import_participants_csv(
    csv_path: str,
    category_filter: Optional[str] = None,
    skip_duplicates: bool = True,
) -> list[tuple[Participant, Optional[str]]]:
    """Import participants from CSV file.

    CSV format:
        id,display_name,seed,participant_type,category_id
        t1,Lions,1,team,open

    Args:
        csv_path: Path to CSV file
        category_filter: Only import participants of this category (None = all)
        skip_duplicates: Skip rows repeating an (id, category) already read

    Returns:
        List of (Participant, category_id) tuples ready to be registered

    Raises:
        CSVImportError: If file not found or validation fails
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise CSVImportError(f"CSV file not found: {csv_path}")

    participants = []
    seen = set()
    skipped_count = 0

    with open(csv_file, "r", encoding="utf-8") as f:
        reader = csv.DictReader(f)

        # Validate header
        required_cols = {"id", "display_name"}
        if not required_cols.issubset(set(reader.fieldnames or [])):
            missing = required_cols - set(reader.fieldnames or [])
            raise CSVImportError(f"CSV missing required columns: {sorted(missing)}")

        for row_num, row in enumerate(reader, start=2):  # Start at 2 (row 1 is header)
            validated = validate_participant_row(row, row_num)

            if category_filter and validated["category_id"] != category_filter:
                skipped_count += 1
                continue

            key = (validated["id"], validated["category_id"])
            if key in seen:
                if not skip_duplicates:
                    raise CSVImportError(f"Row {row_num}: Duplicate participant '{validated['id']}'")
                logger.warning("Row {}: Duplicate participant {}, skipping", row_num, validated["id"])
                skipped_count += 1
                continue
            seen.add(key)

            participant = Participant(
                id=validated["id"],
                display_name=validated["display_name"],
                seed=validated["seed"],
                participant_type=validated["participant_type"],
            )
            participants.append((participant, validated["category_id"]))

    logger.info("Validated {} participants from {}", len(participants), csv_path)
    if skipped_count > 0:
        logger.info("Skipped {} rows (category filter or duplicates)", skipped_count)

    return participants


def export_standings_csv(entries: list[StandingsEntry], path: str):
    """Export standings to CSV.

    Args:
        entries: Standings entries ordered by position
        path: Output CSV path
    """
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([
            "Category_ID", "Position", "Participant_ID", "Participant_Name", "Points",
            "Played", "Won", "Drawn", "Lost", "Sets_W", "Sets_L", "Games_W", "Games_L",
            "Points_Scored", "Points_Conceded", "Goal_Difference", "Form", "Eliminated",
        ])

        for entry in entries:
            writer.writerow([
                entry.category_id or "",
                entry.position or "",
                entry.participant_id,
                entry.participant_name,
                entry.points,
                entry.matches_played,
                entry.matches_won,
                entry.matches_drawn,
                entry.matches_lost,
                entry.sets_won,
                entry.sets_lost,
                entry.games_won,
                entry.games_lost,
                entry.points_scored,
                entry.points_conceded,
                entry.goal_difference,
                "".join(entry.form),
                entry.elimination_round if entry.is_eliminated else "",
            ])


def export_bracket_csv(response: BracketResponse, path: str):
    """Export bracket nodes to CSV, one row per node.

    Args:
        response: Bracket with its matches
        path: Output CSV path
    """
    matches_by_node = {m.bracket_node_id: m for m in response.matches}
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([
            "Node_ID", "Section", "Round", "Position", "Participant1", "Participant2",
            "Winner_ID", "Is_BYE", "Match_ID", "Match_Status",
        ])

        for node in response.bracket.graph.all_nodes():
            match = matches_by_node.get(node.node_id)
            writer.writerow([
                node.node_id,
                node.section.value,
                node.round,
                node.position,
                node.participant1_name or "",
                node.participant2_name or "",
                node.winner_id or "",
                "YES" if node.is_bye else "NO",
                node.match_id or "",
                match.match_status if match else "",
            ])
