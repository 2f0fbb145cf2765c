"""Validation rules for match results.

Results are a list of sub-results (sets, games, periods). Scores are
sport-agnostic: any non-negative integers, with an optional point detail
per set.
"""

from typing import Optional

from tourney.models import SetScore


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


def validate_set_score(set_score: SetScore) -> tuple[bool, str]:
    """Validate a single set.

    Args:
        set_score: Set to check

    Returns:
        Tuple of (is_valid, error_message)
        - is_valid: True if the set is valid
        - error_message: Empty string if valid, otherwise the error description

    Examples:
        >>> validate_set_score(SetScore(1, 11, 9))
        (True, '')
        >>> validate_set_score(SetScore(1, -1, 3))
        (False, 'Scores cannot be negative')
    """
    if set_score.set_number < 1:
        return False, f"Set number must be at least 1 (got {set_score.set_number})"

    if set_score.participant1_score < 0 or set_score.participant2_score < 0:
        return False, "Scores cannot be negative"

    points = (set_score.participant1_points, set_score.participant2_points)
    if (points[0] is None) != (points[1] is None):
        return False, "Point detail must be given for both participants or neither"
    if set_score.has_point_detail and min(points) < 0:
        return False, "Points cannot be negative"

    return True, ""


def sets_won(sets: list[SetScore]) -> tuple[int, int]:
    """Count sets won by each slot.

    Examples:
        >>> sets_won([SetScore(1, 3, 1), SetScore(2, 0, 2), SetScore(3, 5, 4)])
        (2, 1)
    """
    won1 = sum(1 for s in sets if s.winner_slot == 1)
    won2 = sum(1 for s in sets if s.winner_slot == 2)
    return won1, won2


def validate_match_sets(sets: list[SetScore], allow_draw: bool = False) -> tuple[bool, str]:
    """Validate all sets of a played match.

    Args:
        sets: Sub-results of the match
        allow_draw: Accept equal numbers of sets won

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not sets:
        return False, "The match must have at least one set"

    numbers = [s.set_number for s in sets]
    if len(set(numbers)) != len(numbers):
        return False, "Set numbers must be unique"

    for set_score in sets:
        is_valid, error_msg = validate_set_score(set_score)
        if not is_valid:
            return False, f"Set {set_score.set_number}: {error_msg}"

    won1, won2 = sets_won(sets)
    if won1 == won2 and not allow_draw:
        return False, f"No winner: both participants won {won1} sets"

    return True, ""


def validate_walkover(
    participant1_id: Optional[str], participant2_id: Optional[str], winner_id: Optional[str]
) -> tuple[bool, str]:
    """Validate walkover data.

    Args:
        participant1_id: ID of first participant
        participant2_id: ID of second participant
        winner_id: ID of the participant who won by walkover

    Returns:
        Tuple of (is_valid, error_message)
    """
    if winner_id is None:
        return False, "A walkover needs a winner"

    if winner_id not in (participant1_id, participant2_id):
        return False, "The winner must be one of the two participants of the match"

    return True, ""


def validate_result(
    participant1_id: Optional[str],
    participant2_id: Optional[str],
    sets: list[SetScore],
    winner_id: Optional[str] = None,
    is_walkover: bool = False,
    is_draw: bool = False,
    allow_draw: bool = False,
) -> Optional[str]:
    """Check a submitted result and work out its winner.

    Args:
        participant1_id: ID of first participant
        participant2_id: ID of second participant
        sets: Sub-results (may be empty for a walkover)
        winner_id: Declared winner, checked against the sets when given
        is_walkover: Result is a walkover for winner_id
        is_draw: Result is a draw
        allow_draw: Whether the match may end in a draw

    Returns:
        Winner participant ID, None for a draw

    Raises:
        ValidationError: If the result is invalid
    """
    if participant1_id is None or participant2_id is None:
        raise ValidationError("The match does not have two participants yet")

    if is_walkover:
        is_valid, error_msg = validate_walkover(participant1_id, participant2_id, winner_id)
        if not is_valid:
            raise ValidationError(error_msg)
        return winner_id

    if is_draw:
        if not allow_draw:
            raise ValidationError("This match cannot end in a draw")
        if winner_id is not None:
            raise ValidationError("A draw cannot have a winner")
        is_valid, error_msg = validate_match_sets(sets, allow_draw=True)
        if not is_valid:
            raise ValidationError(error_msg)
        won1, won2 = sets_won(sets)
        if won1 != won2:
            raise ValidationError(f"Not a draw: sets are {won1}-{won2}")
        return None

    is_valid, error_msg = validate_match_sets(sets)
    if not is_valid:
        raise ValidationError(error_msg)

    won1, won2 = sets_won(sets)
    derived = participant1_id if won1 > won2 else participant2_id
    if winner_id is not None and winner_id != derived:
        raise ValidationError(f"Declared winner '{winner_id}' does not match the sets ({won1}-{won2})")
    return derived
