"""Errors raised by the bracket and standings engine.

Each error carries the HTTP status and the meta code the web layer reports.
"""

from typing import Optional


class TourneyError(Exception):
    """Base class for engine errors."""

    status_code = 400
    meta = "ERROR"
    retryable = False

    def __init__(self, message: str, meta: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if meta is not None:
            self.meta = meta


class InsufficientParticipants(TourneyError):
    """Fewer than two participants for bracket generation."""

    meta = "INSUFFICIENT_PARTICIPANTS"


class UnsupportedKind(TourneyError):
    """Bracket kind is declared but cannot be generated."""

    meta = "UNSUPPORTED_BRACKET_KIND"


class Conflict(TourneyError):
    """Operation clashes with existing state (e.g. bracket already exists)."""

    status_code = 409
    meta = "BRACKET_EXISTS"


class NotFound(TourneyError):
    """Bracket, match or standings absent for the requested scope."""

    status_code = 404
    meta = "NOT_FOUND"


class Inconsistent(TourneyError):
    """Concurrent modification detected mid-transaction; retry the operation."""

    status_code = 409
    meta = "INCONSISTENT_STATE"
    retryable = True
