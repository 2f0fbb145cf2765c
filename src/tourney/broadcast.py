"""Realtime side-channel for bracket and standings changes.

Publishing is best-effort: a failing broadcaster is logged and never fails
the operation that triggered it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from loguru import logger


@dataclass(frozen=True)
class BracketUpdate:
    """Event emitted after generation, result recording or a recompute."""

    tournament_id: str
    category_id: Optional[str] = None
    reason: str = "bracket_generated"  # bracket_generated, result_recorded, standings_updated, bracket_reset
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "category_id": self.category_id,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
        }


class Broadcaster:
    """Transport for BracketUpdate events."""

    def publish(self, update: BracketUpdate) -> None:
        raise NotImplementedError


class LogBroadcaster(Broadcaster):
    """Writes events to the log. Default when no transport is configured."""

    def publish(self, update: BracketUpdate) -> None:
        logger.info(
            "Bracket update: tournament={} category={} reason={}",
            update.tournament_id,
            update.category_id,
            update.reason,
        )


class MemoryBroadcaster(Broadcaster):
    """Keeps published events in memory."""

    def __init__(self):
        self.events: list[BracketUpdate] = []

    def publish(self, update: BracketUpdate) -> None:
        self.events.append(update)


def safe_publish(broadcaster: Optional[Broadcaster], update: BracketUpdate) -> bool:
    """Publish an event, logging instead of raising on failure.

    Returns:
        True if the broadcaster accepted the event
    """
    if broadcaster is None:
        return False
    try:
        broadcaster.publish(update)
    except Exception:
        logger.opt(exception=True).warning(
            "Broadcast failed for tournament={} category={} reason={}",
            update.tournament_id,
            update.category_id,
            update.reason,
        )
        return False
    return True
