"""Shared fixtures for tourney tests."""

import pytest

from tourney.broadcast import MemoryBroadcaster
from tourney.models import Participant
from tourney.service import TournamentEngine
from tourney.storage import DatabaseManager


def make_participants(*names, seeded=False):
    """Create participants with ids equal to their names."""
    return [
        Participant(id=name, display_name=name, seed=index if seeded else None)
        for index, name in enumerate(names, start=1)
    ]


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database in a temp directory."""
    manager = DatabaseManager(db_path=str(tmp_path / "test.sqlite"))
    manager.create_tables()
    return manager


@pytest.fixture
def broadcaster():
    return MemoryBroadcaster()


@pytest.fixture
def engine(db, broadcaster):
    return TournamentEngine(db, broadcaster=broadcaster)


@pytest.fixture
def register(engine):
    """Register participants by name in a scope."""

    def _register(tournament_id, category_id, *names):
        engine.register_participants(tournament_id, category_id, make_participants(*names))
        return names

    return _register
