"""
Path utilities for tourney - default data and config locations.
"""

import os
from pathlib import Path
from typing import Optional

CONFIG_ENV_VAR = "TOURNEY_CONFIG"
DATA_DIR_ENV_VAR = "TOURNEY_DATA_DIR"


def get_data_dir() -> Path:
    """
    Get the data directory for storing the database and exports.

    Returns:
        - $TOURNEY_DATA_DIR when set
        - .tourney/ in the current working directory otherwise
    """
    override = os.environ.get(DATA_DIR_ENV_VAR)
    data_dir = Path(override) if override else Path.cwd() / ".tourney"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_default_db_path() -> Path:
    """Get the default SQLite database file path."""
    return get_data_dir() / "tourney.sqlite"


def get_config_path() -> Optional[Path]:
    """Get the config file named by $TOURNEY_CONFIG, if any."""
    value = os.environ.get(CONFIG_ENV_VAR)
    return Path(value) if value else None
