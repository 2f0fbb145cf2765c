"""Tests for config loading and validation."""

import pytest

from tourney.config_loader import (
    ConfigError,
    load_and_validate_config,
    load_config,
    resolve_config,
    validate_config,
)
from tourney.paths import CONFIG_ENV_VAR, DATA_DIR_ENV_VAR, get_config_path, get_data_dir, get_default_db_path


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_defaults():
    config = validate_config({})

    assert config["points"] == {"win": 3, "draw": 1, "loss": 0}
    assert config["scheduling"] == {"default_delay_hours": 24}
    assert config["log_level"] == "INFO"
    assert config["server"] == {"host": "127.0.0.1", "port": 8000}
    assert config["database"] == {"path": None, "url": None}


def test_load_full_config(tmp_path):
    path = write(
        tmp_path,
        """
database:
  path: data/cup.sqlite
points:
  win: 2
  draw: 1
scheduling:
  default_delay_hours: 2
log_level: debug
server:
  port: 9000
""",
    )

    config = load_and_validate_config(path)

    assert config["database"]["path"] == "data/cup.sqlite"
    assert config["points"] == {"win": 2, "draw": 1, "loss": 0}
    assert config["scheduling"]["default_delay_hours"] == 2
    assert config["log_level"] == "DEBUG"
    assert config["server"]["port"] == 9000


def test_missing_and_empty_files(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.yaml"))
    with pytest.raises(ConfigError, match="empty"):
        load_config(write(tmp_path, ""))
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(write(tmp_path, "points: [unclosed"))


@pytest.mark.parametrize(
    "config",
    [
        {"points": {"win": -1}},
        {"points": {"draw": "one"}},
        {"points": [1]},
        {"scheduling": {"default_delay_hours": 0}},
        {"log_level": "LOUD"},
        {"server": {"port": 70000}},
        {"database": "sqlite"},
    ],
)
def test_invalid_values(config):
    with pytest.raises(ConfigError):
        validate_config(config)


def test_resolve_config_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV_VAR, write(tmp_path, "log_level: WARNING\n"))

    assert get_config_path() is not None
    assert resolve_config()["log_level"] == "WARNING"


def test_resolve_config_defaults_without_env(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    assert resolve_config() == validate_config({})


def test_data_dir_override(tmp_path, monkeypatch):
    monkeypatch.setenv(DATA_DIR_ENV_VAR, str(tmp_path / "data"))

    assert get_data_dir() == tmp_path / "data"
    assert get_data_dir().is_dir()
    assert get_default_db_path() == tmp_path / "data" / "tourney.sqlite"
