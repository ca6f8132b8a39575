"""Tests for environment configuration, clocks and the log buffer."""

import logging
from datetime import datetime, timezone
from pathlib import Path

import click
import pytest

from levelup.clock import ManualClock, SystemClock, date_key
from levelup.config import DEFAULT_DB_PATH, DEFAULT_PORT, LevelUpConfig, get_config, load_config
from levelup.logs import (
    LOGGER_NAME,
    SERVER_LOGGERS,
    LogBufferHandler,
    configure_logging,
    log_buffer,
    recent_logs,
)

ENV_VARS = (
    "LEVELUP_DB",
    "LEVELUP_HOST",
    "LEVELUP_PORT",
    "LEVELUP_TZ",
    "LEVELUP_ACCOUNT",
    "LEVELUP_OVERDUE_SECONDS",
    "LEVELUP_ROLLOVER_SECONDS",
    "LEVELUP_LOG_LEVEL",
    "LEVELUP_API_URL",
    "LEVELUP_ENV_FILE",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LEVELUP_ENV_FILE", str(tmp_path / "missing.env"))
    return monkeypatch


class TestLoadConfig:
    def test_defaults(self, clean_env):
        config = load_config()
        assert config.db_path == DEFAULT_DB_PATH
        assert config.port == DEFAULT_PORT
        assert config.account is None
        assert config.overdue_seconds == 30
        assert config.rollover_seconds == 60
        assert config.api_url == f"http://127.0.0.1:{DEFAULT_PORT}"

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("LEVELUP_DB", str(tmp_path / "x.db"))
        clean_env.setenv("LEVELUP_PORT", "9000")
        clean_env.setenv("LEVELUP_ACCOUNT", " alice ")
        clean_env.setenv("LEVELUP_OVERDUE_SECONDS", "5")
        clean_env.setenv("LEVELUP_TZ", "Europe/Berlin")
        config = load_config()
        assert config.db_path == Path(tmp_path / "x.db")
        assert config.port == 9000
        assert config.account == "alice"
        assert config.overdue_seconds == 5
        assert config.api_url == "http://127.0.0.1:9000"
        assert str(config.zone()) == "Europe/Berlin"

    def test_env_file_fills_unset_values(self, clean_env, tmp_path):
        env_file = tmp_path / "levelup.env"
        env_file.write_text("LEVELUP_PORT=9100\nLEVELUP_ACCOUNT=from-file\n")
        clean_env.setenv("LEVELUP_ENV_FILE", str(env_file))
        clean_env.setenv("LEVELUP_ACCOUNT", "from-env")
        config = load_config()
        assert config.port == 9100
        assert config.account == "from-env"

    def test_api_url_override_strips_slash(self, clean_env):
        clean_env.setenv("LEVELUP_API_URL", "http://box:1234/")
        assert load_config().api_url == "http://box:1234"

    def test_non_integer_env(self, clean_env):
        clean_env.setenv("LEVELUP_PORT", "eighty")
        with pytest.raises(click.ClickException, match="LEVELUP_PORT"):
            load_config()

    def test_get_config_validates(self, clean_env):
        clean_env.setenv("LEVELUP_ROLLOVER_SECONDS", "0")
        with pytest.raises(click.ClickException):
            get_config()


class TestValidate:
    def test_valid_defaults(self):
        LevelUpConfig().validate()

    @pytest.mark.parametrize("kwargs", [
        {"overdue_seconds": 0},
        {"rollover_seconds": -10},
        {"port": 0},
        {"port": 70000},
        {"log_level": "LOUD"},
        {"timezone": "Mars/Olympus_Mons"},
    ])
    def test_rejects(self, kwargs):
        with pytest.raises(click.ClickException):
            LevelUpConfig(**kwargs).validate()

    def test_log_level_value(self):
        assert LevelUpConfig(log_level="debug").log_level_value == logging.DEBUG


class TestClocks:
    def test_date_key(self):
        assert date_key(datetime(2024, 3, 9, 23, 59)) == "2024-03-09"

    def test_manual_clock_advance(self):
        clock = ManualClock(datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc))
        assert clock.today() == "2024-01-01"
        clock.advance(minutes=45)
        assert clock.today() == "2024-01-02"

    def test_manual_clock_naive_start_is_utc(self):
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        assert clock.now().tzinfo is timezone.utc

    def test_system_clock_is_aware(self):
        clock = LevelUpConfig(timezone="UTC").clock()
        assert isinstance(clock, SystemClock)
        assert clock.now().tzinfo is not None
        assert clock.today() == date_key(clock.now())


class TestLogBuffer:
    def test_handler_captures_records(self):
        buffer = []
        logger = logging.getLogger("levelup.test.buffer")
        handler = LogBufferHandler(buffer)
        logger.addHandler(handler)
        try:
            logger.warning("disk %s", "full")
        finally:
            logger.removeHandler(handler)
        assert buffer[-1]["level"] == "WARNING"
        assert buffer[-1]["message"] == "disk full"
        assert buffer[-1]["logger"] == "levelup.test.buffer"

    def test_configure_logging_is_idempotent(self):
        logger = configure_logging(logging.INFO)
        configure_logging(logging.INFO)
        assert logger.name == LOGGER_NAME
        assert sum(isinstance(h, LogBufferHandler) for h in logger.handlers) == 1

    def test_recent_logs(self):
        configure_logging(logging.INFO)
        log_buffer.clear()
        logging.getLogger("levelup.engine").info("first")
        logging.getLogger("levelup.engine").info("second")
        assert [entry["message"] for entry in recent_logs(1)] == ["second"]
        assert recent_logs(0) == []

    def test_server_loggers_share_the_buffer(self):
        configure_logging(logging.INFO)
        log_buffer.clear()
        for name in SERVER_LOGGERS:
            assert any(isinstance(h, LogBufferHandler) for h in logging.getLogger(name).handlers)
        logging.getLogger("uvicorn").warning("Application startup complete.")
        entry = recent_logs(1)[0]
        assert entry["logger"] == "uvicorn"
        assert entry["message"] == "Application startup complete."
