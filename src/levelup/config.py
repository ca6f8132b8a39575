"""Configuration management for the LevelUp server and CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from levelup.clock import SystemClock
from levelup.scheduler import DEFAULT_OVERDUE_SECONDS, DEFAULT_ROLLOVER_SECONDS

DEFAULT_DB_PATH = Path.home() / ".levelup" / "levelup.db"
DEFAULT_ENV_FILE = Path.home() / ".levelup" / ".env"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7788
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise click.ClickException(f"{name} must be an integer, got '{raw}'")


@dataclass
class LevelUpConfig:
    """Settings shared by `levelup serve` and the client commands."""

    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timezone: str = ""
    account_id: str = ""
    overdue_seconds: int = DEFAULT_OVERDUE_SECONDS
    rollover_seconds: int = DEFAULT_ROLLOVER_SECONDS
    log_level: str = "INFO"
    api_url: str = f"http://{DEFAULT_HOST}:{DEFAULT_PORT}"

    @property
    def account(self) -> Optional[str]:
        """Account id, or None for guest mode."""
        return self.account_id or None

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper())

    def zone(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None

    def clock(self) -> SystemClock:
        return SystemClock(self.zone())

    def validate(self) -> None:
        """Validate configuration."""
        if self.overdue_seconds <= 0:
            raise click.ClickException("Overdue sweep interval must be positive")
        if self.rollover_seconds <= 0:
            raise click.ClickException("Rollover sweep interval must be positive")
        if not 0 < self.port < 65536:
            raise click.ClickException(f"Invalid port {self.port}")
        if self.log_level.upper() not in LOG_LEVELS:
            valid = ", ".join(LOG_LEVELS)
            raise click.ClickException(f"Invalid log level '{self.log_level}'. Valid options: {valid}")
        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise click.ClickException(f"Unknown timezone '{self.timezone}'")


def load_config() -> LevelUpConfig:
    """Build configuration from LEVELUP_* environment variables.

    Variables from LEVELUP_ENV_FILE (default ~/.levelup/.env) fill in
    anything not already set in the environment.
    """
    load_dotenv(os.environ.get("LEVELUP_ENV_FILE") or DEFAULT_ENV_FILE)
    host = os.environ.get("LEVELUP_HOST", DEFAULT_HOST)
    port = _env_int("LEVELUP_PORT", DEFAULT_PORT)
    db_path = os.environ.get("LEVELUP_DB")
    return LevelUpConfig(
        db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
        host=host,
        port=port,
        timezone=os.environ.get("LEVELUP_TZ", "").strip(),
        account_id=os.environ.get("LEVELUP_ACCOUNT", "").strip(),
        overdue_seconds=_env_int("LEVELUP_OVERDUE_SECONDS", DEFAULT_OVERDUE_SECONDS),
        rollover_seconds=_env_int("LEVELUP_ROLLOVER_SECONDS", DEFAULT_ROLLOVER_SECONDS),
        log_level=os.environ.get("LEVELUP_LOG_LEVEL", "INFO"),
        api_url=os.environ.get("LEVELUP_API_URL", f"http://{host}:{port}").rstrip("/"),
    )


def get_config() -> LevelUpConfig:
    """Get a validated configuration instance."""
    config = load_config()
    config.validate()
    return config
