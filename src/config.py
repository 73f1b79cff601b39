"""
Maqraah Bot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_REQUIRED_KEYS = ("DISCORD_TOKEN", "GUILD_ID", "CHANNEL_ID", "DATABASE_PATH")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Discord
    DISCORD_TOKEN: str
    GUILD_ID: int
    CHANNEL_ID: int

    # SQLite
    DATABASE_PATH: str

    # Defaults written into a fresh configuration row
    DEFAULT_DAILY_TIME: str = "12:00 PM"
    DEFAULT_TIMEZONE: str = "Africa/Cairo"

    # Discord rejects messages longer than 2000 characters
    MAX_MESSAGE_LENGTH: int = 2000

    LOG_LEVEL: str = "INFO"

    @field_validator("GUILD_ID", "CHANNEL_ID", mode="before")
    @classmethod
    def parse_snowflake(cls, v: str | int) -> int:
        return int(v)

    @field_validator("MAX_MESSAGE_LENGTH", mode="before")
    @classmethod
    def parse_max_length(cls, v: str | int) -> int:
        value = int(v)
        if value < 100:
            raise ValueError("MAX_MESSAGE_LENGTH must be at least 100")
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    for key in _REQUIRED_KEYS:
        value = os.getenv(key, "")
        if not value or value.startswith("your-"):
            print(f"ERROR: {key} is missing or not set in .env", file=sys.stderr)
            sys.exit(1)

    try:
        return Settings(
            DISCORD_TOKEN=os.getenv("DISCORD_TOKEN"),
            GUILD_ID=os.getenv("GUILD_ID"),
            CHANNEL_ID=os.getenv("CHANNEL_ID"),
            DATABASE_PATH=os.getenv("DATABASE_PATH"),
            DEFAULT_DAILY_TIME=os.getenv("DEFAULT_DAILY_TIME", "12:00 PM"),
            DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "Africa/Cairo"),
            MAX_MESSAGE_LENGTH=os.getenv("MAX_MESSAGE_LENGTH", "2000"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )
    except ValueError as exc:
        print(f"ERROR: invalid configuration in .env: {exc}", file=sys.stderr)
        sys.exit(1)


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
