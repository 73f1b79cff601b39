"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("DISCORD_TOKEN", "fake-token-for-tests")
os.environ.setdefault("GUILD_ID", "1000")
os.environ.setdefault("CHANNEL_ID", "2000")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("MAX_MESSAGE_LENGTH", "2000")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_maqraah.db")


@pytest.fixture
def configuration_db(tmp_db_path):
    """Return a ConfigurationDB instance backed by a temp file."""
    from src.data.db import ConfigurationDB
    return ConfigurationDB(
        db_path=tmp_db_path,
        default_daily_time="12:00 PM",
        default_timezone="Africa/Cairo",
    )


@pytest.fixture
def progress_db(tmp_db_path):
    """Return a ProgressDB instance backed by the same temp file."""
    from src.data.db import ProgressDB
    return ProgressDB(db_path=tmp_db_path)


@pytest.fixture
def note_db(tmp_db_path):
    """Return a NoteDB instance backed by the same temp file."""
    from src.data.db import NoteDB
    return NoteDB(db_path=tmp_db_path)
