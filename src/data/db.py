"""
Maqraah Bot — Reading Database.

The Memory pillar: configuration, progress and notes persist in SQLite
across days, surviving bot restarts. Configuration and progress are
single-row tables; notes are a multi-row table keyed by an autoincrement id.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from src.data.models import (
    Configuration,
    ConfigurationUpdate,
    Note,
    NoteStatus,
    Progress,
    ProgressUpdate,
)

logger = logging.getLogger(__name__)

# dataclass field -> column name
_CONFIGURATION_COLUMNS = {
    "role_id": "roleId",
    "daily_time": "dailyTime",
    "timezone": "timezone",
    "voice_channel_id": "voiceChannelId",
}

_PROGRESS_COLUMNS = {
    "last_page": "lastPage",
    "last_hadith": "lastHadith",
}

# Rows written before the status column existed have status NULL.
_PENDING_CLAUSE = "(status IS NULL OR status = 'pending')"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _resolve_path(db_path: str | None) -> str:
    if db_path is None:
        from src.config import settings
        db_path = settings.DATABASE_PATH
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return db_path


class ConfigurationDB:
    """SQLite-backed storage for the single configuration record."""

    def __init__(
        self,
        db_path: str | None = None,
        default_daily_time: str | None = None,
        default_timezone: str | None = None,
    ) -> None:
        if default_daily_time is None or default_timezone is None:
            from src.config import settings
            default_daily_time = default_daily_time or settings.DEFAULT_DAILY_TIME
            default_timezone = default_timezone or settings.DEFAULT_TIMEZONE

        self._db_path = _resolve_path(db_path)
        self._init_db(default_daily_time, default_timezone)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self, default_daily_time: str, default_timezone: str) -> None:
        """Create the configuration table and its single row if missing."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS configuration (
                    id             INTEGER PRIMARY KEY DEFAULT 1,
                    roleId         TEXT,
                    dailyTime      TEXT NOT NULL DEFAULT '12:00 PM',
                    timezone       TEXT NOT NULL DEFAULT 'Africa/Cairo',
                    voiceChannelId TEXT
                )
            """)
            conn.execute(
                "INSERT OR IGNORE INTO configuration (id, dailyTime, timezone) VALUES (1, ?, ?)",
                (default_daily_time, default_timezone),
            )
        logger.debug("Configuration table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_configuration(row: sqlite3.Row) -> Configuration:
        return Configuration(
            role_id=row["roleId"] or None,
            daily_time=row["dailyTime"],
            timezone=row["timezone"],
            voice_channel_id=row["voiceChannelId"] or None,
        )

    def get_configuration(self) -> Configuration:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM configuration WHERE id = 1").fetchone()
        if row is None:
            raise ValueError("Configuration row is missing")
        return self._row_to_configuration(row)

    def update_configuration(self, update: ConfigurationUpdate) -> Configuration:
        """Write only the populated fields of *update*. Returns the new record."""
        values = update.populated()
        if values:
            set_clause = ", ".join(f"{_CONFIGURATION_COLUMNS[k]} = ?" for k in values)
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE configuration SET {set_clause} WHERE id = 1",
                    list(values.values()),
                )
            logger.info("Configuration updated: %s", ", ".join(values))
        return self.get_configuration()


class ProgressDB:
    """SQLite-backed storage for the single reading-progress record."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS progress (
                    id         INTEGER PRIMARY KEY DEFAULT 1,
                    lastPage   INTEGER NOT NULL DEFAULT 0,
                    lastHadith INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("INSERT OR IGNORE INTO progress (id) VALUES (1)")
        logger.debug("Progress table initialized at %s", self._db_path)

    def get_progress(self) -> Progress:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM progress WHERE id = 1").fetchone()
        if row is None:
            raise ValueError("Progress row is missing")
        return Progress(last_page=row["lastPage"], last_hadith=row["lastHadith"])

    def update_progress(self, update: ProgressUpdate) -> Progress:
        """Write only the populated fields of *update*. Returns the new record."""
        values = update.populated()
        if values:
            set_clause = ", ".join(f"{_PROGRESS_COLUMNS[k]} = ?" for k in values)
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE progress SET {set_clause} WHERE id = 1",
                    list(values.values()),
                )
            logger.info("Progress updated: %s", values)
        return self.get_progress()


class NoteDB:
    """SQLite-backed storage for member notes."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the notes table if it doesn't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    userId           TEXT NOT NULL,
                    note             TEXT NOT NULL,
                    dateAdded        TEXT NOT NULL,
                    status           TEXT DEFAULT 'pending',
                    lastIncludedDate TEXT
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(notes)").fetchall()
            }
            if "status" not in existing_cols:
                conn.execute("ALTER TABLE notes ADD COLUMN status TEXT DEFAULT 'pending'")
            if "lastIncludedDate" not in existing_cols:
                conn.execute("ALTER TABLE notes ADD COLUMN lastIncludedDate TEXT")
        logger.debug("Notes table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        status = row["status"]
        return Note(
            id=row["id"],
            user_id=row["userId"],
            note=row["note"],
            date_added=row["dateAdded"],
            status=NoteStatus(status) if status else NoteStatus.PENDING,
            last_included_date=row["lastIncludedDate"],
        )

    def add_note(self, user_id: str, note: str) -> Note:
        """Insert a new pending note."""
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO notes (userId, note, dateAdded, status) VALUES (?, ?, ?, ?)",
                (user_id, note, now, NoteStatus.PENDING.value),
            )
            note_id = cursor.lastrowid

        logger.info("Note added: #%d by user %s", note_id, user_id)
        return Note(id=note_id, user_id=user_id, note=note, date_added=now)

    def list_pending(self) -> list[Note]:
        """Pending notes in creation order, i.e. reminder order."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM notes WHERE {_PENDING_CLAUSE} ORDER BY dateAdded, id"
            ).fetchall()
        return [self._row_to_note(r) for r in rows]

    def list_included(self, limit: int | None = None) -> list[Note]:
        """Included notes, most recent reminder first."""
        query = (
            "SELECT * FROM notes WHERE status = ? "
            "ORDER BY lastIncludedDate DESC, dateAdded, id"
        )
        params: list = [NoteStatus.INCLUDED.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_note(r) for r in rows]

    def mark_included(self, note_ids: list[int], included_at: str | None = None) -> int:
        """Mark notes as included in a reminder, all with the same timestamp."""
        if not note_ids:
            return 0
        if included_at is None:
            included_at = _utcnow()

        placeholders = ", ".join("?" for _ in note_ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE notes SET status = ?, lastIncludedDate = ? WHERE id IN ({placeholders})",
                [NoteStatus.INCLUDED.value, included_at, *note_ids],
            )
        logger.info("Marked %d note(s) as included at %s", cursor.rowcount, included_at)
        return cursor.rowcount

    def carry_over_last(self) -> list[Note]:
        """Move the most recently included batch back to pending.

        Returns the notes that were carried over (empty if there is no history).
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(lastIncludedDate) AS last FROM notes WHERE status = ?",
                (NoteStatus.INCLUDED.value,),
            ).fetchone()
            last = row["last"] if row else None
            if last is None:
                return []

            rows = conn.execute(
                "SELECT * FROM notes WHERE status = ? AND lastIncludedDate = ? "
                "ORDER BY dateAdded, id",
                (NoteStatus.INCLUDED.value, last),
            ).fetchall()
            conn.execute(
                "UPDATE notes SET status = ? WHERE status = ? AND lastIncludedDate = ?",
                (NoteStatus.PENDING.value, NoteStatus.INCLUDED.value, last),
            )

        notes = [self._row_to_note(r) for r in rows]
        for note in notes:
            note.status = NoteStatus.PENDING
        logger.info("Carried over %d note(s) from reminder at %s", len(notes), last)
        return notes

    def delete_notes(self, note_ids: list[int]) -> int:
        """Permanently delete notes by ID. Returns the number deleted."""
        if not note_ids:
            return 0
        placeholders = ", ".join("?" for _ in note_ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM notes WHERE id IN ({placeholders})", note_ids,
            )
        logger.info("Deleted %d note(s)", cursor.rowcount)
        return cursor.rowcount

    def delete_by_user(self, user_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM notes WHERE userId = ?", (user_id,))
        logger.info("Deleted %d note(s) of user %s", cursor.rowcount, user_id)
        return cursor.rowcount

    def delete_all(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM notes")
        logger.info("Deleted all %d note(s)", cursor.rowcount)
        return cursor.rowcount
