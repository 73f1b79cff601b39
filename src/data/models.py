"""
Maqraah Bot — Data Models.

The Memory pillar: reading progress, configuration and notes persist in
SQLite across days, surviving bot restarts. The scheduler never keeps its
own copy; every firing re-reads these records.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum

LAST_QURAN_PAGE = 604


class NoteStatus(str, Enum):
    PENDING = "pending"
    INCLUDED = "included"


@dataclass
class Configuration:
    """The single configuration record of this deployment."""

    role_id: str | None = None            # role mentioned by the reminder
    daily_time: str = "12:00 PM"          # "H:MM AM/PM"
    timezone: str = "Africa/Cairo"        # IANA zone name
    voice_channel_id: str | None = None   # renamed when daily_time changes


@dataclass
class Progress:
    """Where the group stopped reading."""

    last_page: int = 0     # 0..604, 0 = not started
    last_hadith: int = 0


@dataclass
class Note:
    """A member note, announced with the next reminder.

    Created via the /notes create command; the text never changes after that.
    """

    id: int
    user_id: str
    note: str
    date_added: str                           # ISO timestamp
    status: NoteStatus = NoteStatus.PENDING
    last_included_date: str | None = None     # ISO timestamp of the reminder that carried it


@dataclass
class ConfigurationUpdate:
    """Partial configuration update. Only non-None fields are written."""

    role_id: str | None = None
    daily_time: str | None = None
    timezone: str | None = None
    voice_channel_id: str | None = None

    def populated(self) -> dict[str, str]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @property
    def affects_schedule(self) -> bool:
        return any(
            v is not None for v in (self.role_id, self.daily_time, self.timezone)
        )


@dataclass
class ProgressUpdate:
    """Partial progress update. Only non-None fields are written."""

    last_page: int | None = None
    last_hadith: int | None = None

    def populated(self) -> dict[str, int]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
