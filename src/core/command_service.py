"""
Maqraah Bot — UI-Agnostic Command Service.

Service layer behind every slash command: validate input -> mutate the
store -> reschedule when needed -> return structured response objects.

The Discord adapter calls this service and renders the response objects
in its own way. Store errors are not caught here; they propagate to the
adapter, which logs them and replies with a generic failure notice.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from src.core.composer import (
    compose_history,
    compose_reminder,
    format_note_line,
    next_page,
    role_mention,
    split_lines,
)
from src.core.scheduler import parse_daily_time, resolve_timezone
from src.data.models import LAST_QURAN_PAGE, ConfigurationUpdate, ProgressUpdate

if TYPE_CHECKING:
    from src.core.scheduler import ReminderScheduler
    from src.data.db import ConfigurationDB, NoteDB, ProgressDB
    from src.data.models import Configuration, Note

logger = logging.getLogger(__name__)

TIME_INPUT_PATTERN = re.compile(r"^\d{1,2}:\d{2}\s*(AM|PM)$", re.IGNORECASE)

INVALID_TIME_MESSAGE = (
    'Invalid time format. Please use HH:MM AM/PM format, e.g., "12:00 AM".'
)
NO_OPTIONS_MESSAGE = "No options provided."
HISTORY_LIMIT = 50

HELP_TEXT = "\n".join([
    "**Available commands:**",
    "`/configuration update` — Set the role, voice channel, reminder time and timezone",
    "`/configuration show` — Display the current configuration",
    "`/progress update` — Set the last Qur'an page and hadith read",
    "`/progress show` — Display the current reading progress",
    "`/notes create` — Add a note to the next reminder",
    "`/notes show-mine` / `/notes show-all` — List pending notes",
    "`/notes delete` — Delete pending notes by position, e.g. `1,3`",
    "`/notes delete-mine` / `/notes delete-all` — Remove notes in bulk",
    "`/notes carry-over-last-notes` — Re-add the notes of the last reminder",
    "`/notes show-history` — List notes already included in reminders",
    "`/test preview-reminder` — Post the reminder here without mentioning anyone",
    "`/test mention-everyone` — Post the reminder here with the role mention",
    "`/change-upcoming-maqraah-time` — Move only the next reminder to another time",
    "`/help` — Show this message",
])


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    FIELDS = "fields"
    LISTING = "listing"
    PREVIEW = "preview"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str
    ephemeral: bool = True


@dataclass
class SuccessResponse(ServiceResponse):
    pass


@dataclass
class ErrorResponse(ServiceResponse):
    pass


@dataclass
class ConfigurationUpdatedResponse(ServiceResponse):
    configuration: Configuration | None = None
    time_changed: bool = False


@dataclass
class FieldsResponse(ServiceResponse):
    """A titled set of name/value pairs (rendered as an embed on Discord)."""

    fields: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ListingResponse(ServiceResponse):
    """A titled listing already split into message-sized chunks."""

    chunks: list[str] = field(default_factory=list)


@dataclass
class PreviewResponse(ServiceResponse):
    """Reminder messages to post in the invoking channel."""

    messages: list[str] = field(default_factory=list)


def _error(message: str) -> ErrorResponse:
    return ErrorResponse(kind=ResponseKind.ERROR, message=message)


def _success(message: str, ephemeral: bool = True) -> SuccessResponse:
    return SuccessResponse(kind=ResponseKind.SUCCESS, message=message, ephemeral=ephemeral)


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------


def is_valid_time_input(text: str | None) -> bool:
    """Match "H:MM AM/PM" and reject impossible clock times such as "13:75 PM"."""
    if not text or TIME_INPUT_PATTERN.match(text.strip()) is None:
        return False
    return parse_daily_time(text) is not None


def voice_channel_name(daily_time: str) -> str:
    """Voice channel title announcing the reminder time (without AM/PM)."""
    bare = re.sub(r"\s*(AM|PM)$", "", daily_time.strip(), flags=re.IGNORECASE)
    return f"مقراة الساعة {bare}"


def parse_positions(text: str, count: int) -> tuple[list[int], list[str]]:
    """Parse "2, 5" into 1-based positions valid for a list of ``count`` items.

    Returns ``(positions, invalid)``: the distinct valid positions in input
    order, and the tokens that were not numbers in ``1..count``.
    """
    positions: list[int] = []
    invalid: list[str] = []
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        if not (token.isascii() and token.isdigit()) or not 1 <= int(token) <= count:
            invalid.append(token)
            continue
        if int(token) not in positions:
            positions.append(int(token))
    return positions, invalid


# ---------------------------------------------------------------------------
# CommandService
# ---------------------------------------------------------------------------


class CommandService:
    """Stateless service that implements every slash command.

    Returns structured response objects and never sends messages directly.
    """

    def __init__(
        self,
        configuration_db: ConfigurationDB,
        progress_db: ProgressDB,
        note_db: NoteDB,
        scheduler: ReminderScheduler,
        max_message_length: int = 2000,
    ) -> None:
        self._configuration_db = configuration_db
        self._progress_db = progress_db
        self._note_db = note_db
        self._scheduler = scheduler
        self._max_message_length = max_message_length

    # ------------------------------------------------------------------
    # /configuration
    # ------------------------------------------------------------------

    def update_configuration(
        self,
        role_id: str | None = None,
        voice_channel_id: str | None = None,
        daily_time: str | None = None,
        timezone: str | None = None,
    ) -> ServiceResponse:
        """Apply a partial configuration update and reschedule if needed."""
        if daily_time is not None and not is_valid_time_input(daily_time):
            return _error(INVALID_TIME_MESSAGE)
        if timezone is not None and resolve_timezone(timezone.strip()) is None:
            return _error(
                f"Unknown timezone `{timezone}`. Use an IANA name such as `Africa/Cairo`."
            )

        update = ConfigurationUpdate(
            role_id=role_id,
            voice_channel_id=voice_channel_id,
            daily_time=daily_time.strip().upper() if daily_time else None,
            timezone=timezone.strip() if timezone else None,
        )
        if not update.populated():
            return _error(NO_OPTIONS_MESSAGE)

        configuration = self._configuration_db.update_configuration(update)
        if update.affects_schedule:
            self._scheduler.schedule()

        lines = []
        if update.role_id is not None:
            lines.append(f"Role set to {role_mention(update.role_id)}.")
        if update.voice_channel_id is not None:
            lines.append(f"Voice channel set to <#{update.voice_channel_id}>.")
        if update.daily_time is not None:
            mention = role_mention(configuration.role_id)
            lines.append(
                f"{mention} Maqraah Reminder has been changed to `{update.daily_time}`.".strip()
            )
        if update.timezone is not None:
            lines.append(f"Timezone set to `{update.timezone}`.")

        return ConfigurationUpdatedResponse(
            kind=ResponseKind.SUCCESS,
            message="\n".join(lines),
            ephemeral=False,
            configuration=configuration,
            time_changed=update.daily_time is not None,
        )

    def show_configuration(self) -> FieldsResponse:
        configuration = self._configuration_db.get_configuration()
        next_run = self._scheduler.next_run_time()
        return FieldsResponse(
            kind=ResponseKind.FIELDS,
            message="Configuration",
            fields=[
                ("Reminder Time", configuration.daily_time),
                ("Timezone", configuration.timezone),
                ("Role", role_mention(configuration.role_id) or "Not set"),
                (
                    "Voice Channel",
                    f"<#{configuration.voice_channel_id}>"
                    if configuration.voice_channel_id else "Not set",
                ),
                (
                    "Next Reminder",
                    f"<t:{int(next_run.timestamp())}:F>" if next_run else "Not scheduled",
                ),
            ],
        )

    # ------------------------------------------------------------------
    # /progress
    # ------------------------------------------------------------------

    def update_progress(
        self, last_page: int | None = None, last_hadith: int | None = None,
    ) -> ServiceResponse:
        if last_page is None and last_hadith is None:
            return _error(NO_OPTIONS_MESSAGE)
        if last_page is not None and not 1 <= last_page <= LAST_QURAN_PAGE:
            return _error(f"Quran page must be between 1 and {LAST_QURAN_PAGE}.")
        if last_hadith is not None and last_hadith <= 0:
            return _error("Hadith number must be a positive integer.")

        self._progress_db.update_progress(
            ProgressUpdate(last_page=last_page, last_hadith=last_hadith)
        )

        lines = []
        if last_page is not None:
            lines.append(f"Last Qur'an page set to `{last_page}`.")
        if last_hadith is not None:
            lines.append(f"Last Hadith set to `{last_hadith}`.")
        return _success("\n".join(lines), ephemeral=False)

    def show_progress(self) -> FieldsResponse:
        progress = self._progress_db.get_progress()
        return FieldsResponse(
            kind=ResponseKind.FIELDS,
            message="Reading Progress",
            fields=[
                ("Last Qur'an Page", str(progress.last_page)),
                ("Last Hadith", str(progress.last_hadith)),
                ("Next Page", str(next_page(progress.last_page))),
                ("Next Hadith", str(progress.last_hadith + 1)),
            ],
        )

    # ------------------------------------------------------------------
    # /notes
    # ------------------------------------------------------------------

    def create_note(self, user_id: str, text: str) -> ServiceResponse:
        text = (text or "").strip()
        if not text:
            return _error("Note text cannot be empty.")
        self._note_db.add_note(user_id, text)
        return _success("Note added! It will be included in the next reminder.")

    def _listing(self, title: str, numbered: list[tuple[int, Note]]) -> ListingResponse:
        lines = []
        for position, note in numbered:
            label = f"{position}. "
            lines.append((label, format_note_line(position, note)[len(label):]))
        return ListingResponse(
            kind=ResponseKind.LISTING,
            message=title,
            chunks=split_lines(f"**{title}**", lines, self._max_message_length),
        )

    def show_my_notes(self, user_id: str) -> ServiceResponse:
        """The caller's pending notes, numbered by their position in the reminder."""
        numbered = [
            (position, note)
            for position, note in enumerate(self._note_db.list_pending(), start=1)
            if note.user_id == user_id
        ]
        if not numbered:
            return _success("You have no pending notes.")
        return self._listing("Your Notes", numbered)

    def show_all_notes(self) -> ServiceResponse:
        notes = self._note_db.list_pending()
        if not notes:
            return _success("There are no pending notes.")
        return self._listing("All Notes", list(enumerate(notes, start=1)))

    def delete_notes(self, positions_text: str) -> ServiceResponse:
        """Delete pending notes by 1-based position. All-or-nothing."""
        notes = self._note_db.list_pending()
        if not notes:
            return _error("There are no pending notes to delete.")

        positions, invalid = parse_positions(positions_text or "", len(notes))
        if invalid:
            return _error(
                f"Invalid position(s): {', '.join(invalid)}. "
                f"Valid positions are 1 to {len(notes)}. No notes were deleted."
            )
        if not positions:
            return _error("Please provide note positions, e.g. `1,3`.")

        ids = [notes[p - 1].id for p in positions]
        deleted = self._note_db.delete_notes(ids)
        return _success(
            f"Deleted {deleted} note(s) at position(s) {', '.join(map(str, positions))}."
        )

    def delete_my_notes(self, user_id: str) -> ServiceResponse:
        deleted = self._note_db.delete_by_user(user_id)
        if not deleted:
            return _success("You have no notes to remove.")
        return _success(f"Removed {deleted} note(s).")

    def delete_all_notes(self) -> ServiceResponse:
        deleted = self._note_db.delete_all()
        if not deleted:
            return _success("There are no notes to remove.")
        return _success(f"Removed `{deleted}` notes for all users.", ephemeral=False)

    def carry_over_last_notes(self) -> ServiceResponse:
        notes = self._note_db.carry_over_last()
        if not notes:
            return _success("There are no notes from a previous reminder to carry over.")
        return _success(
            f"Carried over {len(notes)} note(s) to the next reminder.", ephemeral=False,
        )

    def show_history(self, limit: int = HISTORY_LIMIT) -> ServiceResponse:
        notes = self._note_db.list_included(limit=limit)
        if not notes:
            return _success("No notes have been included in a reminder yet.")
        return ListingResponse(
            kind=ResponseKind.LISTING,
            message="Notes History",
            chunks=compose_history(notes, self._max_message_length),
        )

    # ------------------------------------------------------------------
    # /test
    # ------------------------------------------------------------------

    def preview_reminder(self, mention_role: bool) -> PreviewResponse:
        """Render the reminder without sending it or marking notes."""
        reminder = compose_reminder(
            self._configuration_db.get_configuration(),
            self._progress_db.get_progress(),
            self._note_db.list_pending(),
            self._max_message_length,
            mention_role=mention_role,
        )
        return PreviewResponse(
            kind=ResponseKind.PREVIEW,
            message="Test reminder sent!",
            messages=reminder.messages,
        )

    # ------------------------------------------------------------------
    # /change-upcoming-maqraah-time
    # ------------------------------------------------------------------

    def override_next_reminder(self, new_time: str) -> ServiceResponse:
        if not is_valid_time_input(new_time):
            return _error(INVALID_TIME_MESSAGE)
        new_time = new_time.strip().upper()
        if not self._scheduler.override_next(new_time):
            return _error(
                "Could not schedule the reminder at that time. "
                "Use `/configuration update` to restore the daily reminder."
            )
        return _success(f"Next maqraah reminder changed to `{new_time}`.")

    # ------------------------------------------------------------------
    # /help
    # ------------------------------------------------------------------

    def help(self) -> ServiceResponse:
        return _success(HELP_TEXT)
