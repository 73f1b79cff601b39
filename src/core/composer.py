"""
Maqraah Bot — Reminder Composer.

Pure rendering of reminder content from the current configuration,
progress and notes. Nothing here touches the database or Discord, so
the same functions serve the scheduled reminder, the /test previews and
the /notes listings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.data.models import LAST_QURAN_PAGE

if TYPE_CHECKING:
    from src.data.models import Configuration, Note, Progress

QURAN_PAGE_URL = "https://quran.com/page/{page}"
NOTES_HEADER = "📝 **Notes:**"
HISTORY_HEADER = "🗂️ **Previously included notes:**"


@dataclass
class Reminder:
    """A rendered reminder: the main message plus note continuation chunks."""

    main: str
    notes_chunks: list[str] = field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [self.main, *self.notes_chunks]


def next_page(last_page: int) -> int:
    """Page to read next; wraps back to 1 after the last page of the mushaf."""
    if last_page >= LAST_QURAN_PAGE:
        return 1
    return last_page + 1


def role_mention(role_id: str | None) -> str:
    return f"<@&{role_id}>" if role_id else ""


def compose_main(
    configuration: Configuration,
    progress: Progress,
    mention_role: bool = True,
) -> str:
    """Render the main reminder message (role mention + reading targets)."""
    page = next_page(progress.last_page)
    mention = role_mention(configuration.role_id) if mention_role else ""
    lines = [
        f"{mention} 📢".strip(),
        f"Page: [{page}]({QURAN_PAGE_URL.format(page=page)})",
        f"Hadith: {progress.last_hadith + 1}",
    ]
    return "\n".join(lines)


def format_note_line(position: int, note: Note) -> str:
    """One numbered note line. Newlines inside the note are flattened."""
    text = " ".join(note.note.splitlines())
    return f"{position}. {text} (<@{note.user_id}>)"


def split_lines(header: str, lines: list[tuple[str, str]], max_length: int) -> list[str]:
    """Pack ``header`` and ``lines`` into chunks of at most ``max_length``.

    Each entry of ``lines`` is ``(label, body)``; the rendered line is
    ``label + body``. A line that does not fit in the current chunk starts
    a new one. A line longer than ``max_length`` on its own is hard-split,
    and every piece repeats its label. The first line always shares a chunk
    with the header, split if necessary.
    """
    chunks: list[str] = []
    current = header

    def flush() -> None:
        nonlocal current
        if current:
            chunks.append(current)
        current = ""

    for label, body in lines:
        line = label + body
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) <= max_length:
            current = candidate
            continue

        # Never emit the header as a message of its own.
        if header and current == header:
            room = max_length - len(header) - 1 - len(label)
            if room > 0:
                chunks.append(f"{header}\n{label}{body[:room]}")
                current = ""
                body = body[room:]
                line = label + body

        flush()
        if len(line) <= max_length:
            current = line
            continue

        width = max(1, max_length - len(label))
        pieces = [label + body[i:i + width] for i in range(0, len(body), width)]
        chunks.extend(pieces[:-1])
        current = pieces[-1]

    flush()
    return chunks


def _note_lines(notes: list[Note], start: int = 1) -> list[tuple[str, str]]:
    lines = []
    for position, note in enumerate(notes, start=start):
        label = f"{position}. "
        lines.append((label, format_note_line(position, note)[len(label):]))
    return lines


def compose_notes(notes: list[Note], max_length: int) -> list[str]:
    """Render pending notes as a numbered list split into message-sized chunks."""
    if not notes:
        return []
    return split_lines(NOTES_HEADER, _note_lines(notes), max_length)


def compose_history(notes: list[Note], max_length: int) -> list[str]:
    """Render included notes grouped by the reminder that carried them."""
    if not notes:
        return []

    lines: list[tuple[str, str]] = []
    last_date = None
    position = 0
    for note in notes:
        if note.last_included_date != last_date:
            last_date = note.last_included_date
            position = 0
            lines.append(("", f"— {(last_date or 'unknown date')[:10]} —"))
        position += 1
        label = f"{position}. "
        lines.append((label, format_note_line(position, note)[len(label):]))
    return split_lines(HISTORY_HEADER, lines, max_length)


def compose_reminder(
    configuration: Configuration,
    progress: Progress,
    notes: list[Note],
    max_length: int,
    mention_role: bool = True,
) -> Reminder:
    """Render the full reminder: main message + zero or more notes chunks."""
    return Reminder(
        main=compose_main(configuration, progress, mention_role=mention_role),
        notes_chunks=compose_notes(notes, max_length),
    )
