"""
Maqraah Bot — Daily Reminder Scheduler.

Owns the one recurring reminder job. The job fires once per day at the
configured "H:MM AM/PM" time in the configured time zone, re-reads the
current progress and pending notes, and posts the reminder to the channel.

An override replaces the next firing with an ad-hoc time; once it fires,
the regular daily job is installed again from the current configuration.

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on Discord.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from src.core.composer import compose_reminder

if TYPE_CHECKING:
    from apscheduler.job import Job

    from src.data.db import ConfigurationDB, NoteDB, ProgressDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)

REMINDER_JOB_ID = "daily_reminder"
OVERRIDE_JOB_ID = "override_reminder"


class SchedulerState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    OVERRIDE = "override"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def parse_daily_time(text: str | None) -> tuple[int, int] | None:
    """Convert "H:MM AM/PM" into a 24-hour ``(hour, minute)`` pair.

    Returns None if the text does not match or names an impossible time.
    """
    if not text:
        return None
    match = TIME_PATTERN.match(text.strip())
    if match is None:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = match.group(3).upper()
    if not 1 <= hour <= 12 or minute > 59:
        return None

    if meridiem == "AM" and hour == 12:
        hour = 0
    elif meridiem == "PM" and hour != 12:
        hour += 12
    return hour, minute


def resolve_timezone(name: str | None) -> ZoneInfo | None:
    """Return the ZoneInfo for an IANA name, or None if it is unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def next_occurrence(
    hour: int, minute: int, tz: ZoneInfo, now: datetime | None = None,
) -> datetime:
    """Next wall-clock occurrence of hour:minute in ``tz`` strictly after now."""
    if now is None:
        now = datetime.now(timezone.utc)
    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = (candidate + timedelta(days=1)).replace(hour=hour, minute=minute)
    return candidate


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class ReminderScheduler:
    """Controller for the daily reminder job and the one-shot override job.

    Every path that installs a job removes the one it replaces first, so at
    most one regular job and one override job exist at any time.
    """

    def __init__(
        self,
        configuration_db: ConfigurationDB,
        progress_db: ProgressDB,
        note_db: NoteDB,
        notifier: NotificationPort,
        channel_id: int,
        max_message_length: int = 2000,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._configuration_db = configuration_db
        self._progress_db = progress_db
        self._note_db = note_db
        self._notifier = notifier
        self._channel_id = channel_id
        self._max_message_length = max_message_length
        self._scheduler = scheduler or AsyncIOScheduler()
        self._job: Job | None = None
        self._override_job: Job | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Reminder scheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Reminder scheduler stopped")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        if self._override_job is not None:
            return SchedulerState.OVERRIDE
        if self._job is not None:
            return SchedulerState.SCHEDULED
        return SchedulerState.IDLE

    def next_run_time(self) -> datetime | None:
        """When the next reminder (override or regular) will fire, if known."""
        for job in (self._override_job, self._job):
            if job is None:
                continue
            run_time = getattr(job, "next_run_time", None)
            if isinstance(run_time, datetime):
                return run_time
        return None

    # ------------------------------------------------------------------
    # Job handle management
    # ------------------------------------------------------------------

    @staticmethod
    def _discard(job: Job | None) -> None:
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            # Date-triggered jobs are dropped by APScheduler once they fire.
            logger.debug("Job %s was already removed", job.id)

    def _replace_job(self, job: Job | None) -> None:
        """Install ``job`` as the regular reminder, removing the previous one."""
        self._discard(self._job)
        self._job = job

    def _replace_override(self, job: Job | None) -> None:
        self._discard(self._override_job)
        self._override_job = job

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def schedule(self) -> bool:
        """(Re)install the daily reminder from the stored configuration.

        Returns True if a job was installed. An invalid time or time zone
        leaves the scheduler idle; the problem is only logged.
        """
        self._replace_job(None)

        try:
            configuration = self._configuration_db.get_configuration()
        except Exception as exc:
            logger.error("Could not load configuration for scheduling: %s", exc)
            return False

        parsed = parse_daily_time(configuration.daily_time)
        if parsed is None:
            logger.warning(
                "Invalid reminder time %r, skipping reminder", configuration.daily_time,
            )
            return False

        tz = resolve_timezone(configuration.timezone)
        if tz is None:
            logger.warning(
                "Unknown timezone %r, skipping reminder", configuration.timezone,
            )
            return False

        hour, minute = parsed
        job = self._scheduler.add_job(
            self.send_reminder,
            CronTrigger(hour=hour, minute=minute, timezone=tz),
            id=REMINDER_JOB_ID,
            name="Daily maqraah reminder",
            replace_existing=True,
        )
        self._replace_job(job)
        logger.info(
            "Daily reminder scheduled at %02d:%02d %s (%s)",
            hour, minute, configuration.timezone, configuration.daily_time,
        )
        return True

    def override_next(self, new_time: str) -> bool:
        """Replace the next reminder with a one-shot reminder at ``new_time``.

        The regular job is removed straight away. Returns False (and stays
        idle until the next ``schedule()``) if ``new_time`` is invalid.
        """
        self._replace_job(None)
        self._replace_override(None)

        parsed = parse_daily_time(new_time)
        if parsed is None:
            logger.warning("Invalid override time %r, skipping reminder", new_time)
            return False

        try:
            configuration = self._configuration_db.get_configuration()
        except Exception as exc:
            logger.error("Could not load configuration for override: %s", exc)
            return False

        tz = resolve_timezone(configuration.timezone)
        if tz is None:
            logger.warning(
                "Unknown timezone %r, skipping override", configuration.timezone,
            )
            return False

        hour, minute = parsed
        run_date = next_occurrence(hour, minute, tz)
        job = self._scheduler.add_job(
            self._fire_override,
            DateTrigger(run_date=run_date, timezone=tz),
            id=OVERRIDE_JOB_ID,
            name="One-shot maqraah reminder",
            replace_existing=True,
        )
        self._override_job = job
        logger.info("Next reminder overridden to %s", run_date.isoformat())
        return True

    async def _fire_override(self) -> None:
        try:
            await self.send_reminder()
        finally:
            self._replace_override(None)
            self.schedule()

    async def send_reminder(self) -> None:
        """Compose and post the reminder, then mark the included notes.

        Every message is attempted even if an earlier one fails; failures
        are logged and not retried.
        """
        fired_at = datetime.now(timezone.utc).isoformat()
        try:
            configuration = self._configuration_db.get_configuration()
            progress = self._progress_db.get_progress()
            notes = self._note_db.list_pending()
        except Exception as exc:
            logger.error("Reminder skipped: could not load state: %s", exc)
            return

        reminder = compose_reminder(
            configuration, progress, notes, self._max_message_length,
        )

        sent = 0
        for text in reminder.messages:
            try:
                await self._notifier.send_message(self._channel_id, text)
                sent += 1
            except Exception as exc:
                logger.error(
                    "Failed to send reminder message to channel %d: %s",
                    self._channel_id, exc,
                )

        logger.info(
            "Reminder fired: %d/%d message(s) sent, %d note(s) included",
            sent, len(reminder.messages), len(notes),
        )

        if notes:
            try:
                self._note_db.mark_included([n.id for n in notes], fired_at)
            except Exception as exc:
                logger.error("Failed to mark %d note(s) as included: %s", len(notes), exc)
