"""Tests for CommandService â the UI-agnostic handlers behind every slash command.

Uses real temp-file databases and a mocked ReminderScheduler, so each test
checks both the response and what actually landed in the store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from src.core.command_service import (
    HELP_TEXT,
    INVALID_TIME_MESSAGE,
    NO_OPTIONS_MESSAGE,
    CommandService,
    ConfigurationUpdatedResponse,
    ErrorResponse,
    FieldsResponse,
    ListingResponse,
    PreviewResponse,
    ResponseKind,
    SuccessResponse,
    is_valid_time_input,
    parse_positions,
    voice_channel_name,
)
from src.data.models import ConfigurationUpdate, ProgressUpdate


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.next_run_time.return_value = None
    mock.override_next.return_value = True
    return mock


@pytest.fixture
def service(configuration_db, progress_db, note_db, scheduler):
    return CommandService(
        configuration_db, progress_db, note_db, scheduler, max_message_length=2000,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestInputHelpers:
    @pytest.mark.parametrize("text", ["6:00 AM", "12:00 pm", "11:59PM", " 1:05 AM "])
    def test_valid_time_input(self, text):
        assert is_valid_time_input(text) is True

    @pytest.mark.parametrize("text", ["", None, "6 AM", "18:00", "13:75 PM", "0:00 AM", "noon"])
    def test_invalid_time_input(self, text):
        assert is_valid_time_input(text) is False

    def test_voice_channel_name_strips_meridiem(self):
        assert voice_channel_name("6:00 AM") == "ÙÙØ±Ø§Ø© Ø§ÙØ³Ø§Ø¹Ø© 6:00"
        assert voice_channel_name("12:30 pm") == "ÙÙØ±Ø§Ø© Ø§ÙØ³Ø§Ø¹Ø© 12:30"

    def test_parse_positions(self):
        assert parse_positions("2, 1,2", 3) == ([2, 1], [])

    def test_parse_positions_reports_invalid(self):
        positions, invalid = parse_positions("2,5,x,0", 3)
        assert positions == [2]
        assert invalid == ["5", "x", "0"]

    def test_parse_positions_rejects_non_ascii_digits(self):
        positions, invalid = parse_positions("1,²,٣", 3)
        assert positions == [1]
        assert invalid == ["²", "٣"]

    def test_parse_positions_ignores_empty_tokens(self):
        assert parse_positions(" , 1,", 1) == ([1], [])


# ---------------------------------------------------------------------------
# /configuration
# ---------------------------------------------------------------------------


class TestUpdateConfiguration:
    def test_time_change_reschedules(self, service, configuration_db, scheduler):
        resp = service.update_configuration(daily_time="6:00 am")

        assert isinstance(resp, ConfigurationUpdatedResponse)
        assert resp.ephemeral is False
        assert resp.time_changed is True
        assert "`6:00 AM`" in resp.message
        assert configuration_db.get_configuration().daily_time == "6:00 AM"
        scheduler.schedule.assert_called_once()

    def test_time_change_mentions_configured_role(self, service, configuration_db):
        configuration_db.update_configuration(ConfigurationUpdate(role_id="77"))
        resp = service.update_configuration(daily_time="7:00 PM")
        assert resp.message.startswith("<@&77> Maqraah Reminder has been changed")

    def test_invalid_time_rejected(self, service, configuration_db, scheduler):
        resp = service.update_configuration(daily_time="25:00")

        assert isinstance(resp, ErrorResponse)
        assert resp.message == INVALID_TIME_MESSAGE
        assert configuration_db.get_configuration().daily_time == "12:00 PM"
        scheduler.schedule.assert_not_called()

    def test_unknown_timezone_rejected(self, service, configuration_db):
        resp = service.update_configuration(timezone="Mars/Olympus")
        assert resp.kind is ResponseKind.ERROR
        assert configuration_db.get_configuration().timezone == "Africa/Cairo"

    def test_timezone_change_reschedules(self, service, scheduler):
        service.update_configuration(timezone="Asia/Riyadh")
        scheduler.schedule.assert_called_once()

    def test_role_change_reschedules(self, service, configuration_db, scheduler):
        resp = service.update_configuration(role_id="55")
        assert "<@&55>" in resp.message
        assert configuration_db.get_configuration().role_id == "55"
        scheduler.schedule.assert_called_once()

    def test_voice_channel_only_does_not_reschedule(self, service, configuration_db, scheduler):
        resp = service.update_configuration(voice_channel_id="900")

        assert resp.time_changed is False
        assert configuration_db.get_configuration().voice_channel_id == "900"
        scheduler.schedule.assert_not_called()

    def test_no_options(self, service, scheduler):
        resp = service.update_configuration()
        assert isinstance(resp, ErrorResponse)
        assert resp.message == NO_OPTIONS_MESSAGE
        scheduler.schedule.assert_not_called()


class TestShowConfiguration:
    def test_defaults(self, service):
        resp = service.show_configuration()

        assert isinstance(resp, FieldsResponse)
        fields = dict(resp.fields)
        assert fields["Reminder Time"] == "12:00 PM"
        assert fields["Timezone"] == "Africa/Cairo"
        assert fields["Role"] == "Not set"
        assert fields["Voice Channel"] == "Not set"
        assert fields["Next Reminder"] == "Not scheduled"

    def test_next_reminder_timestamp(self, service, scheduler, configuration_db):
        configuration_db.update_configuration(
            ConfigurationUpdate(role_id="77", voice_channel_id="900")
        )
        when = datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)
        scheduler.next_run_time.return_value = when

        fields = dict(service.show_configuration().fields)

        assert fields["Next Reminder"] == f"<t:{int(when.timestamp())}:F>"
        assert fields["Role"] == "<@&77>"
        assert fields["Voice Channel"] == "<#900>"


# ---------------------------------------------------------------------------
# /progress
# ---------------------------------------------------------------------------


class TestProgress:
    def test_update_both(self, service, progress_db):
        resp = service.update_progress(last_page=100, last_hadith=7)

        assert isinstance(resp, SuccessResponse)
        assert resp.ephemeral is False
        progress = progress_db.get_progress()
        assert (progress.last_page, progress.last_hadith) == (100, 7)

    def test_partial_update_keeps_other_field(self, service, progress_db):
        progress_db.update_progress(ProgressUpdate(last_page=50, last_hadith=3))
        service.update_progress(last_hadith=4)
        progress = progress_db.get_progress()
        assert (progress.last_page, progress.last_hadith) == (50, 4)

    def test_page_out_of_range_rejected(self, service, progress_db):
        progress_db.update_progress(ProgressUpdate(last_page=10))

        resp = service.update_progress(last_page=605)

        assert isinstance(resp, ErrorResponse)
        assert "604" in resp.message
        assert progress_db.get_progress().last_page == 10

    def test_page_zero_rejected(self, service):
        assert service.update_progress(last_page=0).kind is ResponseKind.ERROR

    def test_non_positive_hadith_rejected(self, service, progress_db):
        resp = service.update_progress(last_page=5, last_hadith=0)
        assert resp.kind is ResponseKind.ERROR
        assert progress_db.get_progress().last_page == 0

    def test_no_options(self, service):
        assert service.update_progress().message == NO_OPTIONS_MESSAGE

    def test_show_progress_wraps(self, service, progress_db):
        progress_db.update_progress(ProgressUpdate(last_page=604, last_hadith=10))
        fields = dict(service.show_progress().fields)
        assert fields["Last Qur'an Page"] == "604"
        assert fields["Next Page"] == "1"
        assert fields["Next Hadith"] == "11"


# ---------------------------------------------------------------------------
# /notes
# ---------------------------------------------------------------------------


class TestNotes:
    def test_create_note(self, service, note_db):
        resp = service.create_note("42", "  read slowly  ")
        assert resp.kind is ResponseKind.SUCCESS
        assert resp.ephemeral is True
        assert [n.note for n in note_db.list_pending()] == ["read slowly"]

    def test_create_empty_note_rejected(self, service, note_db):
        assert service.create_note("42", "   ").kind is ResponseKind.ERROR
        assert note_db.list_pending() == []

    def test_show_mine_uses_reminder_positions(self, service, note_db):
        note_db.add_note("1", "first")
        note_db.add_note("2", "second")
        note_db.add_note("1", "third")

        resp = service.show_my_notes("1")

        assert isinstance(resp, ListingResponse)
        text = "\n".join(resp.chunks)
        assert "1. first (<@1>)" in text
        assert "3. third (<@1>)" in text
        assert "second" not in text

    def test_show_mine_empty(self, service):
        resp = service.show_my_notes("1")
        assert isinstance(resp, SuccessResponse)

    def test_show_all(self, service, note_db):
        note_db.add_note("1", "a")
        note_db.add_note("2", "b")
        text = "\n".join(service.show_all_notes().chunks)
        assert "1. a (<@1>)" in text
        assert "2. b (<@2>)" in text

    def test_show_all_excludes_included(self, service, note_db):
        old = note_db.add_note("1", "old")
        note_db.mark_included([old.id])
        assert isinstance(service.show_all_notes(), SuccessResponse)

    def test_delete_by_positions(self, service, note_db):
        for text in ("a", "b", "c"):
            note_db.add_note("1", text)

        resp = service.delete_notes("1,3")

        assert resp.kind is ResponseKind.SUCCESS
        assert [n.note for n in note_db.list_pending()] == ["b"]

    def test_delete_with_invalid_position_deletes_nothing(self, service, note_db):
        for text in ("a", "b", "c"):
            note_db.add_note("1", text)

        resp = service.delete_notes("2,5")

        assert isinstance(resp, ErrorResponse)
        assert "5" in resp.message
        assert "1 to 3" in resp.message
        assert len(note_db.list_pending()) == 3

    def test_delete_without_positions(self, service, note_db):
        note_db.add_note("1", "a")
        assert service.delete_notes(" , ").kind is ResponseKind.ERROR
        assert len(note_db.list_pending()) == 1

    def test_delete_with_superscript_position_is_rejected(self, service, note_db):
        note_db.add_note("1", "a")

        resp = service.delete_notes("²")

        assert isinstance(resp, ErrorResponse)
        assert "²" in resp.message
        assert len(note_db.list_pending()) == 1

    def test_delete_with_no_pending_notes(self, service):
        assert service.delete_notes("1").kind is ResponseKind.ERROR

    def test_delete_mine(self, service, note_db):
        note_db.add_note("1", "a")
        note_db.add_note("2", "b")

        resp = service.delete_my_notes("1")

        assert "1" in resp.message
        assert [n.user_id for n in note_db.list_pending()] == ["2"]

    def test_delete_all(self, service, note_db):
        note_db.add_note("1", "a")
        note_db.add_note("2", "b")

        resp = service.delete_all_notes()

        assert resp.ephemeral is False
        assert "`2`" in resp.message
        assert note_db.list_pending() == []
        assert note_db.list_included() == []

    def test_carry_over(self, service, note_db):
        note = note_db.add_note("1", "again")
        note_db.mark_included([note.id])

        resp = service.carry_over_last_notes()

        assert resp.kind is ResponseKind.SUCCESS
        assert [n.id for n in note_db.list_pending()] == [note.id]

    def test_carry_over_without_history(self, service):
        resp = service.carry_over_last_notes()
        assert resp.kind is ResponseKind.SUCCESS
        assert "no notes" in resp.message

    def test_history(self, service, note_db):
        note = note_db.add_note("1", "done")
        note_db.mark_included([note.id], "2026-02-01T03:00:00+00:00")

        resp = service.show_history()

        assert isinstance(resp, ListingResponse)
        text = "\n".join(resp.chunks)
        assert "2026-02-01" in text
        assert "1. done (<@1>)" in text

    def test_history_empty(self, service):
        assert isinstance(service.show_history(), SuccessResponse)

    def test_listing_respects_message_length(self, configuration_db, progress_db, note_db, scheduler):
        service = CommandService(
            configuration_db, progress_db, note_db, scheduler, max_message_length=120,
        )
        for i in range(10):
            note_db.add_note("1", f"note {i} " + "z" * 40)

        chunks = service.show_all_notes().chunks

        assert len(chunks) > 1
        assert all(len(c) <= 120 for c in chunks)


# ---------------------------------------------------------------------------
# /test, /change-upcoming-maqraah-time, /help
# ---------------------------------------------------------------------------


class TestPreview:
    def test_preview_does_not_mark_notes(self, service, configuration_db, note_db):
        configuration_db.update_configuration(ConfigurationUpdate(role_id="77"))
        note_db.add_note("1", "keep me")

        resp = service.preview_reminder(mention_role=False)

        assert isinstance(resp, PreviewResponse)
        assert resp.message == "Test reminder sent!"
        assert len(resp.messages) == 2
        assert "<@&77>" not in resp.messages[0]
        assert "1. keep me" in resp.messages[1]
        assert len(note_db.list_pending()) == 1

    def test_preview_with_mention(self, service, configuration_db):
        configuration_db.update_configuration(ConfigurationUpdate(role_id="77"))
        resp = service.preview_reminder(mention_role=True)
        assert resp.messages[0].startswith("<@&77>")


class TestOverride:
    def test_override(self, service, scheduler):
        resp = service.override_next_reminder("9:30 pm")

        assert resp.kind is ResponseKind.SUCCESS
        assert "`9:30 PM`" in resp.message
        scheduler.override_next.assert_called_once_with("9:30 PM")

    def test_invalid_override_time(self, service, scheduler):
        resp = service.override_next_reminder("half nine")
        assert resp.message == INVALID_TIME_MESSAGE
        scheduler.override_next.assert_not_called()

    def test_scheduler_refuses(self, service, scheduler):
        scheduler.override_next.return_value = False
        assert service.override_next_reminder("9:30 PM").kind is ResponseKind.ERROR


class TestHelp:
    def test_help_lists_commands(self, service):
        resp = service.help()
        assert resp.message == HELP_TEXT
        assert "/change-upcoming-maqraah-time" in resp.message
        assert "/notes carry-over-last-notes" in resp.message


class TestStoreErrors:
    def test_store_error_propagates(self, scheduler):
        note_db = MagicMock()
        note_db.list_pending.side_effect = Exception("database is locked")
        service = CommandService(MagicMock(), MagicMock(), note_db, scheduler)

        with pytest.raises(Exception, match="database is locked"):
            service.show_all_notes()
