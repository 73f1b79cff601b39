"""
Maqraah Bot — Discord Bot.

Discord is the only user interface. Slash commands are thin wrappers
around CommandService: they pull options off the interaction, call the
service, and render the response object as an (ephemeral) reply, an
embed, or a series of channel messages.

The daily reminder itself is posted by ReminderScheduler through the
DiscordNotifier adapter.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from functools import wraps
from typing import Any, Callable, Coroutine

import discord
from discord import app_commands

from src.config import settings
from src.core.command_service import (
    CommandService,
    ConfigurationUpdatedResponse,
    FieldsResponse,
    ListingResponse,
    PreviewResponse,
    ServiceResponse,
    voice_channel_name,
)
from src.data.models import ConfigurationUpdate

logger = logging.getLogger(__name__)

EMBED_COLOR = 0x0099FF
GENERIC_ERROR_MESSAGE = "There was an error executing this command!"

WELCOME_MESSAGE = (
    "Hello! I am the Maqraah bot. I am here to help you track your daily "
    "Qur'an and Hadith reading.\n\n"
    "To get started, please use the `/configuration update` command to set up "
    "your preferences. You can configure multiple settings at once.\n\n"
    "Once you have configured me, I will send you a daily reminder to read "
    "your Qur'an and Hadith.\n\n"
    "For more information, use `/help` to see all available commands."
)


# ---------------------------------------------------------------------------
# Error boundary
# ---------------------------------------------------------------------------


def command_handler(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that logs each command and turns any failure into a reply.

    Validation problems never reach this point (the service returns an
    ErrorResponse for them); this catches store and Discord errors.
    """

    @wraps(func)
    async def wrapper(interaction: discord.Interaction, *args: Any, **kwargs: Any) -> None:
        command = interaction.command.qualified_name if interaction.command else "?"
        started = time.monotonic()
        try:
            await func(interaction, *args, **kwargs)
        except Exception as exc:
            logger.error(
                "Command /%s failed for user %s: %s",
                command, interaction.user.id, exc, exc_info=True,
            )
            await _reply_error(interaction)
            return
        logger.info(
            "Command /%s by user %s done in %.0f ms",
            command, interaction.user.id, (time.monotonic() - started) * 1000,
        )

    return wrapper


async def _reply_error(interaction: discord.Interaction) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(GENERIC_ERROR_MESSAGE, ephemeral=True)
        else:
            await interaction.response.send_message(GENERIC_ERROR_MESSAGE, ephemeral=True)
    except discord.HTTPException as exc:
        logger.error("Could not deliver error reply: %s", exc)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def build_embed(response: FieldsResponse) -> discord.Embed:
    embed = discord.Embed(title=response.message, color=EMBED_COLOR)
    for name, value in response.fields:
        embed.add_field(name=name, value=value, inline=True)
    return embed


async def send_preview(
    channel: discord.abc.Messageable, messages: list[str],
) -> int:
    """Post each message; a failed send does not stop the rest."""
    from src.adapters.discord_notifier import REMINDER_MENTIONS

    sent = 0
    for text in messages:
        try:
            await channel.send(text, allowed_mentions=REMINDER_MENTIONS)
            sent += 1
        except discord.HTTPException as exc:
            logger.error("Failed to send preview message: %s", exc)
    return sent


async def render(interaction: discord.Interaction, response: ServiceResponse) -> None:
    """Reply to ``interaction`` according to the response type."""
    if isinstance(response, FieldsResponse):
        await interaction.response.send_message(
            embed=build_embed(response), ephemeral=response.ephemeral,
        )
        return

    if isinstance(response, ListingResponse):
        first, *rest = response.chunks or [response.message]
        await interaction.response.send_message(first, ephemeral=response.ephemeral)
        for chunk in rest:
            await interaction.followup.send(chunk, ephemeral=response.ephemeral)
        return

    if isinstance(response, PreviewResponse):
        await interaction.response.defer(ephemeral=True, thinking=True)
        sent = await send_preview(interaction.channel, response.messages)
        if sent == len(response.messages):
            await interaction.followup.send(response.message, ephemeral=True)
        else:
            await interaction.followup.send(
                f"Sent {sent}/{len(response.messages)} reminder message(s). "
                "Check that I can post in this channel.",
                ephemeral=True,
            )
        return

    await interaction.response.send_message(response.message, ephemeral=response.ephemeral)


def _service(interaction: discord.Interaction) -> CommandService:
    return interaction.client.service


# ---------------------------------------------------------------------------
# /configuration
# ---------------------------------------------------------------------------

configuration_group = app_commands.Group(
    name="configuration", description="Manage bot configuration",
)


@configuration_group.command(name="update", description="Update configuration settings")
@app_commands.describe(
    role="Role to ping for reminders",
    voicechannel="Voice channel to update with time",
    time="Daily reminder time (HH:MM AM/PM)",
    timezone="Timezone for reminders (e.g., Africa/Cairo)",
)
@command_handler
async def configuration_update(
    interaction: discord.Interaction,
    role: discord.Role | None = None,
    voicechannel: discord.VoiceChannel | None = None,
    time: str | None = None,
    timezone: str | None = None,
) -> None:
    response = _service(interaction).update_configuration(
        role_id=str(role.id) if role else None,
        voice_channel_id=str(voicechannel.id) if voicechannel else None,
        daily_time=time,
        timezone=timezone,
    )
    await render(interaction, response)

    if isinstance(response, ConfigurationUpdatedResponse) and response.time_changed:
        await rename_voice_channel(interaction.guild, response)


async def rename_voice_channel(
    guild: discord.Guild | None, response: ConfigurationUpdatedResponse,
) -> None:
    """Rename the configured voice channel to announce the new time."""
    configuration = response.configuration
    if guild is None or configuration is None or not configuration.voice_channel_id:
        return

    channel = guild.get_channel(int(configuration.voice_channel_id))
    if not isinstance(channel, discord.VoiceChannel):
        logger.warning("Voice channel %s not found", configuration.voice_channel_id)
        return
    if not channel.permissions_for(guild.me).manage_channels:
        logger.error("Bot lacks Manage Channels permission for voice channel %s", channel.id)
        return

    try:
        await channel.edit(name=voice_channel_name(configuration.daily_time))
    except discord.HTTPException as exc:
        logger.error("Failed to update voice channel name: %s", exc)


@configuration_group.command(name="show", description="Display current configuration")
@command_handler
async def configuration_show(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).show_configuration())


# ---------------------------------------------------------------------------
# /progress
# ---------------------------------------------------------------------------

progress_group = app_commands.Group(name="progress", description="Manage reading progress")


@progress_group.command(name="update", description="Update daily reading progress")
@app_commands.describe(
    last_quran_page="Last Qur'an page read",
    last_hadith="Last Hadith read",
)
@app_commands.rename(last_quran_page="last-quran-page", last_hadith="last-hadith")
@command_handler
async def progress_update(
    interaction: discord.Interaction,
    last_quran_page: int | None = None,
    last_hadith: int | None = None,
) -> None:
    response = _service(interaction).update_progress(
        last_page=last_quran_page, last_hadith=last_hadith,
    )
    await render(interaction, response)


@progress_group.command(name="show", description="Display current reading progress")
@command_handler
async def progress_show(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).show_progress())


# ---------------------------------------------------------------------------
# /notes
# ---------------------------------------------------------------------------

notes_group = app_commands.Group(name="notes", description="Manage notes")


@notes_group.command(name="create", description="Add a note to the next reminder")
@app_commands.describe(text="The note text")
@command_handler
async def notes_create(interaction: discord.Interaction, text: str) -> None:
    await render(interaction, _service(interaction).create_note(str(interaction.user.id), text))


@notes_group.command(name="show-mine", description="Show your pending notes")
@command_handler
async def notes_show_mine(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).show_my_notes(str(interaction.user.id)))


@notes_group.command(name="show-all", description="Show all pending notes from all users")
@command_handler
async def notes_show_all(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).show_all_notes())


@notes_group.command(name="delete", description="Delete pending notes by position")
@app_commands.describe(positions="Comma-separated positions from /notes show-all, e.g. 1,3")
@command_handler
async def notes_delete(interaction: discord.Interaction, positions: str) -> None:
    await render(interaction, _service(interaction).delete_notes(positions))


@notes_group.command(name="delete-mine", description="Remove all your notes")
@command_handler
async def notes_delete_mine(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).delete_my_notes(str(interaction.user.id)))


@notes_group.command(name="delete-all", description="Remove all notes for everyone")
@command_handler
async def notes_delete_all(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).delete_all_notes())


@notes_group.command(
    name="carry-over-last-notes",
    description="Include the notes of the last reminder again in the next one",
)
@command_handler
async def notes_carry_over(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).carry_over_last_notes())


@notes_group.command(name="show-history", description="Show notes already included in reminders")
@command_handler
async def notes_show_history(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).show_history())


# ---------------------------------------------------------------------------
# /test
# ---------------------------------------------------------------------------

test_group = app_commands.Group(name="test", description="Test reminder commands")


@test_group.command(
    name="preview-reminder", description="Send test reminder without mentioning anyone",
)
@command_handler
async def test_preview_reminder(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).preview_reminder(mention_role=False))


@test_group.command(name="mention-everyone", description="Send test reminder with role mention")
@command_handler
async def test_mention_everyone(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).preview_reminder(mention_role=True))


# ---------------------------------------------------------------------------
# Top-level commands
# ---------------------------------------------------------------------------


@app_commands.command(
    name="change-upcoming-maqraah-time",
    description="Change the time for the next maqraah reminder",
)
@app_commands.describe(time="New time for the reminder (HH:MM AM/PM)")
@command_handler
async def change_upcoming_time(interaction: discord.Interaction, time: str) -> None:
    await render(interaction, _service(interaction).override_next_reminder(time))


@app_commands.command(name="help", description="List all available commands")
@command_handler
async def help_command(interaction: discord.Interaction) -> None:
    await render(interaction, _service(interaction).help())


COMMANDS = (
    configuration_group,
    progress_group,
    notes_group,
    test_group,
    change_upcoming_time,
    help_command,
)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class MaqraahBot(discord.Client):
    """Discord client wiring the store, scheduler and command service."""

    def __init__(
        self,
        guild_id: int,
        channel_id: int,
        db_path: str | None = None,
        max_message_length: int = 2000,
    ) -> None:
        super().__init__(intents=discord.Intents(guilds=True))
        from src.adapters.discord_notifier import DiscordNotifier
        from src.core.scheduler import ReminderScheduler
        from src.data.db import ConfigurationDB, NoteDB, ProgressDB

        self.guild_id = guild_id
        self.channel_id = channel_id
        self.tree = app_commands.CommandTree(self)
        for command in COMMANDS:
            self.tree.add_command(command, guild=discord.Object(id=guild_id))

        self.configuration_db = ConfigurationDB(db_path)
        self.progress_db = ProgressDB(db_path)
        self.note_db = NoteDB(db_path)
        self.reminders = ReminderScheduler(
            self.configuration_db,
            self.progress_db,
            self.note_db,
            DiscordNotifier(self),
            channel_id=channel_id,
            max_message_length=max_message_length,
        )
        self.service = CommandService(
            self.configuration_db,
            self.progress_db,
            self.note_db,
            self.reminders,
            max_message_length=max_message_length,
        )
        self._started = False
        self.shutdown_task: asyncio.Task | None = None

    async def setup_hook(self) -> None:
        self.reminders.start()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user)
        if self._started:
            return  # reconnect
        self._started = True

        try:
            synced = await self.tree.sync(guild=discord.Object(id=self.guild_id))
            logger.info("Synced %d slash command(s) to guild %d", len(synced), self.guild_id)
        except discord.HTTPException as exc:
            logger.error("Slash command sync failed: %s", exc)

        self.reminders.schedule()
        await self._send_welcome()

    async def _send_welcome(self) -> None:
        channel = self.get_channel(self.channel_id)
        if not isinstance(channel, discord.TextChannel):
            logger.warning("Channel %d not found in cache, skipping welcome message", self.channel_id)
            return

        permissions = channel.permissions_for(channel.guild.me)
        if not (permissions.view_channel and permissions.send_messages):
            logger.error("Missing permissions to send messages in channel %d", self.channel_id)
            return

        try:
            await channel.send(WELCOME_MESSAGE)
            logger.info("Welcome message sent to channel %d", self.channel_id)
        except discord.HTTPException as exc:
            logger.error("Failed to send welcome message: %s", exc)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        """Default the reminder role to @everyone of the joined guild."""
        logger.info("Joined guild %s (%d)", guild.name, guild.id)
        try:
            self.configuration_db.update_configuration(
                ConfigurationUpdate(role_id=str(guild.default_role.id))
            )
        except Exception as exc:
            logger.error("Failed to update configuration for guild %d: %s", guild.id, exc)

    async def close(self) -> None:
        self.reminders.shutdown()
        await super().close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_bot() -> MaqraahBot:
    return MaqraahBot(
        guild_id=settings.GUILD_ID,
        channel_id=settings.CHANNEL_ID,
        db_path=settings.DATABASE_PATH,
        max_message_length=settings.MAX_MESSAGE_LENGTH,
    )


async def _run(bot: MaqraahBot) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig, lambda s=sig: _request_shutdown(bot, s),
            )
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still stops asyncio.run

    async with bot:
        await bot.start(settings.DISCORD_TOKEN)


def _request_shutdown(bot: MaqraahBot, sig: signal.Signals) -> None:
    if bot.shutdown_task is not None and not bot.shutdown_task.done():
        return
    logger.info("Received %s, shutting down gracefully", sig.name)
    bot.shutdown_task = asyncio.get_running_loop().create_task(bot.close())


def main() -> None:
    """Entry point: build the bot and run until interrupted."""
    logger.info("Starting Maqraah bot...")
    try:
        bot = build_bot()
        asyncio.run(_run(bot))
    except discord.LoginFailure as exc:
        logger.critical("Discord login failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    sys.exit(0)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
