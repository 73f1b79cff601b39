"""Discord notification adapter — implements NotificationPort.

Wraps a discord.Client instance to satisfy the NotificationPort protocol.
"""

from __future__ import annotations

import logging

import discord

logger = logging.getLogger(__name__)

# Reminders may ping roles and users; never @everyone/@here from note text.
REMINDER_MENTIONS = discord.AllowedMentions(everyone=False, roles=True, users=True)


class DiscordNotifier:
    """Discord implementation of NotificationPort."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self._client.get_channel(channel_id)
        if channel is None:
            logger.debug("Channel %d not cached, fetching", channel_id)
            channel = await self._client.fetch_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise TypeError(f"Channel {channel_id} cannot receive messages")
        return channel

    async def send_message(self, channel_id: int, text: str) -> None:
        channel = await self._resolve_channel(channel_id)
        await channel.send(text, allowed_mentions=REMINDER_MENTIONS)
