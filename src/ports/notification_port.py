"""Notification port — abstract interface for posting messages to a channel.

Core modules depend on this protocol, never on a specific chat platform.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, channel_id: int, text: str) -> None: ...
