"""
Discord Status Module

Responsibilities:
- Apply the bot presence ("listening" activity) on ready / resume

IMPORTANT:
- This module does NOT register commands
- This module does NOT own the Discord client
"""

from __future__ import annotations

from typing import Optional

import discord

from shared.logging.logger import get_logger

log = get_logger("discord.status")

ACTIVITY_NAME = "19box Discord Bot"
ACTIVITY_STATE = "🎵 Spotifyの曲を共有中"


class DiscordStatusManager:
    def __init__(
        self,
        *,
        name: str = ACTIVITY_NAME,
        state: Optional[str] = ACTIVITY_STATE,
    ):
        self._name = name
        self._state = state

    def activity(self) -> discord.Activity:
        return discord.Activity(
            type=discord.ActivityType.listening,
            name=self._name,
            state=self._state,
        )

    async def apply(self, bot: discord.Client):
        """
        Apply the presence to the Discord client.
        Safe to call multiple times.
        """
        try:
            await bot.change_presence(
                status=discord.Status.online,
                activity=self.activity(),
            )
            log.info(
                f"Discord presence updated: "
                f"name={self._name!r} "
                f"state={self._state!r}"
            )
        except Exception as e:
            log.error(f"Error updating status: {e}")
