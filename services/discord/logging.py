"""
Discord Logging Adapter

Normalizes Discord-originated events (startup, shutdown, command
outcomes) into one structured log line each, so command handlers do not
format their own audit records.

IMPORTANT:
- This module MUST NOT send network requests
- This module MUST NOT depend on discord.py objects directly
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("discord.events")


class DiscordLogAdapter:
    # --------------------------------------------------
    # Structured Event Hooks
    # --------------------------------------------------

    def log_event(
        self,
        *,
        event: str,
        level: int = logging.INFO,
        guild_id: Optional[str] = None,
        user_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        """
        Record a structured Discord event.
        """

        payload = {
            "event": event,
            "guild_id": guild_id,
            "user_id": user_id,
            "data": data or {},
        }

        log.log(level, f"Discord event: {payload}")

    # --------------------------------------------------
    # Convenience Helpers
    # --------------------------------------------------

    def log_startup(self, *, guild_id: Optional[str] = None):
        self.log_event(event="discord_startup", guild_id=guild_id)

    def log_shutdown(self, *, guild_id: Optional[str] = None):
        self.log_event(event="discord_shutdown", guild_id=guild_id)

    def log_command(
        self,
        *,
        command: str,
        user_id: Optional[str],
        success: bool,
        extra: Optional[Dict[str, Any]] = None,
    ):
        """Log a Discord slash command outcome."""
        self.log_event(
            event="discord_command",
            level=logging.INFO if success else logging.WARNING,
            data={
                "command": command,
                "success": success,
                "extra": extra or {},
            },
            user_id=user_id,
        )
