"""Runtime version metadata for the 19box Discord bot.

This module is import-safe and exposes authoritative version identifiers for
other runtime modules without executing side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "19box-discordbot"
DESCRIPTION = "19box jukebox discord client"
VERSION = "v0.1.0"

__all__ = [
    "PROJECT_NAME",
    "DESCRIPTION",
    "VERSION",
    "as_string",
]


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION}"
