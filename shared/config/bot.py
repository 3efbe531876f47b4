"""
Bot configuration (flags + environment).

Design rules:
- Import-safe (no side effects)
- Values are resolved by the entrypoint; this module only models and
  validates them
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from runtime.version import DESCRIPTION, PROJECT_NAME

DEFAULT_SERVER_URL = "http://localhost:8080"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """
    Raised when required settings are missing or malformed.
    """

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


@dataclass
class DiscordBotConfig:
    token: str = ""
    forum_id: str = ""
    guild_id: str = ""

    def validate(self) -> None:
        missing = [
            name
            for name in ("token", "forum_id", "guild_id")
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise ConfigError(
                f"struct validation failed: missing required field(s): {', '.join(missing)}",
                fields=missing,
            )

        for name in ("forum_id", "guild_id"):
            if not str(getattr(self, name)).strip().isdigit():
                raise ConfigError(
                    f"struct validation failed: {name} must be a numeric Discord id",
                    fields=[name],
                )

    @property
    def forum_channel_id(self) -> int:
        return int(self.forum_id)

    @property
    def guild_snowflake(self) -> int:
        return int(self.guild_id)


@dataclass
class AppSettings:
    command: str
    server_url: str
    verbose: bool
    logfile: str
    discord: DiscordBotConfig


def _env_flag(env: Mapping[str, str], key: str) -> bool:
    return str(env.get(key, "")).strip().lower() in _TRUE_VALUES


def build_parser(env: Optional[Mapping[str, str]] = None) -> argparse.ArgumentParser:
    env = os.environ if env is None else env

    parser = argparse.ArgumentParser(prog=PROJECT_NAME, description=DESCRIPTION)
    parser.add_argument(
        "command",
        nargs="?",
        choices=["start"],
        default="start",
        help="Start the bot (default)",
    )
    parser.add_argument(
        "--server",
        default=env.get("JUKEBOX_SERVER_URL") or DEFAULT_SERVER_URL,
        help="Server address (env: JUKEBOX_SERVER_URL)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=_env_flag(env, "VERBOSE"),
        help="Enable verbose (DEBUG) logging (env: VERBOSE)",
    )
    parser.add_argument(
        "--logfile",
        default=env.get("LOGFILE", ""),
        help="Path to log file (default: stdout) (env: LOGFILE)",
    )
    parser.add_argument(
        "--token",
        default=env.get("DISCORD_BOT_TOKEN", ""),
        help="Discord bot token (env: DISCORD_BOT_TOKEN)",
    )
    parser.add_argument(
        "--guild-id",
        default=env.get("DISCORD_GUILD_ID", ""),
        help="Discord guild ID (env: DISCORD_GUILD_ID)",
    )
    parser.add_argument(
        "--forum-id",
        default=env.get("DISCORD_FORUM_ID", ""),
        help="Discord forum ID (env: DISCORD_FORUM_ID)",
    )
    return parser


def load_settings(
    argv: Optional[Sequence[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppSettings:
    """
    Resolve settings from command-line flags, falling back to environment
    variables. Flags win over the environment.
    """
    args = build_parser(env).parse_args(argv)

    return AppSettings(
        command=args.command,
        server_url=args.server,
        verbose=bool(args.verbose),
        logfile=args.logfile or "",
        discord=DiscordBotConfig(
            token=args.token or "",
            forum_id=args.forum_id or "",
            guild_id=args.guild_id or "",
        ),
    )
