"""
Discord Command Registration

Thin registration layer for the guild-scoped /req slash command. All logic
lives in RequestCommandHandler; this module only performs Discord I/O
(defer, extract invoker, edit the deferred response).

IMPORTANT DESIGN RULES:
- No command registration on import
- No Discord client ownership
- Explicit setup() / teardown() calls only
"""

from __future__ import annotations

from typing import Optional, Tuple

import discord
from discord import app_commands
from discord.ext import commands

from shared.logging.logger import get_logger
from services.discord.commands.request import RequestCommandHandler
from services.discord.embeds import MSG_REQUEST_PROCESSED

log = get_logger("discord.commands")

CMD_REQUEST_NAME = "req"
CMD_REQUEST_DESCRIPTION = "楽曲リクエスト受付コマンド"
CMD_OPTION_URL_DESC = "Spotifyの楽曲URLを入力してください"


def invoker_identity(interaction: discord.Interaction) -> Tuple[Optional[str], str]:
    """
    Return (user id, display name) of the user who invoked the command.
    """
    user = getattr(interaction, "user", None)
    if user is None or getattr(user, "id", None) is None:
        return None, ""
    return str(user.id), getattr(user, "display_name", None) or getattr(user, "name", "")


async def respond(interaction: discord.Interaction, content: str) -> None:
    """
    Replace the deferred "thinking" response. Discord rejects an empty
    message, so an empty service message is shown as a neutral notice.
    """
    try:
        await interaction.edit_original_response(content=content or MSG_REQUEST_PROCESSED)
    except discord.HTTPException as e:
        log.error(f"Error response update: {e}")


def build_request_command(handler: RequestCommandHandler) -> app_commands.Command:
    @app_commands.command(
        name=CMD_REQUEST_NAME,
        description=CMD_REQUEST_DESCRIPTION,
    )
    @app_commands.describe(url=CMD_OPTION_URL_DESC)
    async def request_command(
        interaction: discord.Interaction,
        url: str,
    ):
        # the bot is too slow to answer within the interaction deadline
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
        except discord.HTTPException as e:
            log.error(f"Defer response failed: {e}")
            return

        user_id, display_name = invoker_identity(interaction)

        result = await handler.request_track(
            user_id=user_id,
            display_name=display_name,
            track_url=url,
        )

        await respond(interaction, result["message"])

    return request_command


def setup(
    bot: commands.Bot,
    *,
    handler: RequestCommandHandler,
    guild: discord.abc.Snowflake,
) -> app_commands.Command:
    """
    Add the /req command to the bot's command tree for one guild.

    The tree is synced separately once the bot is ready.
    """
    command = build_request_command(handler)
    bot.tree.add_command(command, guild=guild)
    log.info(f"Registering command: {command.name}")
    return command


async def sync(bot: commands.Bot, *, guild: discord.abc.Snowflake) -> None:
    synced = await bot.tree.sync(guild=guild)
    for command in synced:
        log.info(f"Command registered: {command.name}")


async def teardown(bot: commands.Bot, *, guild: discord.abc.Snowflake) -> None:
    """
    Remove every guild command registered by this bot.
    """
    bot.tree.clear_commands(guild=guild)
    await bot.tree.sync(guild=guild)
    log.info("Commands unregistered")
