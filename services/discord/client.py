"""
Discord Client

This module owns the Discord connection itself.

Responsibilities:
- log in / connect to the gateway
- handle ready / resume / disconnect events
- register and sync the /req command for the configured guild
- create forum topics and post into them
- expose a clean async open() / run() / shutdown() contract

IMPORTANT:
- This client MUST be controlled by DiscordSupervisor
- This client MUST NOT create its own event loop
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

import discord
from discord.ext import commands

from shared.config.bot import DiscordBotConfig
from shared.logging.logger import get_logger

from services.discord import commands as bot_commands
from services.discord.commands.request import RequestCommandHandler
from services.discord.embeds import TopicMessage
from services.discord.status import DiscordStatusManager

if TYPE_CHECKING:
    from services.discord.runtime.supervisor import DiscordSupervisor

log = get_logger("discord.client")

TOPIC_AUTO_ARCHIVE_MINUTES = 1440  # 24時間
GUILD_ICON_SIZE = 1024


class DiscordClient:
    """
    Thin wrapper around discord.py Bot.

    This class provides:
    - async open() / run() entrypoints
    - async shutdown()
    - forum topic create / send
    - command surface wiring
    """

    def __init__(
        self,
        config: DiscordBotConfig,
        *,
        handler: RequestCommandHandler,
        supervisor: Optional["DiscordSupervisor"] = None,
        status: Optional[DiscordStatusManager] = None,
    ):
        if not config.token:
            raise RuntimeError("Discord bot token is not configured")

        self._config = config
        self._handler = handler
        self._supervisor = supervisor
        self._guild = discord.Object(id=config.guild_snowflake)
        self._bot: Optional[commands.Bot] = None

        self.status = status or DiscordStatusManager()
        self.guild_icon_url: Optional[str] = None

    # --------------------------------------------------

    def _build_bot(self) -> commands.Bot:
        """
        Construct the discord.py Bot instance.
        """

        intents = discord.Intents.none()
        intents.guilds = True

        bot = commands.Bot(
            command_prefix=commands.when_mentioned,
            intents=intents,
        )

        bot_commands.setup(bot, handler=self._handler, guild=self._guild)

        # --------------------------------------------------
        # Lifecycle Events
        # --------------------------------------------------

        @bot.event
        async def on_ready():
            log.info(f"Logged in as: {bot.user} (id={bot.user.id})")

            try:
                self.guild_icon_url = await self._fetch_guild_icon(bot)
            except discord.DiscordException as e:
                log.error(f"Error getting guild: {e}")
                if self._supervisor:
                    self._supervisor.report_error(e)
                return
            log.info(f"Guild icon URL: {self.guild_icon_url}")

            await self.status.apply(bot)

            try:
                await bot_commands.sync(bot, guild=self._guild)
            except discord.DiscordException as e:
                log.error(f"Error registering command: {e}")

            log.info("Logged in done!")

            if self._supervisor:
                self._supervisor.on_ready(self.guild_icon_url)

        @bot.event
        async def on_resumed():
            log.info("Discord connection resumed")
            await self.status.apply(bot)

        @bot.event
        async def on_disconnect():
            log.warning("Discord connection lost")

        return bot

    async def _fetch_guild_icon(self, bot: commands.Bot) -> Optional[str]:
        guild = bot.get_guild(self._config.guild_snowflake)
        if guild is None:
            guild = await bot.fetch_guild(self._config.guild_snowflake)
        if guild.icon is None:
            return None
        return guild.icon.replace(size=GUILD_ICON_SIZE).url

    # --------------------------------------------------

    async def open(self):
        """
        Log in to Discord. Raises if the token is rejected.
        """
        if self._bot is not None:
            raise RuntimeError("Discord client already running")

        log.info("Initializing Discord client")
        self._bot = self._build_bot()

        try:
            await self._bot.login(self._config.token)
        except Exception:
            await self._bot.close()
            self._bot = None
            raise

    async def run(self):
        """
        Hold the gateway connection until shutdown.
        """
        if self._bot is None:
            raise RuntimeError("Discord client is not open")

        try:
            await self._bot.connect()
        except asyncio.CancelledError:
            log.info("Discord client task cancelled")
            raise
        except Exception as e:
            log.error(f"Discord client crashed: {e}")
            raise
        finally:
            log.info("Discord client stopped")

    # --------------------------------------------------
    # Forum topics
    # --------------------------------------------------

    async def _resolve_channel(self, channel_id: int):
        bot = self._require_bot()
        channel = bot.get_channel(channel_id)
        if channel is None:
            channel = await bot.fetch_channel(channel_id)
        return channel

    async def create_forum_topic(self, title: str, message: TopicMessage) -> str:
        forum = await self._resolve_channel(self._config.forum_channel_id)
        if not isinstance(forum, discord.ForumChannel):
            raise RuntimeError(f"channel {self._config.forum_id} is not a forum channel")

        created = await forum.create_thread(
            name=title,
            auto_archive_duration=TOPIC_AUTO_ARCHIVE_MINUTES,
            content=message.content,
            embed=message.embed,
        )
        thread = created.thread
        log.info(f"Created forum topic: {thread.name} (ID: {thread.id})")
        return str(thread.id)

    async def send_to_topic(self, topic_id: str, message: TopicMessage) -> str:
        channel = await self._resolve_channel(int(topic_id))
        if not isinstance(channel, discord.abc.Messageable):
            raise RuntimeError(f"channel {topic_id} cannot receive messages")

        sent = await channel.send(content=message.content, embed=message.embed)
        log.info(f"Sent message to topic: {sent.id} (ID: {sent.channel.id})")
        return str(sent.id)

    # --------------------------------------------------

    async def unregister_commands(self):
        bot = self._require_bot()
        await bot_commands.teardown(bot, guild=self._guild)

    async def shutdown(self):
        """
        Gracefully close the Discord connection.
        """
        if not self._bot:
            return

        log.info("Closing Discord connection")

        try:
            await self._bot.close()
        except Exception as e:
            log.warning(f"Discord close error ignored: {e}")

        self._bot = None

    # --------------------------------------------------

    def _require_bot(self) -> commands.Bot:
        if self._bot is None:
            raise RuntimeError("Discord client is not open")
        return self._bot
