"""
Discord Runtime Supervisor

Owns the lifecycle of the bot runtime.

Responsibilities:
- subscribe to jukebox notifications and open the Discord connection
- start the lifecycle coordinator once Discord is ready
- surface fatal post-start conditions through a single-slot error channel
- perform graceful, ordered shutdown

Shutdown order:
    stop receive loop and coordinator → unregister commands → wait for the
    in-flight notification to finish (cancel after a timeout) → close Discord
    → unsubscribe from jukebox

IMPORTANT:
- MUST NOT create its own event loop
- MUST NOT install signal handlers
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from shared.config.bot import DiscordBotConfig
from shared.logging.logger import get_logger
from services.discord.client import DiscordClient
from services.discord.commands.request import RequestCommandHandler
from services.discord.coordinator import LifecycleCoordinator
from services.discord.logging import DiscordLogAdapter
from services.discord.tokens import TokenCache
from services.jukebox.client import JukeboxClient

log = get_logger("discord.supervisor")

ClientFactory = Callable[..., DiscordClient]

SHUTDOWN_TIMEOUT_SECONDS = 10.0


class DiscordSupervisor:
    """
    Owns the bot runtime lifecycle.

    Contract:
    - start() raises on startup-fatal conditions
    - shutdown() is idempotent and blocks until background work drains
    - wait_error() resolves with the first fatal post-start error
    """

    def __init__(
        self,
        config: DiscordBotConfig,
        jukebox: JukeboxClient,
        *,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._config = config
        self._jukebox = jukebox

        self.logger = DiscordLogAdapter()
        self.tokens = TokenCache()
        self.handler = RequestCommandHandler(
            jukebox=jukebox,
            tokens=self.tokens,
            logger=self.logger,
        )

        factory = client_factory or DiscordClient
        self._client = factory(config, handler=self.handler, supervisor=self)
        self.coordinator = LifecycleCoordinator(
            self._client,
            report_error=self.report_error,
        )

        self._errors: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._client_task: Optional[asyncio.Task] = None
        self._coordinator_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self._running: bool = False

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self):
        """
        Start the bot runtime.
        """
        if self._running:
            raise RuntimeError("Discord supervisor already running")

        log.info("Starting bot...")

        try:
            await self._jukebox.subscribe()
        except Exception as e:
            log.error(f"Error subscribing to notifications: {e}")
            raise

        try:
            await self._client.open()
        except Exception as e:
            log.error(f"Error opening Discord connection: {e}")
            await self._jukebox.unsubscribe()
            raise

        self._client_task = asyncio.create_task(
            self._client.run(),
            name="discord-client",
        )
        self._client_task.add_done_callback(self._on_client_done)

        self._running = True
        self.logger.log_startup(guild_id=self._config.guild_id)
        log.info("Discord supervisor started")

    def on_ready(self, thumbnail_url: Optional[str]):
        """
        Called by the Discord client once connected and commands synced.
        Starts the coordinator on the first ready only.
        """
        self.coordinator.thumbnail_url = thumbnail_url

        if self._coordinator_task is not None:
            return

        self._coordinator_task = asyncio.create_task(
            self.coordinator.run(self._jukebox.notifications()),
            name="lifecycle-coordinator",
        )
        self._tasks.append(self._coordinator_task)
        log.info("Notifications received started.")

    def _on_client_done(self, task: asyncio.Task):
        if task.cancelled() or not self._running:
            return
        error = task.exception()
        if error is None:
            log.error("Discord client stopped unexpectedly")
            error = RuntimeError("discord client stopped unexpectedly")
        self.report_error(error)

    # --------------------------------------------------
    # Error channel
    # --------------------------------------------------

    def report_error(self, error: BaseException):
        try:
            self._errors.put_nowait(error)
        except asyncio.QueueFull:
            log.warning(f"Fatal error already pending, dropping: {error}")

    async def wait_error(self) -> BaseException:
        return await self._errors.get()

    # --------------------------------------------------
    # Shutdown
    # --------------------------------------------------

    async def shutdown(self):
        """
        Gracefully shut down the bot runtime.
        """
        if not self._running:
            return
        self._running = False

        log.info("Stopping bot...")

        self._jukebox.stop_receiving()
        self.coordinator.stop()

        try:
            await self._client.unregister_commands()
        except Exception as e:
            log.error(f"Error removing guild commands: {e}")

        log.info("Waiting for background processes...")
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS)
            for task in pending:
                log.warning(f"Background task {task.get_name()} did not stop, cancelling")
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._coordinator_task = None

        log.info("Closing session...")
        try:
            await self._client.shutdown()
        except Exception as e:
            log.warning(f"Discord client shutdown error ignored: {e}")

        if self._client_task is not None:
            if not self._client_task.done():
                self._client_task.cancel()
            await asyncio.gather(self._client_task, return_exceptions=True)
            self._client_task = None

        await self._jukebox.unsubscribe()

        self.logger.log_shutdown(guild_id=self._config.guild_id)
        log.info("Bot stopped")
