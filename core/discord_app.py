"""
======================================================================
 19box-discordbot : 19box jukebox discord client
======================================================================
"""

"""
Bot runtime entrypoint.

This module launches the bot as an independent process. It owns:

- event loop creation
- settings resolution (.env, flags, environment)
- logging scope
- orderly startup and shutdown

The process runs until a shutdown signal arrives or the supervisor reports
a fatal error (notification stream ended), whichever comes first.
"""

import asyncio
import signal
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from runtime.version import as_string
from shared.config.bot import AppSettings, ConfigError, load_settings
from shared.logging.logger import configure_logging, get_logger
from shared.utils.timezone import init_timezone
from services.discord.runtime.supervisor import DiscordSupervisor
from services.jukebox.client import JukeboxClient

log = get_logger("core.discord_app")


# ----------------------------------------------------------------------
# MAIN ASYNC ENTRYPOINT
# ----------------------------------------------------------------------

async def main(settings: AppSettings, stop_event: asyncio.Event) -> int:
    log.info(f"{as_string()} booting")

    jukebox = JukeboxClient(settings.server_url)
    supervisor = DiscordSupervisor(settings.discord, jukebox)

    # --------------------------------------------------
    # START
    # --------------------------------------------------
    try:
        await supervisor.start()
    except Exception as e:
        log.error(f"Failed to start bot: {e}")
        await jukebox.aclose()
        return 1

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL OR FATAL ERROR
    # --------------------------------------------------
    stop_task = asyncio.create_task(stop_event.wait())
    error_task = asyncio.create_task(supervisor.wait_error())

    try:
        done, pending = await asyncio.wait(
            {stop_task, error_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (stop_task, error_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(stop_task, error_task, return_exceptions=True)

    if error_task in done and not error_task.cancelled():
        log.error(f"Bot error: {error_task.result()}")
    else:
        log.info("Received shutdown signal...")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN
    # --------------------------------------------------
    try:
        await supervisor.shutdown()
    except Exception as e:
        log.warning(f"Supervisor shutdown error ignored: {e}")

    await jukebox.aclose()
    return 0


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run(argv: Optional[Sequence[str]] = None) -> int:
    # .env is optional; missing file is not an error
    load_dotenv()
    init_timezone()

    settings = load_settings(argv)
    configure_logging(verbose=settings.verbose, logfile=settings.logfile)

    try:
        settings.discord.validate()
    except ConfigError as e:
        log.error(f"Config validation failed: {e}")
        log.info("Please provide required settings via flags or environment variables.")
        return 1

    log.debug(f"config.token:[{settings.discord.token}]")
    log.debug(f"config.forum_id:[{settings.discord.forum_id}]")
    log.debug(f"config.guild_id:[{settings.discord.guild_id}]")
    log.debug(f"config.server:[{settings.server_url}]")

    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    exit_code = 0
    try:
        exit_code = loop.run_until_complete(main(settings, stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(run())
