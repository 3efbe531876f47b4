"""
Track request command handler (/req).

Pure logic: receives plain values extracted from the interaction and
returns the text of the final response. All Discord I/O stays in the
registration layer.

Flow per invocation:
- reject locally when the user id or the track reference is missing
- resolve the user's jukebox token (Join on first use, shared per user)
- forward the request, pass the service's own message back verbatim

Transport failures are reported to the invoking user as a generic internal
error; the detail goes to the log only.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger
from services.discord.embeds import MSG_INTERNAL_ERROR
from services.discord.logging import DiscordLogAdapter
from services.discord.tokens import TokenCache
from services.jukebox.client import JukeboxClient
from services.jukebox.connect import JukeboxError

log = get_logger("discord.commands.request")

REMOTE_TIMEOUT_SECONDS = 10.0


class RequestCommandHandler:
    def __init__(
        self,
        *,
        jukebox: JukeboxClient,
        tokens: Optional[TokenCache] = None,
        logger: Optional[DiscordLogAdapter] = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
    ):
        self._jukebox = jukebox
        self._tokens = tokens or TokenCache()
        self._logger = logger or DiscordLogAdapter()
        self._timeout = timeout

    def _failed(self, user_id: Optional[str], reason: str) -> Dict[str, Any]:
        self._logger.log_command(
            command="req",
            user_id=user_id,
            success=False,
            extra={"reason": reason},
        )
        return {"ok": False, "message": MSG_INTERNAL_ERROR, "code": None}

    async def request_track(
        self,
        *,
        user_id: Optional[str],
        display_name: str,
        track_url: Optional[str],
    ) -> Dict[str, Any]:
        """
        Handle one /req invocation.

        Returns {"ok", "message", "code"}; "message" is always suitable as
        the user-visible response.
        """
        if not user_id:
            log.error("User ID not found")
            return self._failed(None, "missing_user")

        log.info(f"Command from user: ID={user_id}, Name={display_name}")

        track_url = (track_url or "").strip()
        if not track_url:
            log.error("No options provided")
            return self._failed(user_id, "missing_url")

        log.info(f"Request trackURL=[{track_url}] from user: ID={user_id}")

        async def _join() -> str:
            return await asyncio.wait_for(
                self._jukebox.join(display_name, user_id, timeout=self._timeout),
                timeout=self._timeout,
            )

        try:
            token = await self._tokens.get_or_join(user_id, _join)
        except (JukeboxError, asyncio.TimeoutError) as e:
            log.error(f"Error 19box join: {e!r}")
            return self._failed(user_id, "join_failed")

        try:
            success, message, code = await asyncio.wait_for(
                self._jukebox.request_track(token, track_url, timeout=self._timeout),
                timeout=self._timeout,
            )
        except (JukeboxError, asyncio.TimeoutError) as e:
            log.error(f"Error 19box request track: {e!r}")
            return self._failed(user_id, "request_failed")

        log.info(
            f"Request track response: success={success}, "
            f"message={message}, code={code}"
        )

        self._logger.log_command(
            command="req",
            user_id=user_id,
            success=success,
            extra={"code": code},
        )

        return {"ok": success, "message": message, "code": code}
