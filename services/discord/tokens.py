"""
Per-user jukebox token cache.

A token is issued by the jukebox Join call the first time a Discord user
submits a request, then reused for every later request from that user for
the lifetime of the process. Entries never expire.

Concurrent first-time requests from the same user share one in-flight Join:
the first caller registers a future with load-or-store semantics, later
callers await it. A failed Join is not cached, so the next request retries.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from shared.logging.logger import get_logger
from shared.runtime.concurrency import ConcurrentMap

log = get_logger("discord.tokens")

JoinFn = Callable[[], Awaitable[str]]


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return bool(task is not None and task.cancelling())


class TokenCache:
    def __init__(self) -> None:
        self._tokens: ConcurrentMap[str, str] = ConcurrentMap()
        self._pending: ConcurrentMap[str, asyncio.Future] = ConcurrentMap()

    def load(self, user_id: str) -> Optional[str]:
        token, ok = self._tokens.load(user_id)
        return token if ok else None

    def store(self, user_id: str, token: str) -> None:
        self._tokens.store(user_id, token)

    async def get_or_join(self, user_id: str, join: JoinFn) -> str:
        loop = asyncio.get_running_loop()

        while True:
            token = self.load(user_id)
            if token is not None:
                return token

            future, loaded = self._pending.load_or_store(user_id, loop.create_future())
            if not loaded:
                return await self._join(user_id, future, join)

            log.debug(f"Awaiting in-flight join for user: {user_id}")
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                # The joining caller was cancelled; claim the join ourselves.
                if future.cancelled() and not _current_task_cancelling():
                    continue
                raise

    async def _join(self, user_id: str, future: asyncio.Future, join: JoinFn) -> str:
        # Another caller may have finished between the load and the claim.
        token = self.load(user_id)
        if token is not None:
            self._pending.delete(user_id)
            future.set_result(token)
            return token

        log.info(f"Token not found for user: {user_id}, generating new token")
        try:
            issued = await join()
        except BaseException as e:
            self._pending.delete(user_id)
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(e)
                # Mark retrieved so an unawaited failure is not reported.
                future.exception()
            raise

        token, _ = self._tokens.load_or_store(user_id, issued)
        self._pending.delete(user_id)
        future.set_result(token)
        return token
