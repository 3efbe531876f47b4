import asyncio
import unittest

from services.discord.tokens import TokenCache
from services.jukebox.connect import JukeboxError


class TokenCacheTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_requests_share_one_join(self) -> None:
        cache = TokenCache()
        calls = 0
        release = asyncio.Event()

        async def join() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "token-1"

        first = asyncio.create_task(cache.get_or_join("u1", join))
        second = asyncio.create_task(cache.get_or_join("u1", join))
        await asyncio.sleep(0)
        release.set()

        tokens = await asyncio.gather(first, second)

        self.assertEqual(tokens, ["token-1", "token-1"])
        self.assertEqual(calls, 1)
        self.assertEqual(cache.load("u1"), "token-1")

    async def test_cached_token_skips_join(self) -> None:
        cache = TokenCache()
        cache.store("u1", "cached")

        async def join() -> str:
            raise AssertionError("join must not be called")

        self.assertEqual(await cache.get_or_join("u1", join), "cached")

    async def test_distinct_users_join_separately(self) -> None:
        cache = TokenCache()

        def join_for(name):
            async def join() -> str:
                return f"token-{name}"
            return join

        a = await cache.get_or_join("a", join_for("a"))
        b = await cache.get_or_join("b", join_for("b"))

        self.assertEqual((a, b), ("token-a", "token-b"))
        self.assertEqual(cache.load("b"), "token-b")

    async def test_failed_join_is_not_cached(self) -> None:
        cache = TokenCache()
        attempts = 0

        async def join() -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise JukeboxError("unavailable: down", code="unavailable")
            return "token-2"

        with self.assertRaises(JukeboxError):
            await cache.get_or_join("u1", join)
        self.assertIsNone(cache.load("u1"))

        self.assertEqual(await cache.get_or_join("u1", join), "token-2")
        self.assertEqual(attempts, 2)

    async def test_waiters_see_join_failure(self) -> None:
        cache = TokenCache()
        release = asyncio.Event()

        async def join() -> str:
            await release.wait()
            raise JukeboxError("unavailable: down", code="unavailable")

        first = asyncio.create_task(cache.get_or_join("u1", join))
        second = asyncio.create_task(cache.get_or_join("u1", join))
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        self.assertTrue(all(isinstance(r, JukeboxError) for r in results))
        self.assertIsNone(cache.load("u1"))
