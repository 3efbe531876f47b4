import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord

from services.discord.commands import invoker_identity, respond
from services.discord.commands.request import RequestCommandHandler
from services.discord.embeds import MSG_INTERNAL_ERROR, MSG_REQUEST_PROCESSED
from services.discord.tokens import TokenCache
from services.jukebox.connect import JukeboxError

TRACK_URL = "https://open.spotify.com/track/abc"


class RequestCommandHandlerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.jukebox = MagicMock()
        self.jukebox.join = AsyncMock(return_value="L-1")
        self.jukebox.request_track = AsyncMock(return_value=(True, "リクエストを受け付けました", ""))
        self.tokens = TokenCache()
        self.handler = RequestCommandHandler(jukebox=self.jukebox, tokens=self.tokens, timeout=1.0)

    async def test_successful_request_passes_message_through(self) -> None:
        result = await self.handler.request_track(
            user_id="42", display_name="alice", track_url=TRACK_URL
        )

        self.assertEqual(result, {"ok": True, "message": "リクエストを受け付けました", "code": ""})
        self.jukebox.join.assert_awaited_once_with("alice", "42", timeout=1.0)
        self.jukebox.request_track.assert_awaited_once_with("L-1", TRACK_URL, timeout=1.0)
        self.assertEqual(self.tokens.load("42"), "L-1")

    async def test_business_rejection_passes_message_through(self) -> None:
        self.jukebox.request_track.return_value = (False, "既にリクエスト済みです", "DUPLICATE")

        result = await self.handler.request_track(
            user_id="42", display_name="alice", track_url=TRACK_URL
        )

        self.assertEqual(result["message"], "既にリクエスト済みです")
        self.assertFalse(result["ok"])
        self.assertEqual(result["code"], "DUPLICATE")

    async def test_accepted_request_with_empty_message_stays_successful(self) -> None:
        self.jukebox.request_track.return_value = (True, "", "")

        result = await self.handler.request_track(
            user_id="42", display_name="alice", track_url=TRACK_URL
        )

        self.assertEqual(result, {"ok": True, "message": "", "code": ""})

    async def test_second_request_reuses_token(self) -> None:
        for _ in range(2):
            await self.handler.request_track(user_id="42", display_name="alice", track_url=TRACK_URL)

        self.assertEqual(self.jukebox.join.await_count, 1)
        self.assertEqual(self.jukebox.request_track.await_count, 2)

    async def test_missing_url_makes_no_remote_call(self) -> None:
        for url in (None, "", "   "):
            with self.subTest(url=url):
                result = await self.handler.request_track(
                    user_id="42", display_name="alice", track_url=url
                )
                self.assertEqual(result["message"], MSG_INTERNAL_ERROR)

        self.jukebox.join.assert_not_awaited()
        self.jukebox.request_track.assert_not_awaited()

    async def test_missing_user_makes_no_remote_call(self) -> None:
        result = await self.handler.request_track(user_id=None, display_name="", track_url=TRACK_URL)

        self.assertEqual(result, {"ok": False, "message": MSG_INTERNAL_ERROR, "code": None})
        self.jukebox.join.assert_not_awaited()

    async def test_join_failure_is_internal_error(self) -> None:
        self.jukebox.join.side_effect = JukeboxError("unavailable: down", code="unavailable")

        result = await self.handler.request_track(
            user_id="42", display_name="alice", track_url=TRACK_URL
        )

        self.assertEqual(result["message"], MSG_INTERNAL_ERROR)
        self.jukebox.request_track.assert_not_awaited()
        self.assertIsNone(self.tokens.load("42"))

    async def test_request_transport_failure_is_internal_error(self) -> None:
        self.jukebox.request_track.side_effect = JukeboxError("unavailable: down", code="unavailable")

        result = await self.handler.request_track(
            user_id="42", display_name="alice", track_url=TRACK_URL
        )

        self.assertEqual(result["message"], MSG_INTERNAL_ERROR)
        self.assertEqual(self.tokens.load("42"), "L-1")

    async def test_timeout_is_internal_error(self) -> None:
        async def hang(*args, **kwargs):
            await asyncio.Event().wait()

        self.jukebox.join.side_effect = hang
        handler = RequestCommandHandler(jukebox=self.jukebox, tokens=self.tokens, timeout=0.01)

        result = await handler.request_track(user_id="42", display_name="alice", track_url=TRACK_URL)

        self.assertEqual(result["message"], MSG_INTERNAL_ERROR)


class InteractionHelperTests(unittest.IsolatedAsyncioTestCase):
    def test_invoker_identity(self) -> None:
        interaction = SimpleNamespace(user=SimpleNamespace(id=4242, display_name="Alice", name="alice"))
        self.assertEqual(invoker_identity(interaction), ("4242", "Alice"))

    def test_invoker_identity_without_user(self) -> None:
        self.assertEqual(invoker_identity(SimpleNamespace(user=None)), (None, ""))

    async def test_respond_edits_deferred_response(self) -> None:
        interaction = MagicMock()
        interaction.edit_original_response = AsyncMock()

        await respond(interaction, "リクエストを受け付けました")

        interaction.edit_original_response.assert_awaited_once_with(content="リクエストを受け付けました")

    async def test_respond_empty_message_is_not_an_error(self) -> None:
        interaction = MagicMock()
        interaction.edit_original_response = AsyncMock()

        await respond(interaction, "")

        interaction.edit_original_response.assert_awaited_once_with(content=MSG_REQUEST_PROCESSED)
        self.assertNotEqual(MSG_REQUEST_PROCESSED, MSG_INTERNAL_ERROR)

    async def test_respond_swallows_http_errors(self) -> None:
        interaction = MagicMock()
        interaction.edit_original_response = AsyncMock(
            side_effect=discord.HTTPException(MagicMock(status=500, reason="err"), "boom")
        )

        await respond(interaction, "ok")

        interaction.edit_original_response.assert_awaited_once_with(content="ok")
