import asyncio
import json
import unittest
from unittest.mock import patch

import httpx

from services.jukebox.client import JukeboxClient
from services.jukebox.connect import FLAG_END_STREAM, JukeboxError, encode_envelope
from services.jukebox.models import NotificationType

BASE_URL = "http://jukebox.test"


def _session_running(seq: int) -> dict:
    return {
        "type": "NOTIFICATION_TYPE_INITIAL_STATE",
        "sequenceNo": str(seq),
        "sessionInfo": {"state": "SESSION_STATE_RUNNING", "playlistName": "Mix"},
    }


def _track(seq: int, state: str) -> dict:
    return {
        "type": "NOTIFICATION_TYPE_CHANGE_TRACK",
        "sequenceNo": str(seq),
        "sessionInfo": {"state": "SESSION_STATE_RUNNING"},
        "trackInfo": {"trackId": "t1", "name": "Song A", "state": state},
    }


class UnaryCallTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.requests = []
        self.responses = {}

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            method = request.url.path.rsplit("/", 1)[-1]
            return self.responses[method]

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.client = JukeboxClient(BASE_URL, client=self.http)

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await self.http.aclose()

    async def test_join_returns_listener_id(self) -> None:
        self.responses["Join"] = httpx.Response(200, json={"listenerId": "L-1"})

        listener_id = await self.client.join("alice", "42", timeout=5)

        self.assertEqual(listener_id, "L-1")
        request = self.requests[0]
        self.assertEqual(request.url.path, "/jukebox.v1.ListenerService/Join")
        self.assertEqual(request.headers["content-type"], "application/json")
        self.assertEqual(
            json.loads(request.content),
            {"displayName": "alice", "externalUserId": "42"},
        )

    async def test_join_error_body_raises_with_code(self) -> None:
        self.responses["Join"] = httpx.Response(
            503, json={"code": "unavailable", "message": "try later"}
        )
        with self.assertRaises(JukeboxError) as ctx:
            await self.client.join("alice", "42")
        self.assertEqual(ctx.exception.code, "unavailable")

    async def test_request_track_business_rejection_is_not_an_error(self) -> None:
        self.responses["RequestTrack"] = httpx.Response(
            200,
            json={"success": False, "message": "already queued", "code": "DUPLICATE"},
        )

        result = await self.client.request_track("L-1", "https://open.spotify.com/track/x")

        self.assertEqual(result, (False, "already queued", "DUPLICATE"))
        self.assertEqual(
            json.loads(self.requests[0].content),
            {"listenerId": "L-1", "trackId": "https://open.spotify.com/track/x"},
        )

    async def test_transport_failure_maps_to_unavailable(self) -> None:
        def failing(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(failing)) as http:
            client = JukeboxClient(BASE_URL, client=http)
            with self.assertRaises(JukeboxError) as ctx:
                await client.request_track("L-1", "t1")
        self.assertEqual(ctx.exception.code, "unavailable")


class NotificationStreamTests(unittest.IsolatedAsyncioTestCase):
    async def _collect(self, response_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.headers["content-type"], "application/connect+json")
            return response_factory()

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = JukeboxClient(BASE_URL, client=http)
            await client.subscribe()
            received = []
            async for notification in client.notifications():
                received.append(notification)
            await client.unsubscribe()
        return received

    async def test_stream_maps_messages_and_closes(self) -> None:
        body = b"".join(
            [
                encode_envelope(_session_running(1)),
                encode_envelope(_track(2, "TRACK_STATE_PLAYING")),
                encode_envelope(_track(3, "TRACK_STATE_STARTED")),
                encode_envelope({}, flags=FLAG_END_STREAM),
            ]
        )

        received = await self._collect(lambda: httpx.Response(200, content=body))

        self.assertEqual(
            [n.type for n in received],
            [
                NotificationType.SESSION_START,
                NotificationType.TRACK_START,
                NotificationType.STREAM_CLOSED,
            ],
        )
        self.assertEqual(received[0].sequence_no, 1)
        self.assertEqual(received[1].track.track_id, "t1")
        self.assertIsNotNone(received[2].error)

    async def test_end_stream_error_becomes_stream_error(self) -> None:
        body = encode_envelope(_session_running(1)) + encode_envelope(
            {"error": {"code": "internal", "message": "boom"}},
            flags=FLAG_END_STREAM,
        )

        received = await self._collect(lambda: httpx.Response(200, content=body))

        self.assertEqual(received[-1].type, NotificationType.STREAM_ERROR)
        self.assertEqual(received[-1].error.code, "internal")

    async def test_missing_end_stream_is_an_error(self) -> None:
        body = encode_envelope(_session_running(1))

        received = await self._collect(lambda: httpx.Response(200, content=body))

        self.assertEqual(
            [n.type for n in received],
            [NotificationType.SESSION_START, NotificationType.STREAM_ERROR],
        )

    async def test_out_of_range_sequence_number_is_tolerated(self) -> None:
        payload = (
            b'{"type":"NOTIFICATION_TYPE_INITIAL_STATE","sequenceNo":1e999,'
            b'"sessionInfo":{"state":"SESSION_STATE_RUNNING"}}'
        )
        body = bytes([0]) + len(payload).to_bytes(4, "big") + payload
        body += encode_envelope({}, flags=FLAG_END_STREAM)

        received = await self._collect(lambda: httpx.Response(200, content=body))

        self.assertEqual(
            [n.type for n in received],
            [NotificationType.SESSION_START, NotificationType.STREAM_CLOSED],
        )
        self.assertEqual(received[0].sequence_no, 0)

    async def test_unexpected_receive_failure_becomes_stream_error(self) -> None:
        body = encode_envelope(_session_running(1)) + encode_envelope({}, flags=FLAG_END_STREAM)

        with patch("services.jukebox.client.classify", side_effect=RecursionError("too deep")):
            received = await self._collect(lambda: httpx.Response(200, content=body))

        self.assertEqual([n.type for n in received], [NotificationType.STREAM_ERROR])
        self.assertIn("too deep", str(received[0].error))

    async def test_subscribe_failure_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"code": "unavailable", "message": "down"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = JukeboxClient(BASE_URL, client=http)
            with self.assertRaises(JukeboxError) as ctx:
                await client.subscribe()
        self.assertEqual(ctx.exception.code, "unavailable")

    async def test_producer_blocks_when_queue_full(self) -> None:
        body = b"".join(encode_envelope(_session_running(i)) for i in range(1, 6))
        body += encode_envelope({}, flags=FLAG_END_STREAM)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = JukeboxClient(BASE_URL, client=http, queue_size=2)
            await client.subscribe()
            for _ in range(10):
                await asyncio.sleep(0)

            received = [n async for n in client.notifications()]
            await client.unsubscribe()

        self.assertEqual([n.sequence_no for n in received[:5]], [1, 2, 3, 4, 5])
        self.assertEqual(received[-1].type, NotificationType.STREAM_CLOSED)

    async def test_unsubscribe_without_terminal_notification(self) -> None:
        gate = asyncio.Event()

        async def slow_body():
            yield encode_envelope(_session_running(1))
            await gate.wait()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=slow_body())

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = JukeboxClient(BASE_URL, client=http)
            await client.subscribe()

            iterator = client.notifications()
            first = await iterator.__anext__()
            await client.unsubscribe()
            rest = [n async for n in iterator]
            await client.unsubscribe()

        self.assertEqual(first.type, NotificationType.SESSION_START)
        self.assertEqual(rest, [])
