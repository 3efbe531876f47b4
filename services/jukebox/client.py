"""
Jukebox ListenerService client.

Responsibilities:
- unary Join / RequestTrack calls
- one long-lived SubscribeNotifications stream per subscribe() call
- mapping raw stream messages to typed Notification objects
- feeding them into a bounded queue (producer blocks, never drops)

Stream termination is reported in-band: exactly one STREAM_ERROR or
STREAM_CLOSED notification, after which the queue is closed.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from shared.logging.logger import get_logger
from services.jukebox.connect import (
    Envelope,
    EnvelopeDecoder,
    JukeboxError,
    JukeboxStreamError,
    ProtocolError,
    encode_envelope,
    error_from_end_stream,
    error_from_response,
    request_headers,
)
from services.jukebox.models import (
    Notification,
    NotificationType,
    WireNotification,
    classify,
)

log = get_logger("jukebox.client", runtime="jukebox")

_CLOSED = object()


class JukeboxClient:
    """
    Async client for the 19box jukebox.

    Rules:
    - subscribe() raises if the stream cannot be established
    - notifications() yields until the stream terminates or the client
      unsubscribes
    - unsubscribe() is idempotent
    """

    SERVICE = "jukebox.v1.ListenerService"
    QUEUE_SIZE = 10

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        queue_size: int = QUEUE_SIZE,
    ):
        self.base_url = base_url.rstrip("/")

        # Allow caller to supply a shared client; otherwise own lifecycle
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=None),
        )
        self._client_owned = client is None

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._queue_closed = False
        self._response: Optional[httpx.Response] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._unsubscribed = False

    # ------------------------------------------------------------------
    # Unary calls
    # ------------------------------------------------------------------

    def _url(self, method: str) -> str:
        return f"{self.base_url}/{self.SERVICE}/{method}"

    async def _unary(
        self,
        method: str,
        payload: Dict[str, Any],
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                self._url(method),
                content=json.dumps(payload).encode("utf-8"),
                headers=request_headers(streaming=False, timeout=timeout),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            raise JukeboxError(f"{method}: request timed out", code="deadline_exceeded") from e
        except httpx.HTTPError as e:
            raise JukeboxError(f"{method}: {e}", code="unavailable") from e

        if response.status_code != 200:
            raise error_from_response(response, response.content)

        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"{method}: invalid response body: {e}") from e

        if not isinstance(data, dict):
            raise ProtocolError(f"{method}: response body must be a JSON object")

        return data

    async def join(
        self,
        display_name: str,
        external_user_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Register a listener and return its listener id (the request token).
        """
        try:
            data = await self._unary(
                "Join",
                {"displayName": display_name, "externalUserId": external_user_id},
                timeout=timeout,
            )
        except JukeboxError as e:
            log.error(f"Error 19box join: {e}")
            raise

        listener_id = str(data.get("listenerId") or "")
        if not listener_id:
            raise ProtocolError("Join: response carried no listenerId")

        log.debug(f"19box join success: {display_name}({external_user_id})[{listener_id}]")
        return listener_id

    async def request_track(
        self,
        listener_id: str,
        track_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> Tuple[bool, str, str]:
        """
        Submit a track request. Returns (success, message, code) as reported
        by the service; business-level rejections are not errors.
        """
        try:
            data = await self._unary(
                "RequestTrack",
                {"listenerId": listener_id, "trackId": track_id},
                timeout=timeout,
            )
        except JukeboxError as e:
            log.error(f"Error 19box request track: {e}")
            raise

        success = bool(data.get("success", False))
        message = str(data.get("message") or "")
        code = str(data.get("code") or "")

        log.debug(f"19box request track result: {listener_id}({track_id})[{message}]({code})")
        return success, message, code

    # ------------------------------------------------------------------
    # Notification stream
    # ------------------------------------------------------------------

    async def subscribe(self) -> None:
        """
        Open the notification stream and start the receive loop.
        """
        if self._receive_task is not None or self._unsubscribed:
            raise JukeboxError("notification stream already subscribed")

        request = self._client.build_request(
            "POST",
            self._url("SubscribeNotifications"),
            content=encode_envelope({}),
            headers=request_headers(streaming=True),
            timeout=httpx.Timeout(10.0, read=None),
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            log.error(f"Error 19box subscribe notifications: {e}")
            raise JukeboxError(
                f"error 19box subscribe notifications: {e}",
                code="unavailable",
            ) from e

        if response.status_code != 200:
            body = await response.aread()
            await response.aclose()
            error = error_from_response(response, body)
            log.error(f"Error 19box subscribe notifications: {error}")
            raise JukeboxError(
                f"error 19box subscribe notifications: {error}",
                code=error.code,
            )

        self._response = response
        self._receive_task = asyncio.create_task(
            self._receive_loop(response),
            name="jukebox-notifications",
        )

    async def _iter_envelopes(self, response: httpx.Response) -> AsyncIterator[Envelope]:
        decoder = EnvelopeDecoder()
        async for chunk in response.aiter_bytes():
            for envelope in decoder.feed(chunk):
                yield envelope

        if decoder.pending:
            raise ProtocolError(f"stream ended inside an envelope ({decoder.pending} bytes pending)")

    async def _receive_loop(self, response: httpx.Response) -> None:
        log.info("Receiving notifications...")

        terminal: Optional[Notification] = None

        try:
            try:
                async with aclosing(self._iter_envelopes(response)) as envelopes:
                    async for envelope in envelopes:
                        payload = envelope.json()
                        if envelope.end_stream:
                            terminal = self._end_of_stream(payload)
                            break
                        await self._dispatch(payload)

                if terminal is None:
                    raise ProtocolError("stream ended without end-of-stream message")

            except asyncio.CancelledError:
                raise

            except Exception as e:
                log.error(f"Error receiving notification: {e}")
                terminal = Notification(
                    type=NotificationType.STREAM_ERROR,
                    error=JukeboxStreamError(
                        f"error receiving notification: {e}",
                        code=getattr(e, "code", None),
                    ),
                )

            await self._queue.put(terminal)

        finally:
            self._close_queue()
            log.info("Stopped receiving notifications")

    def _end_of_stream(self, payload: Dict[str, Any]) -> Notification:
        error = error_from_end_stream(payload)
        if error is not None:
            log.error(f"Error receiving notification: {error}")
            return Notification(
                type=NotificationType.STREAM_ERROR,
                error=JukeboxStreamError(
                    f"error receiving notification: {error}",
                    code=error.code,
                ),
            )

        log.info("Notification stream closed by server")
        return Notification(
            type=NotificationType.STREAM_CLOSED,
            error=JukeboxStreamError("stream closed"),
        )

    async def _dispatch(self, payload: Dict[str, Any]) -> None:
        message = WireNotification.from_wire(payload)
        session_state = message.session.state
        track_state = message.track.state if message.track else None

        log.info(
            f"Received seqNo:[{message.sequence_no}] "
            f"notification({message.type.wire_name}) "
            f"session state({session_state.wire_name}), "
            f"track state({track_state.wire_name if track_state else 'none'})"
        )

        kind = classify(message)
        if kind is None:
            log.debug(f"Notification seqNo:[{message.sequence_no}] ignored")
            return

        await self._queue.put(
            Notification(
                type=kind,
                session=message.session,
                track=message.track,
                sequence_no=message.sequence_no,
            )
        )

    def _close_queue(self) -> None:
        if self._queue_closed:
            return
        self._queue_closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # notifications() also stops once closed and drained
            pass

    async def notifications(self) -> AsyncIterator[Notification]:
        """
        Yield notifications in receive order until the queue is closed.
        """
        while True:
            if self._queue_closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def stop_receiving(self) -> None:
        """
        Cancel the receive loop without releasing the connection.
        """
        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()

    async def unsubscribe(self) -> None:
        if self._unsubscribed:
            return
        self._unsubscribed = True

        task = self._receive_task
        if task is not None:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._response is not None:
            try:
                await self._response.aclose()
            except Exception as e:
                log.warning(f"Notification stream close error ignored: {e}")
            self._response = None

        self._close_queue()

    async def aclose(self) -> None:
        await self.unsubscribe()

        if self._client_owned:
            try:
                await self._client.aclose()
            except Exception as e:
                log.warning(f"HTTP client close error ignored: {e}")
