"""
Session lifecycle coordinator.

Turns the jukebox notification stream into forum side effects:

- SessionStart (no active topic) → create one topic, then post the current
  track when the session is already playing
- SessionStart (topic active)    → ignored
- TrackStart                     → post "now playing" once per track id
- SessionEnd (topic active)      → post closing message, clear topic + dedup
- SessionEnd (no topic)          → ignored
- StreamClosed / StreamError     → reported to the owner via report_error

State is implicit: Idle when the topic cell is empty, ActiveSession
otherwise. The coordinator is the only writer of the topic cell and the
dedup set; notifications are handled strictly one at a time in receive
order.

Delivery is at-least-once, so duplicates are expected and only logged.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import AsyncIterable, Callable, Optional, Protocol

from shared.logging.logger import get_logger
from shared.runtime.concurrency import ConcurrentMap, TopicCell
from services.discord.embeds import (
    MSG_SESSION_END_BODY,
    TopicMessage,
    now_playing_message,
    session_message,
    session_start_content,
    session_topic_title,
)
from services.jukebox.models import (
    Notification,
    NotificationType,
    SessionInfo,
    TrackInfo,
)

log = get_logger("discord.coordinator")


class TopicNotSetError(RuntimeError):
    """
    Raised when a message targets the session topic while none is active.
    """


class ForumGateway(Protocol):
    async def create_forum_topic(self, title: str, message: TopicMessage) -> str:
        ...

    async def send_to_topic(self, topic_id: str, message: TopicMessage) -> str:
        ...


ErrorReporter = Callable[[BaseException], None]


class LifecycleCoordinator:
    def __init__(
        self,
        forum: ForumGateway,
        *,
        report_error: Optional[ErrorReporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._forum = forum
        self._report_error = report_error
        self._clock = clock

        self.topic = TopicCell()
        self.posted_tracks: ConcurrentMap[str, bool] = ConcurrentMap()
        self.thumbnail_url: Optional[str] = None
        self._stopping = False

    # --------------------------------------------------
    # Consumer loop
    # --------------------------------------------------

    async def run(self, notifications: AsyncIterable[Notification]) -> None:
        """
        Consume notifications until the source closes or stop() is called.
        A notification already being handled is finished first.
        """
        log.info("Receiving notifications...")
        try:
            async for notification in notifications:
                if self._stopping:
                    break
                await self.handle(notification)
        finally:
            log.info("Stopped receiving notifications")

    def stop(self) -> None:
        self._stopping = True

    async def handle(self, notification: Notification) -> None:
        log.info(f"Received notification: {notification.type.name}")

        handlers = {
            NotificationType.SESSION_START: self._handle_session_start,
            NotificationType.SESSION_END: self._handle_session_end,
            NotificationType.TRACK_START: self._handle_track_start,
            NotificationType.STREAM_CLOSED: self._handle_stream_terminated,
            NotificationType.STREAM_ERROR: self._handle_stream_terminated,
        }

        handler = handlers.get(notification.type)
        if handler is None:
            log.warning(f"Unknown notification type: {notification.type}")
            return

        try:
            await handler(notification)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error handling {notification.type.name} notification: {e}")

    # --------------------------------------------------
    # Transitions
    # --------------------------------------------------

    async def _handle_session_start(self, notification: Notification) -> None:
        if self.topic.load() is not None:
            log.warning("Session topic already active, ignoring session start")
            return

        session = notification.session or SessionInfo()

        topic_title = session_topic_title(self._clock())
        log.info(f"Creating new topic[{topic_title}]")

        topic_message = session_message(
            session_start_content(session),
            session,
            self.thumbnail_url,
        )
        try:
            topic_id = await self._forum.create_forum_topic(topic_title, topic_message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error creating forum topic: {e}")
        else:
            self.topic.store(topic_id)
            log.info(f"Session topic active: {topic_id}")

        track = notification.track
        if track is not None and track.is_playing:
            log.info(f"Track started: {track.name}")
            try:
                await self.post_now_playing(track, session)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Error posting now playing: {e}")

    async def _handle_session_end(self, notification: Notification) -> None:
        if self.topic.load() is None:
            log.debug("No active session topic, ignoring session end")
            return

        session = notification.session or SessionInfo()
        topic_message = session_message(MSG_SESSION_END_BODY, session, self.thumbnail_url)
        try:
            await self.send_to_topic(topic_message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error sending message to topic: {e}")

        self.topic.clear()
        self.posted_tracks.clear()
        log.info("Session topic closed")

    async def _handle_track_start(self, notification: Notification) -> None:
        track = notification.track
        if track is None:
            return

        log.info(f"Track started: {track.name}")
        try:
            await self.post_now_playing(track, notification.session or SessionInfo())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error posting now playing: {e}")

    async def _handle_stream_terminated(self, notification: Notification) -> None:
        error = notification.error or RuntimeError(notification.type.name.lower())
        log.error(f"Error receiving notification: {error}")
        if self._report_error is not None:
            self._report_error(error)

    # --------------------------------------------------
    # Posting
    # --------------------------------------------------

    async def post_now_playing(self, track: TrackInfo, session: SessionInfo) -> None:
        """
        Post the "now playing" message for a track at most once.

        The dedup marker is kept even when the send fails.
        """
        _, loaded = self.posted_tracks.load_or_store(track.track_id, True)
        if loaded:
            log.warning(f"Track already posted: {track.track_id}")
            return

        message = now_playing_message(track, session)
        try:
            await self.send_to_topic(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error sending now playing to topic: {e}")
            raise

    async def send_to_topic(self, message: TopicMessage) -> str:
        topic_id = self.topic.load()
        if topic_id is None:
            raise TopicNotSetError("topicID is not set")
        return await self._forum.send_to_topic(topic_id, message)
