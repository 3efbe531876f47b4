"""
Jukebox data model.

Wire messages arrive as protobuf-JSON objects (lowerCamelCase keys, enum
values as names). Decoding is tolerant: unknown enum values collapse to
UNSPECIFIED and missing objects decode to empty values, so downstream
formatting never has to special-case absent fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Type, TypeVar

E = TypeVar("E", bound="_WireEnum")


class _WireEnum(Enum):
    """
    Enum whose members map to protobuf enum names and numbers.

    Member values are the wire numbers; the wire name is
    ``<PREFIX>_<MEMBER>``.
    """

    @classmethod
    def _prefix(cls) -> str:
        raise NotImplementedError

    @classmethod
    def parse(cls: Type[E], raw: Any) -> E:
        if isinstance(raw, bool):
            return cls(0)
        if isinstance(raw, int):
            try:
                return cls(raw)
            except ValueError:
                return cls(0)
        if isinstance(raw, str):
            name = raw.strip().upper()
            prefix = f"{cls._prefix()}_"
            if name.startswith(prefix):
                name = name[len(prefix):]
            member = cls.__members__.get(name)
            if member is not None:
                return member
        return cls(0)

    @property
    def wire_name(self) -> str:
        return f"{self._prefix()}_{self.name}"


class WireNotificationType(_WireEnum):
    UNSPECIFIED = 0
    INITIAL_STATE = 1
    CHANGE_STATE = 2
    CHANGE_TRACK = 3

    @classmethod
    def _prefix(cls) -> str:
        return "NOTIFICATION_TYPE"


class SessionState(_WireEnum):
    UNSPECIFIED = 0
    RUNNING = 1
    TERMINATED = 2

    @classmethod
    def _prefix(cls) -> str:
        return "SESSION_STATE"


class TrackState(_WireEnum):
    UNSPECIFIED = 0
    STARTED = 1
    PLAYING = 2

    @classmethod
    def _prefix(cls) -> str:
        return "TRACK_STATE"


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value)


def _str_tuple(data: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = data.get(key)
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None)


@dataclass(frozen=True)
class SessionInfo:
    state: SessionState = SessionState.UNSPECIFIED
    playlist_name: str = ""
    playlist_url: str = ""
    scheduled_end_time: str = ""
    keywords: Tuple[str, ...] = ()

    @classmethod
    def from_wire(cls, data: Optional[Mapping[str, Any]]) -> "SessionInfo":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            state=SessionState.parse(data.get("state")),
            playlist_name=_str(data, "playlistName"),
            playlist_url=_str(data, "playlistUrl"),
            scheduled_end_time=_str(data, "scheduledEndTime"),
            keywords=_str_tuple(data, "keywords"),
        )


@dataclass(frozen=True)
class TrackInfo:
    track_id: str = ""
    name: str = ""
    artists: Tuple[str, ...] = ()
    url: str = ""
    album_art_url: str = ""
    requester_external_user_id: str = ""
    requester_name: str = ""
    state: TrackState = TrackState.UNSPECIFIED

    @property
    def is_playing(self) -> bool:
        return self.state in (TrackState.STARTED, TrackState.PLAYING)

    @classmethod
    def from_wire(cls, data: Optional[Mapping[str, Any]]) -> Optional["TrackInfo"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            track_id=_str(data, "trackId"),
            name=_str(data, "name"),
            artists=_str_tuple(data, "artists"),
            url=_str(data, "url"),
            album_art_url=_str(data, "albumArtUrl"),
            requester_external_user_id=_str(data, "requesterExternalUserId"),
            requester_name=_str(data, "requesterName"),
            state=TrackState.parse(data.get("state")),
        )


@dataclass(frozen=True)
class WireNotification:
    """
    One message of the SubscribeNotifications stream, as sent by the server.
    """

    type: WireNotificationType
    sequence_no: int
    session: SessionInfo
    track: Optional[TrackInfo]

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "WireNotification":
        raw_seq = data.get("sequenceNo", 0)
        try:
            sequence_no = int(raw_seq)
        except (TypeError, ValueError, OverflowError):
            sequence_no = 0

        return cls(
            type=WireNotificationType.parse(data.get("type")),
            sequence_no=sequence_no,
            session=SessionInfo.from_wire(data.get("sessionInfo")),
            track=TrackInfo.from_wire(data.get("trackInfo")),
        )


class NotificationType(Enum):
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    TRACK_START = "track_start"
    STREAM_CLOSED = "stream_closed"
    STREAM_ERROR = "stream_error"


@dataclass
class Notification:
    type: NotificationType
    session: Optional[SessionInfo] = None
    track: Optional[TrackInfo] = None
    error: Optional[BaseException] = None
    sequence_no: int = 0


def classify(message: WireNotification) -> Optional[NotificationType]:
    """
    Map a wire message to a notification type, or None when the
    combination carries nothing the bot acts on.
    """
    if message.type in (
        WireNotificationType.INITIAL_STATE,
        WireNotificationType.CHANGE_STATE,
    ):
        if message.session.state is SessionState.RUNNING:
            return NotificationType.SESSION_START
        if message.session.state is SessionState.TERMINATED:
            return NotificationType.SESSION_END
        return None

    if message.type is WireNotificationType.CHANGE_TRACK:
        if message.track is not None and message.track.state is TrackState.STARTED:
            return NotificationType.TRACK_START

    return None
