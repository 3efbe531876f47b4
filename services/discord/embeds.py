from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import discord

from services.jukebox.models import SessionInfo, TrackInfo

SPOTIFY_COLOR = 0x1DB954  # Spotifyの緑色
SPOTIFY_FOOTER_TEXT = "Spotify"
SPOTIFY_FOOTER_ICON = (
    "https://storage.googleapis.com/pr-newsroom-wp/1/2023/05/Spotify_Primary_Logo_RGB_Green.png"
)

# Message templates
MSG_SESSION_START_TITLE = "🎵 session({now})"
MSG_SESSION_START_BODY = "🔊 セッションを開始しました。\n\n🔚: {end}\n"
MSG_SESSION_END_BODY = "🔊 セッションは終了しました。\n\n本日のプレイリストはコチラです。\n"
MSG_NOW_PLAYING_BODY = "🎙️ nowplaying「{name}」{artists}\n\n{requester}\n"
MSG_REQUESTER_USER = "selected by <@{user_id}>"
MSG_REQUESTER_NAME = "selected by {name}"
MSG_INTERNAL_ERROR = "受付に失敗しました(内部エラー)"
MSG_REQUEST_PROCESSED = "リクエストを処理しました"
MSG_TIME_UNDETERMINED = "終了時間未定"
MSG_TIME_SCHEDULED = "{time}終了予定"

EMBED_PLAYLIST_TITLE = "🎶 {name}"
EMBED_TRACK_TITLE = "🎵 {name}"
EMBED_ARTIST_PREFIX = "🎤 {artists}"
EMBED_KEYWORD_FIELD = "Keyword"

TIME_FORMAT_TOPIC_TITLE = "%Y-%m-%d %H:%M"
TIME_FORMAT_DISPLAY = "%H:%M"


@dataclass
class TopicMessage:
    content: str
    embed: Optional[discord.Embed] = None


def _parse_rfc3339(value: str) -> Optional[datetime]:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    # RFC 3339 requires an offset; naive values are treated as malformed.
    if parsed.tzinfo is None:
        return None
    return parsed


def format_session_end(end_time: Optional[str]) -> str:
    parsed = _parse_rfc3339(end_time or "")
    if parsed is None:
        return MSG_TIME_UNDETERMINED
    return MSG_TIME_SCHEDULED.format(time=parsed.astimezone().strftime(TIME_FORMAT_DISPLAY))


def session_topic_title(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return MSG_SESSION_START_TITLE.format(now=now.strftime(TIME_FORMAT_TOPIC_TITLE))


def session_start_content(session: SessionInfo) -> str:
    return MSG_SESSION_START_BODY.format(end=format_session_end(session.scheduled_end_time))


def requester_label(track: TrackInfo) -> str:
    if track.requester_external_user_id:
        return MSG_REQUESTER_USER.format(user_id=track.requester_external_user_id)
    return MSG_REQUESTER_NAME.format(name=track.requester_name)


def _base_embed(**kwargs) -> discord.Embed:
    embed = discord.Embed(color=SPOTIFY_COLOR, **kwargs)
    embed.set_footer(text=SPOTIFY_FOOTER_TEXT, icon_url=SPOTIFY_FOOTER_ICON)
    return embed


def _add_keywords(embed: discord.Embed, session: SessionInfo) -> None:
    keywords = ", ".join(session.keywords)
    if keywords:
        embed.add_field(name=EMBED_KEYWORD_FIELD, value=keywords, inline=False)


def session_message(
    content: str,
    session: SessionInfo,
    thumbnail_url: Optional[str] = None,
) -> TopicMessage:
    embed = _base_embed(
        title=EMBED_PLAYLIST_TITLE.format(name=session.playlist_name),
        url=session.playlist_url or None,
    )
    _add_keywords(embed, session)
    if thumbnail_url:
        embed.set_thumbnail(url=thumbnail_url)
    return TopicMessage(content=content, embed=embed)


def now_playing_message(track: TrackInfo, session: SessionInfo) -> TopicMessage:
    artists = ", ".join(track.artists)
    content = MSG_NOW_PLAYING_BODY.format(
        name=track.name,
        artists=artists,
        requester=requester_label(track),
    )

    embed = _base_embed(
        title=EMBED_TRACK_TITLE.format(name=track.name),
        description=EMBED_ARTIST_PREFIX.format(artists=artists),
        url=track.url or None,
    )
    _add_keywords(embed, session)
    if track.album_art_url:
        embed.set_thumbnail(url=track.album_art_url)
    return TopicMessage(content=content, embed=embed)
