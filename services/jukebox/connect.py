"""
Connect protocol helpers (JSON codec).

Covers the two shapes the jukebox ListenerService uses:

- unary calls: plain JSON request/response bodies, errors as a JSON
  ``{"code", "message"}`` body on a non-2xx status
- server streams: length-prefixed envelopes (1 flag byte + 4-byte
  big-endian length + payload); the final envelope carries flag 0x02 and an
  end-of-stream JSON object with an optional ``error``

Compressed envelopes are not negotiated and are rejected.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

PROTOCOL_VERSION = "1"
UNARY_CONTENT_TYPE = "application/json"
STREAM_CONTENT_TYPE = "application/connect+json"

FLAG_COMPRESSED = 0x01
FLAG_END_STREAM = 0x02

_HEADER = struct.Struct(">BI")

# Fallback codes when an error body is missing or unreadable.
_HTTP_STATUS_CODES = {
    400: "internal",
    401: "unauthenticated",
    403: "permission_denied",
    404: "unimplemented",
    408: "deadline_exceeded",
    429: "unavailable",
    502: "unavailable",
    503: "unavailable",
    504: "unavailable",
}


class JukeboxError(RuntimeError):
    """
    Raised for any failed call to the jukebox service.

    ``code`` is the Connect error code when the server supplied one
    (e.g. "invalid_argument", "unavailable"), otherwise None.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class JukeboxStreamError(JukeboxError):
    """
    Terminal condition of the notification stream.
    """


class ProtocolError(JukeboxError):
    """
    The server sent bytes that do not follow the Connect framing.
    """


@dataclass
class Envelope:
    flags: int
    data: bytes

    @property
    def end_stream(self) -> bool:
        return bool(self.flags & FLAG_END_STREAM)

    def json(self) -> Dict[str, Any]:
        if not self.data:
            return {}
        try:
            payload = json.loads(self.data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"invalid envelope payload: {e}") from e
        if not isinstance(payload, dict):
            raise ProtocolError("envelope payload must be a JSON object")
        return payload


def encode_envelope(payload: Dict[str, Any], flags: int = 0) -> bytes:
    data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return _HEADER.pack(flags, len(data)) + data


class EnvelopeDecoder:
    """
    Incremental decoder: feed raw response chunks, collect whole envelopes.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[Envelope]:
        self._buffer.extend(chunk)
        envelopes: List[Envelope] = []

        while len(self._buffer) >= _HEADER.size:
            flags, length = _HEADER.unpack_from(self._buffer)
            end = _HEADER.size + length
            if len(self._buffer) < end:
                break

            data = bytes(self._buffer[_HEADER.size:end])
            del self._buffer[:end]

            if flags & FLAG_COMPRESSED:
                raise ProtocolError("compressed envelopes are not supported")
            envelopes.append(Envelope(flags=flags, data=data))

        return envelopes

    @property
    def pending(self) -> int:
        return len(self._buffer)


def error_from_end_stream(payload: Dict[str, Any]) -> Optional[JukeboxStreamError]:
    error = payload.get("error")
    if not error:
        return None
    if not isinstance(error, dict):
        return JukeboxStreamError(str(error), code="unknown")
    code = str(error.get("code") or "unknown")
    message = str(error.get("message") or code)
    return JukeboxStreamError(f"{code}: {message}", code=code)


def error_from_response(response: httpx.Response, body: bytes) -> JukeboxError:
    code: Optional[str] = None
    message = ""

    try:
        payload = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, ValueError):
        payload = None

    if isinstance(payload, dict):
        code = payload.get("code") or None
        message = str(payload.get("message") or "")

    if not code:
        code = _HTTP_STATUS_CODES.get(response.status_code, "unknown")
    if not message:
        message = body.decode("utf-8", errors="ignore")[:200] or f"HTTP {response.status_code}"

    return JukeboxError(f"{code}: {message}", code=str(code))


def request_headers(*, streaming: bool, timeout: Optional[float] = None) -> Dict[str, str]:
    headers = {
        "Connect-Protocol-Version": PROTOCOL_VERSION,
        "Content-Type": STREAM_CONTENT_TYPE if streaming else UNARY_CONTENT_TYPE,
    }
    if timeout is not None:
        headers["Connect-Timeout-Ms"] = str(int(timeout * 1000))
    return headers
