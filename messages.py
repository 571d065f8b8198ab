"""Wire codec for the relay.

Inbound payloads are decoded exactly once into one of three shapes:

- ``JsonMessage``: a JSON object carrying a ``type`` string (WebRTC signaling,
  structured requests).
- ``DelimitedMessage``: ``TYPE|MEETING_ID|SENDER_ID|CONTENT``. The split is capped
  at four fields, so ``CONTENT`` keeps any further ``|`` characters.
- ``OpaqueMessage``: anything else. It is relayed verbatim.
"""
import json
import time
from dataclasses import dataclass
from typing import Union

from constants import GLOBAL_MEETING_ID, SERVER_SENDER

DELIMITER = "|"


@dataclass(frozen=True)
class JsonMessage:
    type: str
    data: dict
    raw: str


@dataclass(frozen=True)
class DelimitedMessage:
    type: str
    meeting_id: str
    sender_id: str
    content: str
    raw: str


@dataclass(frozen=True)
class OpaqueMessage:
    raw: str


ParsedMessage = Union[JsonMessage, DelimitedMessage, OpaqueMessage]


def parse_message(raw: str) -> ParsedMessage:
    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        decoded = None
    if isinstance(decoded, dict) and isinstance(decoded.get("type"), str):
        return JsonMessage(type=decoded["type"], data=decoded, raw=raw)

    parts = raw.split(DELIMITER, 3)
    if len(parts) < 4:
        return OpaqueMessage(raw=raw)
    msg_type, meeting_id, sender_id, content = parts
    return DelimitedMessage(type=msg_type, meeting_id=meeting_id, sender_id=sender_id, content=content, raw=raw)


def now_millis() -> int:
    return int(time.time() * 1000)


def delimited(msg_type: str, meeting_id: str, sender_id: str, *content: str) -> str:
    return DELIMITER.join([msg_type, meeting_id, sender_id, *content])


def system(meeting_id: str, event_tag: str, detail: str = "", *extra: str) -> str:
    return delimited("SYSTEM", meeting_id or GLOBAL_MEETING_ID, SERVER_SENDER, event_tag, detail, *extra)


def pong(meeting_id: str) -> str:
    return delimited("PONG", meeting_id, SERVER_SENDER, str(now_millis()))


def host_only_error(meeting_id: str, msg_type: str) -> str:
    return delimited("ERROR", meeting_id, SERVER_SENDER, "NOT_HOST", f"Only the host can use {msg_type}")


def user_left(meeting_id: str, display_id: str) -> str:
    return delimited("USER_LEFT", meeting_id, display_id, "left the meeting")


def notification(msg_type: str, data, **extra) -> dict:
    """Server-originated JSON notification: ``{"type": ..., "data": ...}``."""
    return {"type": msg_type, "data": data, **extra}
