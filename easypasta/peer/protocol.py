"""Wire-level protocol for peer messages.

Every frame is one JSON text message on the websocket.  Outbound text uses a
small envelope; inbound frames only need a ``content`` field, and anything
else is displayed verbatim.

Envelope format
---------------
{
    "type": "text_message",    # message type (see MsgType)
    "content": "...",          # the text typed by the user
    "timestamp": 1700000000000,  # Unix time in milliseconds
    "device_id": "ios_device"    # sender platform tag
}
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from easypasta.peer.errors import MalformedPayload


class MsgType(str, Enum):
    """Recognised peer message types."""

    TEXT_MESSAGE = "text_message"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TextEnvelope:
    """One outbound text message."""

    content: str
    device_id: str
    type: str = MsgType.TEXT_MESSAGE.value
    timestamp: int = field(default_factory=now_ms)

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
            "device_id": self.device_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def parse_inbound(payload: str | bytes) -> str:
    """Return the display content of one inbound frame.

    Raises ``MalformedPayload`` if the frame is not a JSON object carrying a
    non-empty ``content`` value.  The caller decides how to recover.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload(f"binary frame is not UTF-8: {exc}") from exc
    try:
        obj = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedPayload(f"not JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise MalformedPayload(f"expected a JSON object, got {type(obj).__name__}")
    content = obj.get("content")
    if content in (None, ""):
        raise MalformedPayload("missing 'content' field")
    return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)


def inbound_content(payload: str | bytes) -> str:
    """Display content for *payload*, falling back to the raw text."""
    try:
        return parse_inbound(payload)
    except MalformedPayload:
        if isinstance(payload, bytes):
            return payload.decode("utf-8", errors="replace")
        return payload
