"""Ordered log of everything that happened in the current session."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterator

from loguru import logger


class MessageKind(str, Enum):
    SENT = "sent"
    RECEIVED = "received"
    SYSTEM = "system"


def display_time() -> str:
    """Locale-formatted wall-clock time.  Cosmetic only, never used for ordering."""
    return datetime.now().strftime("%X")


@dataclass(frozen=True)
class Message:
    """One log entry."""

    id: int
    kind: str                  # MessageKind value
    content: str
    timestamp: str = field(default_factory=display_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value if isinstance(self.kind, MessageKind) else self.kind,
            "content": self.content,
            "timestamp": self.timestamp,
        }


MessageCallback = Callable[[Message], Any]


class MessageLog:
    """Append-only, insertion-ordered message sequence.

    Ids come from a counter owned by the log, so two messages appended within
    the same clock tick still get distinct, increasing ids.  The counter is not
    reset by ``clear()``; ids only ever grow for the lifetime of the log.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._ids = itertools.count(1)
        self._callbacks: list[MessageCallback] = []

    def on_append(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    def append(self, kind: MessageKind, content: str) -> Message:
        msg = Message(id=next(self._ids), kind=kind, content=content)
        self._messages.append(msg)
        logger.debug("[Peer/Log] #{} {}: {!r}", msg.id, kind.value, content)
        for cb in self._callbacks:
            try:
                cb(msg)
            except Exception as exc:
                logger.error("[Peer/Log] append callback error: {}", exc)
        return msg

    def clear(self) -> None:
        self._messages.clear()

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))
