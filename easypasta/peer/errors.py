"""Error taxonomy and user-facing notices for the peer link.

Intent failures (bad address, blank message, no scan backend) are raised from
the method the presentation layer called.  Failures that arrive later on an
event stream (backend error, socket error) are turned into a ``Notice`` and
handed to whoever subscribed; they never propagate out of an event callback.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class PeerLinkError(Exception):
    """Base class for every error raised by the peer link."""

    code = "peer_link_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class BackendUnavailable(PeerLinkError):
    """The discovery backend handle is missing or lacks a required method."""

    code = "backend_unavailable"


class ScanError(PeerLinkError):
    """The discovery backend failed to start or reported a scan failure."""

    code = "scan_error"


class InvalidAddress(PeerLinkError):
    """A discovered service has no usable address to connect to."""

    code = "invalid_address"


class NoAddress(InvalidAddress):
    code = "no_address"


class InvalidFormat(InvalidAddress):
    code = "invalid_format"


class TransportError(PeerLinkError):
    """Socket-level failure.  Ends the session, never the process."""

    code = "transport_error"


class EmptyMessage(PeerLinkError):
    code = "empty_message"


class NotConnected(PeerLinkError):
    code = "not_connected"


class MalformedPayload(PeerLinkError):
    """An inbound frame is not a structured message."""

    code = "malformed_payload"


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------

class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    """A user-visible notification for the presentation layer."""

    level: str                 # NoticeLevel value
    title: str
    message: str
    code: str = ""             # PeerLinkError.code when raised from an error
    ts: float = field(default_factory=time.time)

    @classmethod
    def from_error(cls, title: str, exc: PeerLinkError) -> Notice:
        return cls(level=NoticeLevel.ERROR, title=title, message=exc.message, code=exc.code)


NoticeHandler = Callable[[Notice], Any]
