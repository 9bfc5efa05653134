"""Session manager: the single connection to a discovered peer.

State machine
-------------
::

    idle ──connect──▶ connecting ──open──▶ open
      ▲                   │                 │
      │                error/close      error/close
      │                   ▼                 ▼
      └──disconnect── closing ◀──────── closed

- ``connect()`` validates the service address first; a bad address leaves
  everything as it was and no transport is created.
- Only one transport exists at a time.  A transport that is still open when
  ``connect()`` is called again is closed before the new one is created.
- Every transport callback is bound to the transport it came from.  Callbacks
  from a transport that is no longer the tracked one are ignored, so a late
  ``close`` from a superseded connection cannot tear down a newer session.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from easypasta.peer import address as address_validator
from easypasta.peer.address import Address
from easypasta.peer.errors import (
    EmptyMessage,
    Notice,
    NoticeHandler,
    NoticeLevel,
    NotConnected,
    TransportError,
)
from easypasta.peer.messages import Message, MessageKind, MessageLog
from easypasta.peer.protocol import TextEnvelope, inbound_content
from easypasta.peer.registry import DiscoveredService
from easypasta.peer.transport import ReadyState, Transport, TransportFactory

if TYPE_CHECKING:
    from easypasta.peer.discovery import DiscoveryController


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# (old_state, new_state)
StateCallback = Callable[[ConnectionState, ConnectionState], Any]


@dataclass
class Session:
    """The live connection: who we talk to and through which transport."""

    service: DiscoveredService
    address: Address
    transport: Transport | None = None

    @property
    def name(self) -> str:
        return self.service.name


def default_device_id() -> str:
    """Platform tag sent with every outbound message, e.g. ``linux_device``."""
    system = platform.system().lower() or "unknown"
    return f"{system}_device"


class SessionManager:
    """Owns at most one ``Session`` and drives its state machine.

    Parameters
    ----------
    transport_factory:
        Called with a ``ws://`` URL; returns a transport that starts connecting
        on its own and reports back through its ``on_*`` callbacks.
    discovery:
        Controller whose scan is stopped whenever a connection is attempted.
    device_id:
        Sender tag for outbound messages (default: ``<platform>_device``).
    ws_path:
        Path component of the websocket URL (default ``"/ws"``).
    notify:
        Receives user-visible notices for transport failures.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        discovery: DiscoveryController | None = None,
        device_id: str = "",
        ws_path: str = "/ws",
        notify: NoticeHandler | None = None,
        log: MessageLog | None = None,
    ):
        self._factory = transport_factory
        self._discovery = discovery
        self.device_id = device_id or default_device_id()
        self.ws_path = ws_path
        self._notify = notify
        self.log = log if log is not None else MessageLog()
        self._session: Session | None = None
        self._state = ConnectionState.IDLE
        self._state_callbacks: list[StateCallback] = []

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def connected_service(self) -> DiscoveredService | None:
        return self._session.service if self._session else None

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.OPEN and self._session is not None

    @property
    def messages(self) -> list[Message]:
        return self.log.messages

    def on_state_change(self, callback: StateCallback) -> None:
        self._state_callbacks.append(callback)

    def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        if state == old:
            return
        self._state = state
        logger.debug("[Peer/Session] {} → {}", old.value, state.value)
        for cb in self._state_callbacks:
            try:
                cb(old, state)
            except Exception as exc:
                logger.error("[Peer/Session] state callback error: {}", exc)

    def _report(self, notice: Notice) -> None:
        if self._notify is None:
            return
        try:
            self._notify(notice)
        except Exception as exc:
            logger.error("[Peer/Session] notice handler error: {}", exc)

    def _is_current(self, transport: Transport) -> bool:
        return self._session is not None and self._session.transport is transport

    # -- transitions ---------------------------------------------------------

    def connect(self, service: DiscoveredService) -> Session:
        """Open a session to *service*, replacing any existing one.

        Raises ``InvalidAddress`` (nothing changes) or ``TransportError`` (the
        transport could not be created; state ends ``closed``).
        """
        address = address_validator.validate(service)

        if self._discovery is not None:
            self._discovery.stop()

        previous = self._session
        if previous is not None:
            self._session = None
            if previous.transport is not None:
                logger.info(
                    "[Peer/Session] closing existing connection to {!r} before opening a new one",
                    previous.name,
                )
                self._set_state(ConnectionState.CLOSING)
                self._close_transport(previous.transport)

        self.log.clear()
        session = Session(service=service, address=address)
        self._session = session
        self._set_state(ConnectionState.CONNECTING)

        url = address.ws_url(self.ws_path)
        logger.info("[Peer/Session] connecting to {!r} at {}", service.name, url)
        try:
            transport = self._factory(url)
        except Exception as exc:
            logger.error("[Peer/Session] failed to set up transport to {}: {}", url, exc)
            self._session = None
            self._set_state(ConnectionState.CLOSED)
            raise TransportError(f"Connection failed: {exc}", {"url": url}) from exc

        session.transport = transport
        self._bind(transport)
        return session

    def disconnect(self) -> None:
        """User-initiated teardown.  Safe to call in any state."""
        session = self._session
        self._session = None
        if session is not None and session.transport is not None:
            logger.info("[Peer/Session] disconnecting from {!r}", session.name)
            self._set_state(ConnectionState.CLOSING)
            self._close_transport(session.transport)
        self._set_state(ConnectionState.IDLE)

    def send(self, text: str) -> Message:
        """Transmit *text* to the peer and log it as sent.

        Raises ``EmptyMessage`` for blank text and ``NotConnected`` when the
        session is not open; neither transmits nor logs anything.
        """
        content = (text or "").strip()
        if not content:
            raise EmptyMessage("Message content cannot be empty.")

        transport = self._session.transport if self._session else None
        if (
            transport is None
            or self._state != ConnectionState.OPEN
            or transport.ready_state != ReadyState.OPEN
        ):
            logger.warning(
                "[Peer/Session] send attempted while not open (state={}, transport={})",
                self._state.value,
                transport.ready_state.value if transport is not None else None,
            )
            raise NotConnected("WebSocket is not connected or not ready.")

        frame = TextEnvelope(content=content, device_id=self.device_id).to_json()
        try:
            transport.send(frame)
        except Exception as exc:
            logger.error("[Peer/Session] send failed: {}", exc)
            raise TransportError(f"Failed to send message: {exc}") from exc
        logger.debug("[Peer/Session] sent {}", frame)
        return self.log.append(MessageKind.SENT, content)

    # -- transport events ----------------------------------------------------

    def _bind(self, transport: Transport) -> None:
        transport.on_open = lambda: self._on_open(transport)
        transport.on_message = lambda payload: self._on_message(transport, payload)
        transport.on_error = lambda error=None: self._on_error(transport, error)
        transport.on_close = lambda code=None, reason="": self._on_close(transport, code, reason)

    def _on_open(self, transport: Transport) -> None:
        if not self._is_current(transport):
            logger.debug("[Peer/Session] ignoring open from superseded transport")
            return
        session = self._session
        self._set_state(ConnectionState.OPEN)
        logger.info("[Peer/Session] connected to {!r} at {}", session.name, session.address)
        self.log.append(MessageKind.SYSTEM, f"connected to {session.name}")

    def _on_message(self, transport: Transport, payload: str | bytes) -> None:
        if not self._is_current(transport):
            logger.debug("[Peer/Session] ignoring message from superseded transport")
            return
        self.log.append(MessageKind.RECEIVED, inbound_content(payload))

    def _on_error(self, transport: Transport, error: Any) -> None:
        if not self._is_current(transport):
            logger.debug("[Peer/Session] ignoring error from superseded transport: {}", error)
            return
        session = self._session
        self._session = None
        logger.error("[Peer/Session] transport error on {!r}: {}", session.name, error)
        self._set_state(ConnectionState.CLOSED)
        self._close_transport(transport)
        self._report(Notice(
            level=NoticeLevel.ERROR,
            title="Connection error",
            message=(
                f"Unable to connect to service {session.name}. "
                "Please check the network and server status."
            ),
            code=TransportError.code,
        ))

    def _on_close(self, transport: Transport, code: int | None, reason: str) -> None:
        if not self._is_current(transport):
            logger.debug("[Peer/Session] ignoring close from superseded transport (code={})", code)
            return
        session = self._session
        self._session = None
        logger.info(
            "[Peer/Session] connection to {!r} closed (code={}, reason={!r})",
            session.name, code, reason,
        )
        self.log.append(MessageKind.SYSTEM, "disconnected")
        self._set_state(ConnectionState.CLOSED)

    @staticmethod
    def _close_transport(transport: Transport) -> None:
        if transport.ready_state == ReadyState.CLOSED:
            return
        try:
            transport.close()
        except Exception as exc:
            logger.warning("[Peer/Session] error closing transport: {}", exc)
