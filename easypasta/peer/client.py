"""Peer client: the single entry point for a presentation layer.

Wires the discovery registry, discovery controller and session manager
together, turns raised errors into notices and applies the configured
resume-scan policy.  A UI reads ``scan_state``, ``services``,
``session_state``, ``messages`` and ``notices`` and forwards user intents
through ``start_scan``, ``stop_scan``, ``connect``, ``disconnect`` and
``send``; intent methods return ``True``/``False`` and never raise.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from easypasta.config.schema import Config
from easypasta.peer.discovery import DiscoveryBackend, DiscoveryController, ScanState
from easypasta.peer.errors import (
    BackendUnavailable,
    Notice,
    NoticeHandler,
    NoticeLevel,
    PeerLinkError,
)
from easypasta.peer.messages import Message
from easypasta.peer.registry import DiscoveredService, DiscoveryRegistry
from easypasta.peer.session import ConnectionState, SessionManager
from easypasta.peer.transport import TransportFactory, websocket_factory

# Keep at most this many notices for late subscribers / polling UIs.
MAX_NOTICES = 50


class PeerClient:
    """Discovery plus one websocket session, driven by user intents.

    Parameters
    ----------
    config:
        Client configuration (defaults apply when omitted).
    backend:
        Discovery backend.  ``None`` creates a ``ZeroconfBackend``.
    transport_factory:
        Builds a transport for a ``ws://`` URL.  ``None`` uses websockets.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        backend: DiscoveryBackend | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.config = config or Config()
        self.notices: list[Notice] = []
        self._notice_handlers: list[NoticeHandler] = []

        dcfg = self.config.discovery
        scfg = self.config.session
        if backend is None:
            from easypasta.peer.zeroconf_backend import ZeroconfBackend

            backend = ZeroconfBackend(resolve_timeout=dcfg.resolve_timeout)
        if transport_factory is None:
            transport_factory = websocket_factory(
                open_timeout=scfg.connect_timeout,
                close_timeout=scfg.close_timeout,
            )

        self.registry = DiscoveryRegistry()
        self.discovery = DiscoveryController(
            self.registry,
            backend,
            service_type=dcfg.service_type,
            protocol=dcfg.protocol,
            domain=dcfg.domain,
            notify=self._push_notice,
        )
        self.sessions = SessionManager(
            transport_factory,
            discovery=self.discovery,
            device_id=scfg.device_id,
            ws_path=scfg.ws_path,
            notify=self._push_notice,
        )
        self.sessions.on_state_change(self._on_session_state)
        self._started = False

    # -- notices -------------------------------------------------------------

    def on_notice(self, handler: NoticeHandler) -> None:
        self._notice_handlers.append(handler)

    def _push_notice(self, notice: Notice) -> None:
        self.notices.append(notice)
        del self.notices[:-MAX_NOTICES]
        for handler in self._notice_handlers:
            try:
                handler(notice)
            except Exception as exc:
                logger.error("[PeerClient] notice handler error: {}", exc)

    def _fail(self, title: str, exc: PeerLinkError) -> bool:
        logger.warning("[PeerClient] {}: {}", title, exc.message)
        self._push_notice(Notice.from_error(title, exc))
        return False

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> bool:
        """Subscribe to the discovery backend and optionally start scanning."""
        try:
            self.discovery.attach()
        except BackendUnavailable as exc:
            return self._fail("Initialisation failed", exc)
        self._started = True
        logger.info("[PeerClient] started")
        self._push_notice(Notice(
            level=NoticeLevel.INFO,
            title="Discovery initialised",
            message="Make sure this device and the desktop are on the same Wi-Fi network.",
        ))
        if self.config.discovery.scan_on_start:
            return self.start_scan()
        return True

    def shutdown(self) -> None:
        """Disconnect the session, then stop and release discovery."""
        self._started = False
        self.sessions.disconnect()
        self.discovery.shutdown()
        logger.info("[PeerClient] shut down")

    # -- intents -------------------------------------------------------------

    def start_scan(self) -> bool:
        try:
            self.discovery.start()
        except PeerLinkError as exc:
            return self._fail("Scan failed", exc)
        return True

    def stop_scan(self) -> bool:
        # Stop failures are reported as notices by the controller.
        self.discovery.stop()
        return True

    def connect(self, service: DiscoveredService | str) -> bool:
        """Connect to *service* (or the registry entry with that name)."""
        if isinstance(service, str):
            found = self.registry.get_service(service)
            if found is None:
                self._push_notice(Notice(
                    level=NoticeLevel.ERROR,
                    title="Connection failed",
                    message=f"No discovered service named {service!r}.",
                ))
                return False
            service = found
        try:
            self.sessions.connect(service)
        except PeerLinkError as exc:
            return self._fail("Connection failed", exc)
        return True

    def disconnect(self) -> bool:
        self.sessions.disconnect()
        return True

    def send(self, text: str) -> bool:
        try:
            self.sessions.send(text)
        except PeerLinkError as exc:
            return self._fail("Send failed", exc)
        return True

    # -- read side -----------------------------------------------------------

    @property
    def scan_state(self) -> ScanState:
        return self.discovery.scan_state

    @property
    def services(self) -> list[DiscoveredService]:
        return self.registry.get_all_services()

    @property
    def session_state(self) -> ConnectionState:
        return self.sessions.state

    @property
    def connected_service(self) -> DiscoveredService | None:
        return self.sessions.connected_service

    @property
    def is_connected(self) -> bool:
        return self.sessions.is_connected

    @property
    def messages(self) -> list[Message]:
        return self.sessions.messages

    def is_service_connected(self, name: str) -> bool:
        """True only while the open session targets *name*."""
        service = self.sessions.connected_service
        return self.sessions.is_connected and service is not None and service.name == name

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view of everything a UI renders."""
        service = self.connected_service
        return {
            "scan_state": self.scan_state.value,
            "services": [s.to_dict() for s in self.services],
            "session_state": self.session_state.value,
            "connected_service": service.name if service else None,
            "messages": [m.to_dict() for m in self.messages],
        }

    # -- policy --------------------------------------------------------------

    def _on_session_state(self, old: ConnectionState, new: ConnectionState) -> None:
        if not self.config.session.resume_scan_on_disconnect or not self._started:
            return
        if old in (ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.CLOSING) and new in (
            ConnectionState.IDLE,
            ConnectionState.CLOSED,
        ):
            logger.info("[PeerClient] session ended; resuming discovery")
            self.start_scan()
