"""Discovery controller: drives an mDNS backend and feeds the registry.

How it works
------------
1. ``attach()`` subscribes one handler per backend event name
   (``start``, ``stop``, ``found``, ``resolved``, ``remove``, ``error``).
2. ``start()`` clears the registry, marks the scan state as scanning right away
   and asks the backend to browse for ``_easypasta._tcp.local.``.
3. Backend events then reconcile the scan state and add / remove services.
   They may arrive at any time, including after ``stop()``.
4. ``shutdown()`` stops the scan and unsubscribes every handler before the
   backend handle is dropped, so a stale backend can never write into a newer
   controller's registry.

The backend is any object with ``scan(type, protocol, domain)``, ``stop()``,
``on(event, handler)`` and ``remove_all_listeners()``; see ``DiscoveryBackend``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Mapping, Protocol

from loguru import logger

from easypasta.peer.errors import (
    BackendUnavailable,
    Notice,
    NoticeHandler,
    NoticeLevel,
    ScanError,
)
from easypasta.peer.registry import DiscoveredService, DiscoveryRegistry


class DiscoveryBackend(Protocol):
    """Consumed interface of an mDNS browser."""

    def scan(self, service_type: str, protocol: str, domain: str) -> None: ...

    def stop(self) -> None: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def remove_all_listeners(self) -> None: ...


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


ScanStateCallback = Callable[[ScanState], Any]

DEFAULT_SERVICE_TYPE = ("easypasta", "tcp", "local.")


class DiscoveryController:
    """Owns the backend handle, its subscriptions and the scan state.

    Parameters
    ----------
    registry:
        Registry that receives resolved / removed services.
    backend:
        Discovery backend handle.  May be ``None`` until ``attach()``.
    service_type, protocol, domain:
        The service type triple to browse for.
    notify:
        Receives user-visible notices for failures reported by the backend.
    """

    def __init__(
        self,
        registry: DiscoveryRegistry,
        backend: DiscoveryBackend | None = None,
        *,
        service_type: str = DEFAULT_SERVICE_TYPE[0],
        protocol: str = DEFAULT_SERVICE_TYPE[1],
        domain: str = DEFAULT_SERVICE_TYPE[2],
        notify: NoticeHandler | None = None,
    ):
        self.registry = registry
        self.service_type = service_type
        self.protocol = protocol
        self.domain = domain
        self._notify = notify
        self._backend: DiscoveryBackend | None = backend
        self._subscribed = False
        self._state = ScanState.IDLE
        self._state_callbacks: list[ScanStateCallback] = []

    # -- scan state ----------------------------------------------------------

    @property
    def scan_state(self) -> ScanState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state == ScanState.SCANNING

    @property
    def backend(self) -> DiscoveryBackend | None:
        return self._backend

    def on_state_change(self, callback: ScanStateCallback) -> None:
        self._state_callbacks.append(callback)

    def _set_state(self, state: ScanState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug("[Peer/Discovery] scan state → {}", state.value)
        for cb in self._state_callbacks:
            try:
                cb(state)
            except Exception as exc:
                logger.error("[Peer/Discovery] state callback error: {}", exc)

    def _report(self, notice: Notice) -> None:
        if self._notify is None:
            return
        try:
            self._notify(notice)
        except Exception as exc:
            logger.error("[Peer/Discovery] notice handler error: {}", exc)

    # -- backend lifecycle ---------------------------------------------------

    def _require_backend(self, capability: str) -> DiscoveryBackend:
        backend = self._backend
        if backend is None:
            raise BackendUnavailable("Discovery service is not initialised.")
        if not callable(getattr(backend, capability, None)):
            raise BackendUnavailable(
                "Discovery service instance is incomplete or corrupted.",
                {"missing": capability},
            )
        return backend

    def attach(self, backend: DiscoveryBackend | None = None) -> None:
        """Adopt *backend* (if given) and subscribe to its events.

        Raises ``BackendUnavailable`` if there is no handle or it cannot
        register listeners.  Attaching twice is a no-op.
        """
        if backend is not None and backend is not self._backend:
            if self._backend is not None:
                self.shutdown()
            self._backend = backend
        if self._subscribed:
            return
        handle = self._require_backend("on")
        handlers: dict[str, Callable[..., Any]] = {
            "start": self._on_scan_started,
            "stop": self._on_scan_stopped,
            "found": self._on_service_found,
            "resolved": self._on_service_resolved,
            "remove": self._on_service_removed,
            "error": self._on_backend_error,
        }
        for event, handler in handlers.items():
            handle.on(event, handler)
        self._subscribed = True
        logger.info("[Peer/Discovery] listeners attached")

    def start(self) -> None:
        """Clear the registry and begin browsing.

        Raises ``BackendUnavailable`` when there is no usable backend and
        ``ScanError`` when the backend refuses to start; both leave the scan
        state idle.
        """
        try:
            backend = self._require_backend("scan")
        except BackendUnavailable:
            self._set_state(ScanState.IDLE)
            logger.error("[Peer/Discovery] cannot start scan: backend unavailable")
            raise
        if not self._subscribed:
            self.attach()

        self.registry.clear()
        # Optimistic; the backend's own start/stop events override this.
        self._set_state(ScanState.SCANNING)
        try:
            backend.scan(self.service_type, self.protocol, self.domain)
        except Exception as exc:
            self._set_state(ScanState.IDLE)
            logger.error("[Peer/Discovery] scan call failed: {}", exc)
            raise ScanError(f"Failed to start scan: {exc}") from exc
        logger.info(
            "[Peer/Discovery] scanning for {}/{}/{}",
            self.service_type, self.protocol, self.domain,
        )

    def stop(self) -> None:
        """Ask the backend to stop browsing.  Never raises."""
        backend = self._backend
        if backend is None or not callable(getattr(backend, "stop", None)):
            logger.warning("[Peer/Discovery] cannot stop scan: no backend")
            self._set_state(ScanState.IDLE)
            return
        try:
            backend.stop()
            logger.info("[Peer/Discovery] scan stop requested")
        except Exception as exc:
            logger.error("[Peer/Discovery] error stopping scan: {}", exc)
            self._report(Notice(
                level=NoticeLevel.WARNING,
                title="Failed to stop scan",
                message=str(exc),
                code=ScanError.code,
            ))
        finally:
            self._set_state(ScanState.IDLE)

    def shutdown(self) -> None:
        """Stop scanning, unsubscribe, then release the backend handle."""
        backend = self._backend
        if backend is None:
            return
        try:
            backend.stop()
        except Exception as exc:
            logger.error("[Peer/Discovery] stop during shutdown failed: {}", exc)
        try:
            backend.remove_all_listeners()
        except Exception as exc:
            logger.error("[Peer/Discovery] unsubscribe during shutdown failed: {}", exc)
        self._subscribed = False
        self._backend = None
        self.registry.clear()
        self._set_state(ScanState.IDLE)
        logger.info("[Peer/Discovery] shut down")

    # -- backend events ------------------------------------------------------

    def _on_scan_started(self, *_: Any) -> None:
        logger.debug("[Peer/Discovery] backend: scan started")
        self._set_state(ScanState.SCANNING)

    def _on_scan_stopped(self, *_: Any) -> None:
        logger.debug("[Peer/Discovery] backend: scan stopped")
        self._set_state(ScanState.IDLE)

    def _on_service_found(self, name: Any = None, *_: Any) -> None:
        # Only a name; "resolved" carries the usable record.
        logger.debug("[Peer/Discovery] found (unresolved): {}", name)

    def _on_service_resolved(self, service: DiscoveredService | Mapping[str, Any] | None) -> None:
        if isinstance(service, Mapping):
            try:
                service = DiscoveredService.from_dict(service)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning(
                    "[Peer/Discovery] dropping malformed resolved service {!r}: {}", service, exc,
                )
                return
        if service is None or not getattr(service, "name", ""):
            logger.warning(
                "[Peer/Discovery] dropping resolved service without a name: {!r}", service,
            )
            return
        self.registry.add(service)

    def _on_service_removed(self, name: Any) -> None:
        if isinstance(name, DiscoveredService):
            name = name.name
        if not name:
            return
        self.registry.remove(str(name))

    def _on_backend_error(self, error: Any = None) -> None:
        message = str(error) if error else "unknown discovery error"
        logger.error("[Peer/Discovery] backend error: {}", message)
        self._set_state(ScanState.IDLE)
        self._report(Notice(
            level=NoticeLevel.ERROR,
            title="Scan error",
            message=message,
            code=ScanError.code,
        ))
