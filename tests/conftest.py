"""Shared fakes for the peer link tests (no real sockets or multicast)."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

import pytest

from easypasta.peer.discovery import DiscoveryController
from easypasta.peer.messages import MessageLog
from easypasta.peer.registry import DiscoveredService, DiscoveryRegistry
from easypasta.peer.session import SessionManager
from easypasta.peer.transport import ReadyState


class FakeBackend:
    """Event-emitter stand-in for the zeroconf backend."""

    def __init__(self) -> None:
        self.listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.calls: list[tuple] = []
        self.scan_error: Exception | None = None
        self.stop_error: Exception | None = None

    def scan(self, service_type: str, protocol: str, domain: str) -> None:
        self.calls.append(("scan", service_type, protocol, domain))
        if self.scan_error is not None:
            raise self.scan_error

    def stop(self) -> None:
        self.calls.append(("stop",))
        if self.stop_error is not None:
            raise self.stop_error

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners[event].append(handler)

    def remove_all_listeners(self) -> None:
        self.calls.append(("remove_all_listeners",))
        self.listeners.clear()

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self.listeners.get(event, ())):
            handler(*args)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeTransport:
    """Browser-style socket whose events the test fires by hand."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.on_open = None
        self.on_message = None
        self.on_error = None
        self.on_close = None
        self.ready_state = ReadyState.CONNECTING
        self.sent: list[str] = []
        self.close_calls = 0

    def send(self, data: str) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.close_calls += 1
        self.ready_state = ReadyState.CLOSED

    # -- test helpers --------------------------------------------------------

    def fire_open(self) -> None:
        self.ready_state = ReadyState.OPEN
        self.on_open()

    def fire_message(self, payload: str) -> None:
        self.on_message(payload)

    def fire_error(self, error: Any = "boom") -> None:
        self.on_error(error)

    def fire_close(self, code: int = 1000, reason: str = "") -> None:
        self.ready_state = ReadyState.CLOSED
        self.on_close(code, reason)


class FakeTransportFactory:
    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.error: Exception | None = None

    def __call__(self, url: str) -> FakeTransport:
        if self.error is not None:
            raise self.error
        transport = FakeTransport(url)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


def make_service(
    name: str = "Mac-1",
    addresses: list[str] | None = None,
    port: int | None = 8080,
    **kwargs: Any,
) -> DiscoveredService:
    return DiscoveredService(
        name=name,
        addresses=["192.168.1.5"] if addresses is None else addresses,
        port=port,
        **kwargs,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def registry() -> DiscoveryRegistry:
    return DiscoveryRegistry()


@pytest.fixture
def notices() -> list:
    return []


@pytest.fixture
def controller(registry, backend, notices) -> DiscoveryController:
    ctrl = DiscoveryController(registry, backend, notify=notices.append)
    ctrl.attach()
    return ctrl


@pytest.fixture
def transports() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def manager(transports, controller, notices) -> SessionManager:
    return SessionManager(
        transports,
        discovery=controller,
        device_id="test_device",
        notify=notices.append,
        log=MessageLog(),
    )
