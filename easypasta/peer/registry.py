"""Registry of services found by the current discovery scan.

Architecture
------------
- ``DiscoveredService`` is one resolved mDNS record (name, addresses, port, TXT).
- ``DiscoveryRegistry`` keeps at most one entry per service name, in the order
  they were first resolved.  A second resolution of a name that is already
  present is ignored until the entry has been removed.

The registry lives only as long as the process; it is cleared whenever a new
scan starts and when the discovery controller shuts down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from loguru import logger


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)


@dataclass
class DiscoveredService:
    """A peer that advertised the EasyPasta service type."""

    name: str
    addresses: list[str] = field(default_factory=list)
    port: int | None = None
    txt: dict[str, str] = field(default_factory=dict)   # TXT record attributes
    host: str = ""                                      # e.g. "Mac-1.local."
    full_name: str = ""                                 # e.g. "Mac-1._easypasta._tcp.local."

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "addresses": list(self.addresses),
            "port": self.port,
        }
        if self.txt:
            d["txt"] = dict(self.txt)
        if self.host:
            d["host"] = self.host
        if self.full_name:
            d["fullName"] = self.full_name
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> DiscoveredService:
        """Build from a plain mapping, as emitted by JS-style discovery backends."""
        txt = d.get("txt") or {}
        port = d.get("port")
        return cls(
            name=_decode(d.get("name")),
            addresses=[_decode(a) for a in d.get("addresses") or []],
            port=int(port) if port else None,
            txt={_decode(k): _decode(v) for k, v in txt.items()},
            host=_decode(d.get("host")),
            full_name=_decode(d.get("fullName") or d.get("full_name")),
        )

    def describe_txt(self) -> str:
        """Render TXT attributes as ``key: value`` pairs for list display."""
        return ", ".join(f"{k}: {v}" for k, v in self.txt.items())


# Callback type for registry events: (service, event) where event is
# "added", "removed" or "cleared".
RegistryEventCallback = Callable[["DiscoveredService | None", str], Any]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class DiscoveryRegistry:
    """Deduplicated, insertion-ordered set of discovered services."""

    def __init__(self) -> None:
        self._services: dict[str, DiscoveredService] = {}  # name → service
        self._event_callbacks: list[RegistryEventCallback] = []

    # -- event system --------------------------------------------------------

    def on_event(self, callback: RegistryEventCallback) -> None:
        """Subscribe to added / removed / cleared events."""
        self._event_callbacks.append(callback)

    def _fire_event(self, service: DiscoveredService | None, event: str) -> None:
        for cb in self._event_callbacks:
            try:
                cb(service, event)
            except Exception as exc:
                logger.error("[Peer/Registry] event callback error ({}): {}", event, exc)

    # -- mutation ------------------------------------------------------------

    def add(self, service: DiscoveredService) -> bool:
        """Insert *service* unless its name is already present.

        Returns ``True`` if the service was added, ``False`` if an entry with the
        same name was seen first.
        """
        if service.name in self._services:
            logger.debug("[Peer/Registry] ignoring duplicate service {!r}", service.name)
            return False
        self._services[service.name] = service
        logger.info(
            "[Peer/Registry] added {!r} addresses={} port={}",
            service.name, service.addresses, service.port,
        )
        self._fire_event(service, "added")
        return True

    def remove(self, name: str) -> DiscoveredService | None:
        """Remove the entry called *name*.  No-op when absent."""
        service = self._services.pop(name, None)
        if service is None:
            return None
        logger.info("[Peer/Registry] removed {!r}", name)
        self._fire_event(service, "removed")
        return service

    def clear(self) -> None:
        if not self._services:
            return
        self._services.clear()
        logger.debug("[Peer/Registry] cleared")
        self._fire_event(None, "cleared")

    # -- queries -------------------------------------------------------------

    def get_service(self, name: str) -> DiscoveredService | None:
        return self._services.get(name)

    def get_all_services(self) -> list[DiscoveredService]:
        """Return services in first-resolved order."""
        return list(self._services.values())

    def service_names(self) -> list[str]:
        return list(self._services)

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self) -> Iterator[DiscoveredService]:
        return iter(self.get_all_services())
