"""Pre-connect validation of a discovered service's address."""

from __future__ import annotations

import re
from dataclasses import dataclass

from easypasta.peer.errors import InvalidFormat, NoAddress
from easypasta.peer.registry import DiscoveredService

# Syntax only: four dot-separated groups of 1-3 digits.  Octet ranges are not
# checked.
_IPV4_RE = re.compile(r"(?:[0-9]{1,3}\.){3}[0-9]{1,3}")


@dataclass(frozen=True)
class Address:
    """The exact host/port pair a session connects to."""

    host: str
    port: int

    def ws_url(self, path: str = "/ws") -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"ws://{self.host}:{self.port}{path}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def is_ipv4(address: str) -> bool:
    return _IPV4_RE.fullmatch(address) is not None


def validate(service: DiscoveredService | None) -> Address:
    """Return the first address and port of *service*.

    Raises ``NoAddress`` if the service has no address or port, and
    ``InvalidFormat`` if the first address is not a dotted-quad IPv4 string.
    Callers must connect to the returned pair rather than re-reading the
    service.
    """
    if service is None or not service.addresses or not service.port:
        name = service.name if service is not None else ""
        raise NoAddress(
            "Service information is incomplete or invalid.",
            {"service": name},
        )
    host = service.addresses[0]
    if not is_ipv4(host):
        raise InvalidFormat(
            f'Service address "{host}" is not a valid IPv4 address.',
            {"service": service.name, "address": host},
        )
    return Address(host=host, port=int(service.port))
