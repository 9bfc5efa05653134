"""mDNS discovery backend built on python-zeroconf.

Exposes the small event-emitter interface ``DiscoveryController`` consumes:
``scan()``, ``stop()``, ``on(event, handler)`` and ``remove_all_listeners()``.

Events
------
- ``start``    scan began
- ``stop``     scan stopped
- ``found``    an instance name appeared (not yet resolved), arg: name
- ``resolved`` address/port/TXT lookup finished, arg: ``DiscoveredService``
- ``remove``   an instance went away, arg: name
- ``error``    accepted for interface parity; browser failures are raised
               from ``scan()`` and a failed resolution is only logged

The zeroconf instance is created on the running asyncio loop, so every handler
runs on that loop's thread.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable

from loguru import logger
from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from easypasta.peer.registry import DiscoveredService
from easypasta.peer.tasks import TaskSet, supervised_task

EVENTS = frozenset({"start", "stop", "found", "resolved", "remove", "error"})


def service_type_name(service_type: str, protocol: str, domain: str) -> str:
    """``("easypasta", "tcp", "local.")`` → ``"_easypasta._tcp.local."``"""
    if not domain.endswith("."):
        domain += "."
    return f"_{service_type}._{protocol}.{domain}"


def instance_name(full_name: str, type_name: str) -> str:
    """Strip the service type suffix from an mDNS instance name."""
    suffix = "." + type_name
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ZeroconfBackend:
    """Browses one service type and emits discovery events.

    Parameters
    ----------
    resolve_timeout:
        Seconds to wait for a service's SRV/TXT/A records.
    ip_version:
        Which address families to report in ``DiscoveredService.addresses``.
    """

    def __init__(
        self,
        resolve_timeout: float = 3.0,
        ip_version: IPVersion = IPVersion.All,
    ):
        self.resolve_timeout = resolve_timeout
        self.ip_version = ip_version
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._type_name = ""
        self._resolves = TaskSet("zeroconf-resolve")

    # -- event emitter -------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown discovery event {event!r}")
        self._listeners[event].append(handler)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, ())):
            try:
                handler(*args)
            except Exception as exc:
                logger.error("[Peer/Zeroconf] {} handler error: {}", event, exc)

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_browsing(self) -> bool:
        return self._browser is not None

    def scan(self, service_type: str, protocol: str, domain: str) -> None:
        """Start browsing.  Restarts the browser if one is already running.

        Raises ``RuntimeError`` outside a running event loop.
        """
        asyncio.get_running_loop()
        if self._browser is not None:
            self.stop()
        self._type_name = service_type_name(service_type, protocol, domain)
        aiozc = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                aiozc.zeroconf,
                [self._type_name],
                handlers=[self._on_state_change],
            )
        except Exception:
            supervised_task(aiozc.async_close(), name="zeroconf-close")
            raise
        self._aiozc = aiozc
        logger.info("[Peer/Zeroconf] browsing {}", self._type_name)
        self._emit("start")

    def stop(self) -> None:
        """Stop browsing.  Pending resolutions are cancelled."""
        browser, aiozc = self._browser, self._aiozc
        self._browser = None
        self._aiozc = None
        self._resolves.cancel()
        if aiozc is None:
            return
        supervised_task(self._close(browser, aiozc), name="zeroconf-close")
        logger.info("[Peer/Zeroconf] stopped browsing {}", self._type_name)
        self._emit("stop")

    async def _close(self, browser: AsyncServiceBrowser | None, aiozc: AsyncZeroconf) -> None:
        if browser is not None:
            await browser.async_cancel()
        await aiozc.async_close()

    # -- browser callbacks ---------------------------------------------------

    def _on_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        short = instance_name(name, service_type)
        if state_change is ServiceStateChange.Added:
            logger.debug("[Peer/Zeroconf] found {}", name)
            self._emit("found", short)
            self._resolves.spawn(self._resolve(zeroconf, service_type, name), name=name)
        elif state_change is ServiceStateChange.Removed:
            logger.debug("[Peer/Zeroconf] removed {}", name)
            self._emit("remove", short)
        else:
            logger.debug("[Peer/Zeroconf] updated {} (ignored)", name)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        try:
            ok = await info.async_request(zeroconf, int(self.resolve_timeout * 1000))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # The browser keeps running, so this is not a scan-level error.
            logger.warning("[Peer/Zeroconf] resolving {} failed: {}", name, exc)
            return
        if not ok:
            logger.warning("[Peer/Zeroconf] could not resolve {} within {}s", name, self.resolve_timeout)
            return
        service = DiscoveredService(
            name=instance_name(name, service_type),
            addresses=info.parsed_addresses(self.ip_version),
            port=info.port,
            txt={_text(k): _text(v) for k, v in (info.properties or {}).items()},
            host=info.server or "",
            full_name=name,
        )
        self._emit("resolved", service)
