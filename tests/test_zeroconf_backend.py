"""Tests for the zeroconf discovery backend (zeroconf itself is mocked)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from zeroconf import ServiceStateChange

from easypasta.peer.registry import DiscoveredService
from easypasta.peer.zeroconf_backend import (
    ZeroconfBackend,
    instance_name,
    service_type_name,
)

TYPE = "_easypasta._tcp.local."
MOD = "easypasta.peer.zeroconf_backend"


def _record(backend: ZeroconfBackend) -> list[tuple]:
    events: list[tuple] = []
    for name in ("start", "stop", "found", "resolved", "remove", "error"):
        backend.on(name, lambda *args, _n=name: events.append((_n, *args)))
    return events


def _fake_task(coro, *, name=""):
    coro.close()
    return MagicMock()


def _fake_info(ok=True, error=None):
    info = MagicMock()
    if error is not None:
        info.async_request = AsyncMock(side_effect=error)
    else:
        info.async_request = AsyncMock(return_value=ok)
    info.parsed_addresses.return_value = ["192.168.1.5", "fe80::1"]
    info.port = 8080
    info.properties = {b"version": b"1.2", b"empty": None}
    info.server = "mac-1.local."
    return info


# ---------------------------------------------------------------------------
# Name helpers
# ---------------------------------------------------------------------------


class TestNames:
    def test_service_type_name(self):
        assert service_type_name("easypasta", "tcp", "local.") == TYPE
        assert service_type_name("easypasta", "tcp", "local") == TYPE

    def test_instance_name(self):
        assert instance_name("Mac-1." + TYPE, TYPE) == "Mac-1"
        assert instance_name("My Mac.lan", TYPE) == "My Mac.lan"


# ---------------------------------------------------------------------------
# Event emitter
# ---------------------------------------------------------------------------


class TestEmitter:
    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            ZeroconfBackend().on("bogus", lambda: None)

    def test_remove_all_listeners(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        backend.remove_all_listeners()
        backend._emit("found", "Mac-1")
        assert events == []

    def test_handler_error_does_not_stop_others(self):
        backend = ZeroconfBackend()
        seen = []

        def broken(name):
            raise RuntimeError("ui crashed")

        backend.on("found", broken)
        backend.on("found", seen.append)
        backend._emit("found", "Mac-1")
        assert seen == ["Mac-1"]


# ---------------------------------------------------------------------------
# Browser callbacks
# ---------------------------------------------------------------------------


class TestStateChange:
    def test_added_emits_found_and_schedules_resolve(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        with patch("easypasta.peer.tasks.supervised_task", side_effect=_fake_task) as task:
            backend._on_state_change(MagicMock(), TYPE, "Mac-1." + TYPE, ServiceStateChange.Added)
        assert events == [("found", "Mac-1")]
        assert task.call_count == 1
        assert len(backend._resolves) == 1

    def test_removed_emits_short_name(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        backend._on_state_change(MagicMock(), TYPE, "Mac-1." + TYPE, ServiceStateChange.Removed)
        assert events == [("remove", "Mac-1")]

    def test_updated_is_ignored(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        backend._on_state_change(MagicMock(), TYPE, "Mac-1." + TYPE, ServiceStateChange.Updated)
        assert events == []


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolved_service(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        with patch(f"{MOD}.AsyncServiceInfo", return_value=_fake_info()):
            await backend._resolve(MagicMock(), TYPE, "Mac-1." + TYPE)
        assert len(events) == 1
        event, service = events[0]
        assert event == "resolved"
        assert isinstance(service, DiscoveredService)
        assert service.name == "Mac-1"
        assert service.addresses == ["192.168.1.5", "fe80::1"]
        assert service.port == 8080
        assert service.txt == {"version": "1.2", "empty": ""}
        assert service.host == "mac-1.local."
        assert service.full_name == "Mac-1." + TYPE

    @pytest.mark.asyncio
    async def test_resolve_timeout_passed_in_ms(self):
        backend = ZeroconfBackend(resolve_timeout=1.5)
        info = _fake_info()
        zc = MagicMock()
        with patch(f"{MOD}.AsyncServiceInfo", return_value=info):
            await backend._resolve(zc, TYPE, "Mac-1." + TYPE)
        info.async_request.assert_awaited_once_with(zc, 1500)

    @pytest.mark.asyncio
    async def test_unresolved_emits_nothing(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        with patch(f"{MOD}.AsyncServiceInfo", return_value=_fake_info(ok=False)):
            await backend._resolve(MagicMock(), TYPE, "Mac-1." + TYPE)
        assert events == []

    @pytest.mark.asyncio
    async def test_resolve_failure_is_logged_not_a_scan_error(self):
        backend = ZeroconfBackend()
        events = _record(backend)
        boom = OSError("socket closed")
        with patch(f"{MOD}.AsyncServiceInfo", return_value=_fake_info(error=boom)):
            await backend._resolve(MagicMock(), TYPE, "Mac-1." + TYPE)
        assert events == []


# ---------------------------------------------------------------------------
# scan / stop
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_zeroconf():
    aiozc = MagicMock()
    aiozc.async_close = AsyncMock()
    browser = MagicMock()
    browser.async_cancel = AsyncMock()
    with patch(f"{MOD}.AsyncZeroconf", return_value=aiozc) as zc_cls, patch(
        f"{MOD}.AsyncServiceBrowser", return_value=browser
    ) as browser_cls:
        yield zc_cls, browser_cls, aiozc, browser


class TestScan:
    def test_scan_requires_running_loop(self, fake_zeroconf):
        zc_cls, *_ = fake_zeroconf
        with pytest.raises(RuntimeError):
            ZeroconfBackend().scan("easypasta", "tcp", "local.")
        zc_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_scan_browses_service_type(self, fake_zeroconf):
        _, browser_cls, aiozc, _ = fake_zeroconf
        backend = ZeroconfBackend()
        events = _record(backend)
        backend.scan("easypasta", "tcp", "local.")
        assert backend.is_browsing
        args, kwargs = browser_cls.call_args
        assert args == (aiozc.zeroconf, [TYPE])
        assert kwargs["handlers"] == [backend._on_state_change]
        assert events == [("start",)]

    @pytest.mark.asyncio
    async def test_stop_releases_zeroconf(self, fake_zeroconf):
        _, _, aiozc, browser = fake_zeroconf
        backend = ZeroconfBackend()
        events = _record(backend)
        backend.scan("easypasta", "tcp", "local.")
        backend.stop()
        assert not backend.is_browsing
        assert events == [("start",), ("stop",)]
        for _ in range(3):
            await asyncio.sleep(0)
        browser.async_cancel.assert_awaited_once()
        aiozc.async_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_when_idle_emits_nothing(self, fake_zeroconf):
        backend = ZeroconfBackend()
        events = _record(backend)
        backend.stop()
        assert events == []

    @pytest.mark.asyncio
    async def test_rescan_restarts_browser(self, fake_zeroconf):
        zc_cls, _, _, _ = fake_zeroconf
        backend = ZeroconfBackend()
        events = _record(backend)
        backend.scan("easypasta", "tcp", "local.")
        backend.scan("easypasta", "tcp", "local.")
        assert zc_cls.call_count == 2
        assert [e[0] for e in events] == ["start", "stop", "start"]

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_resolutions(self, fake_zeroconf):
        backend = ZeroconfBackend()
        backend.scan("easypasta", "tcp", "local.")
        pending = backend._resolves.spawn(asyncio.sleep(10), name="Mac-1")
        backend.stop()
        for _ in range(3):
            await asyncio.sleep(0)
        assert pending.cancelled()
        assert len(backend._resolves) == 0

    @pytest.mark.asyncio
    async def test_browser_failure_closes_zeroconf(self, fake_zeroconf):
        _, browser_cls, aiozc, _ = fake_zeroconf
        browser_cls.side_effect = OSError("no multicast route")
        backend = ZeroconfBackend()
        events = _record(backend)
        with pytest.raises(OSError):
            backend.scan("easypasta", "tcp", "local.")
        for _ in range(3):
            await asyncio.sleep(0)
        aiozc.async_close.assert_awaited_once()
        assert not backend.is_browsing
        assert events == []
