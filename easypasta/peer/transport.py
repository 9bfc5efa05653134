"""Websocket transport for the peer session.

``WebSocketTransport`` gives the session manager a browser-style socket: it
starts connecting as soon as it is created, reports back through plain
``on_open`` / ``on_message`` / ``on_error`` / ``on_close`` attributes, and its
``send()`` and ``close()`` never block.  The actual I/O runs in a background
asyncio task built on the ``websockets`` client.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Protocol

from loguru import logger
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from easypasta.peer.errors import TransportError
from easypasta.peer.tasks import TaskSet

# Close code used when the connection drops without a close frame.
ABNORMAL_CLOSURE = 1006


class ReadyState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Transport(Protocol):
    """Message-oriented socket consumed by ``SessionManager``."""

    on_open: Callable[[], Any] | None
    on_message: Callable[[str], Any] | None
    on_error: Callable[[Any], Any] | None
    on_close: Callable[[int | None, str], Any] | None

    @property
    def ready_state(self) -> ReadyState: ...

    def send(self, data: str) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[str], Transport]


class WebSocketTransport:
    """One client websocket connection.

    Parameters
    ----------
    url:
        ``ws://host:port/path`` to connect to.
    open_timeout:
        Seconds allowed for the TCP connect and opening handshake.
    close_timeout:
        Seconds to wait for the closing handshake.

    Must be created inside a running event loop.
    """

    def __init__(self, url: str, *, open_timeout: float = 10.0, close_timeout: float = 5.0):
        self.url = url
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.on_open: Callable[[], Any] | None = None
        self.on_message: Callable[[str], Any] | None = None
        self.on_error: Callable[[Any], Any] | None = None
        self.on_close: Callable[[int | None, str], Any] | None = None
        self._state = ReadyState.CONNECTING
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._tasks = TaskSet(f"ws:{url}")
        self._task = self._tasks.spawn(self._run(), name="run")

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    # -- public API ----------------------------------------------------------

    def send(self, data: str) -> None:
        """Queue *data* for transmission.  Raises if the socket is not open."""
        if self._state != ReadyState.OPEN:
            raise TransportError(f"websocket is {self._state.value}", {"url": self.url})
        self._outbox.put_nowait(data)

    def close(self) -> None:
        if self._state in (ReadyState.CLOSING, ReadyState.CLOSED):
            return
        self._state = ReadyState.CLOSING
        ws = self._ws
        if ws is None:
            # Still in the opening handshake. The task may not have started
            # yet, so report the close from its done callback.
            self._task.cancel()
            self._task.add_done_callback(lambda _t: self._finish(None, "closed before open"))
        else:
            self._tasks.spawn(ws.close(), name="close")

    # -- background I/O ------------------------------------------------------

    async def _run(self) -> None:
        try:
            ws = await connect(
                self.url,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("[Peer/Transport] failed to connect to {}: {}", self.url, exc)
            self._emit(self.on_error, exc)
            self._finish(ABNORMAL_CLOSURE, str(exc))
            return

        if self._state == ReadyState.CLOSING:
            await ws.close()
            self._finish(ws.close_code, ws.close_reason or "")
            return

        self._ws = ws
        self._state = ReadyState.OPEN
        logger.info("[Peer/Transport] connected to {}", self.url)
        self._emit(self.on_open)

        writer = self._tasks.spawn(self._send_loop(ws), name="send")
        try:
            async for frame in ws:
                logger.debug("[Peer/Transport] received {!r}", frame)
                self._emit(self.on_message, frame)
        except ConnectionClosedError as exc:
            logger.warning("[Peer/Transport] connection to {} dropped: {}", self.url, exc)
            self._emit(self.on_error, exc)
        finally:
            writer.cancel()
        self._finish(ws.close_code, ws.close_reason or "")

    async def _send_loop(self, ws: ClientConnection) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await ws.send(data)
            except ConnectionClosed:
                # The receive loop reports the close.
                return

    def _finish(self, code: int | None, reason: str) -> None:
        if self._state == ReadyState.CLOSED:
            return
        self._state = ReadyState.CLOSED
        self._ws = None
        logger.info("[Peer/Transport] closed {} (code={}, reason={!r})", self.url, code, reason)
        self._emit(self.on_close, code, reason)

    def _emit(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:
            logger.error("[Peer/Transport] handler error: {}", exc)


def websocket_factory(
    open_timeout: float = 10.0,
    close_timeout: float = 5.0,
) -> TransportFactory:
    """Return a ``TransportFactory`` producing ``WebSocketTransport`` objects."""

    def factory(url: str) -> Transport:
        return WebSocketTransport(url, open_timeout=open_timeout, close_timeout=close_timeout)

    return factory
