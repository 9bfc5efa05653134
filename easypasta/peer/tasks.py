"""Background task helpers shared by the zeroconf and websocket adapters."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Iterator

from loguru import logger


def supervised_task(coro: Coroutine[Any, Any, Any], *, name: str = "") -> asyncio.Task:
    """Schedule *coro* on the running loop and log it if it dies.

    Raises ``RuntimeError`` when called without a running event loop; the
    coroutine is closed so it does not leak a "never awaited" warning.
    """
    try:
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
    except RuntimeError:
        coro.close()
        raise

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("[Peer/Tasks] task {!r} failed: {!r}", t.get_name(), exc)

    task.add_done_callback(_on_done)
    return task


class TaskSet:
    """Supervised tasks owned by one adapter.

    Finished tasks drop out on their own; ``cancel()`` tears down whatever is
    still running, e.g. in-flight mDNS resolutions when a scan stops.

    Parameters
    ----------
    owner:
        Label used in log lines and as the task name prefix.
    """

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> asyncio.Task:
        label = f"{self.owner}:{name}" if self.owner and name else (name or self.owner)
        task = supervised_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel(self) -> int:
        """Cancel every unfinished task; returns how many were cancelled."""
        live = [t for t in self._tasks if not t.done()]
        for task in live:
            task.cancel()
        self._tasks.clear()
        if live:
            logger.debug("[Peer/Tasks] cancelled {} task(s) of {}", len(live), self.owner or "?")
        return len(live)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[asyncio.Task]:
        return iter(list(self._tasks))

    def __contains__(self, task: object) -> bool:
        return task in self._tasks
