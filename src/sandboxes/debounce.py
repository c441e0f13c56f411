"""Per-key debounce timers on the running asyncio loop.

Each key owns at most one window. The first trigger in a quiet period fires
immediately (leading edge); triggers that arrive while the window is open
replace a single pending payload, and the trailing edge of the window fires
whatever payload is pending at that moment, re-arming the window. A window
that closes with nothing pending is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOTHING: Any = object()


@dataclass
class _Window(Generic[T]):
    delay_s: float
    handle: asyncio.TimerHandle | None = None
    pending: Any = _NOTHING


class DebounceScheduler(Generic[T]):
    def __init__(self, fire: Callable[[str, T], Awaitable[Any]]) -> None:
        self._fire = fire
        self._windows: dict[str, _Window[T]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def schedule(self, key: str, payload: T, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        delay_s = max(0, int(delay_ms)) / 1000
        window = self._windows.get(key)
        if window is None:
            window = _Window(delay_s=delay_s)
            self._windows[key] = window
            self._spawn(key, payload)
        else:
            window.pending = payload
            window.delay_s = delay_s
            if window.handle is not None:
                window.handle.cancel()
        window.handle = loop.call_later(window.delay_s, self._on_window_end, key)

    def _on_window_end(self, key: str) -> None:
        window = self._windows.get(key)
        if window is None:
            return
        if window.pending is _NOTHING:
            self._windows.pop(key, None)
            return
        payload = window.pending
        window.pending = _NOTHING
        self._spawn(key, payload)
        window.handle = asyncio.get_running_loop().call_later(
            window.delay_s, self._on_window_end, key
        )

    def _spawn(self, key: str, payload: T) -> None:
        task = asyncio.get_running_loop().create_task(self._fire(key, payload))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Debounced write failed", exc_info=exc)

    def cancel(self, key: str) -> bool:
        """Drop the window for key. Returns True if a payload was pending."""
        window = self._windows.pop(key, None)
        if window is None:
            return False
        if window.handle is not None:
            window.handle.cancel()
        return window.pending is not _NOTHING

    def cancel_all(self) -> int:
        dropped = 0
        for key in list(self._windows):
            if self.cancel(key):
                dropped += 1
        return dropped

    def has_pending(self, key: str) -> bool:
        window = self._windows.get(key)
        return window is not None and window.pending is not _NOTHING

    def is_scheduled(self, key: str) -> bool:
        return key in self._windows

    def keys(self) -> list[str]:
        return list(self._windows)

    async def flush(self) -> None:
        """Fire every pending payload now and wait for all in-flight fires."""
        for key in list(self._windows):
            window = self._windows.pop(key)
            if window.handle is not None:
                window.handle.cancel()
            if window.pending is not _NOTHING:
                self._spawn(key, window.pending)
        await self.drain()

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
