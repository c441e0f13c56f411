from __future__ import annotations

import inspect
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from src.sandboxes.sync import SandboxView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewOpened:
    group_id: str
    view: SandboxView


@dataclass(frozen=True)
class ViewClosed:
    group_id: str
    view: SandboxView
    abortable: bool = False


@dataclass(frozen=True)
class ContentChanged:
    group_id: str
    content: str
    source_view: SandboxView | None


SandboxEvent = ViewOpened | ViewClosed | ContentChanged

EVENT_KINDS: tuple[type, ...] = (ViewOpened, ViewClosed, ContentChanged)

E = TypeVar("E", ViewOpened, ViewClosed, ContentChanged)

EventHandler = Callable[[Any], Any | Awaitable[Any]]


class SandboxEventBus:
    """Dispatches host events to handlers registered per event kind.

    Handler failures are reported in the result list and logged; they never
    propagate to the emitter or stop later handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def on(self, kind: type[E], handler: Callable[[E], Any]) -> Callable[[], None]:
        if kind not in EVENT_KINDS:
            raise TypeError(f"unknown sandbox event kind: {kind!r}")
        self._handlers[kind].append(handler)

        def _off() -> None:
            self.off(kind, handler)

        return _off

    def off(self, kind: type, handler: EventHandler) -> None:
        handlers = self._handlers.get(kind)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: SandboxEvent) -> list[dict[str, Any]]:
        kind = type(event)
        if kind not in EVENT_KINDS:
            raise TypeError(f"unknown sandbox event: {event!r}")

        results: list[dict[str, Any]] = []
        for idx, handler in enumerate(list(self._handlers.get(kind, []))):
            started = time.monotonic()
            label = f"{kind.__name__}:{idx}"
            try:
                maybe = handler(event)
                data = await maybe if inspect.isawaitable(maybe) else maybe
                results.append(
                    {
                        "handler": label,
                        "status": "ok",
                        "duration_ms": int((time.monotonic() - started) * 1000),
                        "data": data,
                    }
                )
            except Exception as exc:
                logger.warning("Sandbox event handler %s failed", label, exc_info=True)
                results.append(
                    {
                        "handler": label,
                        "status": "error",
                        "duration_ms": int((time.monotonic() - started) * 1000),
                        "error": str(exc),
                    }
                )
        return results
