"""Explicit context object that owns and wires the sandbox collaborators.

Usage:
    async with SandboxContext(confirmer=my_prompt) as ctx:
        sid = ctx.new_sandbox_id()
        ctx.open_view(sid, view_a)
        ctx.open_view(sid, view_b)
        ctx.content_changed(sid, "hello", view_a)   # view_b now shows "hello"
        await ctx.close_view(sid, view_a)
        outcome = await ctx.close_view(sid, view_b)  # prompts, then delete/retain
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any

from src.sandboxes.backends import OpenedStore, open_store
from src.sandboxes.cache import SandboxCache
from src.sandboxes.config import SandboxSettings
from src.sandboxes.events import (
    ContentChanged,
    SandboxEvent,
    SandboxEventBus,
    ViewClosed,
    ViewOpened,
)
from src.sandboxes.lifecycle import CloseOutcome, ConfirmationUI, LifecycleController
from src.sandboxes.store import PersistenceStore
from src.sandboxes.sync import SandboxView, SyncCoordinator, push_content

logger = logging.getLogger(__name__)

SANDBOX_ID_PREFIX = "hsbox-"


class SandboxNotFound(KeyError):
    pass


class SandboxContext:
    def __init__(
        self,
        *,
        store: Any | None = None,
        confirmer: ConfirmationUI | None = None,
        settings: SandboxSettings | None = None,
    ) -> None:
        self.settings = settings or SandboxSettings.from_env()
        self._backing = store
        self._opened: OpenedStore | None = None
        self._confirmer = confirmer
        self._sweep_task: asyncio.Task[None] | None = None
        self._started = False

        self.store: PersistenceStore | None = None
        self.cache = SandboxCache()
        self.sync: SyncCoordinator | None = None
        self.lifecycle: LifecycleController | None = None
        self.events = SandboxEventBus()
        self.events.on(ViewOpened, self._on_view_opened)
        self.events.on(ViewClosed, self._on_view_closed)
        self.events.on(ContentChanged, self._on_content_changed)

    # ── init / teardown ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        backing = self._backing
        if backing is None:
            self._opened = await asyncio.to_thread(open_store)
            backing = self._opened.store

        self.store = PersistenceStore(store=backing)
        self.sync = SyncCoordinator(cache=self.cache, store=self.store, settings=self.settings)
        self.lifecycle = LifecycleController(
            cache=self.cache,
            store=self.store,
            sync=self.sync,
            settings=self.settings,
            confirmer=self._confirmer,
        )
        await self.cache.hydrate(self.store)
        await self.lifecycle.sweep()
        if self.settings.sweep_interval_s > 0:
            self._sweep_task = asyncio.create_task(self._periodic_sweep())
        self._started = True
        logger.info("Sandbox context started (%d sandbox(es))", len(self.cache))

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        await self._require_lifecycle().shutdown()
        if self.store is not None:
            await self.store.aclose()
        self.cache.clear()
        if self._opened is not None:
            await asyncio.to_thread(self._opened.close)
            self._opened = None
        logger.info("Sandbox context closed")

    async def __aenter__(self) -> SandboxContext:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _periodic_sweep(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_s)
            try:
                await self._require_lifecycle().sweep()
            except Exception:
                logger.warning("Periodic retention sweep failed", exc_info=True)

    def _require_sync(self) -> SyncCoordinator:
        if self.sync is None:
            raise RuntimeError("SandboxContext is not started")
        return self.sync

    def _require_lifecycle(self) -> LifecycleController:
        if self.lifecycle is None:
            raise RuntimeError("SandboxContext is not started")
        return self.lifecycle

    # ── event handlers ─────────────────────────────────────────────────

    def _on_view_opened(self, event: ViewOpened) -> None:
        self._require_sync().join(event.group_id, event.view)

    async def _on_view_closed(self, event: ViewClosed) -> CloseOutcome:
        return await self._require_lifecycle().close_view(
            event.group_id, event.view, abortable=event.abortable
        )

    def _on_content_changed(self, event: ContentChanged) -> int:
        return self._require_sync().broadcast(event.group_id, event.content, event.source_view)

    # ── host-facing API ────────────────────────────────────────────────

    def new_sandbox_id(self) -> str:
        return f"{SANDBOX_ID_PREFIX}{uuid.uuid4().hex[:12]}"

    async def dispatch(self, event: SandboxEvent) -> list[dict[str, Any]]:
        return await self.events.emit(event)

    def open_view(self, group_id: str, view: SandboxView) -> None:
        self._require_sync().join(group_id, view)

    async def close_view(
        self,
        group_id: str,
        view: SandboxView,
        *,
        abortable: bool = False,
        confirmer: ConfirmationUI | None = None,
    ) -> CloseOutcome:
        return await self._require_lifecycle().close_view(
            group_id, view, abortable=abortable, confirmer=confirmer
        )

    def content_changed(self, group_id: str, content: str, source_view: SandboxView | None) -> int:
        return self._require_sync().broadcast(group_id, content, source_view)

    def set_content(self, view: SandboxView, content: str) -> bool:
        return push_content(view, content)

    def is_last_view(self, group_id: str, view: SandboxView) -> bool:
        return self._require_sync().is_last_view(group_id, view)

    def ordinal(self, group_id: str) -> int:
        return self._require_sync().ordinal(group_id)

    def title(self, group_id: str) -> str:
        return self._require_sync().title(group_id)

    def content(self, group_id: str) -> str:
        rec = self.cache.get(group_id)
        if rec is None:
            raise SandboxNotFound(group_id)
        return rec.content

    def describe(self) -> list[dict[str, Any]]:
        sync = self._require_sync()
        return [
            {
                "id": rec.id,
                "title": sync.title(rec.id),
                "mtime": rec.mtime,
                "open_views": len(sync.members(rec.id)),
            }
            for rec in self.cache.get_all()
        ]
