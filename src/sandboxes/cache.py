from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from src.sandboxes.types import SandboxRecord, normalize_id, now_ms

if TYPE_CHECKING:
    from src.sandboxes.store import PersistenceStore

logger = logging.getLogger(__name__)


class SandboxCache:
    """In-memory sandbox id -> record map; the fast path for current content.

    Iteration order is insertion order: hydrated records first (oldest
    first), then sandboxes registered during this session.
    """

    def __init__(self) -> None:
        self._records: dict[str, SandboxRecord] = {}
        self._hydrated = False

    async def hydrate(self, store: PersistenceStore) -> int:
        if self._hydrated:
            logger.debug("Sandbox cache already hydrated; skipping")
            return 0
        self._hydrated = True
        loaded = 0
        for rec in await store.get_all():
            if rec.id in self._records:
                continue
            self._records[rec.id] = rec
            loaded += 1
        logger.info("Loaded %d sandbox(es) into memory", loaded)
        return loaded

    def register(self, sandbox_id: str) -> SandboxRecord:
        key = normalize_id(sandbox_id)
        existing = self._records.get(key)
        if existing is not None:
            return existing
        ts = now_ms()
        rec = SandboxRecord(id=key, content="", mtime=ts, ctime=ts)
        self._records[key] = rec
        logger.debug("Registered new sandbox %s", key)
        return rec

    def update(self, sandbox_id: str, content: str) -> SandboxRecord | None:
        if not isinstance(content, str):
            raise TypeError("sandbox content must be a string")
        key = normalize_id(sandbox_id)
        current = self._records.get(key)
        if current is None:
            logger.debug("Ignoring update for unregistered sandbox %s", key)
            return None
        nxt = replace(current, content=content, mtime=max(now_ms(), current.mtime))
        self._records[key] = nxt
        return nxt

    def get(self, sandbox_id: str) -> SandboxRecord | None:
        return self._records.get(str(sandbox_id or "").strip())

    def content(self, sandbox_id: str) -> str:
        rec = self.get(sandbox_id)
        return rec.content if rec is not None else ""

    def get_all(self) -> list[SandboxRecord]:
        return list(self._records.values())

    def ids(self) -> list[str]:
        return list(self._records)

    def delete(self, sandbox_id: str) -> None:
        if self._records.pop(str(sandbox_id or "").strip(), None) is not None:
            logger.debug("Dropped sandbox %s from cache", sandbox_id)

    def clear(self) -> None:
        self._records.clear()
        self._hydrated = False

    def __contains__(self, sandbox_id: object) -> bool:
        return isinstance(sandbox_id, str) and sandbox_id.strip() in self._records

    def __len__(self) -> int:
        return len(self._records)
