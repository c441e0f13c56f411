"""Durable sandbox records on top of a LangGraph store.

Every value read back from the backing store is validated; anything malformed
is reported as absent. Writes for one sandbox id are single-flight and carry a
sequence number so an older write can never land after a newer one, and a
deletion invalidates every write issued before it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.sandboxes.debounce import DebounceScheduler
from src.sandboxes.types import SandboxRecord, normalize_id, now_ms, record_from_value

logger = logging.getLogger(__name__)

NAMESPACE: tuple[str, ...] = ("hot_sandbox", "sandboxes")

_DAY_MS = 24 * 60 * 60 * 1000
_PAGE = 200


@dataclass(frozen=True)
class _Write:
    record: SandboxRecord
    generation: int
    seq: int


def _all_items(store: Any, namespace: tuple[str, ...]) -> list[Any]:
    out: list[Any] = []
    offset = 0
    while True:
        items = store.search(namespace, limit=_PAGE, offset=offset)
        if not items:
            break
        out.extend(items)
        if len(items) < _PAGE:
            break
        offset += _PAGE
    return out


def is_older_than_days(record: SandboxRecord, days: float, *, now: int | None = None) -> bool:
    age = (now if now is not None else now_ms()) - record.mtime
    return age > days * _DAY_MS


class PersistenceStore:
    """Validated CRUD, retention sweep and debounced writes for sandbox records."""

    def __init__(self, *, store: Any, namespace: tuple[str, ...] = NAMESPACE) -> None:
        self._store = store
        self._ns = namespace
        self._seq = itertools.count(1)
        self._locks: dict[str, asyncio.Lock] = {}
        self._generation: dict[str, int] = {}
        self._applied_seq: dict[str, int] = {}
        self._ctimes: dict[str, int] = {}
        self._debounce: DebounceScheduler[_Write] = DebounceScheduler(self._apply)

    @property
    def backend(self) -> Any:
        return self._store

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ── reads ──────────────────────────────────────────────────────────

    def _get_sync(self, key: str) -> SandboxRecord | None:
        item = self._store.get(self._ns, key)
        if item is None:
            return None
        return record_from_value(key, getattr(item, "value", None))

    def _get_all_sync(self) -> list[SandboxRecord]:
        records: list[SandboxRecord] = []
        skipped = 0
        for it in _all_items(self._store, self._ns):
            key = str(getattr(it, "key", None) or "")
            rec = record_from_value(key, getattr(it, "value", None))
            if rec is None:
                skipped += 1
                continue
            records.append(rec)
        if skipped:
            logger.warning("Skipped %d invalid sandbox record(s) while loading", skipped)
        records.sort(key=lambda r: (r.ctime, r.id))
        return records

    async def get(self, sandbox_id: str) -> SandboxRecord | None:
        key = normalize_id(sandbox_id)
        try:
            rec = await asyncio.to_thread(self._get_sync, key)
        except Exception:
            logger.warning("Failed to read sandbox %s", key, exc_info=True)
            return None
        if rec is not None:
            self._ctimes.setdefault(key, rec.ctime)
        return rec

    async def get_all(self) -> list[SandboxRecord]:
        try:
            records = await asyncio.to_thread(self._get_all_sync)
        except Exception:
            logger.warning("Failed to list sandbox records", exc_info=True)
            return []
        for rec in records:
            self._ctimes.setdefault(rec.id, rec.ctime)
        return records

    async def count(self) -> int:
        return len(await self.get_all())

    # ── writes ─────────────────────────────────────────────────────────

    def _issue(
        self,
        key: str,
        content: str,
        *,
        mtime: int | None = None,
        ctime: int | None = None,
    ) -> _Write:
        if not isinstance(content, str):
            raise TypeError("sandbox content must be a string")
        m = int(mtime or now_ms())
        c = int(ctime or self._ctimes.get(key) or m)
        self._ctimes.setdefault(key, c)
        return _Write(
            record=SandboxRecord(id=key, content=content, mtime=m, ctime=c),
            generation=self._generation.get(key, 0),
            seq=next(self._seq),
        )

    async def _apply(self, key: str, write: _Write) -> bool:
        async with self._lock_for(key):
            if self._generation.get(key, 0) != write.generation:
                logger.debug("Dropping write for deleted sandbox %s", key)
                return False
            if write.seq < self._applied_seq.get(key, 0):
                logger.debug("Dropping stale write for sandbox %s (seq=%d)", key, write.seq)
                return False
            try:
                await asyncio.to_thread(
                    self._store.put, self._ns, key, write.record.to_dict()
                )
            except Exception:
                # Cache keeps the edit; the next trigger retries implicitly.
                logger.warning("Failed to persist sandbox %s", key, exc_info=True)
                return False
            self._applied_seq[key] = write.seq
            logger.debug("Persisted sandbox %s (%d chars)", key, len(write.record.content))
            return True

    async def put(self, record: SandboxRecord) -> bool:
        key = normalize_id(record.id)
        w = self._issue(key, record.content, mtime=record.mtime, ctime=record.ctime)
        return await self._apply(key, w)

    def debounced_write(
        self,
        sandbox_id: str,
        content: str,
        delay_ms: int,
        *,
        mtime: int | None = None,
        ctime: int | None = None,
    ) -> None:
        key = normalize_id(sandbox_id)
        w = self._issue(key, content, mtime=mtime, ctime=ctime)
        self._debounce.schedule(key, w, delay_ms)

    async def force_write(
        self,
        sandbox_id: str,
        content: str,
        *,
        mtime: int | None = None,
        ctime: int | None = None,
    ) -> bool:
        key = normalize_id(sandbox_id)
        self._debounce.cancel(key)
        w = self._issue(key, content, mtime=mtime, ctime=ctime)
        return await self._apply(key, w)

    def cancel_pending(self, sandbox_id: str) -> bool:
        return self._debounce.cancel(normalize_id(sandbox_id))

    def has_pending(self, sandbox_id: str) -> bool:
        return self._debounce.has_pending(normalize_id(sandbox_id))

    # ── deletes ────────────────────────────────────────────────────────

    def _invalidate(self, key: str) -> None:
        # Must run before the first await of a delete so that no timer or
        # already-issued write can land afterwards.
        self._debounce.cancel(key)
        self._generation[key] = self._generation.get(key, 0) + 1
        self._ctimes.pop(key, None)

    async def delete(self, sandbox_id: str) -> None:
        key = normalize_id(sandbox_id)
        self._invalidate(key)
        # The per-id lock outlives the delete: writers may already be queued on it.
        async with self._lock_for(key):
            try:
                await asyncio.to_thread(self._store.delete, self._ns, key)
            except Exception:
                logger.warning("Failed to delete sandbox %s", key, exc_info=True)
                return
            # Older writes are rejected by generation from here on.
            self._applied_seq.pop(key, None)
        logger.debug("Deleted sandbox %s", key)

    async def clear(self) -> int:
        try:
            items = await asyncio.to_thread(_all_items, self._store, self._ns)
        except Exception:
            logger.warning("Failed to list sandbox records for clear", exc_info=True)
            return 0
        keys = {str(getattr(it, "key", None) or "") for it in items}
        keys.update(self._debounce.keys())
        keys.discard("")
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def sweep_expired(
        self, threshold_days: float, is_group_active: Callable[[str], bool]
    ) -> list[str]:
        """Delete records older than threshold_days whose group is not open.

        Activity is checked again immediately before each deletion, not only
        when the scan starts.
        """
        now = now_ms()
        candidates = [
            r for r in await self.get_all() if is_older_than_days(r, threshold_days, now=now)
        ]
        deleted: list[str] = []
        for rec in candidates:
            if is_group_active(rec.id) or self._debounce.is_scheduled(rec.id):
                logger.debug("Retention sweep kept active sandbox %s", rec.id)
                continue
            await self.delete(rec.id)
            deleted.append(rec.id)
        if deleted:
            logger.info(
                "Retention sweep removed %d sandbox(es) older than %s day(s)",
                len(deleted),
                threshold_days,
            )
        return deleted

    # ── teardown ───────────────────────────────────────────────────────

    async def flush(self) -> None:
        await self._debounce.flush()

    async def aclose(self) -> None:
        dropped = self._debounce.cancel_all()
        if dropped:
            logger.warning("Dropped %d pending sandbox write(s) on close", dropped)
        await self._debounce.drain()
