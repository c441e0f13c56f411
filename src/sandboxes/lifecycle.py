"""Close-time delete-or-retain decisions and shutdown flush.

States per sandbox:

    ACTIVE ──last view closing──> CLOSING_LAST ──confirmed──> DELETED
                                       │
                                       ├──declined, abortable──> ACTIVE
                                       └──declined / failed────> RETAINED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from src.sandboxes.types import normalize_id

if TYPE_CHECKING:
    from src.sandboxes.cache import SandboxCache
    from src.sandboxes.config import SandboxSettings
    from src.sandboxes.store import PersistenceStore
    from src.sandboxes.sync import SandboxView, SyncCoordinator

logger = logging.getLogger(__name__)

DELETE_TITLE = "Delete Sandbox"
DELETE_MESSAGE = (
    "This sandbox has unsaved changes. Are you sure you want to permanently delete it?"
)


class SandboxState(Enum):
    ACTIVE = "active"
    CLOSING_LAST = "closing_last"
    DELETED = "deleted"
    RETAINED = "retained"


class ConfirmationUI(Protocol):
    async def confirm(self, title: str, message: str) -> bool: ...


class AlwaysRetain:
    """Confirmer for hosts without a prompt: never deletes."""

    async def confirm(self, title: str, message: str) -> bool:
        _ = title, message
        return False


@dataclass(frozen=True)
class CloseOutcome:
    group_id: str
    state: SandboxState
    view_closed: bool
    prompted: bool = False


class LifecycleController:
    def __init__(
        self,
        *,
        cache: SandboxCache,
        store: PersistenceStore,
        sync: SyncCoordinator,
        settings: SandboxSettings,
        confirmer: ConfirmationUI | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._sync = sync
        self._settings = settings
        self._confirmer = confirmer or AlwaysRetain()
        self._states: dict[str, SandboxState] = {}

    def state(self, group_id: str) -> SandboxState | None:
        key = str(group_id or "").strip()
        st = self._states.get(key)
        if st is SandboxState.CLOSING_LAST:
            return st
        if self._sync.is_active(key):
            return SandboxState.ACTIVE
        return st

    async def close_view(
        self,
        group_id: str,
        view: SandboxView,
        *,
        abortable: bool = False,
        confirmer: ConfirmationUI | None = None,
    ) -> CloseOutcome:
        key = normalize_id(group_id)

        if view not in self._sync.members(key):
            st = self.state(key)
            if st is None:
                st = SandboxState.RETAINED if key in self._cache else SandboxState.DELETED
            logger.debug("Close of sandbox %s from a view that is not open; ignoring", key)
            return CloseOutcome(group_id=key, state=st, view_closed=True)

        if (
            not self._sync.is_last_view(key, view)
            or self._states.get(key) is SandboxState.CLOSING_LAST
        ):
            self._sync.leave(key, view)
            st = SandboxState.ACTIVE if self._sync.is_active(key) else SandboxState.RETAINED
            if st is SandboxState.RETAINED:
                await self._retain(key)
            return CloseOutcome(group_id=key, state=st, view_closed=True)

        rec = self._cache.get(key)
        if rec is None or not rec.content:
            # Nothing to lose; no prompt needed.
            self._sync.leave(key, view)
            await self.delete_group(key)
            return CloseOutcome(group_id=key, state=SandboxState.DELETED, view_closed=True)

        self._states[key] = SandboxState.CLOSING_LAST
        try:
            confirmed = await (confirmer or self._confirmer).confirm(
                DELETE_TITLE, DELETE_MESSAGE
            )
        except Exception:
            logger.error("Close confirmation failed for sandbox %s; keeping it", key, exc_info=True)
            confirmed = None
        finally:
            self._states.pop(key, None)

        if confirmed is True:
            self._sync.leave(key, view)
            if self._sync.is_active(key):
                logger.info("Sandbox %s reopened during close; not deleting", key)
                return CloseOutcome(
                    group_id=key, state=SandboxState.ACTIVE, view_closed=True, prompted=True
                )
            await self.delete_group(key)
            logger.info("Sandbox %s deleted on last close", key)
            return CloseOutcome(
                group_id=key, state=SandboxState.DELETED, view_closed=True, prompted=True
            )

        if confirmed is False and abortable:
            logger.debug("Close of sandbox %s cancelled; view stays open", key)
            return CloseOutcome(
                group_id=key, state=SandboxState.ACTIVE, view_closed=False, prompted=True
            )

        self._sync.leave(key, view)
        if self._sync.is_active(key):
            # Another view joined while the prompt was open.
            return CloseOutcome(
                group_id=key, state=SandboxState.ACTIVE, view_closed=True, prompted=True
            )
        await self._retain(key)
        return CloseOutcome(
            group_id=key, state=SandboxState.RETAINED, view_closed=True, prompted=True
        )

    async def _retain(self, key: str) -> None:
        self._states[key] = SandboxState.RETAINED
        rec = self._cache.get(key)
        # Autosave may be off or an earlier write may have failed; persist the
        # cached content regardless of what is pending.
        if rec is not None and (rec.content or self._store.has_pending(key)):
            await self._store.force_write(key, rec.content, mtime=rec.mtime, ctime=rec.ctime)
        logger.debug("Sandbox %s retained", key)

    async def delete_group(self, group_id: str) -> None:
        key = normalize_id(group_id)
        # store.delete cancels the debounce window before its first await.
        await self._store.delete(key)
        self._cache.delete(key)
        self._sync.forget(key)
        self._states[key] = SandboxState.DELETED

    async def sweep(self, threshold_days: float | None = None) -> list[str]:
        days = self._settings.retention_days if threshold_days is None else threshold_days
        swept = await self._store.sweep_expired(days, self._sync.is_active)
        deleted: list[str] = []
        for key in swept:
            if not self._sync.is_active(key):
                self._cache.delete(key)
                self._states[key] = SandboxState.DELETED
                deleted.append(key)
                continue
            # A view reopened it while the durable delete was in flight.
            rec = self._cache.get(key)
            if rec is not None:
                logger.info("Sandbox %s reopened during retention sweep; restoring", key)
                await self._store.force_write(
                    key, rec.content, mtime=rec.mtime, ctime=rec.ctime
                )
        return deleted

    async def shutdown(self) -> int:
        """Persist every non-empty sandbox, plus any with a pending write. Never raises."""
        written = 0
        for rec in self._cache.get_all():
            if not rec.content and not self._store.has_pending(rec.id):
                continue
            try:
                if await self._store.force_write(
                    rec.id, rec.content, mtime=rec.mtime, ctime=rec.ctime
                ):
                    written += 1
            except Exception:
                logger.warning("Shutdown flush failed for sandbox %s", rec.id, exc_info=True)
        logger.info("Flushed %d sandbox(es) on shutdown", written)
        return written
