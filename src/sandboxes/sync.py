from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from src.sandboxes.config import SandboxSettings
from src.sandboxes.types import normalize_id

if TYPE_CHECKING:
    from src.sandboxes.cache import SandboxCache
    from src.sandboxes.store import PersistenceStore

logger = logging.getLogger(__name__)

TITLE_PREFIX = "Hot Sandbox"


@runtime_checkable
class SandboxView(Protocol):
    """A host view displaying one sandbox. Must be hashable."""

    def get_content(self) -> str: ...

    def set_content(self, content: str) -> None: ...


class SyncCoordinator:
    """Tracks which views show which sandbox and keeps sibling views in sync."""

    def __init__(
        self,
        *,
        cache: SandboxCache,
        store: PersistenceStore,
        settings: SandboxSettings | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._settings = settings or SandboxSettings()
        self._groups: dict[str, set[SandboxView]] = {}

    def join(self, group_id: str, view: SandboxView) -> None:
        key = normalize_id(group_id)
        rec = self._cache.register(key)
        members = self._groups.setdefault(key, set())
        members.add(view)
        logger.debug("View joined sandbox %s (%d open)", key, len(members))
        push_content(view, rec.content)

    def leave(self, group_id: str, view: SandboxView) -> None:
        key = normalize_id(group_id)
        members = self._groups.get(key)
        if members is None:
            return
        members.discard(view)
        if not members:
            del self._groups[key]
        logger.debug("View left sandbox %s (%d open)", key, len(members))

    def forget(self, group_id: str) -> None:
        self._groups.pop(normalize_id(group_id), None)

    def broadcast(self, group_id: str, content: str, source_view: SandboxView | None) -> int:
        """Apply content from source_view to the cache and every sibling view.

        Runs to completion without yielding, so all open views agree by the
        time it returns. Persistence is only scheduled here.
        """
        key = normalize_id(group_id)
        rec = self._cache.update(key, content)
        if rec is None:
            logger.warning("Broadcast for unregistered sandbox %s ignored", key)
            return 0

        pushed = 0
        for view in list(self._groups.get(key, ())):
            if view is source_view:
                continue
            if push_content(view, content):
                pushed += 1

        if self._settings.autosave_enabled:
            self._store.debounced_write(
                key,
                content,
                self._settings.debounce_ms,
                mtime=rec.mtime,
                ctime=rec.ctime,
            )
        return pushed

    def is_last_view(self, group_id: str, view: SandboxView) -> bool:
        members = self._groups.get(str(group_id or "").strip())
        return members is not None and len(members) == 1 and view in members

    def is_active(self, group_id: str) -> bool:
        return bool(self._groups.get(str(group_id or "").strip()))

    def members(self, group_id: str) -> list[SandboxView]:
        return list(self._groups.get(str(group_id or "").strip(), ()))

    def active_groups(self) -> list[str]:
        return [k for k, v in self._groups.items() if v]

    def ordinal(self, group_id: str) -> int:
        """1-based display number of a sandbox, 0 if unknown.

        Positions come from the cache's id order (durable records by creation
        time, then new sandboxes), so closing and reopening keeps the number.
        """
        key = str(group_id or "").strip()
        try:
            return self._cache.ids().index(key) + 1
        except ValueError:
            return 0

    def title(self, group_id: str) -> str:
        return f"{TITLE_PREFIX}-{max(1, self.ordinal(group_id))}"


def push_content(view: SandboxView, content: str) -> bool:
    """Set content on view if its buffer differs. Returns True if it was set."""
    try:
        if view.get_content() == content:
            return False
        view.set_content(content)
    except Exception:
        logger.warning("Failed to push content to view %r", view, exc_info=True)
        return False
    return True
