from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.sandboxes import config

logger = logging.getLogger(__name__)


@dataclass
class OpenedStore:
    store: Any
    kind: str
    ctx: Any = None

    def close(self) -> None:
        if self.ctx is None:
            return
        ctx, self.ctx = self.ctx, None
        try:
            ctx.__exit__(None, None, None)
        except Exception:
            logger.warning("Failed to close %s sandbox store", self.kind, exc_info=True)


def _memory_store() -> OpenedStore:
    from langgraph.store.memory import InMemoryStore

    return OpenedStore(store=InMemoryStore(), kind="memory")


def _postgres_store(dsn: str) -> OpenedStore | None:
    try:
        from langgraph.store.postgres import PostgresStore  # type: ignore
    except Exception:
        logger.warning(
            "PostgresStore unavailable (install langgraph-checkpoint-postgres + psycopg[binary])"
        )
        return None
    try:
        ctx = PostgresStore.from_conn_string(dsn)
        store = ctx.__enter__()
        store.setup()
    except Exception:
        logger.exception("Failed to initialize PostgresStore for sandboxes")
        return None
    return OpenedStore(store=store, kind="postgres", ctx=ctx)


def _sqlite_store(path: str) -> OpenedStore | None:
    try:
        from langgraph.store.sqlite import SqliteStore  # type: ignore
    except Exception:
        logger.warning("SqliteStore unavailable (install langgraph-checkpoint-sqlite)")
        return None
    try:
        ctx = SqliteStore.from_conn_string(path)
        store = ctx.__enter__()
        store.setup()
    except Exception:
        logger.exception("Failed to initialize SqliteStore at %s", path)
        return None
    return OpenedStore(store=store, kind="sqlite", ctx=ctx)


def open_store(*, database_url: str | None = None, store_path: str | None = None) -> OpenedStore:
    """Open the durable backing store for sandbox records.

    Preference: Postgres DSN, then SQLite file, then in-process memory.
    """
    dsn = (database_url if database_url is not None else config.database_url()).strip()
    path = (store_path if store_path is not None else config.store_path()).strip()

    if dsn:
        opened = _postgres_store(dsn)
        if opened is not None:
            logger.info("Sandbox records stored in Postgres")
            return opened
    if path:
        opened = _sqlite_store(path)
        if opened is not None:
            logger.info("Sandbox records stored in SQLite at %s", path)
            return opened
    if dsn or path:
        logger.warning("Durable sandbox store unavailable; records stay in-memory")
    return _memory_store()
