from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

SCHEMA_VERSION = 1

_log = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SandboxRecord:
    id: str
    content: str
    mtime: int
    ctime: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "id": self.id,
            "content": self.content,
            "mtime": int(self.mtime),
            "ctime": int(self.ctime or self.mtime),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SandboxRecord:
        mtime = int(d["mtime"])
        ctime = d.get("ctime")
        return cls(
            id=str(d["id"]),
            content=str(d["content"]),
            mtime=mtime,
            ctime=int(ctime) if _is_number(ctime) and ctime > 0 else mtime,
        )


def _is_number(v: Any) -> bool:
    # bool is an int subclass; a stored True is not a timestamp.
    return isinstance(v, int | float) and not isinstance(v, bool)


def is_valid_record(value: Any) -> bool:
    """Structural check applied to every value read back from durable storage."""
    if not isinstance(value, dict):
        return False
    version = value.get("schema_version")
    if version is not None and (not _is_number(version) or version > SCHEMA_VERSION):
        return False
    rid = value.get("id")
    mtime = value.get("mtime")
    return (
        isinstance(rid, str)
        and len(rid) > 0
        and isinstance(value.get("content"), str)
        and _is_number(mtime)
        # Stored as integer ms; a fraction below 1 would truncate to 0.
        and int(mtime) > 0
    )


def record_from_value(key: str, value: Any) -> SandboxRecord | None:
    """Return a record for a stored value, or None when it fails validation."""
    if not is_valid_record(value):
        _log.debug("Invalid sandbox record for key %r; treating as absent", key)
        return None
    if value["id"] != key:
        _log.debug("Sandbox record id %r stored under key %r; treating as absent", value["id"], key)
        return None
    return SandboxRecord.from_dict(value)


def normalize_id(sandbox_id: str) -> str:
    sid = str(sandbox_id or "").strip()
    if not sid:
        raise ValueError("sandbox id must be a non-empty string")
    return sid
