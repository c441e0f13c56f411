from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def debounce_ms() -> int:
    return max(0, _env_int("HOT_SANDBOX_DEBOUNCE_MS", 300))


def autosave_enabled() -> bool:
    return _env_bool("HOT_SANDBOX_AUTOSAVE_ENABLED", default=True)


def retention_days() -> int:
    return max(0, _env_int("HOT_SANDBOX_RETENTION_DAYS", 7))


def sweep_interval_s() -> int:
    # 0 disables the periodic sweep; the startup sweep always runs.
    return max(0, _env_int("HOT_SANDBOX_SWEEP_INTERVAL_S", 0))


def store_path() -> str:
    return (os.environ.get("HOT_SANDBOX_STORE_PATH") or "").strip()


def database_url() -> str:
    return (
        os.environ.get("HOT_SANDBOX_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or ""
    ).strip()


def log_level() -> str:
    v = (os.environ.get("HOT_SANDBOX_LOG_LEVEL") or "INFO").strip().upper()
    return v if v in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"


@dataclass(frozen=True)
class SandboxSettings:
    debounce_ms: int = 300
    autosave_enabled: bool = True
    retention_days: int = 7
    sweep_interval_s: int = 0

    @classmethod
    def from_env(cls) -> SandboxSettings:
        return cls(
            debounce_ms=debounce_ms(),
            autosave_enabled=autosave_enabled(),
            retention_days=retention_days(),
            sweep_interval_s=sweep_interval_s(),
        )
