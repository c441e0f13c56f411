import sys
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so tests can import the local `src/` package.
ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _in_memory_sandbox_store_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    # Unit tests never touch a durable backend unless they opt in.
    monkeypatch.delenv("HOT_SANDBOX_STORE_PATH", raising=False)
    monkeypatch.delenv("HOT_SANDBOX_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
