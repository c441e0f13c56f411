from __future__ import annotations

import asyncio

from src.sandboxes.debounce import DebounceScheduler


def _recorder():
    fired: list[tuple[str, str]] = []

    async def fire(key: str, payload: str) -> None:
        fired.append((key, payload))

    return fired, fire


def test_leading_edge_fires_then_trailing_carries_latest() -> None:
    async def _run():
        fired, fire = _recorder()
        d: DebounceScheduler[str] = DebounceScheduler(fire)
        d.schedule("a", "c1", 30)
        await asyncio.sleep(0)
        assert fired == [("a", "c1")]

        d.schedule("a", "c2", 30)
        d.schedule("a", "c3", 30)
        assert d.has_pending("a")
        await asyncio.sleep(0.15)
        return fired, d

    fired, d = asyncio.run(_run())
    assert fired == [("a", "c1"), ("a", "c3")]
    assert not d.is_scheduled("a")


def test_keys_are_independent() -> None:
    async def _run():
        fired, fire = _recorder()
        d: DebounceScheduler[str] = DebounceScheduler(fire)
        d.schedule("a", "a1", 30)
        d.schedule("b", "b1", 30)
        d.schedule("a", "a2", 30)
        await asyncio.sleep(0.15)
        return fired

    fired = asyncio.run(_run())
    assert ("a", "a1") in fired
    assert ("b", "b1") in fired
    assert ("a", "a2") in fired
    assert len(fired) == 3


def test_cancel_drops_pending_payload() -> None:
    async def _run():
        fired, fire = _recorder()
        d: DebounceScheduler[str] = DebounceScheduler(fire)
        d.schedule("a", "first", 30)
        d.schedule("a", "second", 30)
        dropped = d.cancel("a")
        await asyncio.sleep(0.1)
        return fired, dropped

    fired, dropped = asyncio.run(_run())
    assert dropped is True
    assert fired == [("a", "first")]


def test_flush_fires_pending_immediately() -> None:
    async def _run():
        fired, fire = _recorder()
        d: DebounceScheduler[str] = DebounceScheduler(fire)
        d.schedule("a", "one", 10_000)
        d.schedule("a", "two", 10_000)
        await d.flush()
        return fired, d

    fired, d = asyncio.run(_run())
    assert fired == [("a", "one"), ("a", "two")]
    assert d.keys() == []


def test_failing_fire_does_not_break_scheduler() -> None:
    async def _run():
        calls: list[str] = []

        async def fire(key: str, payload: str) -> None:
            calls.append(payload)
            raise RuntimeError("boom")

        d: DebounceScheduler[str] = DebounceScheduler(fire)
        d.schedule("a", "x", 10)
        d.schedule("a", "y", 10)
        await asyncio.sleep(0.08)
        await d.drain()
        return calls

    assert asyncio.run(_run()) == ["x", "y"]
