"""SQLite and in-memory key-value store tests."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from chinabot.services.kv_base import StoreError
from chinabot.services.kv_memory import MemoryStore
from chinabot.services.kv_sqlite import SqliteStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def _sqlite(tmp_path: Path, clock: FakeClock) -> SqliteStore:
    store = SqliteStore(tmp_path / "kv.db", clock=clock)
    await store.init()
    return store


@pytest.fixture(params=["memory", "sqlite"])
def backend(request):
    return request.param


def _make(backend: str, tmp_path: Path, clock: FakeClock):
    async def factory():
        if backend == "memory":
            return MemoryStore(clock=clock)
        return await _sqlite(tmp_path, clock)

    return factory


def test_get_set_delete(backend, tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario() -> None:
        store = await _make(backend, tmp_path, clock)()
        assert await store.get("a") is None
        await store.set("a", "1")
        await store.set("b", "2")
        assert await store.get("a") == "1"
        assert await store.delete("a", "b", "missing") == 2
        assert await store.get("a") is None

    asyncio.run(scenario())


def test_ttl_expiry(backend, tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario() -> None:
        store = await _make(backend, tmp_path, clock)()
        await store.set("short", "x", ttl=10)
        await store.set("forever", "y")
        clock.now += 9
        assert await store.get("short") == "x"
        clock.now += 2
        assert await store.get("short") is None
        assert await store.get("forever") == "y"
        assert await store.keys("") == ["forever"]

    asyncio.run(scenario())


def test_compare_and_set(backend, tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario() -> None:
        store = await _make(backend, tmp_path, clock)()
        assert await store.compare_and_set("k", None, "v1")
        assert not await store.compare_and_set("k", None, "v2")
        assert not await store.compare_and_set("k", "stale", "v2")
        assert await store.compare_and_set("k", "v1", "v2")
        assert await store.get("k") == "v2"

    asyncio.run(scenario())


def test_incr_below_keeps_first_expiry(backend, tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario() -> None:
        store = await _make(backend, tmp_path, clock)()
        assert await store.incr_below("n", 2, ttl=50) == (True, 1)
        clock.now += 30
        assert await store.incr_below("n", 2, ttl=50) == (True, 2)
        assert await store.incr_below("n", 2, ttl=50) == (False, 2)
        clock.now += 25
        assert await store.incr_below("n", 2, ttl=50) == (True, 1)

    asyncio.run(scenario())


def test_prefix_keys_and_sets(backend, tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario() -> None:
        store = await _make(backend, tmp_path, clock)()
        for key in ("quota:U1:2024-05-01", "quota:U1:2024-05-02", "quota:U10:2024-05-01", "last:U1:x"):
            await store.set(key, "1")
        assert sorted(await store.keys("quota:U1:")) == ["quota:U1:2024-05-01", "quota:U1:2024-05-02"]

        await store.set_add("index", "U1")
        await store.set_add("index", "U2")
        await store.set_add("index", "U1")
        assert await store.set_members("index") == {"U1", "U2"}
        await store.set_remove("index", "U1")
        assert await store.set_members("index") == {"U2"}
        assert await store.set_members("nothing") == set()

    asyncio.run(scenario())


def test_sqlite_persists_between_instances(tmp_path: Path) -> None:
    async def scenario() -> None:
        first = SqliteStore(tmp_path / "kv.db")
        await first.init()
        await first.set("user:U1", "{}")
        await first.set_add("index:users", "U1")

        second = SqliteStore(tmp_path / "kv.db")
        await second.init()
        assert await second.get("user:U1") == "{}"
        assert await second.set_members("index:users") == {"U1"}

    asyncio.run(scenario())


def test_sqlite_errors_become_store_errors(tmp_path: Path) -> None:
    missing_dir = tmp_path / "missing" / "kv.db"
    store = SqliteStore(missing_dir)
    with pytest.raises(StoreError):
        asyncio.run(store.get("a"))
