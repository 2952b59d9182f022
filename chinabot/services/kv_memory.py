"""In-process key-value store."""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable, Optional

from chinabot.services.kv_base import KeyValueStore


class MemoryStore(KeyValueStore):
    """Dictionary backed store.

    Used for tests, single-process development and as the degraded-mode cache
    behind :class:`~chinabot.services.kv_fallback.ResilientStore`. Methods do
    not await, so each call is atomic on the event loop.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, Optional[float]]] = {}
        self._sets: defaultdict[str, set[str]] = defaultdict(set)

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def _live(self, key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._values.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        self._values[key] = (value, self._expiry(ttl))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                removed += 1
            self._values.pop(key, None)
        return removed

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        *,
        ttl: Optional[int] = None,
    ) -> bool:
        entry = self._live(key)
        current = entry[0] if entry else None
        if current != expected:
            return False
        self._values[key] = (value, self._expiry(ttl))
        return True

    async def incr_below(self, key: str, limit: int, *, ttl: Optional[int] = None) -> tuple[bool, int]:
        entry = self._live(key)
        current = int(entry[0]) if entry else 0
        if current >= limit:
            return False, current
        expires_at = entry[1] if entry else self._expiry(ttl)
        self._values[key] = (str(current + 1), expires_at)
        return True, current + 1

    async def keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._values) if key.startswith(prefix) and self._live(key)]

    async def set_add(self, name: str, member: str) -> None:
        self._sets[name].add(member)

    async def set_remove(self, name: str, member: str) -> None:
        self._sets[name].discard(member)

    async def set_members(self, name: str) -> set[str]:
        return set(self._sets.get(name, ()))
