"""Store wrapper that degrades to memory while the primary store is down."""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from chinabot.services.kv_base import KeyValueStore, StoreError
from chinabot.services.kv_memory import MemoryStore
from logger import get_logger

LOGGER = get_logger("store.fallback")


class ResilientStore(KeyValueStore):
    """Route calls to ``primary``; switch to ``fallback`` after a failure.

    While degraded the primary is left alone for ``retry_after`` seconds. State
    written to the fallback during an outage is not copied back on recovery.
    """

    def __init__(
        self,
        primary: KeyValueStore,
        *,
        fallback: Optional[KeyValueStore] = None,
        retry_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._primary = primary
        self._fallback = fallback or MemoryStore()
        self._retry_after = retry_after
        self._clock = clock
        self._degraded_until: Optional[float] = None

    @property
    def degraded(self) -> bool:
        return self._degraded_until is not None

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        if self._degraded_until is not None and self._clock() < self._degraded_until:
            return await getattr(self._fallback, method)(*args, **kwargs)
        try:
            result = await getattr(self._primary, method)(*args, **kwargs)
        except StoreError as exc:
            if self._degraded_until is None:
                LOGGER.error(
                    "Primary store unavailable, serving from memory: %s",
                    exc,
                    stage="STORE_DEGRADED",
                )
            self._degraded_until = self._clock() + self._retry_after
            return await getattr(self._fallback, method)(*args, **kwargs)
        if self._degraded_until is not None:
            LOGGER.warning("Primary store recovered", stage="STORE_RECOVERED")
            self._degraded_until = None
        return result

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", key)

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        await self._call("set", key, value, ttl=ttl)

    async def delete(self, *keys: str) -> int:
        return await self._call("delete", *keys)

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        *,
        ttl: Optional[int] = None,
    ) -> bool:
        return await self._call("compare_and_set", key, expected, value, ttl=ttl)

    async def incr_below(self, key: str, limit: int, *, ttl: Optional[int] = None) -> tuple[bool, int]:
        return await self._call("incr_below", key, limit, ttl=ttl)

    async def keys(self, prefix: str) -> list[str]:
        return await self._call("keys", prefix)

    async def set_add(self, name: str, member: str) -> None:
        await self._call("set_add", name, member)

    async def set_remove(self, name: str, member: str) -> None:
        await self._call("set_remove", name, member)

    async def set_members(self, name: str) -> set[str]:
        return await self._call("set_members", name)

    async def close(self) -> None:
        await self._primary.close()
        await self._fallback.close()
