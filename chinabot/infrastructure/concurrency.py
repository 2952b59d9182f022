"""Concurrency primitives used across the application."""

from __future__ import annotations

import asyncio
import weakref
from typing import Awaitable, TypeVar

T = TypeVar("T")

GEN_SEMAPHORE = asyncio.Semaphore(8)


async def with_generation_slot(coro: Awaitable[T]) -> T:
    """Run the coroutine under the global generation semaphore."""

    async with GEN_SEMAPHORE:
        return await coro


class UserLocks:
    """Per-user critical sections.

    Locks live only while some task holds or waits on them. ``asyncio.Lock``
    wakes waiters in FIFO order, so same-user events are processed in the
    order their tasks were created.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["GEN_SEMAPHORE", "UserLocks", "with_generation_slot"]
