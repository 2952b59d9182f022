"""Key-value store interface."""

from __future__ import annotations

import abc
from typing import Optional


class StoreError(RuntimeError):
    """Raised when the backing store cannot serve a request."""


class KeyValueStore(abc.ABC):
    """Interface for string key-value storage with optional per-key expiry.

    Every method is atomic with respect to the key it touches; callers build
    read-modify-write sequences on top of :meth:`compare_and_set` and
    :meth:`incr_below` rather than on separate get/set calls.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent or expired."""

    @abc.abstractmethod
    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        """Store ``value``; ``ttl`` is in seconds, None keeps it forever."""

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""

    @abc.abstractmethod
    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        *,
        ttl: Optional[int] = None,
    ) -> bool:
        """Write ``value`` only if the current value equals ``expected``.

        ``expected=None`` means the key must be absent.
        """

    @abc.abstractmethod
    async def incr_below(self, key: str, limit: int, *, ttl: Optional[int] = None) -> tuple[bool, int]:
        """Increment an integer counter unless it already reached ``limit``.

        Returns ``(incremented, value_after)``. The expiry is set when the
        counter is created and kept on later increments.
        """

    @abc.abstractmethod
    async def keys(self, prefix: str) -> list[str]:
        """Return live keys starting with ``prefix``."""

    @abc.abstractmethod
    async def set_add(self, name: str, member: str) -> None:
        """Add a member to a named set."""

    @abc.abstractmethod
    async def set_remove(self, name: str, member: str) -> None:
        """Remove a member from a named set."""

    @abc.abstractmethod
    async def set_members(self, name: str) -> set[str]:
        """Return all members of a named set."""

    async def close(self) -> None:
        """Release resources held by the store."""
