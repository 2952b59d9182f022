"""Template pools with per-user repetition avoidance."""

from __future__ import annotations

import random
from typing import Optional, Sequence

from chinabot.services.kv_base import KeyValueStore, StoreError
from chinabot.services.repository import last_pick_prefix
from logger import get_logger

LOGGER = get_logger("templates")

MAX_REDRAWS = 3
LAST_PICK_TTL = 7 * 24 * 60 * 60


class TemplateBank:
    """Draws replies from pools, steering away from the user's previous pick."""

    def __init__(self, store: KeyValueStore, *, rng: Optional[random.Random] = None) -> None:
        self._store = store
        self._rng = rng or random.Random()

    @staticmethod
    def _key(user_id: str, tag: str) -> str:
        return f"{last_pick_prefix(user_id)}{tag}"

    async def pick(self, tag: str, pool: Sequence[str], user_id: str) -> str:
        if not pool:
            raise ValueError(f"template pool {tag!r} is empty")
        key = self._key(user_id, tag)
        try:
            last = await self._store.get(key)
        except StoreError:
            last = None

        choice = self._rng.choice(pool)
        if len(set(pool)) > 1:
            redraws = 0
            while choice == last and redraws < MAX_REDRAWS:
                choice = self._rng.choice(pool)
                redraws += 1

        try:
            await self._store.set(key, choice, ttl=LAST_PICK_TTL)
        except StoreError:
            LOGGER.debug("Could not remember last pick", payload={"tag": tag})
        return choice
