"""User records and per-user derived keys on top of the key-value store."""

from __future__ import annotations

import json
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from chinabot.models import UserRecord
from chinabot.services.kv_base import KeyValueStore
from logger import get_logger

LOGGER = get_logger("store.repository")

USER_INDEX = "index:users"
TOUCH_RETRIES = 3

ProfileLoader = Callable[[str], Awaitable[Optional[str]]]


class StaleRecordError(RuntimeError):
    """Raised when a user record changed in the store after it was read."""


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def quota_prefix(user_id: str) -> str:
    return f"quota:{user_id}:"


def last_pick_prefix(user_id: str) -> str:
    return f"last:{user_id}:"


def history_key(user_id: str) -> str:
    return f"history:{user_id}"


def matches_lover_pattern(pattern: str, *names: Optional[str]) -> bool:
    return any(name and re.search(pattern, name, re.IGNORECASE) for name in names)


class UserRepository:
    """Repository layer for :class:`UserRecord` values.

    Records are stored as JSON with a ``revision`` counter; writes are
    compare-and-set against the revision that was read, so a slower handler
    can never overwrite a newer state.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        owner_ids: Iterable[str] = (),
        lover_name_pattern: str,
    ) -> None:
        self._store = store
        self._owner_ids = frozenset(owner_ids)
        self._lover_name_pattern = lover_name_pattern

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        raw = await self._store.get(user_key(user_id))
        return self._decode(raw)

    async def ensure_user(
        self,
        user_id: str,
        profile_loader: Optional[ProfileLoader] = None,
        *,
        now: Optional[datetime] = None,
    ) -> UserRecord:
        """Return the stored record, creating it on first contact."""

        existing = await self.get_user(user_id)
        if existing is not None:
            return existing

        display_name = ""
        if profile_loader is not None:
            try:
                display_name = (await profile_loader(user_id)) or ""
            except Exception:
                LOGGER.warning("Profile fetch failed, continuing without a name", user_id=user_id, exc_info=True)

        owner = user_id in self._owner_ids
        record = UserRecord(
            user_id=user_id,
            display_name=display_name,
            owner=owner,
            lover_mode=owner or matches_lover_pattern(self._lover_name_pattern, display_name),
            created_at=now or datetime.now(timezone.utc),
        )
        if await self._store.compare_and_set(user_key(user_id), None, self._encode(record)):
            await self._store.set_add(USER_INDEX, user_id)
            LOGGER.debug("Created user record", user_id=user_id)
            return record
        # Another handler created it first.
        created = await self.get_user(user_id)
        if created is None:
            raise StaleRecordError(f"user {user_id} vanished during creation")
        return created

    async def save_user(self, record: UserRecord) -> UserRecord:
        """Persist ``record`` if nobody else wrote it since it was read."""

        key = user_key(record.user_id)
        current_raw = await self._store.get(key)
        current = self._decode(current_raw)
        if current is None or current.revision != record.revision:
            raise StaleRecordError(f"user {record.user_id} changed since it was read")
        updated = replace(record, revision=record.revision + 1)
        if not await self._store.compare_and_set(key, current_raw, self._encode(updated)):
            raise StaleRecordError(f"user {record.user_id} changed while saving")
        record.revision = updated.revision
        return record

    async def touch(self, user_id: str, *, now: Optional[datetime] = None) -> Optional[UserRecord]:
        """Count one processed message; no-op when the record does not exist."""

        moment = now or datetime.now(timezone.utc)
        for _ in range(TOUCH_RETRIES):
            record = await self.get_user(user_id)
            if record is None:
                return None
            record.turns_total += 1
            record.last_seen_at = moment
            try:
                return await self.save_user(record)
            except StaleRecordError:
                continue
        LOGGER.warning("Gave up updating turn counter after retries", user_id=user_id)
        return None

    async def delete_user(self, user_id: str) -> bool:
        """Remove the record, its derived keys and its broadcast index entry."""

        derived: list[str] = []
        for prefix in (quota_prefix(user_id), last_pick_prefix(user_id)):
            derived.extend(await self._store.keys(prefix))
        removed = await self._store.delete(user_key(user_id), history_key(user_id), *derived)
        await self._store.set_remove(USER_INDEX, user_id)
        LOGGER.debug("Deleted user record", user_id=user_id, payload={"keys": removed})
        return removed > 0

    async def list_user_ids(self) -> list[str]:
        return sorted(await self._store.set_members(USER_INDEX))

    @staticmethod
    def _encode(record: UserRecord) -> str:
        return json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[UserRecord]:
        if raw is None:
            return None
        try:
            return UserRecord.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            LOGGER.error("Discarding unreadable user record", payload={"raw": raw[:80]})
            return None
