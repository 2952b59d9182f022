"""SQLite-backed key-value store."""

from __future__ import annotations

import asyncio
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Optional, TypeVar

from chinabot.services.kv_base import KeyValueStore, StoreError

T = TypeVar("T")


class SqliteStore(KeyValueStore):
    """Embedded store; every operation runs in a worker thread.

    Multi-statement operations use ``BEGIN IMMEDIATE`` so they stay atomic when
    several processes share the same database file.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._clock = clock

    async def init(self) -> None:
        """Initialize database schema."""

        await self._run(self._create_schema)

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._get_sync, key)

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        await self._run(self._set_sync, key, value, ttl)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._run(self._delete_sync, keys)

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        *,
        ttl: Optional[int] = None,
    ) -> bool:
        return await self._run(self._compare_and_set_sync, key, expected, value, ttl)

    async def incr_below(self, key: str, limit: int, *, ttl: Optional[int] = None) -> tuple[bool, int]:
        return await self._run(self._incr_below_sync, key, limit, ttl)

    async def keys(self, prefix: str) -> list[str]:
        return await self._run(self._keys_sync, prefix)

    async def set_add(self, name: str, member: str) -> None:
        await self._run(
            self._execute_sync,
            "INSERT OR IGNORE INTO kv_sets (name, member) VALUES (?, ?)",
            (name, member),
        )

    async def set_remove(self, name: str, member: str) -> None:
        await self._run(
            self._execute_sync,
            "DELETE FROM kv_sets WHERE name = ? AND member = ?",
            (name, member),
        )

    async def set_members(self, name: str) -> set[str]:
        return await self._run(self._set_members_sync, name)

    # internal helpers
    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise StoreError(f"sqlite store failure: {exc}") from exc

    def _create_schema(self) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_sets (
                    name TEXT NOT NULL,
                    member TEXT NOT NULL,
                    PRIMARY KEY (name, member)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at)")

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def _select_live(self, conn: sqlite3.Connection, key: str) -> Optional[tuple[str, Optional[float]]]:
        row = conn.execute("SELECT value, expires_at FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self._clock():
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return None
        return value, expires_at

    def _write(self, conn: sqlite3.Connection, key: str, value: str, expires_at: Optional[float]) -> None:
        conn.execute(
            """
            INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value=excluded.value,
                expires_at=excluded.expires_at
            """,
            (key, value, expires_at),
        )

    def _get_sync(self, key: str) -> Optional[str]:
        with self._transaction() as conn:
            entry = self._select_live(conn, key)
        return entry[0] if entry else None

    def _set_sync(self, key: str, value: str, ttl: Optional[int]) -> None:
        with self._transaction() as conn:
            self._write(conn, key, value, self._expiry(ttl))

    def _delete_sync(self, keys: tuple[str, ...]) -> int:
        removed = 0
        now = self._clock()
        with self._transaction() as conn:
            for key in keys:
                cur = conn.execute(
                    "DELETE FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                    (key, now),
                )
                removed += cur.rowcount
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        return removed

    def _compare_and_set_sync(
        self, key: str, expected: Optional[str], value: str, ttl: Optional[int]
    ) -> bool:
        with self._transaction() as conn:
            entry = self._select_live(conn, key)
            current = entry[0] if entry else None
            if current != expected:
                return False
            self._write(conn, key, value, self._expiry(ttl))
            return True

    def _incr_below_sync(self, key: str, limit: int, ttl: Optional[int]) -> tuple[bool, int]:
        with self._transaction() as conn:
            entry = self._select_live(conn, key)
            current = int(entry[0]) if entry else 0
            if current >= limit:
                return False, current
            expires_at = entry[1] if entry else self._expiry(ttl)
            self._write(conn, key, str(current + 1), expires_at)
            return True, current + 1

    def _keys_sync(self, prefix: str) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT key FROM kv
                WHERE substr(key, 1, ?) = ? AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY key
                """,
                (len(prefix), prefix, self._clock()),
            ).fetchall()
        return [row[0] for row in rows]

    def _set_members_sync(self, name: str) -> set[str]:
        with self._connection() as conn:
            rows = conn.execute("SELECT member FROM kv_sets WHERE name = ?", (name,)).fetchall()
        return {row[0] for row in rows}

    def _execute_sync(self, sql: str, params: tuple[Any, ...]) -> None:
        with self._transaction() as conn:
            conn.execute(sql, params)

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout, isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
