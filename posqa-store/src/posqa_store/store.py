"""Keyed string stores.

A store maps string keys to string values, like the browser's localStorage.
Two implementations are provided: an in-memory store for tests and single
runs, and an aiosqlite-backed store that persists across runs.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from posqa_core.errors import StoreError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""


@runtime_checkable
class KeyValueStore(Protocol):
    """Async keyed string store."""

    async def get(self, key: str) -> str | None:
        """Return the value under ``key``, or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        """Return all keys starting with ``prefix``, sorted."""
        ...


class MemoryStore:
    """In-memory keyed store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class SqliteStore:
    """Keyed store persisted in a SQLite database.

    Usage:
        async with SqliteStore("posqa.db") as store:
            await store.set("key", "value")

        # Or for in-memory testing:
        async with SqliteStore(":memory:") as store:
            pass
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def __aenter__(self) -> SqliteStore:
        """Open the database connection and create the table."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreError("Store not open. Use 'async with SqliteStore(...) as store:'")
        return self._connection

    async def get(self, key: str) -> str | None:
        cursor = await self._db().execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return row["value"]

    async def set(self, key: str, value: str) -> None:
        db = self._db()
        await db.execute(
            "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (key, value, time.time_ns() // 1_000_000),
        )
        await db.commit()

    async def delete(self, key: str) -> None:
        db = self._db()
        await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await db.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        cursor = await self._db().execute(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        rows = await cursor.fetchall()
        return [row["key"] for row in rows]
