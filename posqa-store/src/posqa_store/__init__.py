"""Persistence for posqa.

This package provides a keyed string store (in memory or SQLite through
aiosqlite), JSON helpers with corruption recovery, persisted lists, and the
bounded history of comprehensive summaries used for regression checks.

Example usage:

    from posqa_store import ResultHistory, SqliteStore

    async with SqliteStore("posqa.db") as store:
        history = ResultHistory(store, cap=10)
        await history.save(summary)
        previous = await history.load()
"""

from posqa_store.history import DEFAULT_CAP, DEFAULT_PREFIX, ResultHistory
from posqa_store.records import JsonList, load_with_recovery, read_json, write_json
from posqa_store.store import KeyValueStore, MemoryStore, SqliteStore

__all__ = [
    # Stores
    "KeyValueStore",
    "MemoryStore",
    "SqliteStore",
    # JSON values
    "JsonList",
    "load_with_recovery",
    "read_json",
    "write_json",
    # History
    "DEFAULT_CAP",
    "DEFAULT_PREFIX",
    "ResultHistory",
]
