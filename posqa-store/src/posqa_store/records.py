"""JSON values and persisted lists on top of a keyed store."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Iterable

from posqa_core.errors import StoreCorruptionError

from posqa_store.store import KeyValueStore

logger = logging.getLogger(__name__)


async def read_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    """Read and decode a JSON value.

    Args:
        store: The keyed store.
        key: Key to read.
        default: Value returned when the key is absent.

    Returns:
        The decoded value, or ``default``.

    Raises:
        StoreCorruptionError: If the stored text is not valid JSON.
    """
    raw = await store.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise StoreCorruptionError(key, str(exc)) from exc


async def write_json(store: KeyValueStore, key: str, value: Any) -> None:
    """Encode and store a JSON value."""
    await store.set(key, json.dumps(value, separators=(",", ":")))


async def load_with_recovery(
    store: KeyValueStore,
    key: str,
    reload: Callable[[], Awaitable[Any]],
) -> tuple[Any, bool]:
    """Read a JSON value, clearing and reloading it when corrupted.

    Missing values are loaded too.

    Args:
        store: The keyed store.
        key: Key to read.
        reload: Coroutine function producing a fresh value.

    Returns:
        Tuple of (value, recovered) where ``recovered`` is True when the
        stored value was corrupted and has been replaced.
    """
    try:
        value = await read_json(store, key)
    except StoreCorruptionError as exc:
        logger.warning("Clearing corrupted entry: %s", exc)
        await store.delete(key)
        value = await reload()
        await write_json(store, key, value)
        return value, True
    if value is None:
        value = await reload()
        await write_json(store, key, value)
    return value, False


class JsonList:
    """A JSON array persisted under one key.

    Appends never drop existing items, so a list only grows until it is
    explicitly replaced or cleared.

    Example:
        >>> queue = JsonList(store, "offline_transactions")
        >>> await queue.append({"id": "tx-1", "synced": False})
        1
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self._key = key

    @property
    def key(self) -> str:
        """Return the store key."""
        return self._key

    async def items(self) -> list[Any]:
        """Return the stored items.

        Raises:
            StoreCorruptionError: If the stored value is not a JSON array.
        """
        value = await read_json(self._store, self._key, default=[])
        if not isinstance(value, list):
            raise StoreCorruptionError(self._key, f"expected a list, found {type(value).__name__}")
        return value

    async def append(self, item: Any) -> int:
        """Append one item and return the new length."""
        return await self.extend([item])

    async def extend(self, items: Iterable[Any]) -> int:
        """Append several items and return the new length."""
        current = await self.items()
        current.extend(items)
        await write_json(self._store, self._key, current)
        return len(current)

    async def replace(self, items: Iterable[Any]) -> None:
        """Replace the stored items."""
        await write_json(self._store, self._key, list(items))

    async def clear(self) -> None:
        """Remove the list."""
        await self._store.delete(self._key)

    async def count(self) -> int:
        """Return the number of stored items."""
        return len(await self.items())
