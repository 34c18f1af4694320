"""Unit tests for keyed stores and persisted JSON values."""

import pytest

from posqa_core.errors import StoreCorruptionError, StoreError

from posqa_store import JsonList, KeyValueStore, MemoryStore, SqliteStore, load_with_recovery
from posqa_store.records import read_json, write_json


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    """Yield each store implementation."""
    if request.param == "memory":
        yield MemoryStore()
    else:
        async with SqliteStore(":memory:") as sqlite_store:
            yield sqlite_store


class TestKeyValueStore:
    """Behaviour shared by every store implementation."""

    async def test_protocol(self, store) -> None:
        """Both implementations satisfy the protocol."""
        assert isinstance(store, KeyValueStore)

    async def test_set_get(self, store) -> None:
        """Values are returned as stored."""
        await store.set("a", "1")
        assert await store.get("a") == "1"
        assert await store.get("missing") is None

    async def test_overwrite(self, store) -> None:
        """Setting an existing key replaces the value."""
        await store.set("a", "1")
        await store.set("a", "2")
        assert await store.get("a") == "2"

    async def test_delete(self, store) -> None:
        """Deleted keys disappear; deleting twice is harmless."""
        await store.set("a", "1")
        await store.delete("a")
        await store.delete("a")
        assert await store.get("a") is None

    async def test_keys_by_prefix(self, store) -> None:
        """keys() filters by exact prefix and sorts."""
        for key in ["results-2", "results-1", "other", "Results-3", "results_x"]:
            await store.set(key, "x")
        assert await store.keys("results-") == ["results-1", "results-2"]
        assert len(await store.keys()) == 5


class TestSqliteStore:
    """Tests specific to SqliteStore."""

    async def test_requires_context(self) -> None:
        """Using a closed store raises StoreError."""
        with pytest.raises(StoreError):
            await SqliteStore(":memory:").get("a")

    async def test_persists_across_connections(self, tmp_path) -> None:
        """Values survive reopening the database file."""
        path = tmp_path / "nested" / "posqa.db"
        async with SqliteStore(path) as first:
            await first.set("a", "1")
        async with SqliteStore(path) as second:
            assert await second.get("a") == "1"


class TestJsonValues:
    """Tests for JSON helpers."""

    async def test_round_trip(self) -> None:
        """JSON values round-trip."""
        store = MemoryStore()
        await write_json(store, "cfg", {"a": [1, 2]})
        assert await read_json(store, "cfg") == {"a": [1, 2]}

    async def test_default(self) -> None:
        """Missing keys return the default."""
        assert await read_json(MemoryStore(), "cfg", default=[]) == []

    async def test_corruption_detected(self) -> None:
        """Invalid JSON raises StoreCorruptionError."""
        store = MemoryStore({"cfg": "{not json"})
        with pytest.raises(StoreCorruptionError) as exc_info:
            await read_json(store, "cfg")
        assert exc_info.value.key == "cfg"

    async def test_recovery_clears_and_reloads(self) -> None:
        """Corrupted values are cleared and reloaded."""
        store = MemoryStore({"menus": "\x00garbage"})

        async def reload() -> list[str]:
            return ["MENU-1"]

        value, recovered = await load_with_recovery(store, "menus", reload)
        assert recovered
        assert value == ["MENU-1"]
        assert await read_json(store, "menus") == ["MENU-1"]

    async def test_recovery_keeps_valid_value(self) -> None:
        """Valid values are returned untouched."""
        store = MemoryStore({"menus": '["A"]'})

        async def reload() -> list[str]:
            raise AssertionError("should not reload")

        assert await load_with_recovery(store, "menus", reload) == (["A"], False)


class TestJsonList:
    """Tests for JsonList."""

    async def test_append_grows(self, store) -> None:
        """Appends never lose earlier items."""
        queue = JsonList(store, "offline_transactions")
        assert await queue.append({"id": 1}) == 1
        assert await queue.extend([{"id": 2}, {"id": 3}]) == 3
        assert [item["id"] for item in await queue.items()] == [1, 2, 3]

    async def test_clear(self, store) -> None:
        """clear() empties the list."""
        queue = JsonList(store, "q")
        await queue.append(1)
        await queue.clear()
        assert await queue.count() == 0

    async def test_non_list_is_corruption(self) -> None:
        """A stored object that is not a list is corruption."""
        queue = JsonList(MemoryStore({"q": '{"a": 1}'}), "q")
        with pytest.raises(StoreCorruptionError):
            await queue.items()
