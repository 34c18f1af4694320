"""Progressive web app testing.

Service worker, caching and background sync checks read the client
environment snapshot. Offline transactions and sync conflicts are
exercised against the keyed store, which stands in for the client's local
storage, so queued data written by one run is visible to the next.

Simulated sync attempts succeed or fail through the ``sync`` and
``sync_retry`` fault injectors; with no injector registered every attempt
succeeds.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from posqa_core.backoff import RetryPolicy, is_exponential
from posqa_core.conflict import (
    ConflictStrategy,
    Side,
    VersionedRecord,
    detect_conflict,
    resolve,
)
from posqa_core.errors import ConflictError, InjectedFault
from posqa_core.types.common import Timestamp
from posqa_core.types.result import TestResult
from posqa_core.types.rules import AllCategoriesPass
from posqa_core.types.summary import PassPolicy

from posqa_store.records import JsonList, load_with_recovery, read_json, write_json

from posqa_testcase import ClientCapabilities, TestModule, category, check, expect_success
from posqa_testcase.scenario import Scenario
from posqa_testcase.utils import Stopwatch

from posqa_modules.common import call_api

logger = logging.getLogger(__name__)

OFFLINE_QUEUE_KEY = "offline_transactions"
CONFLICTS_KEY = "sync_conflicts"
BOOTSTRAP_KEY = "bootstrapData"

CRITICAL_RESOURCES = (
    "/",
    "/index.html",
    "/offline.html",
    "/css/style.css",
    "/js/pos-app.js",
    "/manifest.json",
)

MIN_CACHED_RATE = 0.5
MAX_STORAGE_RATIO = 0.8
MIN_SYNC_RATE = 0.8


def offline_transaction(**data: Any) -> dict[str, Any]:
    """Build an unsynced sale transaction as the client queues it offline."""
    return {
        "id": f"OFFLINE_TXN_{uuid.uuid4().hex[:12]}",
        "type": "sale",
        "timestamp": Timestamp.now().to_iso(),
        "data": {"menu_id": "TEST_MENU_001", "qty": 2, "price": 80, "platform": "Grab", **data},
        "synced": False,
    }


class PwaModule(TestModule):
    """Offline-first behaviour of the POS client."""

    name = "PWA Testing"
    key = "pwa"
    pass_rule = AllCategoriesPass()
    requirements = ("7.1", "7.2", "7.3", "7.4", "7.5", "7.6", "7.7", "7.8", "7.9", "7.10")

    @property
    def _caps(self) -> ClientCapabilities:
        return self.context.environment.capabilities

    @category("Service Worker", PassPolicy.tolerate(1))
    async def test_service_worker(self) -> list[TestResult]:
        caps = self._caps
        results = [
            check(
                "Service worker support",
                caps.service_worker,
                "7.1",
                "Service workers are supported" if caps.service_worker else "Service workers not supported",
            )
        ]
        if not caps.service_worker:
            return results

        results.append(
            check(
                "Service worker registration",
                bool(caps.service_worker_scope),
                "7.1",
                f"Registered with scope {caps.service_worker_scope}"
                if caps.service_worker_scope
                else "No service worker registered",
                scope=caps.service_worker_scope,
            )
        )
        active = caps.service_worker_state == "activated"
        results.append(
            check(
                "Service worker state",
                active,
                "7.7",
                f"Service worker is {caps.service_worker_state}",
                state=caps.service_worker_state,
            )
        )
        return results

    @category("Offline Capability", PassPolicy.tolerate(1))
    async def test_offline_capability(self) -> list[Scenario | TestResult]:
        caps = self._caps
        store = self.context.store

        async def bootstrap() -> Any:
            response = await call_api(self.context, "getBootstrapData")
            return response.data

        async def cached_data() -> tuple[Any, float]:
            with Stopwatch() as sw:
                value, recovered = await load_with_recovery(store, BOOTSTRAP_KEY, bootstrap)
            if recovered:
                self.warn("Cached bootstrap data was corrupted and has been reloaded")
            return value, sw.elapsed_ms

        async def offline_viewing() -> dict[str, Any]:
            data = {
                "ingredients": [
                    {"id": "TEST_001", "name": "Test Ingredient 1", "stock": 10},
                    {"id": "TEST_002", "name": "Test Ingredient 2", "stock": 5},
                ],
                "menus": [
                    {"id": "MENU_001", "name": "Test Menu 1", "price": 50},
                    {"id": "MENU_002", "name": "Test Menu 2", "price": 75},
                ],
            }
            await write_json(store, "test_offline_data", data)
            try:
                return await read_json(store, "test_offline_data")
            finally:
                await store.delete("test_offline_data")

        limit = self.context.threshold("offline_ms", 500.0)
        return [
            check(
                "Local storage available",
                caps.local_storage,
                "7.2",
                "localStorage is available" if caps.local_storage else "localStorage not available",
            ),
            expect_success(
                "Cached data availability",
                cached_data,
                "7.3",
                check=lambda v: v[0] is not None and v[1] < limit,
                describe=lambda v: f"Cached data loaded in {v[1]:.2f}ms",
            ),
            check(
                "Offline page cached",
                "/offline.html" in caps.cached_urls,
                "7.2",
                "Offline page is cached" if "/offline.html" in caps.cached_urls else "Offline page is not cached",
            ),
            check(
                "Main app page cached",
                "/" in caps.cached_urls or "/index.html" in caps.cached_urls,
                "7.3",
            ),
            expect_success(
                "Offline data viewing",
                offline_viewing,
                "7.3",
                check=lambda d: len(d["ingredients"]) == 2 and len(d["menus"]) == 2,
            ),
        ]

    @category("Cache Strategy", PassPolicy.tolerate(1))
    async def test_cache_strategy(self) -> list[TestResult]:
        caps = self._caps
        cached = [url for url in CRITICAL_RESOURCES if url in caps.cached_urls]
        missing = [url for url in CRITICAL_RESOURCES if url not in caps.cached_urls]
        rate = len(cached) / len(CRITICAL_RESOURCES)
        ratio = caps.storage_usage_ratio
        self.record_metric("cached_resources", len(cached))
        self.record_metric("storage_usage_ratio", round(ratio, 4))
        return [
            check("Cache API support", caps.cache_api, "7.8"),
            check(
                "Critical resources cached",
                rate >= MIN_CACHED_RATE,
                "7.8",
                f"{len(cached)}/{len(CRITICAL_RESOURCES)} critical resources are cached",
                missing=missing,
            ),
            check(
                "Cache storage size",
                ratio < MAX_STORAGE_RATIO,
                "7.8",
                f"Cache using {caps.storage_usage / 1048576:.2f} MB of "
                f"{caps.storage_quota / 1048576:.2f} MB ({ratio * 100:.1f}%)",
            ),
            check("IndexedDB support", caps.indexed_db, "7.8"),
        ]

    @category("Offline Transactions")
    async def test_offline_transactions(self) -> list[Scenario]:
        queue = JsonList(self.context.store, OFFLINE_QUEUE_KEY)
        single = offline_transaction()
        batch = [offline_transaction(qty=i + 1) for i in range(3)]
        lengths: list[int] = []

        async def record_one() -> bool:
            lengths.append(await queue.count())
            lengths.append(await queue.append(single))
            return any(item["id"] == single["id"] for item in await queue.items())

        async def record_many() -> bool:
            lengths.append(await queue.extend(batch))
            ids = {item["id"] for item in await queue.items()}
            return all(txn["id"] in ids for txn in batch)

        async def retrieve() -> list[dict[str, Any]]:
            return [item for item in await queue.items() if not item.get("synced")]

        async def integrity() -> bool:
            stored = {item["id"]: item for item in await queue.items()}
            return all(stored.get(txn["id"]) == txn for txn in [single, *batch])

        return [
            expect_success("Record offline transaction", record_one, "7.4"),
            expect_success("Record multiple offline transactions", record_many, "7.4"),
            expect_success(
                "Retrieve offline transactions",
                retrieve,
                "7.4",
                check=lambda pending: len(pending) >= 4,
                describe=lambda pending: f"{len(pending)} unsynced transaction(s) queued",
            ),
            expect_success("Offline transaction data integrity", integrity, "7.4"),
            expect_success(
                "Offline queue only grows",
                lambda: lengths,
                "7.4",
                check=lambda seen: len(seen) == 3 and seen[0] < seen[1] < seen[2],
                describe=lambda seen: f"Queue length {' -> '.join(str(n) for n in seen)}",
            ),
        ]

    @category("Background Sync", PassPolicy.tolerate(1))
    async def test_background_sync(self) -> list[Scenario | TestResult]:
        caps = self._caps
        queue = JsonList(self.context.store, OFFLINE_QUEUE_KEY)
        injector = self.context.injector("sync")

        async def sync_pending() -> tuple[int, int]:
            items = await queue.items()
            pending = [item for item in items if not item.get("synced")]
            synced = 0
            for index, item in enumerate(pending):
                try:
                    injector.check(index, "sync")
                except InjectedFault as exc:
                    logger.debug("Sync of %s failed: %s", item["id"], exc)
                    continue
                item["synced"] = True
                item["syncedAt"] = Timestamp.now().to_iso()
                synced += 1
            await queue.replace(items)
            return synced, len(pending)

        async def auto_sync() -> float:
            with Stopwatch() as sw:
                await self.context.sleep(0.1)
            return sw.elapsed_ms

        retry_injector = self.context.injector("sync_retry")
        policy = RetryPolicy(max_attempts=3, base_delay=0.02, retry_on=(InjectedFault,))

        async def attempt() -> bool:
            retry_injector.check(what="sync attempt")
            return True

        async def retry_sync():
            return await policy.run(attempt, sleep=self.context.sleep)

        return [
            check(
                "Background Sync API support",
                caps.background_sync,
                "7.5",
                "Background Sync is supported" if caps.background_sync else "Background Sync not supported",
            ),
            expect_success(
                "Simulate sync process",
                sync_pending,
                "7.5",
                check=lambda v: v[1] == 0 or v[0] / v[1] >= MIN_SYNC_RATE,
                describe=lambda v: (
                    f"Synced {v[0]}/{v[1]} transactions" if v[1] else "No unsynced transactions to sync"
                ),
            ),
            expect_success(
                "Automatic sync on connection restore",
                auto_sync,
                "7.9",
                check=lambda ms: ms < 1000,
                describe=lambda ms: f"Automatic sync triggered in {ms:.2f}ms",
            ),
            expect_success(
                "Sync retry mechanism",
                retry_sync,
                "7.9",
                check=lambda outcome: (
                    (outcome.success or outcome.attempts == policy.max_attempts)
                    and (len(outcome.delays) < 2 or is_exponential(outcome.delays))
                ),
                describe=lambda outcome: (
                    f"Sync {'succeeded' if outcome.success else 'gave up'} after "
                    f"{outcome.attempts} attempt(s)"
                ),
            ),
        ]

    @category("Sync Conflicts")
    async def test_sync_conflicts(self) -> list[Scenario]:
        conflicts = JsonList(self.context.store, CONFLICTS_KEY)
        now = Timestamp.now()

        local_sale = VersionedRecord(
            "TXN_CONFLICT_001", {"menu_id": "MENU_001", "qty": 2, "price": 80}, now, version=1
        )
        remote_sale = VersionedRecord(
            "TXN_CONFLICT_001",
            {"menu_id": "MENU_001", "qty": 3, "price": 80},
            Timestamp(now.unix_ns + 1_000_000_000),
            version=1,
        )

        base = Timestamp.from_iso("2024-01-01T10:00:00+00:00")
        local_value = VersionedRecord("TXN_002", {"value": 100}, base)
        remote_value = VersionedRecord(
            "TXN_002", {"value": 150}, Timestamp(base.unix_ns + 5 * 60 * 1_000_000_000)
        )

        local_item = VersionedRecord(
            "ITEM_001",
            {"name": "Test Item", "stock": 10, "price": 50},
            now,
            frozenset({"stock"}),
        )
        remote_item = VersionedRecord(
            "ITEM_001",
            {"name": "Test Item Updated", "stock": 15, "price": 55},
            now,
            frozenset({"name", "price"}),
        )

        async def store_for_manual() -> bool:
            resolution = resolve(local_sale, remote_sale, ConflictStrategy.MANUAL)
            if resolution.conflict is None:
                raise ConflictError(
                    f"Manual resolution of {local_sale.record_id} did not record a conflict"
                )
            await conflicts.append(resolution.conflict.to_dict())
            return any(c["id"] == local_sale.record_id for c in await conflicts.items())

        async def notification() -> int:
            return await conflicts.count()

        return [
            expect_success(
                "Detect sync conflicts",
                lambda: detect_conflict(local_sale, remote_sale),
                "7.6",
                check=lambda conflict: conflict is not None and conflict.fields == ("qty",),
            ),
            expect_success(
                "Resolve conflict - last write wins",
                lambda: resolve(local_value, remote_value, ConflictStrategy.LAST_WRITE_WINS),
                "7.10",
                check=lambda r: r.winner == Side.REMOTE and r.record.data["value"] == 150,
                describe=lambda r: f"Conflict resolved using last-write-wins: {r.winner.value} record kept",
            ),
            expect_success("Store conflict for manual resolution", store_for_manual, "7.6"),
            expect_success(
                "Resolve conflict - merge strategy",
                lambda: resolve(local_item, remote_item, ConflictStrategy.MERGE),
                "7.10",
                check=lambda r: dict(r.record.data) == {"name": "Test Item Updated", "stock": 10, "price": 55},
            ),
            expect_success(
                "Conflict notification",
                notification,
                "7.6",
                check=lambda count: count > 0,
                describe=lambda count: f"{count} sync conflict(s) require attention",
            ),
        ]
