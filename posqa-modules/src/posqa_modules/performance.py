"""Performance testing.

Measures API latency, local cache throughput, bulk loading, concurrency,
offline reads of cached data and in-memory search over generated records.
Every measurement is compared against a named threshold that the run
configuration may override:

    api_response_ms  average API response time (default 2000)
    cache_ms         100 cache operations of one kind (default 250)
    load_ms          loading a batch of records (default 1000)
    concurrent_ms    concurrent cache operations (default 50)
    offline_ms       reading or filtering cached data (default 500)
    search_ms        one search over 1000 records (default 300)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from posqa_core.types.result import TestResult
from posqa_core.types.rules import ScoreAtLeast

from posqa_store.records import read_json, write_json

from posqa_testcase import TestModule, category, check
from posqa_testcase.utils import FixtureFactory, Stopwatch, TimingStats

logger = logging.getLogger(__name__)

CACHE_PREFIX = "perf_cache_test_"
CACHE_OPERATIONS = 100
CONCURRENT_OPERATIONS = 10
SEARCH_RECORDS = 1000
ITERATIONS = 3

TIMED_ENDPOINTS: tuple[tuple[str, dict[str, Any]], ...] = (
    ("getBootstrapData", {}),
    ("searchIngredients", {"query": "test", "limit": 10}),
    ("getIngredientMap", {}),
    ("getReport", {"type": "daily"}),
    ("getLowStockHTML", {}),
)


class PerformanceModule(TestModule):
    """Latency and throughput checks."""

    name = "Performance Testing"
    key = "performance"
    pass_rule = ScoreAtLeast(90.0)
    requirements = ("5.1", "5.2", "5.5", "5.6", "5.7", "5.9")

    def _within(
        self,
        name: str,
        elapsed: float,
        threshold: str,
        default: float,
        requirement: str,
        what: str,
        **details: Any,
    ) -> TestResult:
        """Compare one measurement with a named threshold."""
        limit = self.context.threshold(threshold, default)
        passed = elapsed < limit
        verdict = "within" if passed else "exceeds"
        return check(
            name,
            passed,
            requirement,
            f"{what} took {elapsed:.2f}ms, {verdict} {limit:g}ms threshold",
            duration_ms=round(elapsed, 3),
            threshold_ms=limit,
            **details,
        )

    @category("API Response Times")
    async def test_api_response_times(self) -> list[TestResult]:
        api = self.context.require_api()
        results = []
        averages: dict[str, float] = {}
        for action, params in TIMED_ENDPOINTS:
            durations = []
            errors = []
            for _ in range(ITERATIONS):
                try:
                    with Stopwatch() as sw:
                        await api.call(action, **params)
                except Exception as exc:  # pylint: disable=broad-except
                    errors.append(str(exc))
                    continue
                durations.append(sw.elapsed_ms)

            if not durations:
                results.append(
                    TestResult(
                        test_name=f"{action} response time",
                        passed=False,
                        requirement="5.2",
                        message=f"All {ITERATIONS} calls failed: {errors[-1]}",
                        error=errors[-1],
                    )
                )
                continue

            stats = TimingStats.of(durations)
            averages[action] = round(stats.mean_ms, 3)
            results.append(
                self._within(
                    f"{action} response time",
                    stats.mean_ms,
                    "api_response_ms",
                    2000.0,
                    "5.2",
                    f"Average of {stats.count} calls",
                    stats=stats.to_dict(),
                )
            )
        self.record_metric("api_average_ms", averages)
        return results

    @category("Cache Performance")
    async def test_cache_performance(self) -> list[TestResult]:
        store = self.context.store
        keys = [f"{CACHE_PREFIX}{i}" for i in range(CACHE_OPERATIONS)]
        results = []

        with Stopwatch() as sw:
            for i, key in enumerate(keys):
                await write_json(store, key, {"id": i, "data": f"test_data_{i}"})
        results.append(self._within("Cache write", sw.elapsed_ms, "cache_ms", 250.0, "5.1",
                                    f"{CACHE_OPERATIONS} cache writes"))

        with Stopwatch() as sw:
            values = [await read_json(store, key) for key in keys]
        intact = all(value is not None for value in values)
        read = self._within("Cache read", sw.elapsed_ms, "cache_ms", 250.0, "5.1",
                            f"{CACHE_OPERATIONS} cache reads")
        if not intact:
            read = check(read.test_name, False, "5.1", "Cached values missing after write")
        results.append(read)

        with Stopwatch() as sw:
            for i, key in enumerate(keys):
                await write_json(store, key, {"id": i, "data": f"updated_data_{i}", "updated": True})
        results.append(self._within("Cache update", sw.elapsed_ms, "cache_ms", 250.0, "5.1",
                                    f"{CACHE_OPERATIONS} cache updates"))

        with Stopwatch() as sw:
            for key in keys:
                await store.delete(key)
        results.append(self._within("Cache delete", sw.elapsed_ms, "cache_ms", 250.0, "5.1",
                                    f"{CACHE_OPERATIONS} cache deletes"))
        return results

    @category("Load Performance")
    async def test_load_performance(self) -> list[TestResult]:
        factory = FixtureFactory(seed=self.context.fixture("seed", 42))
        store = self.context.store
        results = []
        for count in (100, 1000):
            records = [factory.purchase() for _ in range(count)]
            key = f"{CACHE_PREFIX}load_{count}"
            with Stopwatch() as sw:
                await write_json(store, key, records)
                loaded = await read_json(store, key)
            await store.delete(key)
            result = self._within(f"Load {count} records", sw.elapsed_ms, "load_ms", 1000.0, "5.5",
                                  f"Loading {count} records")
            if len(loaded or []) != count:
                result = check(result.test_name, False, "5.5", f"Loaded {len(loaded or [])} of {count} records")
            results.append(result)
        return results

    @category("Concurrent Operations")
    async def test_concurrent_operations(self) -> list[TestResult]:
        api = self.context.require_api()
        results = []

        with Stopwatch() as sw:
            responses = await asyncio.gather(
                *(api.call(action, **params) for action, params in TIMED_ENDPOINTS),
                return_exceptions=True,
            )
        succeeded = sum(1 for r in responses if not isinstance(r, BaseException))
        total = len(TIMED_ENDPOINTS)
        results.append(
            check(
                "Concurrent API calls",
                succeeded >= 3,
                "5.6",
                f"{succeeded}/{total} concurrent requests succeeded in {sw.elapsed_ms:.2f}ms",
                successful=succeeded,
                requests=total,
            )
        )

        store = self.context.store

        async def round_trip(i: int) -> Any:
            key = f"{CACHE_PREFIX}concurrent_{i}"
            await write_json(store, key, {"id": i})
            value = await read_json(store, key)
            await store.delete(key)
            return value

        with Stopwatch() as sw:
            values = await asyncio.gather(*(round_trip(i) for i in range(CONCURRENT_OPERATIONS)))
        result = self._within("Concurrent cache operations", sw.elapsed_ms, "concurrent_ms", 50.0, "5.6",
                              f"{CONCURRENT_OPERATIONS} concurrent cache operations")
        if [v["id"] for v in values] != list(range(CONCURRENT_OPERATIONS)):
            result = check(result.test_name, False, "5.6", "Concurrent operations returned mixed-up values")
        results.append(result)
        return results

    @category("Offline Mode")
    async def test_offline_mode(self) -> list[TestResult]:
        factory = FixtureFactory(seed=self.context.fixture("seed", 42))
        store = self.context.store
        key = f"{CACHE_PREFIX}offline_ingredients"
        await write_json(store, key, [factory.ingredient() for _ in range(200)])
        results = []
        try:
            with Stopwatch() as sw:
                cached = await read_json(store, key, default=[])
            results.append(self._within("Load cached data", sw.elapsed_ms, "offline_ms", 500.0, "5.7",
                                        f"Loading {len(cached)} cached records"))

            with Stopwatch() as sw:
                low = [item for item in cached if item["min_stock"] > 10]
            results.append(self._within("Filter cached data", sw.elapsed_ms, "offline_ms", 500.0, "5.7",
                                        f"Filtering to {len(low)} records"))
        finally:
            await store.delete(key)
        return results

    @category("Search Performance")
    async def test_search_performance(self) -> list[TestResult]:
        factory = FixtureFactory(seed=self.context.fixture("seed", 42))
        records = [factory.ingredient() for _ in range(SEARCH_RECORDS)]
        results = []

        with Stopwatch() as sw:
            matches = [r for r in records if "rice" in r["name"].lower()]
        results.append(self._within("Simple search", sw.elapsed_ms, "search_ms", 300.0, "5.9",
                                    f"Search over {SEARCH_RECORDS} records ({len(matches)} matches)"))

        with Stopwatch() as sw:
            matches = [
                r for r in records
                if r["stock_unit"] == "kg" and r["min_stock"] >= 5 and r["buy_to_stock_ratio"] > 1
            ]
        results.append(self._within("Multi-criteria search", sw.elapsed_ms, "search_ms", 300.0, "5.9",
                                    f"Multi-criteria search ({len(matches)} matches)"))

        durations = []
        for prefix in ("c", "ch", "chi", "chic", "chick"):
            with Stopwatch() as sw:
                hits = sum(1 for r in records if r["name"].lower().startswith(prefix))
            durations.append(sw.elapsed_ms)
        results.append(self._within("Real-time search", max(durations), "search_ms", 300.0, "5.9",
                                    f"Slowest incremental search ({hits} final matches)"))

        with Stopwatch() as sw:
            ordered = sorted(
                (r for r in records if r["min_stock"] > 3), key=lambda r: (r["name"], r["id"])
            )
        result = self._within("Search with sorting", sw.elapsed_ms, "search_ms", 300.0, "5.9",
                              f"Sorted search ({len(ordered)} results)")
        if any(a["name"] > b["name"] for a, b in zip(ordered, ordered[1:])):
            result = check(result.test_name, False, "5.9", "Results are not sorted")
        results.append(result)
        return results
