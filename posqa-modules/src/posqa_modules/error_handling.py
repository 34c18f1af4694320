"""Error handling and recovery testing.

Network failures are produced by a real PosApiClient whose httpx transport
is replaced with a simulated one, so the client's own error mapping, retry
and backoff are what gets exercised. No request leaves the process.
Validation, conflict and cache scenarios run against the core helpers and
the keyed store.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from posqa_core.backoff import FaultInjector, RetryPolicy, is_exponential
from posqa_core.conflict import ConflictStrategy, Side, VersionedRecord, detect_conflict, resolve
from posqa_core.errors import (
    NETWORK_UNAVAILABLE_MESSAGE,
    ApiConnectionError,
    ApiError,
    ApiHttpError,
    ApiTimeoutError,
    ConfigurationError,
    ConflictError,
    DnsResolutionError,
    InjectedFault,
    StoreCorruptionError,
    ValidationFailed,
    user_message,
)
from posqa_core.types.common import Timestamp
from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.validation import FieldRule, IssueType, ValidationResult, validate

from posqa_client.client import PosApiClient
from posqa_client.config import ApiConfig
from posqa_client.models import ApiResponse

from posqa_store.records import JsonList, load_with_recovery, read_json, write_json

from posqa_testcase import TestModule, category, check, expect_exception, expect_success
from posqa_testcase.scenario import Scenario

logger = logging.getLogger(__name__)

SIMULATED_API_URL = "http://posqa.invalid/exec"
SIMULATED_TIMEOUT = 0.1

Handler = Callable[[httpx.Request], httpx.Response]

PURCHASE_RULES = (
    FieldRule("ingredient_id", required=True, label="Ingredient"),
    FieldRule("qtyBuy", required=True, kind=float, minimum=0.01, label="Quantity"),
    FieldRule("totalPrice", required=True, kind=float, minimum=0, label="Total price"),
)

CACHE_KEY = "test_cache_data"
FALLBACK_KEY = "test_fallback_data"
STALE_PREFIX = "test_stale_cache_"

# Storage use above this fraction of the quota is reported.
QUOTA_WARNING_RATIO = 0.9

CRITICAL_CATEGORIES = ("Network Errors", "Recovery Mechanisms", "Cache Corruption")


def timeout_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


def unavailable_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"status": "error", "message": "Service Unavailable"})


def refused_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


def dns_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)


class FlakyHandler:
    """Transport handler failing the requests a fault injector selects."""

    def __init__(self, injector: FaultInjector) -> None:
        self.injector = injector
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        index = self.requests
        self.requests += 1
        try:
            self.injector.check(index, "request")
        except InjectedFault as exc:
            raise httpx.ConnectError(str(exc), request=request) from exc
        return httpx.Response(200, json={"status": "success", "data": {"attempt": index + 1}})


async def simulate(
    handler: Handler,
    action: str = "getBootstrapData",
    retry: RetryPolicy | None = None,
    sleep: Callable[[float], Any] | None = None,
    api_url: str = SIMULATED_API_URL,
) -> ApiResponse:
    """Call an action through a client backed by a simulated transport.

    Raises:
        ApiError: As mapped by the client from the simulated failure.
        ConfigurationError: If ``api_url`` is empty.
    """
    config = ApiConfig(
        api_url=api_url,
        timeout=SIMULATED_TIMEOUT,
        retry=retry or RetryPolicy.no_retry(),
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        kwargs: dict[str, Any] = {"client": http}
        if sleep is not None:
            kwargs["sleep"] = sleep
        api = PosApiClient(config, **kwargs)
        return await api.call(action)


async def captured_error(handler: Handler, **kwargs: Any) -> ApiError | None:
    """Return the API error a simulated call raised, or None if it succeeded."""
    try:
        await simulate(handler, **kwargs)
    except ApiError as exc:
        return exc
    return None


def describe_error(exc: BaseException | None) -> str:
    if exc is None:
        return "Request unexpectedly succeeded"
    return f"{type(exc).__name__}: {exc} -> '{user_message(exc)}'"


class ErrorHandlingModule(TestModule):
    """Network, validation, conflict and cache failure handling."""

    name = "Error Handling Testing"
    key = "error_handling"
    requirements = ("9.1", "9.2", "9.3", "9.5", "9.6", "9.7", "9.8", "9.9")

    def _recording_sleep(self, delays: list[float]) -> Callable[[float], Any]:
        async def sleep(delay: float) -> None:
            delays.append(delay)
            await self.context.sleep(delay)

        return sleep

    @category("Network Errors")
    async def test_network_errors(self) -> list[Scenario]:
        def network_error(name: str, handler: Handler, expected: type[ApiError], requirement: str) -> Scenario:
            return expect_success(
                name,
                lambda: captured_error(handler),
                requirement,
                check=lambda exc: isinstance(exc, expected) and bool(user_message(exc)),
                describe=describe_error,
            )

        return [
            network_error("API timeout handling", timeout_handler, ApiTimeoutError, "9.9"),
            expect_success(
                "Timeout error message",
                lambda: captured_error(timeout_handler),
                "9.9",
                check=lambda exc: exc is not None and "timeout" in str(exc).lower(),
                describe=describe_error,
            ),
            network_error("API unavailable error", unavailable_handler, ApiHttpError, "9.1"),
            expect_success(
                "Connection refused error",
                lambda: captured_error(refused_handler),
                "9.1",
                check=lambda exc: isinstance(exc, ApiConnectionError) and not isinstance(exc, DnsResolutionError),
                describe=describe_error,
            ),
            network_error("DNS resolution failure", dns_handler, DnsResolutionError, "9.1"),
            expect_exception(
                "Missing API URL fails fast",
                lambda: simulate(refused_handler, api_url=""),
                "9.1",
                raises=(ConfigurationError,),
            ),
        ]

    @category("Validation Errors")
    async def test_validation_errors(self) -> list[Scenario]:
        def validate_purchase(data: dict[str, Any]) -> ValidationResult:
            return validate(data, PURCHASE_RULES)

        def submit(data: dict[str, Any]) -> None:
            validate_purchase(data).raise_for_errors()

        valid_purchase = {"ingredient_id": "TEST", "qtyBuy": 10, "totalPrice": 100}
        negative = {"ingredient_id": "TEST", "qtyBuy": -10, "totalPrice": -100}
        return [
            expect_success(
                "Missing required fields",
                lambda: validate_purchase({}),
                "9.3",
                check=lambda r: not r.valid
                and len(r.errors) == 3
                and all(e.type == IssueType.REQUIRED for e in r.errors),
                describe=lambda r: f"Highlighted: {', '.join(r.highlighted_fields)}",
            ),
            expect_success(
                "Invalid data type",
                lambda: validate_purchase(
                    {"ingredient_id": "TEST", "qtyBuy": "not-a-number", "totalPrice": "invalid"}
                ),
                "9.3",
                check=lambda r: any(e.field == "qtyBuy" and e.type == IssueType.TYPE for e in r.errors),
                describe=lambda r: "; ".join(e.message for e in r.errors),
            ),
            expect_success(
                "Out of range values",
                lambda: validate_purchase(negative),
                "9.3",
                check=lambda r: [e.type for e in r.errors] == [IssueType.RANGE, IssueType.RANGE],
                describe=lambda r: "; ".join(e.message for e in r.errors),
            ),
            expect_success(
                "Field highlighting",
                lambda: validate_purchase(negative),
                "9.3",
                check=lambda r: r.highlighted_fields == ("qtyBuy", "totalPrice"),
                describe=lambda r: f"Highlighted: {', '.join(r.highlighted_fields)}",
            ),
            expect_exception(
                "Invalid submission rejected",
                lambda: submit(negative),
                "9.3",
                raises=(ValidationFailed,),
            ),
            expect_success(
                "Valid input accepted",
                lambda: validate_purchase(valid_purchase),
                "9.3",
                check=lambda r: r.valid,
            ),
        ]

    @category("Recovery Mechanisms")
    async def test_recovery_mechanisms(self) -> list[Scenario]:
        store = self.context.store
        retry_delays: list[float] = []
        backoff_delays: list[float] = []

        async def auto_retry() -> tuple[ApiResponse, int]:
            handler = FlakyHandler(FaultInjector.first(2))
            policy = RetryPolicy(max_attempts=4, base_delay=0.01)
            response = await simulate(handler, retry=policy, sleep=self._recording_sleep(retry_delays))
            return response, handler.requests

        async def backoff() -> list[float]:
            handler = FlakyHandler(FaultInjector.first(3))
            policy = RetryPolicy(max_attempts=4, base_delay=0.01, factor=2.0)
            await simulate(handler, retry=policy, sleep=self._recording_sleep(backoff_delays))
            return backoff_delays

        async def max_retries() -> tuple[ApiError | None, int]:
            handler = FlakyHandler(FaultInjector.always())
            policy = RetryPolicy(max_attempts=3, base_delay=0.01)
            error = await captured_error(handler, retry=policy, sleep=self._recording_sleep([]))
            return error, handler.requests

        async def degraded() -> tuple[Any, bool]:
            cached = {"ingredients": [{"id": "CACHED_001", "name": "Cached Ingredient"}]}
            await write_json(store, FALLBACK_KEY, cached)
            try:
                try:
                    response = await simulate(refused_handler)
                except ApiError as exc:
                    logger.debug("Falling back to cached data: %s", exc)
                    return await read_json(store, FALLBACK_KEY), True
                return response.data, False
            finally:
                await store.delete(FALLBACK_KEY)

        return [
            expect_success(
                "Automatic retry after failure",
                auto_retry,
                "9.2",
                check=lambda v: v[0].is_success and v[1] == 3,
                describe=lambda v: f"Recovered after {v[1]} attempts",
            ),
            expect_success(
                "Exponential backoff",
                backoff,
                "9.2",
                check=is_exponential,
                describe=lambda delays: "Delays: " + ", ".join(f"{d * 1000:.0f}ms" for d in delays),
            ),
            expect_success(
                "Max retry limit",
                max_retries,
                "9.2",
                check=lambda v: isinstance(v[0], ApiConnectionError) and v[1] == 3,
                describe=lambda v: f"Stopped after {v[1]} attempts",
            ),
            expect_success(
                "Graceful degradation",
                degraded,
                "9.2",
                check=lambda v: v[1] and bool(v[0]),
                describe=lambda v: "Served cached data while offline" if v[1] else "No fallback was used",
            ),
        ]

    @category("Data Conflicts")
    async def test_data_conflicts(self) -> list[Scenario]:
        base = Timestamp.from_iso("2024-01-01T10:00:00+00:00")
        later = Timestamp(base.unix_ns + 60 * 1_000_000_000)
        local = VersionedRecord("ING_001", {"name": "Rice", "stock": 10, "price": 30}, base,
                                frozenset({"stock"}), version=4)
        remote = VersionedRecord("ING_001", {"name": "Rice", "stock": 12, "price": 35}, later,
                                 frozenset({"stock", "price"}), version=4)
        tied = VersionedRecord("ING_001", {"name": "Rice", "stock": 11, "price": 30}, base, version=4)

        def manual() -> Any:
            return resolve(local, remote, ConflictStrategy.MANUAL).require_record()

        return [
            expect_success(
                "Concurrent modification conflict",
                lambda: detect_conflict(local, remote),
                "9.5",
                check=lambda c: c is not None and c.fields == ("stock", "price"),
                describe=lambda c: f"Conflicting fields: {', '.join(c.fields)}" if c else "No conflict detected",
            ),
            expect_success(
                "Newer version is not a conflict",
                lambda: detect_conflict(local, VersionedRecord("ING_001", remote.data, later, version=5)),
                "9.5",
                check=lambda c: c is None,
            ),
            expect_success(
                "Last write wins",
                lambda: resolve(local, remote, ConflictStrategy.LAST_WRITE_WINS),
                "9.5",
                check=lambda r: r.winner == Side.REMOTE and r.record.data["price"] == 35,
            ),
            expect_success(
                "Equal timestamps keep local",
                lambda: resolve(local, tied, ConflictStrategy.LAST_WRITE_WINS),
                "9.5",
                check=lambda r: r.winner == Side.LOCAL,
            ),
            expect_success(
                "Merge conflict resolution",
                lambda: resolve(local, remote, ConflictStrategy.MERGE, prefer=Side.LOCAL),
                "9.5",
                check=lambda r: dict(r.record.data) == {"name": "Rice", "stock": 10, "price": 35},
                describe=lambda r: f"Merged record: {dict(r.record.data)}",
            ),
            expect_exception(
                "Manual resolution left to the user",
                manual,
                "9.5",
                raises=(ConflictError,),
            ),
        ]

    @category("Cache Corruption")
    async def test_cache_corruption(self) -> list[Scenario | TestResult]:
        store = self.context.store
        caps = self.context.environment.capabilities
        fresh = {"menus": [{"id": "MENU_001", "name": "Pad Thai"}], "version": 2}

        async def reload() -> dict[str, Any]:
            return dict(fresh)

        async def detect() -> Any:
            await store.set(CACHE_KEY, "{invalid json")
            try:
                return await read_json(store, CACHE_KEY)
            finally:
                await store.delete(CACHE_KEY)

        async def clear_and_reload() -> tuple[Any, bool, Any]:
            await store.set(CACHE_KEY, "{invalid json")
            try:
                value, recovered = await load_with_recovery(store, CACHE_KEY, reload)
                return value, recovered, await read_json(store, CACHE_KEY)
            finally:
                await store.delete(CACHE_KEY)

        async def reload_missing() -> tuple[Any, bool]:
            await store.delete(CACHE_KEY)
            try:
                return await load_with_recovery(store, CACHE_KEY, reload)
            finally:
                await store.delete(CACHE_KEY)

        async def corrupted_queue() -> Any:
            queue = JsonList(store, CACHE_KEY)
            await write_json(store, CACHE_KEY, {"not": "a list"})
            try:
                return await queue.items()
            finally:
                await queue.clear()

        async def clear_stale() -> int:
            for index in range(5):
                await write_json(store, f"{STALE_PREFIX}{index}", {"payload": "x" * 256})
            freed = 0
            for key in await store.keys(STALE_PREFIX):
                freed += len(await store.get(key) or "")
                await store.delete(key)
            remaining = await store.keys(STALE_PREFIX)
            return freed if not remaining else 0

        ratio = caps.storage_usage_ratio
        return [
            expect_exception("Detect corrupted cache", detect, "9.6", raises=(StoreCorruptionError,)),
            expect_success(
                "Clear and reload corrupted cache",
                clear_and_reload,
                "9.6",
                check=lambda v: v[1] and v[0] == fresh and v[2] == fresh,
            ),
            expect_success(
                "Reload data after cache clear",
                reload_missing,
                "9.6",
                check=lambda v: v[0] == fresh and not v[1],
            ),
            expect_exception(
                "Corrupted queue detected",
                corrupted_queue,
                "9.6",
                raises=(StoreCorruptionError,),
            ),
            check(
                "Storage quota headroom",
                caps.storage_available > 0 and ratio < QUOTA_WARNING_RATIO,
                "9.7",
                f"Storage {ratio * 100:.1f}% used",
                quota=caps.storage_quota,
                usage=caps.storage_usage,
            ),
            expect_success(
                "Clear old cache data",
                clear_stale,
                "9.7",
                check=lambda freed: freed > 0,
                describe=lambda freed: f"Freed {freed} bytes",
            ),
        ]

    @category("Error Messages")
    async def test_error_messages(self) -> list[Scenario | TestResult]:
        samples: list[tuple[str, BaseException]] = [
            ("Timeout", ApiTimeoutError(10000)),
            ("Connection", ApiConnectionError("Connection refused")),
            ("DNS", DnsResolutionError("Name or service not known")),
            ("HTTP", ApiHttpError(500)),
            ("Validation", ValidationFailed(validate({}, PURCHASE_RULES))),
            ("Conflict", ConflictError("ING_001")),
            ("Storage", StoreCorruptionError(CACHE_KEY, "bad JSON")),
            ("Configuration", ConfigurationError("API URL not configured")),
        ]
        results: list[Scenario | TestResult] = []
        for label, exc in samples:
            message = user_message(exc)
            friendly = len(message) > 10 and message != str(exc) and type(exc).__name__ not in message
            results.append(check(f"{label} error message", friendly, "9.8", message))

        messages = [user_message(exc) for _, exc in samples]
        results.append(
            check(
                "Error messages are distinct",
                len(set(messages)) == len(messages),
                "9.8",
                f"{len(set(messages))} distinct messages for {len(messages)} error kinds",
            )
        )
        results.append(
            check(
                "Generic error message",
                user_message(RuntimeError("ERR_UNKNOWN")) == NETWORK_UNAVAILABLE_MESSAGE,
                "9.8",
                NETWORK_UNAVAILABLE_MESSAGE,
            )
        )
        results.append(
            expect_success(
                "Validation message names the problem",
                lambda: validate({"qtyBuy": "abc"}, PURCHASE_RULES[1:2]),
                "9.8",
                check=lambda r: "number" in r.errors[0].message,
                describe=lambda r: r.errors[0].message,
            )
        )
        return results

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        found = []
        for summary in report.categories:
            if not summary.failures:
                continue
            found.append(
                Recommendation(
                    category="Error Handling",
                    priority="high" if summary.name in CRITICAL_CATEGORIES else "medium",
                    issue=f"{summary.name}: {len(summary.failures)} scenarios failed",
                    solution="; ".join(r.message for r in summary.failures[:3]),
                    requirements=tuple(sorted({r.requirement for r in summary.failures})),
                )
            )
        return found
