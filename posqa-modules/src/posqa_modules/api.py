"""API endpoint testing.

Calls each POS backend action with representative parameters, checks the
response envelope and the action-specific fields, verifies that invalid
actions and missing or malformed parameters are rejected, and measures
response times against the configured threshold.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any

from posqa_core.types.result import TestResult

from posqa_client.models import ApiResponse

from posqa_testcase import TestModule, category, check, expect_failure, expect_success
from posqa_testcase.scenario import Scenario
from posqa_testcase.utils import TimingStats, timed

from posqa_modules.common import call_api, missing_fields

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_MS = 2000.0


@dataclass(frozen=True)
class Endpoint:
    """One API action under test.

    Attributes:
        action: Action name sent in the query string.
        description: What the action does.
        required_params: Parameters the backend must insist on.
        expected_fields: Fields every successful response carries.
        requirement: Requirement reference.
    """

    action: str
    description: str
    required_params: tuple[str, ...] = ()
    expected_fields: tuple[str, ...] = ("status", "data")
    requirement: str = ""


ENDPOINTS = (
    Endpoint(
        "getBootstrapData",
        "Get bootstrap data for application initialization",
        expected_fields=("status", "data", "timestamp"),
        requirement="2.1",
    ),
    Endpoint(
        "searchIngredients",
        "Search for ingredients by query",
        expected_fields=("status", "data", "count"),
        requirement="2.2",
    ),
    Endpoint("getIngredientMap", "Get complete ingredient map", requirement="2.3"),
    Endpoint(
        "addPurchase",
        "Add a new purchase transaction",
        required_params=("ingredient_id", "qtyBuy", "totalPrice"),
        expected_fields=("status", "message", "lot_id"),
        requirement="2.4",
    ),
    Endpoint(
        "addSale",
        "Add a new sale transaction",
        required_params=("platform", "menu_id", "qty", "price"),
        expected_fields=("status", "message"),
        requirement="2.5",
    ),
    Endpoint(
        "getReport",
        "Get report data based on type",
        required_params=("type",),
        requirement="2.6",
    ),
    Endpoint(
        "getLowStockHTML",
        "Get HTML content for low stock alerts",
        expected_fields=("status", "html"),
        requirement="2.7",
    ),
)

TEST_VALUES: dict[str, Any] = {
    "ingredient_id": "TEST_ING_001",
    "menu_id": "TEST_MENU_001",
    "qtyBuy": 10,
    "totalPrice": 100,
    "qty": 1,
    "price": 50,
    "platform": "Grab",
    "query": "test",
    "limit": 10,
    "type": "daily",
}

# (action, params, field) triples with a non-numeric value in a numeric field.
INVALID_NUMBERS = (
    ("addPurchase", {"ingredient_id": "TEST", "qtyBuy": "invalid", "totalPrice": 100}, "qtyBuy"),
    ("addPurchase", {"ingredient_id": "TEST", "qtyBuy": 10, "totalPrice": "invalid"}, "totalPrice"),
    ("addSale", {"platform": "Grab", "menu_id": "TEST", "qty": "invalid", "price": 50}, "qty"),
    ("addSale", {"platform": "Grab", "menu_id": "TEST", "qty": 1, "price": "invalid"}, "price"),
)


def endpoint_params(endpoint: Endpoint) -> dict[str, Any]:
    """Return representative parameters for an endpoint."""
    params = {name: TEST_VALUES.get(name, "test_value") for name in endpoint.required_params}
    if endpoint.action in ("addPurchase", "addSale"):
        params["date"] = datetime.date.today().isoformat()
    return params


class ApiModule(TestModule):
    """Checks every API action, its validation and its latency."""

    name = "API Testing"
    key = "api"
    requirements = ("2.1", "2.2", "2.3", "2.4", "2.5", "2.6", "2.7", "2.8", "2.9", "2.10")

    async def _call_endpoint(self, endpoint: Endpoint) -> tuple[ApiResponse, float]:
        return await timed(lambda: call_api(self.context, endpoint.action, **endpoint_params(endpoint)))

    @category("Endpoints")
    async def test_endpoints(self) -> list[TestResult]:
        results = []
        timings: dict[str, float] = {}
        for endpoint in ENDPOINTS:
            try:
                response, elapsed = await self._call_endpoint(endpoint)
            except Exception as exc:  # pylint: disable=broad-except
                results.append(
                    TestResult(
                        test_name=endpoint.action,
                        passed=False,
                        requirement=endpoint.requirement,
                        message=f"Failed to execute API call: {exc}",
                        error=str(exc),
                    )
                )
                continue

            timings[endpoint.action] = elapsed
            problems = []
            if not response.is_success:
                problems.append(f"status is error: {response.message or 'no message'}")
            missing = missing_fields(response, endpoint.expected_fields)
            if missing:
                problems.append(f"missing fields: {', '.join(missing)}")
            results.append(
                TestResult(
                    test_name=endpoint.action,
                    passed=not problems,
                    requirement=endpoint.requirement,
                    message="; ".join(problems) or f"{endpoint.description} ({elapsed:.0f}ms)",
                    duration_ms=elapsed,
                    details={"response_time_ms": round(elapsed, 3)},
                )
            )

        if timings:
            stats = TimingStats.of(list(timings.values()))
            self.record_metric("average_response_ms", round(stats.mean_ms, 2))
            self.record_metric("slowest_endpoint", max(timings, key=timings.get))  # type: ignore[arg-type]
            self.record_metric("fastest_endpoint", min(timings, key=timings.get))  # type: ignore[arg-type]
        return results

    @category("Error Handling")
    async def test_error_handling(self) -> list[Scenario]:
        async def invalid_action() -> ApiResponse:
            return await call_api(self.context, "invalidAction")

        return [
            expect_success(
                "Invalid action handling",
                invalid_action,
                "2.8",
                check=lambda r: not r.is_success and r.lookup("availableActions") is not None,
                describe=lambda r: (
                    "Correctly returned error with available actions list"
                    if not r.is_success
                    else "Failed to handle invalid action properly"
                ),
            ),
            expect_success(
                "Error response format",
                invalid_action,
                "2.8",
                check=lambda r: not r.is_success and bool(r.message) and r.lookup("timestamp") is not None,
            ),
        ]

    @category("Parameter Validation")
    async def test_parameter_validation(self) -> list[Scenario]:
        scenarios = []
        for endpoint in ENDPOINTS:
            for param in endpoint.required_params:
                params = endpoint_params(endpoint)
                del params[param]
                scenarios.append(
                    expect_failure(
                        f"{endpoint.action} - Missing {param}",
                        lambda endpoint=endpoint, params=params: call_api(
                            self.context, endpoint.action, **params
                        ),
                        "2.9",
                        check=lambda r: r.is_success,
                        describe=lambda r, param=param: (
                            f"Correctly returned error for missing {param}"
                            if not r.is_success
                            else f"Failed to validate missing {param}"
                        ),
                    )
                )

        # A malformed number may be coerced or rejected, but never crash the API.
        for action, params, field in INVALID_NUMBERS:
            scenarios.append(
                expect_success(
                    f"{action} - Invalid {field}",
                    lambda action=action, params=params: call_api(self.context, action, **params),
                    "2.9",
                    check=lambda r: r.status is not None,
                    describe=lambda r, field=field: f"Handled invalid {field} appropriately",
                )
            )

        scenarios.append(
            expect_failure(
                "Empty ingredient_id validation",
                lambda: call_api(
                    self.context, "addPurchase", ingredient_id="", qtyBuy=10, totalPrice=100
                ),
                "2.9",
                check=lambda r: r.is_success,
            )
        )
        scenarios.append(
            expect_failure(
                "Negative quantity validation",
                lambda: call_api(
                    self.context, "addPurchase", ingredient_id="TEST", qtyBuy=-10, totalPrice=100
                ),
                "2.9",
                check=lambda r: r.is_success,
            )
        )
        return scenarios

    @category("Response Times")
    async def test_response_times(self) -> list[TestResult]:
        limit = self.context.threshold("api_response_ms", DEFAULT_RESPONSE_MS)
        results = []
        for endpoint in ENDPOINTS:
            _, elapsed = await self._call_endpoint(endpoint)
            fast = elapsed < limit
            if not fast:
                self.warn(f"{endpoint.action} took {elapsed:.0f}ms")
            results.append(
                check(
                    f"{endpoint.action} response time",
                    fast,
                    "2.10",
                    f"{elapsed:.0f}ms ({'within' if fast else 'exceeds'} {limit:.0f}ms)",
                    response_time_ms=round(elapsed, 3),
                )
            )
        return results
