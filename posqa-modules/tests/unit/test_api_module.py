"""Unit tests for the API test module."""

from posqa_modules.api import ENDPOINTS, INVALID_NUMBERS, ApiModule, Endpoint, endpoint_params


class TestEndpointParams:
    """Tests for endpoint_params."""

    def test_required_params(self) -> None:
        endpoint = Endpoint("getReport", "Report", required_params=("type",))
        assert endpoint_params(endpoint) == {"type": "daily"}

    def test_transactions_get_a_date(self) -> None:
        """Purchases and sales are dated today."""
        purchase = next(e for e in ENDPOINTS if e.action == "addPurchase")
        params = endpoint_params(purchase)
        assert set(params) == {"ingredient_id", "qtyBuy", "totalPrice", "date"}

    def test_unknown_param(self) -> None:
        endpoint = Endpoint("custom", "Custom", required_params=("mystery",))
        assert endpoint_params(endpoint) == {"mystery": "test_value"}


class TestApiModule:
    """Tests for ApiModule against the fake backend."""

    async def test_all_categories_pass(self, context) -> None:
        report = await ApiModule(context).run_all()
        assert report.passed, report.issues
        assert report.metrics["slowest_endpoint"] in {e.action for e in ENDPOINTS}
        assert report.metrics["average_response_ms"] >= 0

    async def test_endpoints_report_missing_fields(self, context, backend) -> None:
        """A response without its action-specific field fails."""
        backend.do_searchIngredients = lambda params: backend.ok([])
        summary = await ApiModule(context).run_category("Endpoints")
        failed = {r.test_name: r.message for r in summary.failures}
        assert failed == {"searchIngredients": "missing fields: count"}

    async def test_endpoint_exception(self, context, backend) -> None:
        """A transport failure on one endpoint does not stop the others."""
        backend.fail_actions.add("getIngredientMap")
        summary = await ApiModule(context).run_category("Endpoints")
        assert len(summary.results) == len(ENDPOINTS)
        failure = summary.failures[0]
        assert failure.test_name == "getIngredientMap"
        assert failure.message.startswith("Failed to execute API call")

    async def test_invalid_action(self, context) -> None:
        summary = await ApiModule(context).run_category("Error Handling")
        assert summary.passed
        assert summary.results[0].message == "Correctly returned error with available actions list"

    async def test_parameter_validation(self, context) -> None:
        """Each required param is dropped once, plus the malformed inputs."""
        summary = await ApiModule(context).run_category("Parameter Validation")
        missing = sum(len(e.required_params) for e in ENDPOINTS)
        assert summary.counts.total == missing + len(INVALID_NUMBERS) + 2
        assert summary.passed, [r.message for r in summary.failures]

    async def test_lenient_backend_fails_validation(self, context, backend) -> None:
        """A backend accepting a negative quantity is reported."""
        original = backend.do_addPurchase

        def lenient(params):
            if params.get("qtyBuy", "").startswith("-"):
                return backend.ok(None, message="Purchase recorded", lot_id="LOT_X")
            return original(params)

        backend.do_addPurchase = lenient
        summary = await ApiModule(context).run_category("Parameter Validation")
        assert [r.test_name for r in summary.failures] == ["Negative quantity validation"]
        assert summary.failures[0].message == "Unexpectedly accepted"

    async def test_slow_responses_warn(self, context) -> None:
        """Responses over the threshold fail and leave a warning."""
        context.thresholds = {"api_response_ms": 0.0}
        summary = await ApiModule(context).run_category("Response Times")
        assert summary.counts.failed == len(ENDPOINTS)
        assert len(summary.warnings) == len(ENDPOINTS)

    async def test_non_json_body(self, context, backend) -> None:
        """A body that is not JSON becomes a failed endpoint, not a crash."""
        backend.raw_bodies["getReport"] = "<html>error</html>"
        summary = await ApiModule(context).run_category("Endpoints")
        assert [r.test_name for r in summary.failures] == ["getReport"]
        assert "not JSON" in summary.failures[0].message
