"""Unit tests for the functional test module."""

from posqa_core.types.report import ModuleState

from posqa_modules.functional import FunctionalModule


class TestFunctionalModule:
    """Tests for FunctionalModule against the fake backend."""

    async def test_all_categories_pass(self, context) -> None:
        """A consistent backend passes every functional check."""
        report = await FunctionalModule(context).run_all()
        assert [c.name for c in report.categories] == [
            "Purchase Flow",
            "Sales Flow",
            "Menu Management",
            "Stock Management",
            "User Permissions",
        ]
        assert report.passed, report.issues
        assert FunctionalModule.pass_rule.evaluate(report)

    async def test_purchase_flow(self, context, backend) -> None:
        """The purchase flow records a lot and checks the stock increase."""
        module = FunctionalModule(context)
        summary = await module.run_category("Purchase Flow")
        assert [r.test_name for r in summary.results] == [
            "Add purchase with all fields",
            "Validate stock updates after purchase",
            "Verify lot creation",
        ]
        assert summary.passed
        assert "LOT_0001" in summary.results[0].message
        assert backend.ingredients["TEST_ING_001"]["current_stock"] == 35.0

    async def test_purchase_failure_stops_flow(self, context, backend) -> None:
        """A rejected purchase skips the dependent checks."""
        backend.fail_actions.add("addPurchase")
        summary = await FunctionalModule(context).run_category("Purchase Flow")
        assert len(summary.results) == 1
        assert not summary.passed
        assert summary.results[0].error is not None

    async def test_wrong_stock_update_fails(self, context, backend) -> None:
        """A backend applying the wrong conversion ratio is caught."""
        backend.ingredients["TEST_ING_001"]["buy_to_stock_ratio"] = 2
        original = backend.do_getIngredientMap

        def stale_ratio(params):
            response = original(params)
            response["data"]["TEST_ING_001"]["buy_to_stock_ratio"] = 3
            return response

        backend.do_getIngredientMap = stale_ratio
        summary = await FunctionalModule(context).run_category("Purchase Flow")
        stock = summary.results[1]
        assert not stock.passed
        assert "mismatch" in stock.message

    async def test_wrong_platform_fee_fails(self, context) -> None:
        """Net amounts are checked against the configured platform fees."""
        context.fixtures = {"platform_fees": {"Line Man": 0.30}}
        summary = await FunctionalModule(context).run_category("Sales Flow")
        record, calculations = summary.results
        assert record.passed
        assert not calculations.passed
        assert calculations.message == "Sale calculation errors detected"

    async def test_missing_low_stock_fails(self, context, backend) -> None:
        """The low-stock check needs the purchased ingredient in the report."""
        backend.do_getLowStockIngredients = lambda params: backend.ok([])
        summary = await FunctionalModule(context).run_category("Stock Management")
        failed = [r.test_name for r in summary.failures]
        assert failed == ["Identify low stock ingredients"]

    async def test_permissions(self, context, backend) -> None:
        """Every role is checked and the inactive user is rejected."""
        summary = await FunctionalModule(context).run_category("User Permissions")
        assert [r.test_name for r in summary.results] == [
            "OWNER role access",
            "PARTNER role access",
            "STAFF role access",
            "Inactive user access denied",
        ]
        assert summary.passed
        assert summary.results[1].details["access"] == {
            "addPurchase": False,
            "addSale": True,
            "createMenu": False,
            "getReport": True,
        }
        # one addSale per role plus the inactive user
        assert backend.requests.count("addSale") == 4

    async def test_permission_leak_fails(self, context, backend) -> None:
        """A backend letting staff create menus fails the staff check."""
        backend.users["staff@test.com"] = "OWNER"
        summary = await FunctionalModule(context).run_category("User Permissions")
        assert [r.test_name for r in summary.failures] == ["STAFF role access"]
        assert summary.failures[0].message == "STAFF access control not working correctly"

    async def test_state_after_run(self, context) -> None:
        module = FunctionalModule(context)
        await module.run_all()
        assert module.state == ModuleState.FINALIZED
