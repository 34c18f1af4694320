"""Functional testing of the POS business flows.

Covers purchase recording, sales recording and their calculations, menu
management, stock management and role-based permissions against the live
API.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

from posqa_core.errors import ApiResponseError
from posqa_core.types.result import TestResult

from posqa_client.models import ApiResponse

from posqa_testcase import TestModule, category, expect_success
from posqa_testcase.scenario import Scenario
from posqa_testcase.utils import approx_equal

from posqa_modules.common import (
    OPERATION_PARAMS,
    ROLE_PERMISSIONS,
    ROLES,
    call_api,
    role_access,
    user_key,
)

logger = logging.getLogger(__name__)

# Operations exercised by the permission checks.
FUNCTIONAL_OPERATIONS = ("addPurchase", "addSale", "createMenu", "getReport")

DEFAULT_PLATFORM_FEES = {
    "ร้าน": 0.0,
    "Line Man": 0.15,
    "Grab": 0.30,
    "Shopee": 0.25,
}


def _today() -> str:
    return datetime.date.today().isoformat()


class FunctionalModule(TestModule):
    """End-to-end checks of the POS business flows."""

    name = "Functional Testing"
    key = "functional"
    requirements = ("3.1", "3.2", "3.3", "3.4", "3.5", "3.6", "3.7", "3.8", "3.10")

    async def _ingredient(self, ingredient_id: str) -> dict[str, Any]:
        """Return the ingredient map entry of one ingredient (empty if unknown)."""
        response = await call_api(self.context, "getIngredientMap")
        if not isinstance(response.data, dict):
            return {}
        return dict(response.data.get(ingredient_id) or {})

    @category("Purchase Flow")
    async def test_purchase_flow(self) -> list[TestResult]:
        ingredient_id = self.context.fixture("ingredient_id", "TEST_ING_001")
        purchase = {
            "ingredient_id": ingredient_id,
            "qtyBuy": 10,
            "unit": "กิโลกรัม",
            "totalPrice": 1000,
            "unitPrice": 100,
            "supplierNote": "Test Supplier",
            "date": _today(),
        }
        created: dict[str, Any] = {}

        async def add_purchase() -> ApiResponse:
            response = await call_api(self.context, "addPurchase", **purchase)
            created["lot_id"] = response.lookup("lot_id")
            return response

        added = await expect_success(
            "Add purchase with all fields",
            add_purchase,
            "3.1",
            check=lambda r: r.is_success and bool(r.lookup("lot_id")),
            describe=lambda r: (
                f"Purchase added successfully with lot_id: {r.lookup('lot_id')}"
                if r.is_success and r.lookup("lot_id")
                else f"Failed to add purchase: {r.message or 'no lot_id'}"
            ),
        ).evaluate()
        results = [added]
        if not added.passed:
            return results

        lot_id = created["lot_id"]

        async def stock_update() -> tuple[float, float, float]:
            entry = await self._ingredient(ingredient_id)
            before = float(entry.get("current_stock", 0) or 0)
            ratio = float(entry.get("buy_to_stock_ratio", 1) or 1)
            await call_api(self.context, "addPurchase", **{**purchase, "qtyBuy": 5, "totalPrice": 500})
            after = float((await self._ingredient(ingredient_id)).get("current_stock", 0) or 0)
            return before, after, 5 * ratio

        results.append(
            await expect_success(
                "Validate stock updates after purchase",
                stock_update,
                "3.5",
                check=lambda v: approx_equal(v[1] - v[0], v[2]),
                describe=lambda v: (
                    f"Stock updated correctly: {v[0]:g} -> {v[1]:g}"
                    if approx_equal(v[1] - v[0], v[2])
                    else f"Stock update mismatch: expected +{v[2]:g}, got +{v[1] - v[0]:g}"
                ),
            ).evaluate()
        )

        async def lot_details() -> dict[str, Any]:
            response = await call_api(self.context, "getLotDetails", lot_id=lot_id)
            if not isinstance(response.data, dict):
                raise ApiResponseError(f"No details returned for lot {lot_id}")
            return response.data

        results.append(
            await expect_success(
                "Verify lot creation",
                lot_details,
                "3.1",
                check=lambda lot: (
                    lot.get("lot_id") == lot_id
                    and lot.get("ingredient_id") == ingredient_id
                    and float(lot.get("qty_initial", 0)) > 0
                    and float(lot.get("cost_per_unit", 0)) > 0
                ),
                details=lambda lot: {"lot": lot},
            ).evaluate()
        )
        return results

    @category("Sales Flow")
    async def test_sales_flow(self) -> list[Scenario]:
        fees = self.context.fixture("platform_fees", DEFAULT_PLATFORM_FEES)
        platform = "Line Man"
        qty, price = 3, 100

        async def sale_details() -> dict[str, Any]:
            response = await call_api(
                self.context, "addSale", platform=platform, menu_id="TEST_MENU_002", qty=qty, price=price
            )
            sale_id = response.lookup("sale_id")
            if not sale_id:
                raise ApiResponseError(response.message or "Sale was not recorded")
            details = await call_api(self.context, "getSaleDetails", sale_id=sale_id)
            if not isinstance(details.data, dict):
                raise ApiResponseError("Could not retrieve sale details")
            return details.data

        def calculations_hold(sale: dict[str, Any]) -> bool:
            gross = qty * price
            net = gross * (1 - fees.get(platform, 0.0))
            return (
                approx_equal(sale.get("gross", -1), gross)
                and approx_equal(sale.get("net", -1), net)
                and float(sale.get("cogs", -1)) >= 0
                and approx_equal(sale.get("profit", 0), float(sale["net"]) - float(sale["cogs"]))
            )

        return [
            expect_success(
                "Record sale transaction",
                lambda: call_api(
                    self.context,
                    "addSale",
                    platform="ร้าน",
                    menu_id="TEST_MENU_001",
                    qty=2,
                    price=80,
                    date=_today(),
                ),
                "3.2",
                check=lambda r: r.is_success,
            ),
            expect_success(
                "Verify sale and platform fee calculations",
                sale_details,
                "3.8",
                check=calculations_hold,
                describe=lambda s: (
                    "All sale calculations correct"
                    if calculations_hold(s)
                    else "Sale calculation errors detected"
                ),
                details=lambda s: {"sale": s},
            ),
        ]

    @category("Menu Management")
    async def test_menu_management(self) -> list[Scenario]:
        menu_id = self.context.fixture("menu_id", "TEST_MENU_CRUD")

        async def read_menu() -> ApiResponse:
            return await call_api(self.context, "getMenus", menu_id=menu_id)

        return [
            expect_success(
                "Create new menu",
                lambda: call_api(self.context, "createMenu", menu_id=menu_id, name="Test Menu", price=120),
                "3.3",
                check=lambda r: r.is_success,
            ),
            expect_success(
                "Read menu details",
                read_menu,
                "3.3",
                check=lambda r: r.is_success and r.data is not None,
            ),
            expect_success(
                "Calculate menu cost",
                lambda: call_api(self.context, "calculateMenuCost", menu_id=menu_id),
                "3.7",
                check=lambda r: r.is_success and float(r.lookup("cost", -1)) >= 0,
                describe=lambda r: f"Menu cost: {r.lookup('cost')}",
            ),
        ]

    @category("Stock Management")
    async def test_stock_management(self) -> list[Scenario]:
        low_id = self.context.fixture("low_stock_ingredient", "TEST_LOW_STOCK")

        async def low_stock() -> list[dict[str, Any]]:
            await call_api(self.context, "addPurchase", ingredient_id=low_id, qtyBuy=5, totalPrice=500)
            response = await call_api(self.context, "getLowStockIngredients")
            return list(response.data or [])

        return [
            expect_success(
                "Search ingredients",
                lambda: call_api(self.context, "searchIngredients", query="test", limit=10),
                "3.4",
                check=lambda r: r.is_success and r.lookup("count") is not None,
            ),
            expect_success(
                "Identify low stock ingredients",
                low_stock,
                "3.6",
                check=lambda items: any(item.get("ingredient_id") == low_id for item in items),
                describe=lambda items: f"{len(items)} low stock ingredient(s) reported",
            ),
            expect_success(
                "Generate low stock HTML",
                lambda: call_api(self.context, "getLowStockHTML"),
                "3.6",
                check=lambda r: r.is_success and bool(r.lookup("html")),
            ),
        ]

    @category("User Permissions")
    async def test_user_permissions(self) -> list[Scenario]:
        scenarios = []
        for role in ROLES:
            permitted = ROLE_PERMISSIONS[role]

            def matches(access: dict[str, bool], permitted: tuple[str, ...] = permitted) -> bool:
                return all(access[action] == (action in permitted) for action in access)

            scenarios.append(
                expect_success(
                    f"{role} role access",
                    lambda role=role: role_access(self.context, role, FUNCTIONAL_OPERATIONS),
                    "3.10",
                    check=matches,
                    describe=lambda access, role=role, matches=matches: (
                        f"{role} has correct access"
                        if matches(access)
                        else f"{role} access control not working correctly"
                    ),
                    details=lambda access: {"access": access},
                )
            )
        scenarios.append(
            expect_success(
                "Inactive user access denied",
                lambda: call_api(
                    self.context,
                    "addSale",
                    user_key=user_key(self.context, "INACTIVE"),
                    **OPERATION_PARAMS["addSale"],
                ),
                "3.10",
                check=lambda r: not r.is_success,
            )
        )
        return scenarios

