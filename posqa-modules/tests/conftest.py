"""Test configuration for posqa-modules.

Provides a fake POS backend served through httpx.MockTransport, an API
client wired to it, and a module context using an in-memory store.
"""

from __future__ import annotations

import copy
import datetime
from typing import Any, AsyncIterator

import httpx
import pytest

from posqa_client.client import PosApiClient
from posqa_client.config import ApiConfig

from posqa_store.store import MemoryStore

from posqa_testcase.context import ModuleContext

API_URL = "https://pos.example.com/exec"

PERMISSIONS = {
    "OWNER": {"addPurchase", "addSale", "createMenu", "getReport", "manageUsers", "getBootstrapData"},
    "PARTNER": {"addSale", "getReport", "getBootstrapData"},
    "STAFF": {"addSale", "getBootstrapData"},
}
GUARDED_ACTIONS = set().union(*PERMISSIONS.values())

PLATFORM_FEES = {"ร้าน": 0.0, "Line Man": 0.15, "Grab": 0.30, "Shopee": 0.25}

CLEAN_SHEETS: dict[str, list[dict[str, Any]]] = {
    "Ingredients": [
        {"id": "ING_001", "name": "Jasmine Rice", "buy_to_stock_ratio": 1, "min_stock": 5},
        {"id": "ING_002", "name": "Chicken Breast", "buy_to_stock_ratio": 1000, "min_stock": 2},
    ],
    "Menus": [{"menu_id": "MENU_001", "name": "Pad Thai"}],
    "Users": [{"user_key": "owner@test.com", "role": "OWNER", "name": "Owner"}],
    "Lots": [
        {
            "lot_id": "LOT_001",
            "ingredient_id": "ING_001",
            "date": "2024-01-15",
            "qty_initial": 10,
            "qty_remaining": 8,
            "cost_per_unit": 30,
        }
    ],
    "Purchases": [
        {
            "date": "2024-01-15",
            "ingredient_id": "ING_001",
            "lot_id": "LOT_001",
            "qty_buy": 10,
            "total_price": 300,
            "unit_price": 30,
            "qty_stock": 10,
            "cost_per_stock": 30,
            "remaining_stock": 8,
        }
    ],
    "Sales": [
        {
            "date": "15/01/2024",
            "platform": "Grab",
            "menu_id": "MENU_001",
            "qty": 2,
            "price_per_unit": 80,
            "net_per_unit": 56,
            "gross": 160,
            "net": 112,
            "cogs": 40,
            "profit": 72,
        }
    ],
    "MenuRecipes": [
        {
            "menu_id": "MENU_001",
            "ingredient_id": "ING_001",
            "qty_per_serve": 0.2,
            "user_key": "owner@test.com",
            "created_at": "2024-01-10T08:00:00Z",
        }
    ],
    "Batches": [{"menu_id": "MENU_001", "user_key": "owner@test.com"}],
    "LaborLogs": [{"user_key": "owner@test.com", "hours": 8}],
    "Platforms": [{"platform": "Grab"}],
    "Stocks": [{"ingredient_id": "ING_001"}],
}


def _number(value: str | None) -> float | None:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class FakeBackend:
    """In-process POS backend answering the GET action protocol.

    Attributes:
        users: Role by user key; the inactive user has role None.
        requests: Actions received, in order.
        placeholders: Report types answered with a "not yet implemented" notice.
        fail_actions: Actions answered with HTTP 500.
        raw_bodies: Non-JSON bodies returned verbatim, by action.
    """

    def __init__(self) -> None:
        self.users: dict[str, str | None] = {
            "owner@test.com": "OWNER",
            "partner@test.com": "PARTNER",
            "staff@test.com": "STAFF",
            "inactive@test.com": None,
        }
        self.ingredients: dict[str, dict[str, Any]] = {
            "TEST_ING_001": {"name": "Test Ingredient", "current_stock": 20.0, "buy_to_stock_ratio": 1, "min_stock": 5},
        }
        self.lots: dict[str, dict[str, Any]] = {}
        self.sales: dict[str, dict[str, Any]] = {}
        self.menus: dict[str, dict[str, Any]] = {}
        self.sheets = copy.deepcopy(CLEAN_SHEETS)
        self.requests: list[str] = []
        self.placeholders: set[str] = set()
        self.fail_actions: set[str] = set()
        self.raw_bodies: dict[str, str] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        action = params.pop("action", "")
        self.requests.append(action)
        if action in self.fail_actions:
            return httpx.Response(500, text="Internal Server Error")
        if action in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[action])
        return httpx.Response(200, json=self.handle(action, params))

    @staticmethod
    def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
        return {"status": "success", "data": data, **extra}

    @staticmethod
    def error(message: str, **extra: Any) -> dict[str, Any]:
        return {"status": "error", "message": message, **extra}

    def handle(self, action: str, params: dict[str, str]) -> dict[str, Any]:
        key = params.pop("user_key", None)
        if action == "authenticate":
            return self.authenticate(key)
        if key is not None:
            if key not in self.users:
                return self.error("User not found")
            role = self.users[key]
            if role is None:
                return self.error("User account is inactive")
            if action in GUARDED_ACTIONS and action not in PERMISSIONS[role]:
                return self.error(f"Insufficient permission for {action}")

        handler = getattr(self, f"do_{action}", None)
        if handler is None:
            return self.error(
                f"Invalid action: {action}",
                availableActions=sorted(name[3:] for name in dir(self) if name.startswith("do_")),
                timestamp=datetime.datetime.now().isoformat(),
            )
        return handler(params)

    def authenticate(self, key: str | None) -> dict[str, Any]:
        if not key or key not in self.users:
            return self.error("Invalid credentials")
        if self.users[key] is None:
            return self.error("User account is inactive")
        return self.ok({"user_key": key, "role": self.users[key]})

    def do_getBootstrapData(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok(
            {"ingredients": list(self.ingredients), "menus": list(self.menus)},
            timestamp=datetime.datetime.now().isoformat(),
        )

    def do_searchIngredients(self, params: dict[str, str]) -> dict[str, Any]:
        query = params.get("query", "").lower()
        found = [
            {"id": ing_id, **entry}
            for ing_id, entry in self.ingredients.items()
            if query in ing_id.lower() or query in entry["name"].lower()
        ]
        return self.ok(found, count=len(found))

    def do_getIngredientMap(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok(copy.deepcopy(self.ingredients))

    def do_addPurchase(self, params: dict[str, str]) -> dict[str, Any]:
        ingredient_id = params.get("ingredient_id", "").strip()
        qty = _number(params.get("qtyBuy"))
        total = _number(params.get("totalPrice"))
        if not ingredient_id:
            return self.error("ingredient_id is required")
        if qty is None or total is None:
            return self.error("qtyBuy and totalPrice must be numbers")
        if qty <= 0 or total < 0:
            return self.error("Quantities must not be negative")
        entry = self.ingredients.setdefault(
            ingredient_id,
            {"name": ingredient_id, "current_stock": 0.0, "buy_to_stock_ratio": 1, "min_stock": 100},
        )
        entry["current_stock"] += qty * entry["buy_to_stock_ratio"]
        lot_id = f"LOT_{len(self.lots) + 1:04d}"
        self.lots[lot_id] = {
            "lot_id": lot_id,
            "ingredient_id": ingredient_id,
            "qty_initial": qty * entry["buy_to_stock_ratio"],
            "cost_per_unit": total / (qty * entry["buy_to_stock_ratio"]),
        }
        return self.ok(None, message="Purchase recorded", lot_id=lot_id)

    def do_getLotDetails(self, params: dict[str, str]) -> dict[str, Any]:
        lot = self.lots.get(params.get("lot_id", ""))
        return self.ok(lot) if lot else self.error("Lot not found")

    def do_addSale(self, params: dict[str, str]) -> dict[str, Any]:
        missing = [p for p in ("platform", "menu_id", "qty", "price") if not params.get(p)]
        if missing:
            return self.error(f"Missing parameters: {', '.join(missing)}")
        qty = _number(params["qty"])
        price = _number(params["price"])
        if qty is None or price is None:
            return self.error("qty and price must be numbers")
        gross = qty * price
        net = gross * (1 - PLATFORM_FEES.get(params["platform"], 0.0))
        cogs = 12.5 * qty
        sale_id = f"SALE_{len(self.sales) + 1:04d}"
        self.sales[sale_id] = {"sale_id": sale_id, "gross": gross, "net": net, "cogs": cogs, "profit": net - cogs}
        return self.ok(None, message="Sale recorded", sale_id=sale_id)

    def do_getSaleDetails(self, params: dict[str, str]) -> dict[str, Any]:
        sale = self.sales.get(params.get("sale_id", ""))
        return self.ok(sale) if sale else self.error("Sale not found")

    def do_createMenu(self, params: dict[str, str]) -> dict[str, Any]:
        menu_id = params.get("menu_id", "")
        self.menus[menu_id] = {"menu_id": menu_id, "name": params.get("name", "")}
        return self.ok({"menu_id": menu_id}, message="Menu created")

    def do_getMenus(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok(list(self.menus.values()))

    def do_calculateMenuCost(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok({"menu_id": params.get("menu_id"), "cost": 42.5})

    def do_getLowStockIngredients(self, params: dict[str, str]) -> dict[str, Any]:
        low = [
            {"ingredient_id": ing_id, "current_stock": e["current_stock"], "min_stock": e["min_stock"]}
            for ing_id, e in self.ingredients.items()
            if e["current_stock"] < e["min_stock"]
        ]
        return self.ok(low)

    def do_getLowStockHTML(self, params: dict[str, str]) -> dict[str, Any]:
        return {"status": "success", "html": "<ul><li>Low stock</li></ul>"}

    def do_getReport(self, params: dict[str, str]) -> dict[str, Any]:
        report_type = params.get("type")
        if not report_type:
            return self.error("type is required")
        if report_type in self.placeholders:
            return self.ok({"message": "Report type not yet implemented"})
        if report_type == "daily":
            return self.ok({"date": params.get("date"), "sales": 1200, "costs": 700, "profit": 500})
        return self.ok({"type": report_type, "rows": [{"label": "total", "value": 1}]})

    def do_exportReport(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok({"url": f"https://pos.example.com/export/{params.get('type')}.{params.get('format')}"})

    def do_manageUsers(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok([{"user_key": k, "role": r} for k, r in self.users.items()])

    def do_getSheetData(self, params: dict[str, str]) -> dict[str, Any]:
        return self.ok(self.sheets.get(params.get("sheet", ""), []))


async def _no_sleep(delay: float) -> None:
    pass


@pytest.fixture
def backend() -> FakeBackend:
    """Create a fresh fake backend."""
    return FakeBackend()


@pytest.fixture
async def api(backend: FakeBackend) -> AsyncIterator[PosApiClient]:
    """Create an API client served by the fake backend."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as http:
        async with PosApiClient(ApiConfig(api_url=API_URL), client=http, sleep=_no_sleep) as client:
            yield client


@pytest.fixture
def context(api: PosApiClient) -> ModuleContext:
    """Create a module context using the fake backend."""
    return ModuleContext(api=api, store=MemoryStore(), sleep=_no_sleep)
