"""Helpers shared by the test modules."""

from __future__ import annotations

from typing import Any, Iterable

from posqa_client.models import ApiResponse

from posqa_testcase.context import ModuleContext

ROLES = ("OWNER", "PARTNER", "STAFF")

DEFAULT_USERS = {
    "OWNER": "owner@test.com",
    "PARTNER": "partner@test.com",
    "STAFF": "staff@test.com",
    "INACTIVE": "inactive@test.com",
}

# Actions each role may perform. The backend must reject everything else
# with a permission error.
ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "OWNER": ("addPurchase", "addSale", "createMenu", "getReport", "manageUsers", "getBootstrapData"),
    "PARTNER": ("addSale", "getReport", "getBootstrapData"),
    "STAFF": ("addSale", "getBootstrapData"),
}

OPERATION_PARAMS: dict[str, dict[str, Any]] = {
    "addPurchase": {"ingredient_id": "TEST", "qtyBuy": 10, "totalPrice": 100},
    "addSale": {"menu_id": "TEST", "platform": "ร้าน", "qty": 1, "price": 50},
    "createMenu": {"menu_id": "TEST", "name": "Test"},
    "getReport": {"type": "daily"},
    "manageUsers": {},
    "getBootstrapData": {},
}


async def call_api(context: ModuleContext, action: str, **params: Any) -> ApiResponse:
    """Call an API action through the context's client.

    Raises:
        ConfigurationError: If no API URL is configured.
    """
    return await context.require_api().call(action, **params)


def has_field(response: ApiResponse, name: str) -> bool:
    """Return True if a field is present at the top level or in ``data``."""
    if name in response.model_fields_set or name in (response.model_extra or {}):
        return True
    return isinstance(response.data, dict) and name in response.data


def missing_fields(response: ApiResponse, names: tuple[str, ...]) -> list[str]:
    """Return the expected fields absent from a response."""
    return [name for name in names if not has_field(response, name)]


def permission_denied(response: ApiResponse) -> bool:
    """Return True if the API rejected the action for lack of permission."""
    if response.is_success:
        return False
    return "permission" in (response.message or "").lower()


def user_key(context: ModuleContext, role: str) -> str:
    """Return the test user key of a role from fixtures or defaults."""
    users = context.fixture("users", {}) or {}
    return users.get(role.lower(), DEFAULT_USERS[role])


async def role_access(context: ModuleContext, role: str, actions: Iterable[str]) -> dict[str, bool]:
    """Return, per action, whether the API let the role's test user perform it."""
    key = user_key(context, role)
    allowed: dict[str, bool] = {}
    for action in actions:
        response = await call_api(context, action, user_key=key, **OPERATION_PARAMS[action])
        allowed[action] = not permission_denied(response)
    return allowed
