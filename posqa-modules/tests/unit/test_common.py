"""Unit tests for the helpers shared by the test modules."""

import pytest

from posqa_core.errors import ConfigurationError

from posqa_client.models import ApiResponse

from posqa_testcase.context import ModuleContext

from posqa_modules.common import (
    DEFAULT_USERS,
    ROLE_PERMISSIONS,
    call_api,
    has_field,
    missing_fields,
    permission_denied,
    role_access,
    user_key,
)


class TestHasField:
    """Tests for has_field and missing_fields."""

    def test_declared_field(self) -> None:
        """Envelope fields count only when present in the body."""
        response = ApiResponse.model_validate({"status": "success", "data": None})
        assert has_field(response, "data")
        assert not has_field(response, "message")

    def test_extra_field(self) -> None:
        """Top-level extras are found."""
        response = ApiResponse.model_validate({"status": "success", "count": 0})
        assert has_field(response, "count")

    def test_data_field(self) -> None:
        """Keys of a data mapping are found."""
        response = ApiResponse.model_validate({"status": "success", "data": {"html": "<p/>"}})
        assert has_field(response, "html")

    def test_missing_fields(self) -> None:
        """Absent fields are listed in order."""
        response = ApiResponse.model_validate({"status": "success", "data": []})
        assert missing_fields(response, ("status", "timestamp", "data", "count")) == ["timestamp", "count"]


class TestPermissionDenied:
    """Tests for permission_denied."""

    def test_success_is_not_denied(self) -> None:
        assert not permission_denied(ApiResponse(status="success"))

    def test_permission_error(self) -> None:
        """Only errors mentioning permission count as denials."""
        assert permission_denied(ApiResponse(status="error", message="Insufficient Permission"))
        assert not permission_denied(ApiResponse(status="error", message="Missing parameters"))
        assert not permission_denied(ApiResponse(status="error"))


class TestUserKey:
    """Tests for user_key."""

    def test_defaults(self) -> None:
        context = ModuleContext()
        assert user_key(context, "OWNER") == DEFAULT_USERS["OWNER"]
        assert user_key(context, "INACTIVE") == "inactive@test.com"

    def test_fixture_override(self) -> None:
        """The users fixture is keyed by lower-case role."""
        context = ModuleContext(fixtures={"users": {"staff": "cashier@shop.test"}})
        assert user_key(context, "STAFF") == "cashier@shop.test"
        assert user_key(context, "OWNER") == "owner@test.com"


class TestCallApi:
    """Tests for call_api and role_access."""

    async def test_requires_api(self) -> None:
        """Calling without a configured client fails fast."""
        with pytest.raises(ConfigurationError):
            await call_api(ModuleContext(), "getBootstrapData")

    async def test_call(self, context, backend) -> None:
        response = await call_api(context, "getIngredientMap")
        assert response.is_success
        assert "TEST_ING_001" in response.data
        assert backend.requests == ["getIngredientMap"]

    @pytest.mark.parametrize("role", ["OWNER", "PARTNER", "STAFF"])
    async def test_role_access_matches_permissions(self, context, role) -> None:
        """The fake backend enforces the shared permission matrix."""
        actions = ("addPurchase", "addSale", "createMenu", "getReport")
        access = await role_access(context, role, actions)
        assert access == {action: action in ROLE_PERMISSIONS[role] for action in actions}

    async def test_role_access_reports_denial(self, context, backend) -> None:
        """A role downgraded by the backend is seen as denied."""
        backend.users["owner@test.com"] = "STAFF"
        access = await role_access(context, "OWNER", ("createMenu",))
        assert access == {"createMenu": False}
