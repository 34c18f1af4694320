"""Reporting and analytics testing.

Retrieves each report type from the API and checks that the backend
answers with data. Report types the backend reports as "not yet
implemented" pass with a note instead of failing structure checks.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

from posqa_core.types.result import TestResult

from posqa_client.models import ApiResponse

from posqa_testcase import TestModule, category, check, expect_success
from posqa_testcase.scenario import Scenario

from posqa_modules.common import call_api

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKER = "not yet implemented"

DAILY_REPORT_FIELDS = ("date", "sales", "costs", "profit")

# (report type, category label, requirement)
ANALYTICS_REPORTS = (
    ("menu_performance", "Menu performance", "10.5"),
    ("ingredient_usage", "Ingredient usage", "10.6"),
    ("cost_trends", "Cost trends", "10.7"),
    ("profit_margins", "Profit margins", "10.8"),
)


def is_placeholder(data: Any) -> bool:
    """Return True if a report payload only announces a missing feature."""
    if not isinstance(data, dict):
        return False
    return PLACEHOLDER_MARKER in str(data.get("message", "")).lower()


def _retrieved(response: ApiResponse) -> bool:
    return response.is_success and bool(response.data)


def _date_range(days: int) -> dict[str, str]:
    today = datetime.date.today()
    start = today - datetime.timedelta(days=days)
    return {"startDate": start.isoformat(), "endDate": today.isoformat()}


class ReportingModule(TestModule):
    """Checks report retrieval, analytics and export."""

    name = "Reporting Testing"
    key = "reporting"
    requirements = ("10.1", "10.2", "10.3", "10.4", "10.5", "10.6", "10.7", "10.8", "10.9")

    def _retrieval(self, label: str, requirement: str, **params: Any) -> Scenario:
        return expect_success(
            f"{label} retrieval",
            lambda: call_api(self.context, "getReport", **params),
            requirement,
            check=_retrieved,
            describe=lambda r: (
                f"{label} retrieved successfully"
                if _retrieved(r)
                else f"Failed to retrieve {label.lower()}: {r.message or 'No data returned'}"
            ),
        )

    @category("Daily Reports")
    async def test_daily_reports(self) -> list[TestResult]:
        today = datetime.date.today().isoformat()
        fetched: dict[str, ApiResponse] = {}

        async def daily() -> ApiResponse:
            fetched["report"] = await call_api(self.context, "getReport", type="daily", date=today)
            return fetched["report"]

        retrieval = await expect_success(
            "Daily report retrieval",
            daily,
            "10.1",
            check=_retrieved,
            describe=lambda r: (
                "Daily report retrieved successfully"
                if _retrieved(r)
                else f"Failed to retrieve daily report: {r.message or 'No data returned'}"
            ),
        ).evaluate()
        results = [retrieval]
        if not retrieval.passed:
            return results

        response = fetched["report"]
        if is_placeholder(response.data):
            results.append(
                check(
                    "Daily report structure validation",
                    True,
                    "10.1",
                    "Report functionality not yet implemented - skipping structure validation",
                )
            )
            return results

        data = response.data if isinstance(response.data, dict) else {}
        missing = [name for name in DAILY_REPORT_FIELDS if name not in data]
        results.append(
            check(
                "Daily report structure validation",
                not missing,
                "10.1",
                "Daily report has all required fields"
                if not missing
                else f"Daily report missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )
        )
        return results

    @category("Weekly Reports")
    async def test_weekly_reports(self) -> list[Scenario]:
        return [self._retrieval("Weekly report", "10.2", type="weekly", **_date_range(7))]

    @category("Monthly Reports")
    async def test_monthly_reports(self) -> list[Scenario]:
        return [self._retrieval("Monthly report", "10.3", type="monthly", **_date_range(30))]

    @category("Platform Analysis")
    async def test_platform_analysis(self) -> list[Scenario]:
        return [self._retrieval("Platform analysis", "10.4", type="platform_analysis")]

    @category("Analytics Reports")
    async def test_analytics_reports(self) -> list[Scenario]:
        return [
            self._retrieval(label, requirement, type=report_type)
            for report_type, label, requirement in ANALYTICS_REPORTS
        ]

    @category("Export Functionality")
    async def test_export(self) -> list[Scenario]:
        def exported(response: ApiResponse) -> bool:
            if not response.is_success:
                return PLACEHOLDER_MARKER in (response.message or "").lower()
            return bool(response.data) or is_placeholder(response.data)

        def describe(response: ApiResponse) -> str:
            if PLACEHOLDER_MARKER in (response.message or "").lower() or is_placeholder(response.data):
                return "Report export not yet implemented - marked as future feature"
            if exported(response):
                return "Report export available"
            return f"Report export failed: {response.message or 'no data returned'}"

        return [
            expect_success(
                "Report export",
                lambda: call_api(self.context, "exportReport", type="daily", format="xlsx"),
                "10.9",
                check=exported,
                describe=describe,
            )
        ]
