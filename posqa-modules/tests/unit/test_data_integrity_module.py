"""Unit tests for the data integrity test module."""

import datetime

import pytest

from posqa_modules.data_integrity import (
    CALCULATIONS,
    FOREIGN_KEYS,
    DataIntegrityModule,
    calculation_errors,
    dangling_references,
    is_blank,
    is_date,
    to_number,
)


def failures(report):
    return {r.test_name: r for c in report.categories for r in c.failures}


class TestCellHelpers:
    """Tests for the cell conversion helpers."""

    @pytest.mark.parametrize("value, blank", [(None, True), ("", True), ("  ", True), (0, False), ("x", False)])
    def test_is_blank(self, value, blank) -> None:
        assert is_blank(value) is blank

    @pytest.mark.parametrize("value, number", [("12.5", 12.5), (3, 3.0), ("abc", None), (None, None), (True, None)])
    def test_to_number(self, value, number) -> None:
        assert to_number(value) == number

    @pytest.mark.parametrize(
        "value, valid",
        [
            ("2024-01-15", True),
            ("2024-01-10T08:00:00Z", True),
            ("15/01/2024", True),
            ("2024/01/15", True),
            (datetime.date(2024, 1, 15), True),
            ("Jan 15", False),
            ("31/02/2024", False),
            (20240115, False),
        ],
    )
    def test_is_date(self, value, valid) -> None:
        assert is_date(value) is valid


class TestReferenceHelpers:
    """Tests for dangling_references and calculation_errors."""

    def test_dangling_rows_are_sheet_rows(self) -> None:
        """Row numbers count the header as row 1."""
        fk = FOREIGN_KEYS[0]
        rows = [{"ingredient_id": "ING_001"}, {"ingredient_id": ""}, {"ingredient_id": "ING_404"}]
        targets = [{"id": "ING_001"}]
        assert dangling_references(rows, targets, fk) == [{"row": 4, "value": "ING_404"}]

    def test_references_compare_as_strings(self) -> None:
        fk = FOREIGN_KEYS[0]
        assert dangling_references([{"ingredient_id": 7}], [{"id": "7"}], fk) == []

    def test_calculation_skips_rows_missing_inputs(self) -> None:
        unit_price = CALCULATIONS[0]
        rows = [
            {"total_price": 300, "qty_buy": 10, "unit_price": 30},
            {"total_price": 300, "qty_buy": None, "unit_price": 30},
            {"total_price": 100, "qty_buy": 3, "unit_price": 33.333},
        ]
        assert calculation_errors(rows, unit_price) == (2, [])

    def test_calculation_errors(self) -> None:
        unit_price = CALCULATIONS[0]
        rows = [
            {"total_price": 300, "qty_buy": 10, "unit_price": 25},
            {"total_price": 300, "qty_buy": 0, "unit_price": 0},
            {"total_price": 300, "qty_buy": 10},
        ]
        checked, errors = calculation_errors(rows, unit_price)
        assert checked == 3
        assert errors == [
            {"row": 2, "issue": "Calculation mismatch", "expected": 30.0, "actual": 25.0},
            {"row": 3, "issue": "Calculation error: division by zero"},
            {"row": 4, "issue": "Missing calculated value", "expected": 30.0},
        ]


class TestDataIntegrityModule:
    """Tests for DataIntegrityModule against the fake backend's sheets."""

    async def test_clean_sheets_pass(self, context) -> None:
        module = DataIntegrityModule(context)
        report = await module.run_all()
        assert report.passed, report.issues
        assert report.warnings == 0
        assert module.recommendations(report) == []

    async def test_each_sheet_fetched_once(self, context, backend) -> None:
        await DataIntegrityModule(context).run_all()
        assert set(backend.requests) == {"getSheetData"}
        assert len(backend.requests) == 11

    async def test_sheets_fixture_replaces_api(self, context, backend) -> None:
        context.fixtures = {"sheets": {"Menus": [{"menu_id": "MENU_001", "name": "Pad Thai"}]}}
        report = await DataIntegrityModule(context).run_all()
        assert report.passed
        assert backend.requests == []

    async def test_dangling_reference(self, context, backend) -> None:
        backend.sheets["Sales"][0]["menu_id"] = "MENU_404"
        module = DataIntegrityModule(context)
        report = await module.run_all()

        failed = failures(report)
        assert set(failed) == {"Sales.menu_id -> Menus.menu_id"}
        result = failed["Sales.menu_id -> Menus.menu_id"]
        assert result.requirement == "4.2"
        assert result.message == "Found 1 invalid references in Sales.menu_id"
        assert result.details["invalid_references"] == [{"row": 2, "value": "MENU_404"}]

        orphans = report.category("Orphaned Records")
        assert orphans.passed
        assert orphans.warnings == ("1 orphaned records in Sales.menu_id",)

        priorities = [(r.priority, r.requirements) for r in module.recommendations(report)]
        assert priorities == [("high", ("4.2",)), ("low", ("4.8",))]

    async def test_calculation_mismatch(self, context, backend) -> None:
        backend.sheets["Sales"][0]["profit"] = 70
        report = await DataIntegrityModule(context).run_all()
        result = failures(report)["Sales.profit"]
        assert result.message == "Found 1 calculation errors in Sales.profit"
        assert result.details["errors"] == [
            {"row": 2, "issue": "Calculation mismatch", "expected": 72.0, "actual": 70.0}
        ]

    async def test_rounding_within_tolerance(self, context, backend) -> None:
        backend.sheets["Purchases"][0].update({"total_price": 100, "qty_buy": 3, "unit_price": 33.33})
        summary = await DataIntegrityModule(context).run_category("Calculations")
        purchase_results = [r for r in summary.results if r.test_name == "Purchases.unit_price"]
        assert purchase_results[0].passed

    async def test_missing_required_field(self, context, backend) -> None:
        backend.sheets["Users"][0]["name"] = "  "
        report = await DataIntegrityModule(context).run_all()
        result = failures(report)["Users required fields"]
        assert result.requirement == "4.6"
        assert result.details["incomplete_rows"] == [{"row": 2, "missing_fields": ["name"]}]

    async def test_invalid_data_types(self, context, backend) -> None:
        backend.sheets["Purchases"][0]["date"] = "Jan 15"
        backend.sheets["Sales"][0]["qty"] = "two"
        module = DataIntegrityModule(context)
        summary = await module.run_category("Data Types")
        failed = {r.test_name: r for r in summary.failures}
        assert set(failed) == {"Purchases data types", "Sales data types"}
        assert failed["Sales data types"].details["invalid_rows"] == [
            {"row": 2, "invalid_fields": [{"field": "qty", "value": "two", "expected_type": "number"}]}
        ]

    async def test_unfetchable_sheets(self, context, backend) -> None:
        """Sheets the API cannot return fail their checks instead of passing vacuously."""
        backend.do_getSheetData = lambda params: backend.error("Sheet not found")
        module = DataIntegrityModule(context)
        summary = await module.run_category("Required Fields")
        assert summary.counts.failed == summary.counts.total == 9
        assert {r.message for r in summary.results} == {"Unable to fetch sheet data"}

    async def test_api_failure_is_category_error(self, context, backend) -> None:
        backend.fail_actions.add("getSheetData")
        summary = await DataIntegrityModule(context).run_category("Calculations")
        assert not summary.passed
        assert summary.results[0].message == "Category error: HTTP error! status: 500"
