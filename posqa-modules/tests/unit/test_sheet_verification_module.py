"""Unit tests for the sheet verification test module."""

import pytest

from posqa_modules.sheet_verification import (
    RELATIONSHIPS,
    REQUIRED_SHEETS,
    SHEET_COLUMNS,
    SheetData,
    SheetVerificationModule,
    column_statistics,
    column_type,
    is_boolean,
)

SAMPLE_VALUES = {
    "identifier": "ID_001",
    "date": "2024-01-15",
    "boolean": True,
    "number": 12.5,
    "text": "sample",
}


def complete_sheets():
    """One well-typed row for every required sheet."""
    return {
        name: [{column: SAMPLE_VALUES[column_type(column)] for column in columns}]
        for name, columns in SHEET_COLUMNS.items()
    }


def failures(report):
    return {r.test_name: r for c in report.categories for r in c.failures}


class TestColumnType:
    """Tests for column_type."""

    @pytest.mark.parametrize(
        "column, expected",
        [
            ("id", "identifier"),
            ("ingredient_id", "identifier"),
            ("user_key", "identifier"),
            ("date", "date"),
            ("created_at", "date"),
            ("last_updated", "date"),
            ("active", "boolean"),
            ("qty_per_serve", "number"),
            ("fee_percentage", "number"),
            ("oh_per_kg", "number"),
            ("cogs", "number"),
            ("stock_unit", "text"),
            ("cost_type", "text"),
            ("supplier_note", "text"),
            ("name", "text"),
        ],
    )
    def test_column_type(self, column, expected) -> None:
        assert column_type(column) == expected

    @pytest.mark.parametrize(
        "value, valid",
        [(True, True), ("TRUE", True), ("no", True), (1, True), ("0", True), ("maybe", False), (2, False)],
    )
    def test_is_boolean(self, value, valid) -> None:
        assert is_boolean(value) is valid


class TestSheetData:
    """Tests for SheetData.parse and column_statistics."""

    def test_columns_from_rows(self) -> None:
        data = SheetData.parse([{"id": "A", "name": "x"}, {"id": "B", "note": "y"}])
        assert data.columns == ("id", "name", "note")
        assert len(data.rows) == 2

    def test_explicit_header(self) -> None:
        data = SheetData.parse({"columns": ["platform", "fee_percentage"], "rows": []})
        assert data.columns == ("platform", "fee_percentage")
        assert data.rows == []

    def test_no_data(self) -> None:
        assert SheetData.parse(None) == SheetData()

    def test_statistics(self) -> None:
        rows = [{"platform": "Grab", "fee": ""}, {"platform": "Grab", "fee": 0.3}, {"platform": "Line"}]
        assert column_statistics(rows, ("platform", "fee")) == {
            "null_counts": {"platform": 0, "fee": 2},
            "unique_counts": {"platform": 2, "fee": 1},
        }


class TestSheetVerificationModule:
    """Tests for SheetVerificationModule."""

    async def test_complete_sheets_pass(self, context, backend) -> None:
        context.fixtures = {"sheets": complete_sheets()}
        module = SheetVerificationModule(context)
        report = await module.run_all()

        assert report.passed, report.issues
        assert report.warnings == 0
        assert backend.requests == []
        assert module.recommendations(report) == []
        # The sheet map is informational and not counted
        assert report.counts.total == 3 * len(REQUIRED_SHEETS)
        sheet_map = report.category("Sheet Map")
        assert len(sheet_map.results) == len(REQUIRED_SHEETS) + len(RELATIONSHIPS)
        assert all(r.passed for r in sheet_map.results)

    async def test_sheet_map_metric(self, context) -> None:
        context.fixtures = {"sheets": complete_sheets()}
        report = await SheetVerificationModule(context).run_all()
        sheet_map = report.metrics["sheet_map"]
        assert sheet_map["total_sheets"] == 21
        assert sheet_map["sheets_with_data"] == 21
        assert sheet_map["total_columns"] == sum(len(c) for c in SHEET_COLUMNS.values())
        assert sheet_map["sheets"]["Platforms"] == {
            "row_count": 1,
            "null_counts": {"platform": 0, "fee_percentage": 0, "active": 0},
            "unique_counts": {"platform": 1, "fee_percentage": 1, "active": 1},
        }
        assert sheet_map["relationships"][0] == {
            "from": "Purchases.ingredient_id",
            "to": "Ingredients.id",
            "type": "many-to-one",
        }

    async def test_missing_sheet(self, context) -> None:
        sheets = complete_sheets()
        del sheets["Waste"]
        context.fixtures = {"sheets": sheets}
        module = SheetVerificationModule(context)
        report = await module.run_all()

        assert not report.passed
        assert set(failures(report)) == {"Waste exists", "Waste columns", "Waste data types"}
        assert failures(report)["Waste exists"].message == "Sheet does not exist"
        assert report.category("Sheet Map").passed
        priorities = [(r.priority, r.requirements) for r in module.recommendations(report)]
        assert priorities == [("critical", ("1.1",)), ("high", ("1.2",)), ("medium", ("1.3",))]

    async def test_missing_and_extra_columns(self, context) -> None:
        sheets = complete_sheets()
        row = sheets["Ingredients"][0]
        del row["min_stock"]
        row["barcode"] = "885000"
        context.fixtures = {"sheets": sheets}
        summary = await SheetVerificationModule(context).run_category("Column Mappings")

        failed = {r.test_name: r for r in summary.failures}
        assert set(failed) == {"Ingredients columns"}
        result = failed["Ingredients columns"]
        assert result.requirement == "1.2"
        assert result.message == "Missing required columns: min_stock"
        assert result.details["extra"] == ["barcode"]
        assert summary.warnings == ("Extra column found in Ingredients: barcode",)

    async def test_empty_sheet_warns(self, context) -> None:
        sheets = complete_sheets()
        sheets["Waste"] = []
        context.fixtures = {"sheets": sheets}
        summary = await SheetVerificationModule(context).run_category("Column Mappings")
        assert summary.passed
        assert summary.warnings == ("Waste has no header or rows; columns not verified",)

    async def test_header_without_rows(self, context) -> None:
        sheets = complete_sheets()
        sheets["Platforms"] = {"columns": list(SHEET_COLUMNS["Platforms"]), "rows": []}
        context.fixtures = {"sheets": sheets}
        report = await SheetVerificationModule(context).run_all()
        assert report.passed
        assert report.warnings == 0
        assert report.metrics["sheet_map"]["sheets_with_data"] == 20

    async def test_invalid_data_types(self, context) -> None:
        sheets = complete_sheets()
        sheets["Sales"][0]["qty"] = "two"
        sheets["Menus"][0]["active"] = "maybe"
        sheets["Purchases"][0]["date"] = "Jan 15"
        context.fixtures = {"sheets": sheets}
        summary = await SheetVerificationModule(context).run_category("Data Types")

        failed = {r.test_name: r for r in summary.failures}
        assert set(failed) == {"Sales data types", "Menus data types", "Purchases data types"}
        assert failed["Sales data types"].message == 'Column "qty" has 1 invalid values'
        assert failed["Sales data types"].details["invalid_columns"] == {
            "qty": [{"row": 2, "value": "two", "reason": "Not a valid number"}]
        }
        assert failed["Menus data types"].details["invalid_columns"]["active"][0]["reason"] == "Not a valid boolean"

    async def test_blank_cells_allowed(self, context) -> None:
        sheets = complete_sheets()
        sheets["Sales"][0].update({"qty": "", "date": None})
        context.fixtures = {"sheets": sheets}
        summary = await SheetVerificationModule(context).run_category("Data Types")
        assert summary.passed

    async def test_each_sheet_fetched_once(self, context, backend) -> None:
        module = SheetVerificationModule(context)
        await module.run_all()
        assert backend.requests == ["getSheetData"] * len(REQUIRED_SHEETS)

        module.reset()
        await module.run_category("Sheet Existence")
        assert len(backend.requests) == 2 * len(REQUIRED_SHEETS)

    async def test_api_error_means_missing(self, context, backend) -> None:
        backend.do_getSheetData = lambda params: (
            backend.error("Sheet not found") if params.get("sheet") == "Waste" else backend.ok([])
        )
        summary = await SheetVerificationModule(context).run_category("Sheet Existence")
        assert [r.test_name for r in summary.failures] == ["Waste exists"]

    async def test_api_rows_checked(self, context, backend) -> None:
        """Rows served by the API are checked against the expected columns."""
        summary = await SheetVerificationModule(context).run_category("Column Mappings")
        failed = {r.test_name: r for r in summary.failures}
        assert "Ingredients columns" in failed
        assert "stock_unit" in failed["Ingredients columns"].details["missing"]
        assert "Waste has no header or rows; columns not verified" in summary.warnings
