"""Data integrity testing.

Validates the POS sheets as tables of rows: foreign key references between
sheets, stored calculated columns, required fields and column data types.
Orphaned records are reported as warnings only.

Sheet rows come from the ``sheets`` fixture when it is configured (a
mapping of sheet name to a list of row mappings), otherwise from the
``getSheetData`` API action.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.types.summary import PassPolicy

from posqa_testcase import ModuleContext, TestModule, category, check

from posqa_modules.common import call_api

logger = logging.getLogger(__name__)

TOLERANCE = 0.01

Row = Mapping[str, Any]


@dataclass(frozen=True)
class ForeignKey:
    """A reference from a column of one sheet to the key column of another."""

    from_sheet: str
    from_column: str
    to_sheet: str
    to_column: str
    description: str
    requirement: str

    @property
    def label(self) -> str:
        return f"{self.from_sheet}.{self.from_column} -> {self.to_sheet}.{self.to_column}"


@dataclass(frozen=True)
class Calculation:
    """A stored column that must equal a formula over other columns."""

    sheet: str
    field: str
    inputs: tuple[str, ...]
    formula: Callable[[Mapping[str, float]], float]
    description: str


FOREIGN_KEYS = (
    ForeignKey("Purchases", "ingredient_id", "Ingredients", "id",
               "Purchase must reference valid ingredient", "4.1"),
    ForeignKey("MenuRecipes", "ingredient_id", "Ingredients", "id",
               "Recipe must reference valid ingredient", "4.1"),
    ForeignKey("Sales", "menu_id", "Menus", "menu_id", "Sale must reference valid menu", "4.2"),
    ForeignKey("MenuRecipes", "menu_id", "Menus", "menu_id", "Recipe must reference valid menu", "4.2"),
    ForeignKey("Batches", "menu_id", "Menus", "menu_id", "Batch must reference valid menu", "4.2"),
    ForeignKey("Purchases", "lot_id", "Lots", "lot_id", "Purchase must reference valid lot", "4.3"),
    ForeignKey("MenuRecipes", "user_key", "Users", "user_key", "Recipe must reference valid user", "4.4"),
    ForeignKey("LaborLogs", "user_key", "Users", "user_key", "Labor log must reference valid user", "4.4"),
    ForeignKey("Batches", "user_key", "Users", "user_key", "Batch must reference valid user", "4.4"),
)

CALCULATIONS = (
    Calculation("Purchases", "unit_price", ("total_price", "qty_buy"),
                lambda r: r["total_price"] / r["qty_buy"], "Unit price = total_price / qty_buy"),
    Calculation("Purchases", "cost_per_stock", ("total_price", "qty_stock"),
                lambda r: r["total_price"] / r["qty_stock"], "Cost per stock = total_price / qty_stock"),
    Calculation("Sales", "gross", ("qty", "price_per_unit"),
                lambda r: r["qty"] * r["price_per_unit"], "Gross = qty x price_per_unit"),
    Calculation("Sales", "net", ("qty", "net_per_unit"),
                lambda r: r["qty"] * r["net_per_unit"], "Net = qty x net_per_unit"),
    Calculation("Sales", "profit", ("net", "cogs"),
                lambda r: r["net"] - r["cogs"], "Profit = net - cogs"),
)

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "Ingredients": ("id", "name"),
    "Menus": ("menu_id", "name"),
    "MenuRecipes": ("menu_id", "ingredient_id", "qty_per_serve"),
    "Purchases": ("date", "ingredient_id", "qty_buy", "total_price"),
    "Sales": ("date", "platform", "menu_id", "qty", "price_per_unit"),
    "Users": ("user_key", "role", "name"),
    "Lots": ("lot_id", "ingredient_id", "date"),
    "Platforms": ("platform",),
    "Stocks": ("ingredient_id",),
}

# sheet -> (numeric columns, date columns)
COLUMN_TYPES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "Purchases": (
        ("qty_buy", "total_price", "unit_price", "qty_stock", "cost_per_stock", "remaining_stock"),
        ("date",),
    ),
    "Sales": (("qty", "price_per_unit", "net_per_unit", "gross", "net", "cogs", "profit"), ("date",)),
    "Ingredients": (("buy_to_stock_ratio", "min_stock"), ()),
    "MenuRecipes": (("qty_per_serve",), ("created_at",)),
    "Lots": (("qty_initial", "qty_remaining", "cost_per_unit"), ("date",)),
}

DATE_FORMATS = ("%d/%m/%Y", "%Y/%m/%d")


def is_blank(value: Any) -> bool:
    """Return True for None and empty strings."""
    return value is None or (isinstance(value, str) and not value.strip())


def to_number(value: Any) -> float | None:
    """Convert a cell to a float, returning None when it is not numeric."""
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_date(value: Any) -> bool:
    """Return True if a cell holds an ISO date or datetime, or a d/m/Y date."""
    if isinstance(value, (datetime.date, datetime.datetime)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.datetime.fromisoformat(text)
        return True
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            datetime.datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def dangling_references(rows: list[Row], targets: list[Row], fk: ForeignKey) -> list[dict[str, Any]]:
    """Return the rows whose non-blank reference has no matching target row.

    Row indices are spreadsheet row numbers (the header is row 1).
    """
    valid = {str(row[fk.to_column]) for row in targets if not is_blank(row.get(fk.to_column))}
    dangling = []
    for index, row in enumerate(rows):
        value = row.get(fk.from_column)
        if is_blank(value) or str(value) in valid:
            continue
        dangling.append({"row": index + 2, "value": value})
    return dangling


def calculation_errors(rows: list[Row], calc: Calculation) -> tuple[int, list[dict[str, Any]]]:
    """Check a calculated column.

    Rows missing a formula input are skipped.

    Returns:
        Tuple of (rows checked, errors).
    """
    checked = 0
    errors: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        inputs = {name: to_number(row.get(name)) for name in calc.inputs}
        if any(value is None for value in inputs.values()):
            continue
        checked += 1
        try:
            expected = calc.formula(inputs)  # type: ignore[arg-type]
        except ZeroDivisionError:
            errors.append({"row": index + 2, "issue": "Calculation error: division by zero"})
            continue
        actual = to_number(row.get(calc.field))
        if actual is None:
            errors.append({"row": index + 2, "issue": "Missing calculated value", "expected": expected})
        elif abs(expected - actual) > TOLERANCE:
            errors.append(
                {
                    "row": index + 2,
                    "issue": "Calculation mismatch",
                    "expected": round(expected, 4),
                    "actual": actual,
                }
            )
    return checked, errors


class DataIntegrityModule(TestModule):
    """Cross-sheet consistency checks."""

    name = "Data Integrity Testing"
    key = "data_integrity"
    requirements = ("4.1", "4.2", "4.3", "4.4", "4.5", "4.6", "4.8", "4.9")

    def __init__(self, context: ModuleContext) -> None:
        super().__init__(context)
        self._sheets: dict[str, list[Row] | None] = {}

    def reset(self) -> None:
        super().reset()
        self._sheets = {}

    async def sheet(self, name: str) -> list[Row] | None:
        """Return the rows of a sheet, or None when they cannot be fetched."""
        if name in self._sheets:
            return self._sheets[name]

        configured = self.context.fixture("sheets")
        if configured is not None:
            rows = configured.get(name, [])
        else:
            response = await call_api(self.context, "getSheetData", sheet=name)
            if not response.is_success or not isinstance(response.data, list):
                logger.warning("Unable to fetch sheet %s: %s", name, response.message)
                rows = None
            else:
                rows = response.data
        self._sheets[name] = rows
        return rows

    async def _pair(self, fk: ForeignKey) -> tuple[list[Row], list[Row]] | None:
        rows = await self.sheet(fk.from_sheet)
        targets = await self.sheet(fk.to_sheet)
        if rows is None or targets is None:
            return None
        return rows, targets

    @category("Referential Integrity")
    async def test_referential_integrity(self) -> list[TestResult]:
        results = []
        for fk in FOREIGN_KEYS:
            pair = await self._pair(fk)
            if pair is None:
                results.append(check(fk.label, False, fk.requirement, "Unable to fetch sheet data"))
                continue
            dangling = dangling_references(*pair, fk)
            results.append(
                check(
                    fk.label,
                    not dangling,
                    fk.requirement,
                    f"Found {len(dangling)} invalid references in {fk.from_sheet}.{fk.from_column}"
                    if dangling
                    else fk.description,
                    invalid_references=dangling[:20],
                    rows=len(pair[0]),
                )
            )
        return results

    @category("Calculations")
    async def test_calculations(self) -> list[TestResult]:
        results = []
        for calc in CALCULATIONS:
            name = f"{calc.sheet}.{calc.field}"
            rows = await self.sheet(calc.sheet)
            if rows is None:
                results.append(check(name, False, "4.5", "Unable to fetch sheet data"))
                continue
            checked, errors = calculation_errors(rows, calc)
            results.append(
                check(
                    name,
                    not errors,
                    "4.5",
                    f"Found {len(errors)} calculation errors in {name}"
                    if errors
                    else f"{calc.description} holds for {checked} rows",
                    rows_checked=checked,
                    errors=errors[:20],
                )
            )
        return results

    @category("Required Fields")
    async def test_required_fields(self) -> list[TestResult]:
        results = []
        for sheet, fields in REQUIRED_FIELDS.items():
            rows = await self.sheet(sheet)
            if rows is None:
                results.append(check(f"{sheet} required fields", False, "4.6", "Unable to fetch sheet data"))
                continue
            incomplete = []
            for index, row in enumerate(rows):
                missing = [f for f in fields if is_blank(row.get(f))]
                if missing:
                    incomplete.append({"row": index + 2, "missing_fields": missing})
            results.append(
                check(
                    f"{sheet} required fields",
                    not incomplete,
                    "4.6",
                    f"Found {len(incomplete)} rows with missing required fields"
                    if incomplete
                    else f"All {len(rows)} rows complete",
                    incomplete_rows=incomplete[:20],
                )
            )
        return results

    @category("Orphaned Records", PassPolicy.informational())
    async def test_orphaned_records(self) -> list[TestResult]:
        results = []
        for fk in FOREIGN_KEYS:
            pair = await self._pair(fk)
            if pair is None:
                continue
            orphans = dangling_references(*pair, fk)
            if orphans:
                self.warn(f"{len(orphans)} orphaned records in {fk.from_sheet}.{fk.from_column}")
            results.append(
                check(
                    f"Orphans in {fk.from_sheet}.{fk.from_column}",
                    not orphans,
                    "4.8",
                    f"{len(orphans)} orphaned records" if orphans else "No orphaned records",
                    orphaned=orphans[:20],
                )
            )
        return results

    @category("Data Types")
    async def test_data_types(self) -> list[TestResult]:
        results = []
        for sheet, (numeric, dates) in COLUMN_TYPES.items():
            rows = await self.sheet(sheet)
            if rows is None:
                results.append(check(f"{sheet} data types", False, "4.9", "Unable to fetch sheet data"))
                continue
            invalid = []
            for index, row in enumerate(rows):
                fields = [
                    {"field": f, "value": row[f], "expected_type": "number"}
                    for f in numeric
                    if not is_blank(row.get(f)) and to_number(row[f]) is None
                ]
                fields.extend(
                    {"field": f, "value": row[f], "expected_type": "date"}
                    for f in dates
                    if not is_blank(row.get(f)) and not is_date(row[f])
                )
                if fields:
                    invalid.append({"row": index + 2, "invalid_fields": fields})
            results.append(
                check(
                    f"{sheet} data types",
                    not invalid,
                    "4.9",
                    f"Found {len(invalid)} rows with invalid data types"
                    if invalid
                    else f"All {len(rows)} rows have valid types",
                    invalid_rows=invalid[:20],
                )
            )
        return results

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        advice = {
            "Referential Integrity": (
                "high",
                "Fix invalid foreign key references by updating them or adding the missing records",
            ),
            "Calculations": ("medium", "Recalculate computed columns so they match their formulas"),
            "Required Fields": ("high", "Fill in missing required fields or remove incomplete records"),
            "Data Types": ("medium", "Correct data type mismatches and add validation to the sheets"),
        }
        found = []
        for summary in report.categories:
            if summary.name == "Orphaned Records":
                if summary.warnings:
                    found.append(
                        Recommendation(
                            category="Data Integrity",
                            priority="low",
                            issue=f"{len(summary.warnings)} relationships have orphaned records",
                            solution="Review and clean up records that reference missing entities",
                            requirements=("4.8",),
                        )
                    )
                continue
            if summary.name not in advice or not summary.failures:
                continue
            priority, solution = advice[summary.name]
            found.append(
                Recommendation(
                    category="Data Integrity",
                    priority=priority,
                    issue=f"{summary.name}: {len(summary.failures)} checks failed",
                    solution=solution,
                    requirements=tuple(sorted({r.requirement for r in summary.failures if r.requirement})),
                )
            )
        return found
