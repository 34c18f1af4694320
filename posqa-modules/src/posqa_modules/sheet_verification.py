"""Sheet verification testing.

Checks that every sheet the POS backend relies on exists, that each sheet
carries its expected columns, and that the values in those columns have
the expected data types. The sheet map category describes each sheet's
columns, null and distinct value counts, and the relationships between
sheets; it is informational and never fails the module.

Sheets come from the ``sheets`` fixture when it is configured, otherwise
from the ``getSheetData`` API action. Sheet data is either a list of row
mappings or a mapping with ``columns`` and ``rows``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.types.summary import PassPolicy

from posqa_testcase import ModuleContext, TestModule, category, check

from posqa_modules.common import call_api
from posqa_modules.data_integrity import Row, is_blank, is_date, to_number

logger = logging.getLogger(__name__)

SHEET_COLUMNS: dict[str, tuple[str, ...]] = {
    "Ingredients": ("id", "name", "stock_unit", "unit_buy", "buy_to_stock_ratio", "min_stock"),
    "Menus": ("menu_id", "name", "description", "category", "active"),
    "MenuRecipes": (
        "menu_id",
        "ingredient_id",
        "ingredient_name",
        "qty_per_serve",
        "note",
        "created_at",
        "user_key",
    ),
    "Purchases": (
        "date",
        "lot_id",
        "ingredient_id",
        "ingredient_name",
        "qty_buy",
        "unit",
        "total_price",
        "unit_price",
        "qty_stock",
        "cost_per_stock",
        "remaining_stock",
        "supplier_note",
    ),
    "Sales": (
        "date",
        "platform",
        "menu_id",
        "qty",
        "price_per_unit",
        "net_per_unit",
        "gross",
        "net",
        "cogs",
        "profit",
    ),
    "Users": ("user_key", "role", "name", "active", "created_at"),
    "CostCenters": ("cost_center_id", "name", "standard_rate", "active"),
    "Packaging": ("pkg_id", "name", "unit", "active"),
    "Lots": ("lot_id", "ingredient_id", "date", "qty_initial", "qty_remaining", "cost_per_unit"),
    "Platforms": ("platform", "fee_percentage", "active"),
    "Stocks": ("ingredient_id", "current_stock", "last_updated", "min_stock"),
    "LaborLogs": ("date", "cost_center_id", "hours", "rate", "amount", "user_key", "note"),
    "Waste": ("date", "ingredient_id", "qty_wasted", "cost", "user_key", "note"),
    "MarketRuns": ("run_id", "date", "buyer", "note", "user_key", "status"),
    "MarketRunItems": ("run_id", "ingredient_id", "qty_buy", "unit_price", "lot_id", "note"),
    "Packing": ("packing_id", "name", "unit", "cost_per_unit", "active"),
    "PackingPurchases": ("date", "packing_id", "qty", "unit_price", "total_cost", "supplier", "note"),
    "Overheads": ("overhead_id", "name", "type", "rate", "active"),
    "MenuExtras": ("menu_id", "extra_type", "cost", "note"),
    "BatchCostLines": ("batch_id", "cost_type", "amount", "note"),
    "Batches": (
        "batch_id",
        "date",
        "menu_id",
        "plan_qty",
        "actual_qty",
        "weight_kg",
        "hours",
        "recipe_cost_per_serve",
        "pack_per_serve",
        "oh_per_hour",
        "oh_per_kg",
        "total_cost",
        "status",
        "user_key",
        "note",
    ),
}

REQUIRED_SHEETS = tuple(SHEET_COLUMNS)

# Columns that must hold a value in every row
REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "Ingredients": ("id", "name"),
    "Menus": ("menu_id", "name"),
    "MenuRecipes": ("menu_id", "ingredient_id"),
    "Purchases": ("date", "ingredient_id", "qty_buy", "total_price"),
    "Sales": ("date", "platform", "menu_id", "qty", "price_per_unit"),
    "Users": ("user_key", "role", "name"),
    "Lots": ("lot_id", "ingredient_id", "date"),
    "Platforms": ("platform",),
    "Stocks": ("ingredient_id",),
}

# Column name -> (sheet, column) it references
FOREIGN_KEY_COLUMNS: dict[str, tuple[str, str]] = {
    "ingredient_id": ("Ingredients", "id"),
    "menu_id": ("Menus", "menu_id"),
    "lot_id": ("Lots", "lot_id"),
    "user_key": ("Users", "user_key"),
    "platform": ("Platforms", "platform"),
    "cost_center_id": ("CostCenters", "cost_center_id"),
    "packing_id": ("Packing", "packing_id"),
    "batch_id": ("Batches", "batch_id"),
    "run_id": ("MarketRuns", "run_id"),
}

TEXT_COLUMNS = frozenset({"stock_unit", "cost_type"})
NUMERIC_TOKENS = frozenset(
    {
        "qty",
        "price",
        "cost",
        "amount",
        "stock",
        "ratio",
        "percentage",
        "rate",
        "hours",
        "hour",
        "weight",
        "kg",
        "serve",
        "total",
        "gross",
        "net",
        "cogs",
        "profit",
    }
)
BOOLEAN_VALUES = frozenset({"true", "false", "1", "0", "yes", "no"})


@dataclass(frozen=True)
class Relationship:
    """A reference from a column of one sheet to a column of another."""

    from_sheet: str
    from_column: str
    to_sheet: str
    to_column: str
    kind: str = "many-to-one"

    @property
    def label(self) -> str:
        return f"{self.from_sheet}.{self.from_column} -> {self.to_sheet}.{self.to_column}"


RELATIONSHIPS = (
    Relationship("Purchases", "ingredient_id", "Ingredients", "id"),
    Relationship("Sales", "menu_id", "Menus", "menu_id"),
    Relationship("MenuRecipes", "menu_id", "Menus", "menu_id"),
    Relationship("MenuRecipes", "ingredient_id", "Ingredients", "id"),
    Relationship("Purchases", "lot_id", "Lots", "lot_id"),
    Relationship("Lots", "ingredient_id", "Ingredients", "id"),
    Relationship("Stocks", "ingredient_id", "Ingredients", "id", "one-to-one"),
    Relationship("Sales", "platform", "Platforms", "platform"),
    Relationship("Batches", "menu_id", "Menus", "menu_id"),
    Relationship("BatchCostLines", "batch_id", "Batches", "batch_id"),
)


@dataclass(frozen=True)
class SheetData:
    """Header and rows of one sheet."""

    columns: tuple[str, ...] = ()
    rows: list[Row] = field(default_factory=list)

    @classmethod
    def parse(cls, data: Any) -> SheetData:
        """Build sheet data from a row list or a ``columns``/``rows`` mapping.

        Without an explicit header the columns are the row keys in order of
        first appearance.
        """
        if isinstance(data, Mapping):
            rows = list(data.get("rows") or [])
            columns = data.get("columns")
        else:
            rows = list(data or [])
            columns = None
        if columns is None:
            seen: dict[str, None] = {}
            for row in rows:
                seen.update(dict.fromkeys(row))
            columns = list(seen)
        return cls(columns=tuple(str(c) for c in columns), rows=rows)


def column_type(name: str) -> str:
    """Return the expected data type of a column from its name.

    One of "identifier", "date", "boolean", "number" or "text".
    """
    lower = name.lower()
    if lower in TEXT_COLUMNS:
        return "text"
    if lower == "id" or lower.endswith(("_id", "_key")):
        return "identifier"
    tokens = set(lower.split("_"))
    if "date" in tokens or lower.endswith("_at") or lower == "last_updated":
        return "date"
    if "active" in tokens:
        return "boolean"
    if tokens & NUMERIC_TOKENS:
        return "number"
    return "text"


def is_boolean(value: Any) -> bool:
    """Return True if a cell holds a boolean or a boolean spelling."""
    if isinstance(value, bool):
        return True
    return str(value).strip().lower() in BOOLEAN_VALUES


def type_error(value: Any, expected: str) -> str | None:
    """Return why a non-blank cell does not hold the expected type, or None."""
    if expected == "number" and to_number(value) is None:
        return "Not a valid number"
    if expected == "date" and not is_date(value):
        return "Not a valid date"
    if expected == "boolean" and not is_boolean(value):
        return "Not a valid boolean"
    return None


def column_statistics(rows: list[Row], columns: tuple[str, ...]) -> dict[str, dict[str, int]]:
    """Count blank and distinct values per column."""
    nulls: dict[str, int] = {}
    uniques: dict[str, int] = {}
    for column in columns:
        values = [row.get(column) for row in rows]
        nulls[column] = sum(1 for v in values if is_blank(v))
        uniques[column] = len({str(v) for v in values if not is_blank(v)})
    return {"null_counts": nulls, "unique_counts": uniques}


class SheetVerificationModule(TestModule):
    """Sheet structure, column mapping and data type checks."""

    name = "Sheet Verification Testing"
    key = "sheet_verification"
    requirements = ("1.1", "1.2", "1.3", "1.4", "1.5")

    def __init__(self, context: ModuleContext) -> None:
        super().__init__(context)
        self._sheets: dict[str, SheetData | None] = {}

    def reset(self) -> None:
        super().reset()
        self._sheets = {}

    async def sheet(self, name: str) -> SheetData | None:
        """Return a sheet's data, or None when the sheet does not exist."""
        if name in self._sheets:
            return self._sheets[name]

        configured = self.context.fixture("sheets")
        if configured is not None:
            data = SheetData.parse(configured[name]) if name in configured else None
        else:
            response = await call_api(self.context, "getSheetData", sheet=name)
            if response.is_success:
                data = SheetData.parse(response.data)
            else:
                logger.warning("Unable to fetch sheet %s: %s", name, response.message)
                data = None
        self._sheets[name] = data
        return data

    @category("Sheet Existence")
    async def test_sheet_existence(self) -> list[TestResult]:
        results = []
        for name in REQUIRED_SHEETS:
            data = await self.sheet(name)
            results.append(
                check(
                    f"{name} exists",
                    data is not None,
                    "1.1",
                    f"Sheet {name} found with {len(data.rows)} rows" if data else "Sheet does not exist",
                )
            )
        return results

    @category("Column Mappings")
    async def test_column_mappings(self) -> list[TestResult]:
        results = []
        for name, expected in SHEET_COLUMNS.items():
            label = f"{name} columns"
            data = await self.sheet(name)
            if data is None:
                results.append(check(label, False, "1.2", "Sheet does not exist"))
                continue
            if not data.columns:
                self.warn(f"{name} has no header or rows; columns not verified")
                results.append(check(label, True, "1.2", "Sheet is empty"))
                continue
            missing = [c for c in expected if c not in data.columns]
            extra = [c for c in data.columns if c not in expected]
            for column in extra:
                self.warn(f"Extra column found in {name}: {column}")
            results.append(
                check(
                    label,
                    not missing,
                    "1.2",
                    f"Missing required columns: {', '.join(missing)}"
                    if missing
                    else f"All {len(expected)} columns mapped",
                    matched=len(expected) - len(missing),
                    missing=missing,
                    extra=extra,
                )
            )
        return results

    @category("Data Types")
    async def test_data_types(self) -> list[TestResult]:
        results = []
        for name, expected in SHEET_COLUMNS.items():
            label = f"{name} data types"
            data = await self.sheet(name)
            if data is None:
                results.append(check(label, False, "1.3", "Sheet does not exist"))
                continue
            invalid: dict[str, list[dict[str, Any]]] = {}
            for column in expected:
                kind = column_type(column)
                for index, row in enumerate(data.rows):
                    value = row.get(column)
                    if is_blank(value):
                        continue
                    reason = type_error(value, kind)
                    if reason:
                        invalid.setdefault(column, []).append(
                            {"row": index + 2, "value": value, "reason": reason}
                        )
            results.append(
                check(
                    label,
                    not invalid,
                    "1.3",
                    "; ".join(f'Column "{c}" has {len(v)} invalid values' for c, v in invalid.items())
                    if invalid
                    else f"All {len(data.rows)} rows have valid types",
                    invalid_columns={c: v[:20] for c, v in invalid.items()},
                )
            )
        return results

    @category("Sheet Map", PassPolicy.informational())
    async def test_sheet_map(self) -> list[TestResult]:
        results = []
        sheets: dict[str, Any] = {}
        total_columns = 0
        with_data = 0
        for name, expected in SHEET_COLUMNS.items():
            data = await self.sheet(name)
            total_columns += len(expected)
            columns = [
                {
                    "name": column,
                    "index": index,
                    "data_type": column_type(column),
                    "required": column in REQUIRED_COLUMNS.get(name, ()),
                    "foreign_key": FOREIGN_KEY_COLUMNS.get(column),
                }
                for index, column in enumerate(expected)
            ]
            rows = data.rows if data else []
            if rows:
                with_data += 1
            sheets[name] = {"row_count": len(rows), **column_statistics(rows, expected)}
            results.append(
                check(
                    f"{name} map",
                    data is not None,
                    "1.4",
                    f"{len(expected)} columns, {len(rows)} rows" if data else "Sheet does not exist",
                    columns=columns,
                )
            )

        for rel in RELATIONSHIPS:
            source = await self.sheet(rel.from_sheet)
            target = await self.sheet(rel.to_sheet)
            linked = bool(
                source
                and target
                and rel.from_column in source.columns
                and rel.to_column in target.columns
            )
            results.append(
                check(
                    rel.label,
                    linked,
                    "1.5",
                    f"{rel.kind} relationship" if linked else "Relationship columns not present",
                    kind=rel.kind,
                )
            )

        self.record_metric(
            "sheet_map",
            {
                "total_sheets": len(SHEET_COLUMNS),
                "sheets_with_data": with_data,
                "total_columns": total_columns,
                "average_columns_per_sheet": round(total_columns / len(SHEET_COLUMNS), 2),
                "sheets": sheets,
                "relationships": [
                    {
                        "from": f"{rel.from_sheet}.{rel.from_column}",
                        "to": f"{rel.to_sheet}.{rel.to_column}",
                        "type": rel.kind,
                    }
                    for rel in RELATIONSHIPS
                ],
            },
        )
        return results

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        advice = {
            "Sheet Existence": ("critical", "Create the missing sheets with their expected headers"),
            "Column Mappings": ("high", "Add the missing columns to the sheet headers"),
            "Data Types": ("medium", "Correct cell values that do not match their column's data type"),
        }
        found = []
        for summary in report.categories:
            if summary.name not in advice or not summary.failures:
                continue
            priority, solution = advice[summary.name]
            found.append(
                Recommendation(
                    category="Sheet Verification",
                    priority=priority,
                    issue=f"{summary.name}: {len(summary.failures)} checks failed",
                    solution=solution,
                    requirements=tuple(sorted({r.requirement for r in summary.failures if r.requirement})),
                )
            )
        return found
