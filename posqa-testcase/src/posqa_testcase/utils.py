"""Timing helpers, numeric comparisons and fixture data generators."""

from __future__ import annotations

import inspect
import math
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")


class Stopwatch:
    """Measure elapsed wall time with ``time.perf_counter``.

    Example:
        with Stopwatch() as sw:
            await api.call("getReport")
        print(sw.elapsed_ms)
    """

    def __init__(self) -> None:
        self._start: float | None = None
        self._end: float | None = None

    def __enter__(self) -> Stopwatch:
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._end = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        """Return elapsed milliseconds (up to now while still running)."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return (end - self._start) * 1000.0


async def timed(func: Callable[[], Awaitable[T] | T]) -> tuple[T, float]:
    """Call a sync or async function and return (value, elapsed ms)."""
    with Stopwatch() as sw:
        value = func()
        if inspect.isawaitable(value):
            value = await value
    return value, sw.elapsed_ms  # type: ignore[return-value]


def percentile(values: Sequence[float], pct: float) -> float:
    """Return the ``pct`` percentile using linear interpolation.

    Raises:
        ValueError: If ``values`` is empty or ``pct`` is outside 0..100.
    """
    if not values:
        raise ValueError("percentile of empty sequence")
    if not 0 <= pct <= 100:
        raise ValueError(f"Percentile must be within 0..100: {pct}")
    ordered = sorted(values)
    rank = (len(ordered) - 1) * pct / 100.0
    low = math.floor(rank)
    high = math.ceil(rank)
    if low == high:
        return float(ordered[low])
    return ordered[low] + (ordered[high] - ordered[low]) * (rank - low)


def approx_equal(actual: float, expected: float, tolerance: float = 0.01) -> bool:
    """Compare two amounts within an absolute tolerance."""
    return abs(float(actual) - float(expected)) <= tolerance


@dataclass(frozen=True)
class TimingStats:
    """Summary statistics of a series of durations in milliseconds."""

    count: int
    mean_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float

    @classmethod
    def of(cls, durations: Sequence[float]) -> TimingStats:
        """Compute statistics of a non-empty series."""
        if not durations:
            return cls(count=0, mean_ms=0.0, min_ms=0.0, max_ms=0.0, p95_ms=0.0)
        return cls(
            count=len(durations),
            mean_ms=sum(durations) / len(durations),
            min_ms=min(durations),
            max_ms=max(durations),
            p95_ms=percentile(durations, 95),
        )

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary for serialization."""
        return {
            "count": self.count,
            "mean_ms": round(self.mean_ms, 3),
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "p95_ms": round(self.p95_ms, 3),
        }


INGREDIENT_NAMES = (
    "Jasmine Rice",
    "Chicken Breast",
    "Fish Sauce",
    "Palm Sugar",
    "Coconut Milk",
    "Garlic",
    "Shallot",
    "Lime",
    "Thai Basil",
    "Shrimp",
)
UNITS = ("kg", "g", "l", "ml", "pcs")
PLATFORMS = ("walk-in", "grab", "lineman", "shopee", "foodpanda")
ROLES = ("owner", "partner", "staff")


class FixtureFactory:
    """Seeded generator of POS fixture records.

    Values are random but reproducible for a given seed. They are test
    fixtures, not business rules.

    Example:
        >>> factory = FixtureFactory(seed=7)
        >>> purchase = factory.purchase()
        >>> purchase["unit_price"] == round(purchase["total_price"] / purchase["qty_buy"], 2)
        True
    """

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        suffix = "".join(self._random.choices(string.ascii_uppercase + string.digits, k=4))
        return f"{prefix}-{self._counter:04d}-{suffix}"

    def ingredient(self) -> dict[str, Any]:
        """Return an ingredient record."""
        return {
            "id": self._next_id("ING"),
            "name": self._random.choice(INGREDIENT_NAMES),
            "stock_unit": self._random.choice(UNITS),
            "buy_unit": self._random.choice(UNITS),
            "buy_to_stock_ratio": self._random.choice((1, 10, 1000)),
            "min_stock": self._random.randint(1, 20),
        }

    def menu(self) -> dict[str, Any]:
        """Return a menu record."""
        return {
            "menu_id": self._next_id("MENU"),
            "name": f"{self._random.choice(INGREDIENT_NAMES)} Special",
            "price": self._random.randint(40, 250),
            "category": self._random.choice(("main", "drink", "dessert")),
        }

    def purchase(self, ingredient_id: str | None = None) -> dict[str, Any]:
        """Return a purchase record with a consistent unit price."""
        qty_buy = self._random.randint(1, 50)
        total_price = round(qty_buy * self._random.uniform(5, 150), 2)
        return {
            "ingredient_id": ingredient_id or self._next_id("ING"),
            "lot_id": self._next_id("LOT"),
            "qty_buy": qty_buy,
            "total_price": total_price,
            "unit_price": round(total_price / qty_buy, 2),
        }

    def sale(self, menu_id: str | None = None) -> dict[str, Any]:
        """Return a sale record with consistent gross and net amounts."""
        qty = self._random.randint(1, 5)
        price = self._random.randint(40, 250)
        gross = qty * price
        commission = round(gross * self._random.choice((0.0, 0.15, 0.3)), 2)
        return {
            "menu_id": menu_id or self._next_id("MENU"),
            "platform": self._random.choice(PLATFORMS),
            "qty": qty,
            "price_per_unit": price,
            "gross": gross,
            "net": round(gross - commission, 2),
        }

    def user(self, role: str | None = None) -> dict[str, Any]:
        """Return a user record."""
        return {
            "user_key": self._next_id("USER"),
            "role": role or self._random.choice(ROLES),
            "active": True,
        }
