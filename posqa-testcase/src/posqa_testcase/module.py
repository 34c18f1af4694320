"""Test module base class.

A test module groups the categories of one domain (functional, PWA,
security, ...). Each category is an async method decorated with
``@category``; it returns the scenarios (or directly computed results) of
that category instead of mutating shared state. The module evaluates them,
folds the resulting CategorySummary into its accumulator, and finalizes a
ModuleReport on request.

State machine:
    IDLE -> RUNNING -> ACCUMULATED -> RUNNING -> ... -> FINALIZED
    reset() is the only transition back to IDLE.
"""

from __future__ import annotations

import logging
import time
from abc import ABC
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Iterable, TypeVar, Union

from posqa_core.errors import StateError
from posqa_core.types.common import Timestamp
from posqa_core.types.report import ModuleReport, ModuleState, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.types.rules import NoFailures, PassRule
from posqa_core.types.summary import CategoryCounts, CategorySummary, PassPolicy

from posqa_testcase.context import ModuleContext
from posqa_testcase.scenario import Scenario

logger = logging.getLogger(__name__)

CategoryItem = Union[Scenario, TestResult]
CategoryMethod = Callable[[Any], Awaitable[Iterable[CategoryItem]]]
F = TypeVar("F", bound=CategoryMethod)


@dataclass(frozen=True)
class CategorySpec:
    """Declaration of one category of a module.

    Attributes:
        name: Category display name.
        attr: Name of the method implementing the category.
        policy: Pass policy of the category.
    """

    name: str
    attr: str
    policy: PassPolicy


def category(name: str, policy: PassPolicy | None = None) -> Callable[[F], F]:
    """Declare an async method as a test category.

    Categories run in the order they are defined in the class body.

    Args:
        name: Category display name.
        policy: Pass policy (defaults to every result passing).
    """

    def decorator(func: F) -> F:
        func._posqa_category = (name, policy or PassPolicy.all_pass())  # type: ignore[attr-defined]
        return func

    return decorator


class TestModule(ABC):
    """Base class for test modules.

    Subclasses set ``name``, ``key`` and ``pass_rule`` and declare their
    categories with ``@category``.

    Example:
        class CacheModule(TestModule):
            name = "Cache Testing"
            key = "cache"
            pass_rule = AllCategoriesPass()

            @category("Cache Strategy", PassPolicy.tolerate(1))
            async def test_cache_strategy(self) -> list[Scenario]:
                return [expect_success("cache hit", self._read_cached)]
    """

    __test__ = False

    name: ClassVar[str] = "Unnamed Module"
    key: ClassVar[str] = ""
    pass_rule: ClassVar[PassRule] = NoFailures()
    requirements: ClassVar[tuple[str, ...]] = ()

    def __init__(self, context: ModuleContext) -> None:
        """Initialize the module.

        Args:
            context: Shared configuration slice and resources.
        """
        self._context = context
        self._state = ModuleState.IDLE
        self._summaries: list[CategorySummary] = []
        self._issues: list[str] = []
        self._warnings: list[str] = []
        self._metrics: dict[str, Any] = {}
        self._elapsed_ms = 0.0
        self._report: ModuleReport | None = None

    @classmethod
    def categories(cls) -> list[CategorySpec]:
        """Return the declared categories in definition order."""
        specs: list[CategorySpec] = []
        seen: set[str] = set()
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                marker = getattr(value, "_posqa_category", None)
                if marker is None:
                    continue
                if attr in seen:
                    specs = [s for s in specs if s.attr != attr]
                seen.add(attr)
                specs.append(CategorySpec(name=marker[0], attr=attr, policy=marker[1]))
        return specs

    @property
    def context(self) -> ModuleContext:
        """Return the shared context."""
        return self._context

    @property
    def state(self) -> ModuleState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def summaries(self) -> tuple[CategorySummary, ...]:
        """Return the category summaries accumulated so far."""
        return tuple(self._summaries)

    @property
    def counts(self) -> CategoryCounts:
        """Return the running result counters."""
        total = CategoryCounts()
        for summary in self._summaries:
            total = total + summary.scored_counts
        return total

    def reset(self) -> None:
        """Discard all accumulated results and return to IDLE.

        Raises:
            StateError: If a category is currently running.
        """
        if self._state == ModuleState.RUNNING:
            raise StateError(f"Cannot reset {self.name} while a category is running")
        self._state = ModuleState.IDLE
        self._summaries = []
        self._issues = []
        self._warnings = []
        self._metrics = {}
        self._elapsed_ms = 0.0
        self._report = None

    def warn(self, message: str) -> None:
        """Record a warning in the running category."""
        logger.warning("%s: %s", self.name, message)
        self._warnings.append(message)

    def add_issue(self, message: str) -> None:
        """Record an issue that is not tied to a single failed result."""
        self._issues.append(message)

    def record_metric(self, name: str, value: Any) -> None:
        """Record a module-specific measurement."""
        self._metrics[name] = value

    def _spec(self, name: str) -> CategorySpec:
        for spec in self.categories():
            if spec.name == name or spec.attr == name:
                return spec
        raise ValueError(f"Unknown category for {self.name}: {name}")

    async def run_category(self, name: str) -> CategorySummary:
        """Run one category and fold its summary into the accumulator.

        Args:
            name: Category display name or method name.

        Returns:
            The category summary.

        Raises:
            ValueError: If the category does not exist.
            StateError: If a category is already running or the module is
                finalized.
        """
        spec = self._spec(name)
        if self._state == ModuleState.RUNNING:
            raise StateError(f"{self.name} is already running a category")
        if self._state == ModuleState.FINALIZED:
            raise StateError(f"{self.name} is finalized; call reset() first")

        self._state = ModuleState.RUNNING
        self._warnings = []
        start = time.perf_counter()
        logger.info("Running %s / %s", self.name, spec.name)

        results: list[TestResult] = []
        try:
            method = getattr(self, spec.attr)
            items = await method()
            for item in items:
                if isinstance(item, Scenario):
                    results.append(await item.evaluate())
                else:
                    results.append(item)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Category %s of %s raised: %s", spec.name, self.name, exc)
            results.append(
                TestResult(
                    test_name=spec.name,
                    passed=False,
                    message=f"Category error: {exc}",
                    error=str(exc),
                )
            )
        finally:
            self._elapsed_ms += (time.perf_counter() - start) * 1000.0

        summary = CategorySummary(
            name=spec.name,
            results=tuple(results),
            policy=spec.policy,
            warnings=tuple(self._warnings),
        )
        self._summaries.append(summary)
        for failed in summary.failures:
            detail = failed.message or failed.error or "failed"
            self._issues.append(f"{spec.name}: {failed.test_name} - {detail}")

        self._state = ModuleState.ACCUMULATED
        counts = summary.counts
        if summary.passed:
            logger.info("%s / %s passed (%d/%d)", self.name, spec.name, counts.passed, counts.total)
        else:
            logger.warning("%s / %s failed (%d/%d)", self.name, spec.name, counts.passed, counts.total)
        return summary

    async def run_all(self) -> ModuleReport:
        """Run every category in declaration order and finalize the report."""
        if self._state != ModuleState.IDLE:
            self.reset()
        for spec in self.categories():
            await self.run_category(spec.name)
        return self.report()

    def score(self) -> float:
        """Return the module score as a percentage.

        Defaults to the success rate. Override for module-specific scores.
        """
        return self.counts.success_rate

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        """Return module-specific recommendations for a finalized report."""
        return []

    def report(self) -> ModuleReport:
        """Finalize and return the module report.

        Calling it again without running anything returns the same report.

        Raises:
            StateError: If a category is currently running.
        """
        if self._state == ModuleState.RUNNING:
            raise StateError(f"Cannot finalize {self.name} while a category is running")
        if self._state == ModuleState.FINALIZED and self._report is not None:
            return self._report

        self._report = ModuleReport(
            module=self.name,
            key=self.key,
            categories=tuple(self._summaries),
            generated_at=Timestamp.now(),
            score=round(self.score(), 2),
            issues=tuple(self._issues),
            metrics=dict(self._metrics),
            duration_ms=self._elapsed_ms,
        )
        self._state = ModuleState.FINALIZED
        return self._report

    def available(self) -> str | None:
        """Return a reason the module cannot run in this context, or None."""
        return None
