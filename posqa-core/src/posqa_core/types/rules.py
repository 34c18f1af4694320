"""Module-level pass rules.

Each test module declares the rule that decides whether its report passes.
Rules are deliberately not unified: accessibility requires a score of at
least 95, performance a score of at least 90, cross-browser a success rate of
at least 90, and most functional modules require zero failures.

Example:
    >>> rule = AllOf(ScoreAtLeast(95.0), AllCategoriesPass())
    >>> rule.evaluate(report)
    True
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from posqa_core.types.report import ModuleReport


class PassRule(ABC):
    """Base class for module pass rules."""

    @abstractmethod
    def violations(self, report: ModuleReport) -> list[str]:
        """Return the reasons the report does not satisfy this rule.

        Args:
            report: The finalized module report.

        Returns:
            An empty list when the rule holds.
        """

    @abstractmethod
    def describe(self) -> str:
        """Return a short human-readable description of the rule."""

    def evaluate(self, report: ModuleReport) -> bool:
        """Return True if the report satisfies this rule."""
        return not self.violations(report)


@dataclass(frozen=True)
class NoFailures(PassRule):
    """Every result of every category must pass."""

    def violations(self, report: ModuleReport) -> list[str]:
        if report.counts.failed == 0:
            return []
        return [f"{report.counts.failed} of {report.counts.total} tests failed"]

    def describe(self) -> str:
        return "no failures"


@dataclass(frozen=True)
class AllCategoriesPass(PassRule):
    """Every category must pass under its own category policy."""

    def violations(self, report: ModuleReport) -> list[str]:
        return [
            f"Category '{c.name}' failed ({c.policy.describe()})"
            for c in report.categories
            if not c.passed
        ]

    def describe(self) -> str:
        return "all categories pass"


@dataclass(frozen=True)
class ScoreAtLeast(PassRule):
    """The module score must reach a threshold percentage."""

    threshold: float

    def violations(self, report: ModuleReport) -> list[str]:
        if report.score >= self.threshold:
            return []
        return [f"score {report.score:.1f}% below threshold {self.threshold:g}%"]

    def describe(self) -> str:
        return f"score >= {self.threshold:g}"


@dataclass(frozen=True)
class SuccessRateAtLeast(PassRule):
    """The percentage of passed results must reach a threshold."""

    threshold: float

    def violations(self, report: ModuleReport) -> list[str]:
        rate = report.success_rate
        if rate >= self.threshold:
            return []
        return [f"success rate {rate:.1f}% below threshold {self.threshold:g}%"]

    def describe(self) -> str:
        return f"success rate >= {self.threshold:g}"


class AllOf(PassRule):
    """Conjunction of several rules."""

    def __init__(self, *rules: PassRule) -> None:
        if not rules:
            raise ValueError("AllOf requires at least one rule")
        self.rules = rules

    def violations(self, report: ModuleReport) -> list[str]:
        found: list[str] = []
        for rule in self.rules:
            found.extend(rule.violations(report))
        return found

    def describe(self) -> str:
        return " and ".join(rule.describe() for rule in self.rules)

    def __repr__(self) -> str:
        return f"AllOf({', '.join(repr(r) for r in self.rules)})"
