"""Category summary and category-level pass policy types.

A category groups the results of one test method's sub-scenarios (one per
browser, per viewport, per role, ...). Whether a category passes is decided
by an explicit, named PassPolicy rather than by each test method.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from posqa_core.types.result import TestResult


class PolicyKind(Enum):
    """Kinds of category pass policies."""

    ALL_PASS = "all_pass"
    TOLERATE = "tolerate"
    MIN_RATE = "min_rate"
    INFORMATIONAL = "informational"


@dataclass(frozen=True)
class CategoryCounts:
    """Result counters for one category.

    Attributes:
        total: Number of results.
        passed: Number of passed results.
        failed: Number of failed results.
    """

    total: int = 0
    passed: int = 0
    failed: int = 0

    @classmethod
    def of(cls, results: tuple[TestResult, ...]) -> CategoryCounts:
        """Count a sequence of results."""
        passed = sum(1 for r in results if r.passed)
        return cls(total=len(results), passed=passed, failed=len(results) - passed)

    @property
    def success_rate(self) -> float:
        """Return the pass percentage (100.0 for an empty category)."""
        if self.total == 0:
            return 100.0
        return self.passed / self.total * 100.0

    def __add__(self, other: CategoryCounts) -> CategoryCounts:
        return CategoryCounts(
            total=self.total + other.total,
            passed=self.passed + other.passed,
            failed=self.failed + other.failed,
        )

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary for serialization."""
        return {"total": self.total, "passed": self.passed, "failed": self.failed}


@dataclass(frozen=True)
class PassPolicy:
    """Named pass criterion for a category.

    Use the named constructors rather than building instances directly:

        PassPolicy.all_pass()      # every result must pass
        PassPolicy.tolerate(1)     # at most one failure
        PassPolicy.min_rate(90.0)  # success rate of at least 90%
        PassPolicy.informational() # never fails the category

    An empty category passes under every policy.

    Attributes:
        kind: Which rule applies.
        limit: Allowed failures for TOLERATE, minimum percentage for MIN_RATE.
    """

    kind: PolicyKind = PolicyKind.ALL_PASS
    limit: float = 0.0

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError(f"Policy limit must be non-negative: {self.limit}")
        if self.kind == PolicyKind.MIN_RATE and self.limit > 100:
            raise ValueError(f"Minimum rate must be a percentage: {self.limit}")

    @classmethod
    def all_pass(cls) -> PassPolicy:
        """Require every result to pass."""
        return cls(PolicyKind.ALL_PASS)

    @classmethod
    def tolerate(cls, failures: int) -> PassPolicy:
        """Allow up to ``failures`` failed results."""
        return cls(PolicyKind.TOLERATE, float(failures))

    @classmethod
    def min_rate(cls, percent: float) -> PassPolicy:
        """Require a success rate of at least ``percent``."""
        return cls(PolicyKind.MIN_RATE, float(percent))

    @classmethod
    def informational(cls) -> PassPolicy:
        """Record results without ever failing the category."""
        return cls(PolicyKind.INFORMATIONAL)

    def evaluate(self, counts: CategoryCounts) -> bool:
        """Apply the policy to a set of counts."""
        if counts.total == 0 or self.kind == PolicyKind.INFORMATIONAL:
            return True
        if self.kind == PolicyKind.ALL_PASS:
            return counts.failed == 0
        if self.kind == PolicyKind.TOLERATE:
            return counts.failed <= self.limit
        return counts.success_rate >= self.limit

    def describe(self) -> str:
        """Return a short human-readable description."""
        if self.kind == PolicyKind.ALL_PASS:
            return "all must pass"
        if self.kind == PolicyKind.TOLERATE:
            return f"tolerate {int(self.limit)} failure(s)"
        if self.kind == PolicyKind.MIN_RATE:
            return f"success rate >= {self.limit:g}%"
        return "informational"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"kind": self.kind.value, "limit": self.limit}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PassPolicy:
        """Create a policy from its dictionary form."""
        return cls(PolicyKind(data.get("kind", "all_pass")), float(data.get("limit", 0.0)))


@dataclass(frozen=True)
class CategorySummary:
    """Aggregated results of one test category.

    The counts are derived from the results, so ``counts.total`` always
    equals ``len(results)`` and ``counts.passed + counts.failed`` always
    equals ``counts.total``.

    Attributes:
        name: Category name (e.g., "Purchase Flow").
        results: Results in the order the scenarios ran.
        policy: Pass policy applied to this category.
        warnings: Non-fatal observations recorded while running.
    """

    name: str
    results: tuple[TestResult, ...] = ()
    policy: PassPolicy = field(default_factory=PassPolicy.all_pass)
    warnings: tuple[str, ...] = ()

    @property
    def counts(self) -> CategoryCounts:
        """Return the derived result counters."""
        return CategoryCounts.of(self.results)

    @property
    def passed(self) -> bool:
        """Return True if the category passes under its policy."""
        return self.policy.evaluate(self.counts)

    @property
    def informational(self) -> bool:
        """Return True if the category only records observations."""
        return self.policy.kind == PolicyKind.INFORMATIONAL

    @property
    def scored_counts(self) -> CategoryCounts:
        """Return the counters that count towards the module totals.

        Informational categories contribute nothing.
        """
        if self.informational:
            return CategoryCounts()
        return self.counts

    @property
    def failures(self) -> tuple[TestResult, ...]:
        """Return the failed results that count as failures.

        Failed results of an informational category are observations, so
        the tuple is empty for those.
        """
        if self.informational:
            return ()
        return tuple(r for r in self.results if not r.passed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "passed": self.passed,
            "policy": self.policy.to_dict(),
            "summary": self.counts.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CategorySummary:
        """Create a category summary from its dictionary form."""
        return cls(
            name=data["name"],
            results=tuple(TestResult.from_dict(r) for r in data.get("results", [])),
            policy=PassPolicy.from_dict(data.get("policy", {})),
            warnings=tuple(data.get("warnings", [])),
        )
