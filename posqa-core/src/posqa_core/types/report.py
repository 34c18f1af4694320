"""Module report and comprehensive summary types.

Classes:
    ModuleState: Lifecycle state of a test module.
    ModuleReport: Finalized results of one test module.
    Recommendation: Suggested action generated from a threshold breach.
    Regression: Score decrease of one module between two runs.
    OutcomeStatus: Orchestrator-level status of one module.
    ModuleOutcome: Orchestrator view of one module's run.
    RequirementCoverage: Per-requirement aggregation of results.
    RequirementGap: Requirement without coverage or with only failures.
    ComprehensiveSummary: Merge of all module outcomes into one verdict.
    HistoryEntry: A persisted summary together with its store key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from posqa_core.types.common import Timestamp
from posqa_core.types.summary import CategoryCounts, CategorySummary


class ModuleState(Enum):
    """Lifecycle state of a test module.

    Transitions:
        IDLE -> RUNNING (a category starts)
        RUNNING -> ACCUMULATED (the category finishes)
        ACCUMULATED -> RUNNING (another category starts)
        IDLE/ACCUMULATED -> FINALIZED (report requested)
        any -> IDLE (reset)
    """

    IDLE = "idle"
    RUNNING = "running"
    ACCUMULATED = "accumulated"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class ModuleReport:
    """Finalized results of one test module.

    Attributes:
        module: Display name of the module (e.g., "PWA Testing").
        key: Registry key of the module (e.g., "pwa").
        categories: Category summaries in the order they ran.
        generated_at: Time the report was finalized.
        score: Module-specific score as a percentage.
        issues: Human-readable issues collected while running.
        metrics: Module-specific measurements (timings, impact counts, ...).
        duration_ms: Wall time spent running the categories.
    """

    module: str
    key: str
    categories: tuple[CategorySummary, ...]
    generated_at: Timestamp
    score: float = 100.0
    issues: tuple[str, ...] = ()
    metrics: Mapping[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def counts(self) -> CategoryCounts:
        """Return result counters summed over all categories."""
        total = CategoryCounts()
        for category in self.categories:
            total = total + category.scored_counts
        return total

    @property
    def warnings(self) -> int:
        """Return the number of warnings recorded in all categories."""
        return sum(len(c.warnings) for c in self.categories)

    @property
    def passed(self) -> bool:
        """Return True if no result failed."""
        return self.counts.failed == 0

    @property
    def categories_passed(self) -> bool:
        """Return True if every category passes under its own policy."""
        return all(c.passed for c in self.categories)

    @property
    def success_rate(self) -> float:
        """Return the percentage of passed results."""
        return self.counts.success_rate

    def category(self, name: str) -> CategorySummary | None:
        """Find a category by name."""
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        counts = self.counts
        return {
            "module": self.module,
            "key": self.key,
            "generated_at": self.generated_at.to_iso(),
            "summary": {
                "total_tests": counts.total,
                "passed": counts.passed,
                "failed": counts.failed,
                "warnings": self.warnings,
            },
            "passed": self.passed,
            "categories_passed": self.categories_passed,
            "success_rate": round(self.success_rate, 2),
            "score": round(self.score, 2),
            "issues": list(self.issues),
            "metrics": dict(self.metrics),
            "duration_ms": round(self.duration_ms, 3),
            "categories": [c.to_dict() for c in self.categories],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ModuleReport:
        """Create a report from its dictionary form."""
        return cls(
            module=data["module"],
            key=data.get("key", ""),
            categories=tuple(CategorySummary.from_dict(c) for c in data.get("categories", [])),
            generated_at=Timestamp.from_iso(data["generated_at"]),
            score=float(data.get("score", 100.0)),
            issues=tuple(data.get("issues", [])),
            metrics=dict(data.get("metrics", {})),
            duration_ms=float(data.get("duration_ms", 0.0)),
        )


@dataclass(frozen=True)
class Recommendation:
    """Suggested action generated from a threshold breach.

    Attributes:
        category: Area the recommendation applies to (e.g., "Accessibility").
        priority: One of "critical", "high", "medium" or "low".
        issue: What was observed.
        solution: What to do about it.
        requirements: Requirement references affected.
    """

    category: str
    priority: str
    issue: str
    solution: str
    requirements: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "category": self.category,
            "priority": self.priority,
            "issue": self.issue,
            "solution": self.solution,
            "requirements": list(self.requirements),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Recommendation:
        """Create a recommendation from its dictionary form."""
        return cls(
            category=data["category"],
            priority=data["priority"],
            issue=data["issue"],
            solution=data.get("solution", ""),
            requirements=tuple(data.get("requirements", [])),
        )


@dataclass(frozen=True)
class Regression:
    """Score decrease of one module between two runs.

    Attributes:
        module: Registry key of the module.
        previous: Score of the earlier run.
        current: Score of the later run.
    """

    module: str
    previous: float
    current: float

    @property
    def change(self) -> float:
        """Return the score delta (negative for a regression)."""
        return self.current - self.previous

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "module": self.module,
            "previous": self.previous,
            "current": self.current,
            "change": round(self.change, 2),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Regression:
        """Create a regression from its dictionary form."""
        return cls(
            module=data["module"],
            previous=float(data["previous"]),
            current=float(data["current"]),
        )


class OutcomeStatus(Enum):
    """Orchestrator-level status of one module."""

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ModuleOutcome:
    """Orchestrator view of one module's run.

    Attributes:
        key: Registry key of the module.
        label: Display name of the module.
        status: Passed, failed, error or skipped.
        rule: Description of the pass rule applied.
        score: Module score, or None when the module did not produce a report.
        report: The module report, or None on error/skip.
        error: Message of the exception that aborted the module, if any.
        violations: Reasons the pass rule did not hold.
        requirements: Requirement references declared by the module.
        recommendations: Recommendations the module derived from its own report.
    """

    key: str
    label: str
    status: OutcomeStatus
    rule: str = ""
    score: float | None = None
    report: ModuleReport | None = None
    error: str | None = None
    violations: tuple[str, ...] = ()
    requirements: tuple[str, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()

    @property
    def passed(self) -> bool:
        """Return True if the module ran and satisfied its pass rule."""
        return self.status == OutcomeStatus.PASSED

    @property
    def issue_count(self) -> int:
        """Return the number of issues attributable to this module."""
        if self.report is None:
            return 1 if self.error else 0
        return len(self.report.issues) + len(self.violations)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "status": self.status.value,
            "rule": self.rule,
            "score": self.score,
            "violations": list(self.violations),
            "requirements": list(self.requirements),
        }
        if self.report is not None:
            data["report"] = self.report.to_dict()
        if self.error is not None:
            data["error"] = self.error
        if self.recommendations:
            data["recommendations"] = [r.to_dict() for r in self.recommendations]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ModuleOutcome:
        """Create an outcome from its dictionary form."""
        report = data.get("report")
        score = data.get("score")
        return cls(
            key=data["key"],
            label=data.get("label", data["key"]),
            status=OutcomeStatus(data["status"]),
            rule=data.get("rule", ""),
            score=float(score) if score is not None else None,
            report=ModuleReport.from_dict(report) if report else None,
            error=data.get("error"),
            violations=tuple(data.get("violations", [])),
            requirements=tuple(data.get("requirements", [])),
            recommendations=tuple(
                Recommendation.from_dict(r) for r in data.get("recommendations", [])
            ),
        )


@dataclass(frozen=True)
class RequirementCoverage:
    """Results aggregated for one requirement reference.

    Attributes:
        requirement: Requirement reference (e.g., "3.1").
        description: Requirement text from the catalog, if known.
        modules: Keys of the modules that produced results for it.
        counts: Result counters over all those results.
    """

    requirement: str
    description: str = ""
    modules: tuple[str, ...] = ()
    counts: CategoryCounts = field(default_factory=CategoryCounts)

    @property
    def status(self) -> str:
        """Return "uncovered", "failed", "partial" or "passed"."""
        if self.counts.total == 0:
            return "uncovered"
        if self.counts.passed == 0:
            return "failed"
        if self.counts.failed > 0:
            return "partial"
        return "passed"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "requirement": self.requirement,
            "description": self.description,
            "modules": list(self.modules),
            "summary": self.counts.to_dict(),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RequirementCoverage:
        """Create a coverage entry from its dictionary form."""
        counts = data.get("summary", {})
        return cls(
            requirement=data["requirement"],
            description=data.get("description", ""),
            modules=tuple(data.get("modules", [])),
            counts=CategoryCounts(**counts),
        )


@dataclass(frozen=True)
class RequirementGap:
    """Requirement without coverage or whose every result failed.

    Attributes:
        requirement: Requirement reference.
        description: Requirement text from the catalog.
        severity: "high" when uncovered, "critical" when every result failed.
        reason: Human-readable explanation.
    """

    requirement: str
    description: str
    severity: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "requirement": self.requirement,
            "description": self.description,
            "severity": self.severity,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RequirementGap:
        """Create a gap from its dictionary form."""
        return cls(
            requirement=data["requirement"],
            description=data.get("description", ""),
            severity=data["severity"],
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class ComprehensiveSummary:
    """Merge of all module outcomes into one overall verdict.

    ``overall_passed`` is True iff every module that ran satisfied its own
    pass rule and no enabled module errored.

    Attributes:
        timestamp: Time the run started.
        total_execution_time_ms: Wall time of the whole run.
        tests_run: Keys of the modules that were executed, in run order.
        overall_passed: The overall verdict.
        scores: Module score by module key.
        modules: Module outcome by module key.
        issues: Issues merged from all modules.
        recommendations: Recommendations generated from threshold breaches.
        requirement_coverage: Coverage by requirement reference.
        gaps: Requirement gaps.
        regressions: Regressions against the previous stored run.
        previous_scores: Module scores of the previous stored run, if any.
    """

    timestamp: Timestamp
    total_execution_time_ms: float
    tests_run: tuple[str, ...]
    overall_passed: bool
    scores: Mapping[str, float] = field(default_factory=dict)
    modules: Mapping[str, ModuleOutcome] = field(default_factory=dict)
    issues: tuple[str, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()
    requirement_coverage: Mapping[str, RequirementCoverage] = field(default_factory=dict)
    gaps: tuple[RequirementGap, ...] = ()
    regressions: tuple[Regression, ...] = ()
    previous_scores: Mapping[str, float] = field(default_factory=dict)

    @property
    def totals(self) -> CategoryCounts:
        """Return result counters summed over all module reports."""
        total = CategoryCounts()
        for outcome in self.modules.values():
            if outcome.report is not None:
                total = total + outcome.report.counts
        return total

    @property
    def overall_score(self) -> int:
        """Return the rounded percentage of modules that passed."""
        ran = [o for o in self.modules.values() if o.status != OutcomeStatus.SKIPPED]
        if not ran:
            return 0
        return round(sum(1 for o in ran if o.passed) / len(ran) * 100)

    def status_counts(self) -> dict[str, int]:
        """Return the number of modules per outcome status."""
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.modules.values():
            counts[outcome.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.to_iso(),
            "total_execution_time_ms": round(self.total_execution_time_ms, 3),
            "tests_run": list(self.tests_run),
            "overall_passed": self.overall_passed,
            "overall_score": self.overall_score,
            "scores": dict(self.scores),
            "totals": self.totals.to_dict(),
            "module_status": self.status_counts(),
            "issues": list(self.issues),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "modules": {k: o.to_dict() for k, o in self.modules.items()},
            "requirement_coverage": {
                k: c.to_dict() for k, c in self.requirement_coverage.items()
            },
            "gaps": [g.to_dict() for g in self.gaps],
            "regressions": [r.to_dict() for r in self.regressions],
            "previous_scores": dict(self.previous_scores),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComprehensiveSummary:
        """Create a summary from its dictionary form."""
        return cls(
            timestamp=Timestamp.from_iso(data["timestamp"]),
            total_execution_time_ms=float(data.get("total_execution_time_ms", 0.0)),
            tests_run=tuple(data.get("tests_run", [])),
            overall_passed=bool(data["overall_passed"]),
            scores={k: float(v) for k, v in data.get("scores", {}).items()},
            modules={
                k: ModuleOutcome.from_dict(v) for k, v in data.get("modules", {}).items()
            },
            issues=tuple(data.get("issues", [])),
            recommendations=tuple(
                Recommendation.from_dict(r) for r in data.get("recommendations", [])
            ),
            requirement_coverage={
                k: RequirementCoverage.from_dict(v)
                for k, v in data.get("requirement_coverage", {}).items()
            },
            gaps=tuple(RequirementGap.from_dict(g) for g in data.get("gaps", [])),
            regressions=tuple(Regression.from_dict(r) for r in data.get("regressions", [])),
            previous_scores={
                k: float(v) for k, v in data.get("previous_scores", {}).items()
            },
        )


@dataclass(frozen=True)
class HistoryEntry:
    """A persisted summary together with its store key.

    Attributes:
        key: Store key (e.g., "automated-test-results-1712345678901").
        timestamp: Time the summary was saved.
        summary: The stored summary.
    """

    key: str
    timestamp: Timestamp
    summary: ComprehensiveSummary

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "key": self.key,
            "timestamp": self.timestamp.to_iso(),
            "summary": self.summary.to_dict(),
        }
