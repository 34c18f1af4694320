"""Test orchestration for posqa-runner.

The orchestrator instantiates the enabled test modules against one shared
ModuleContext, runs them concurrently with an all-settled join, and merges
their reports into a ComprehensiveSummary: per-module outcomes under each
module's own pass rule, scores, merged issues, recommendations, requirement
coverage, gaps, and regressions against the previously stored run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, Mapping

from posqa_core.errors import StoreCorruptionError
from posqa_core.types.common import Timestamp
from posqa_core.types.report import (
    ComprehensiveSummary,
    ModuleOutcome,
    OutcomeStatus,
    Recommendation,
    Regression,
    RequirementCoverage,
    RequirementGap,
)
from posqa_core.types.summary import CategoryCounts

from posqa_store.history import ResultHistory

from posqa_testcase.context import ModuleContext
from posqa_testcase.module import TestModule

from posqa_modules import ALL_MODULES

from posqa_runner.config import CiConfig, RunnerConfig

logger = logging.getLogger(__name__)

REGISTRY: dict[str, type[TestModule]] = {module.key: module for module in ALL_MODULES}

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def requirement_sort_key(ref: str) -> tuple[str, tuple[int, ...]]:
    """Order requirement references numerically ("3.2" before "3.10").

    Prefixed references such as "wcag-1.1.1" sort after the plain ones.
    """
    prefix, _, number = ref.rpartition("-")
    parts = tuple(int(p) if p.isdigit() else 0 for p in number.split("."))
    return (prefix, parts)


def detect_regressions(
    previous: Mapping[str, float],
    current: Mapping[str, float],
    threshold: float = 5.0,
) -> list[Regression]:
    """Return the modules whose score dropped by more than ``threshold``.

    Only modules scored in both runs are compared. A module regresses when
    ``current < previous - threshold``; equal drops and improvements never
    count.

    Args:
        previous: Module score by key from the earlier run.
        current: Module score by key from the later run.
        threshold: Allowed drop in percentage points.
    """
    regressions = []
    for key, score in current.items():
        if key not in previous:
            continue
        if score < previous[key] - threshold:
            regressions.append(Regression(module=key, previous=previous[key], current=score))
    return regressions


def aggregate_coverage(
    outcomes: Iterable[ModuleOutcome],
    catalog: Mapping[str, str],
) -> dict[str, RequirementCoverage]:
    """Aggregate results per requirement reference.

    Every reference found in a report is included, as well as every catalog
    reference given (with zero counts when nothing covered it). Results of
    informational categories cover their requirement without failing it.
    """
    counts: dict[str, CategoryCounts] = {ref: CategoryCounts() for ref in catalog}
    modules: dict[str, list[str]] = {ref: [] for ref in catalog}
    for outcome in outcomes:
        if outcome.report is None:
            continue
        for summary in outcome.report.categories:
            for result in summary.results:
                ref = result.requirement
                if not ref:
                    continue
                ok = result.passed or summary.informational
                single = CategoryCounts(total=1, passed=1 if ok else 0, failed=0 if ok else 1)
                counts[ref] = counts.get(ref, CategoryCounts()) + single
                keys = modules.setdefault(ref, [])
                if outcome.key not in keys:
                    keys.append(outcome.key)

    return {
        ref: RequirementCoverage(
            requirement=ref,
            description=catalog.get(ref, ""),
            modules=tuple(modules[ref]),
            counts=counts[ref],
        )
        for ref in sorted(counts, key=requirement_sort_key)
    }


def find_gaps(coverage: Mapping[str, RequirementCoverage], catalog: Mapping[str, str]) -> list[RequirementGap]:
    """Return catalog requirements that are uncovered or whose every result failed."""
    gaps = []
    for ref in sorted(catalog, key=requirement_sort_key):
        entry = coverage.get(ref)
        if entry is None or entry.status == "uncovered":
            gaps.append(RequirementGap(ref, catalog[ref], "high", "No test coverage"))
        elif entry.status == "failed":
            gaps.append(RequirementGap(ref, catalog[ref], "critical", "All tests failed"))
    return gaps


def ci_failures(summary: ComprehensiveSummary, ci: CiConfig) -> list[str]:
    """Return the reasons a run fails the CI gate (empty when it passes).

    The gate fails on a regression larger than ``ci.regression_threshold``
    (when ``fail_on_regression`` is set), on a required module that did
    not run to completion, and on a failed overall verdict. Regressions are
    detected again from the summary's baseline scores, so the gate threshold
    applies even when it is tighter than the one used for reporting.
    """
    reasons = []
    if ci.fail_on_regression:
        regressions = detect_regressions(
            summary.previous_scores, summary.scores, ci.regression_threshold
        )
        for regression in regressions:
            reasons.append(
                f"Regression in {regression.module}: "
                f"{regression.previous:g}% -> {regression.current:g}%"
            )
    for key in ci.required_tests:
        outcome = summary.modules.get(key)
        if outcome is None or outcome.status in (OutcomeStatus.SKIPPED, OutcomeStatus.ERROR):
            reasons.append(f"Required test did not run: {key}")
    if not summary.overall_passed:
        reasons.append("Overall verdict failed")
    return reasons


class TestOrchestrator:
    """Runs test modules and merges their reports.

    Example:
        orchestrator = TestOrchestrator(config, context, history=ResultHistory(store))
        summary = await orchestrator.run()
        print(summary.overall_passed)
    """

    __test__ = False

    def __init__(
        self,
        config: RunnerConfig,
        context: ModuleContext,
        history: ResultHistory | None = None,
        registry: Mapping[str, type[TestModule]] | None = None,
        clock: Callable[[], Timestamp] = Timestamp.now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Run configuration.
            context: Context shared by every module of a run.
            history: Result history for regressions and persistence.
            registry: Module classes by key (defaults to every module).
            clock: Source of run timestamps (for testing).
        """
        self._config = config
        self._context = context
        self._history = history
        self._registry = dict(registry) if registry is not None else dict(REGISTRY)
        self._clock = clock

    @property
    def config(self) -> RunnerConfig:
        """Return the run configuration."""
        return self._config

    @property
    def history(self) -> ResultHistory | None:
        """Return the result history, if any."""
        return self._history

    @property
    def registry(self) -> Mapping[str, type[TestModule]]:
        """Return the module classes by key."""
        return self._registry

    def create_module(self, key: str) -> TestModule:
        """Instantiate the module registered under ``key``.

        Raises:
            ValueError: If no module is registered under ``key``.
        """
        module_class = self._registry.get(key)
        if module_class is None:
            raise ValueError(f"Unknown module: {key} (known: {', '.join(self._registry)})")
        return module_class(self._context)

    async def run_module(self, key: str) -> ModuleOutcome:
        """Run one module and return its outcome.

        An exception raised by the module becomes an ERROR outcome. A module
        that reports itself unavailable becomes a SKIPPED outcome.

        Raises:
            ValueError: If no module is registered under ``key``.
        """
        module = self.create_module(key)

        try:
            reason = module.available()
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Availability check of %s failed", module.name)
            return self._errored(key, module, exc)
        if reason is not None:
            logger.info("Skipping %s: %s", module.name, reason)
            return ModuleOutcome(
                key=key,
                label=module.name,
                status=OutcomeStatus.SKIPPED,
                rule=module.pass_rule.describe(),
                violations=(reason,),
                requirements=module.requirements,
            )

        logger.info("Running %s", module.name)
        try:
            report = await module.run_all()
            violations = module.pass_rule.violations(report)
            recommendations = tuple(module.recommendations(report))
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Module %s raised", module.name)
            return self._errored(key, module, exc)

        status = OutcomeStatus.FAILED if violations else OutcomeStatus.PASSED
        logger.info(
            "%s %s (score %.1f, %d/%d passed)",
            module.name,
            status.value,
            report.score,
            report.counts.passed,
            report.counts.total,
        )
        return ModuleOutcome(
            key=key,
            label=module.name,
            status=status,
            rule=module.pass_rule.describe(),
            score=report.score,
            report=report,
            violations=tuple(violations),
            requirements=module.requirements,
            recommendations=recommendations,
        )

    def _errored(self, key: str, module: TestModule, exc: Exception) -> ModuleOutcome:
        return ModuleOutcome(
            key=key,
            label=module.name,
            status=OutcomeStatus.ERROR,
            rule=module.pass_rule.describe(),
            error=str(exc) or type(exc).__name__,
            requirements=module.requirements,
        )

    async def run(self, keys: Iterable[str] | None = None) -> ComprehensiveSummary:
        """Run modules concurrently and build the comprehensive summary.

        Args:
            keys: Module keys to run (defaults to the enabled modules).

        Returns:
            The merged summary. It is saved to the history when
            ``reporting.save_history`` is set.

        Raises:
            ValueError: If a key is not registered.
        """
        selected = list(keys) if keys is not None else self._config.enabled_modules
        for key in selected:
            if key not in self._registry:
                raise ValueError(f"Unknown module: {key} (known: {', '.join(self._registry)})")

        timestamp = self._clock()
        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self._config.environment.concurrency)

        async def limited(key: str) -> ModuleOutcome:
            async with semaphore:
                return await self.run_module(key)

        logger.info("Running %d modules: %s", len(selected), ", ".join(selected))
        outcomes = await asyncio.gather(*(limited(key) for key in selected))
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        previous = await self._load_previous()
        summary = self.summarize(outcomes, timestamp, elapsed_ms, previous)
        logger.info(
            "Run finished in %.0fms: %s (%d%% of modules passed)",
            elapsed_ms,
            "PASSED" if summary.overall_passed else "FAILED",
            summary.overall_score,
        )
        for regression in summary.regressions:
            logger.warning(
                "Regression in %s: %.1f -> %.1f",
                regression.module,
                regression.previous,
                regression.current,
            )

        if self._history is not None and self._config.reporting.save_history:
            await self._history.save(summary)
        return summary

    async def _load_previous(self) -> ComprehensiveSummary | None:
        if self._history is None:
            return None
        try:
            return await self._history.load()
        except StoreCorruptionError as exc:
            logger.warning("Ignoring previous results: %s", exc)
            return None

    def summarize(
        self,
        outcomes: Iterable[ModuleOutcome],
        timestamp: Timestamp,
        elapsed_ms: float,
        previous: ComprehensiveSummary | None = None,
    ) -> ComprehensiveSummary:
        """Merge module outcomes into a comprehensive summary."""
        outcomes = list(outcomes)
        by_key = {o.key: o for o in outcomes}
        scores = {o.key: o.score for o in outcomes if o.score is not None}
        overall_passed = all(
            o.status in (OutcomeStatus.PASSED, OutcomeStatus.SKIPPED) for o in outcomes
        )

        issues: list[str] = []
        for outcome in outcomes:
            if outcome.status in (OutcomeStatus.PASSED, OutcomeStatus.SKIPPED):
                continue
            if outcome.error:
                issues.append(f"{outcome.label}: {outcome.error}")
            issues.extend(f"{outcome.label}: {v}" for v in outcome.violations)
            if outcome.report is not None:
                issues.extend(f"{outcome.label}: {i}" for i in outcome.report.issues)

        catalog = self._catalog_for(outcomes)
        coverage = aggregate_coverage(outcomes, catalog)
        gaps = find_gaps(coverage, catalog)
        regressions = (
            detect_regressions(previous.scores, scores, self._config.threshold("regression"))
            if previous is not None
            else []
        )

        draft = ComprehensiveSummary(
            timestamp=timestamp,
            total_execution_time_ms=elapsed_ms,
            tests_run=tuple(o.key for o in outcomes),
            overall_passed=overall_passed,
            scores=scores,
            modules=by_key,
        )
        recommendations = self._recommend(draft, outcomes, gaps)

        return ComprehensiveSummary(
            timestamp=timestamp,
            total_execution_time_ms=elapsed_ms,
            tests_run=draft.tests_run,
            overall_passed=overall_passed,
            scores=scores,
            modules=by_key,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
            requirement_coverage=coverage,
            gaps=tuple(gaps),
            regressions=tuple(regressions),
            previous_scores=dict(previous.scores) if previous is not None else {},
        )

    def _catalog_for(self, outcomes: list[ModuleOutcome]) -> dict[str, str]:
        """Return the catalog entries in scope of this run.

        Entries declared only by modules that were not selected are left
        out, so a single-module run does not report the others as gaps.
        """
        selected = {o.key for o in outcomes}
        scoped = {}
        for ref, description in self._config.requirements.items():
            declarers = {key for key, cls in self._registry.items() if ref in cls.requirements}
            if not declarers or declarers & selected:
                scoped[ref] = description
        return scoped

    def _recommend(
        self,
        summary: ComprehensiveSummary,
        outcomes: list[ModuleOutcome],
        gaps: list[RequirementGap],
    ) -> list[Recommendation]:
        recommendations: list[Recommendation] = []
        for outcome in outcomes:
            recommendations.extend(outcome.recommendations)

        scores = summary.scores
        if "accessibility" in scores and scores["accessibility"] < self._config.threshold("accessibility"):
            recommendations.append(
                Recommendation(
                    category="Accessibility",
                    priority="high",
                    issue=f"Accessibility score below threshold: {scores['accessibility']:g}%",
                    solution="Review accessibility violations and implement fixes",
                )
            )
        if "performance" in scores and scores["performance"] < self._config.threshold("performance"):
            recommendations.append(
                Recommendation(
                    category="Performance",
                    priority="high",
                    issue=f"Performance score below threshold: {scores['performance']:g}%",
                    solution="Optimize slow API calls, caching and search",
                )
            )
        cross_browser = summary.modules.get("cross_browser")
        if cross_browser is not None and cross_browser.report is not None:
            rate = round(cross_browser.report.success_rate, 2)
            if rate < self._config.threshold("cross_browser"):
                recommendations.append(
                    Recommendation(
                        category="Cross-Browser",
                        priority="medium",
                        issue=f"Cross-browser success rate below threshold: {rate:g}%",
                        solution="Implement browser-specific fixes and polyfills",
                    )
                )

        ran = [o for o in outcomes if o.status != OutcomeStatus.SKIPPED]
        if ran and summary.overall_score < self._config.threshold("success_rate"):
            recommendations.append(
                Recommendation(
                    category="Overall Quality",
                    priority="high",
                    issue=f"Overall success rate below threshold: {summary.overall_score}%",
                    solution="Address the failing modules before release",
                )
            )

        failed = [o for o in outcomes if o.status in (OutcomeStatus.FAILED, OutcomeStatus.ERROR)]
        if failed:
            recommendations.append(
                Recommendation(
                    category="Test Failures",
                    priority="high",
                    issue=f"{len(failed)} module(s) failed",
                    solution="Review and fix: " + ", ".join(o.label for o in failed),
                    requirements=tuple(
                        sorted({r for o in failed for r in o.requirements}, key=requirement_sort_key)
                    ),
                )
            )

        critical = [g for g in gaps if g.severity == "critical"]
        if critical:
            recommendations.append(
                Recommendation(
                    category="Requirements",
                    priority="critical",
                    issue=f"{len(critical)} requirement(s) have no passing tests",
                    solution="Fix the functionality behind these requirements",
                    requirements=tuple(g.requirement for g in critical),
                )
            )

        return sorted(recommendations, key=lambda r: PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER)))
