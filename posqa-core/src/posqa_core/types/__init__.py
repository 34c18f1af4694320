"""Core data types for posqa.

Submodules:
    common: Base types (Timestamp, ModuleKey, RequirementId)
    result: Atomic results (Expectation, TestResult)
    summary: Category aggregation (PassPolicy, CategoryCounts, CategorySummary)
    rules: Module pass rules (NoFailures, ScoreAtLeast, AllOf, ...)
    report: Module reports and the comprehensive summary

All types are exported from this package for convenience.
"""

from posqa_core.types.common import ModuleKey, RequirementId, Timestamp
from posqa_core.types.report import (
    ComprehensiveSummary,
    HistoryEntry,
    ModuleOutcome,
    ModuleReport,
    ModuleState,
    OutcomeStatus,
    Recommendation,
    Regression,
    RequirementCoverage,
    RequirementGap,
)
from posqa_core.types.result import Expectation, TestResult
from posqa_core.types.rules import (
    AllCategoriesPass,
    AllOf,
    NoFailures,
    PassRule,
    ScoreAtLeast,
    SuccessRateAtLeast,
)
from posqa_core.types.summary import CategoryCounts, CategorySummary, PassPolicy, PolicyKind

__all__ = [
    # Common
    "ModuleKey",
    "RequirementId",
    "Timestamp",
    # Results
    "Expectation",
    "TestResult",
    # Summaries
    "CategoryCounts",
    "CategorySummary",
    "PassPolicy",
    "PolicyKind",
    # Rules
    "AllCategoriesPass",
    "AllOf",
    "NoFailures",
    "PassRule",
    "ScoreAtLeast",
    "SuccessRateAtLeast",
    # Reports
    "ComprehensiveSummary",
    "HistoryEntry",
    "ModuleOutcome",
    "ModuleReport",
    "ModuleState",
    "OutcomeStatus",
    "Recommendation",
    "Regression",
    "RequirementCoverage",
    "RequirementGap",
]
