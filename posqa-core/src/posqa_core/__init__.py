"""Core library for the posqa POS test harness.

This package provides the data model shared by every other posqa package.
Like the rest of the core layer it only depends on the standard library.

Key components:
    - Types: TestResult and Expectation, category summaries with named pass
      policies, module pass rules, module reports and the comprehensive
      summary produced by the orchestrator.
    - Backoff: exponential backoff, retry policy and fault injection.
    - Conflict: last-write-wins, merge and manual conflict resolution.
    - Validation: declarative field validation with highlighted fields.
    - Errors: Hierarchy of exception types for the various failure modes.

Example:
    >>> from posqa_core import CategorySummary, PassPolicy, TestResult
    >>> summary = CategorySummary(
    ...     name="Offline Capability",
    ...     results=(TestResult("cache", True), TestResult("queue", False)),
    ...     policy=PassPolicy.tolerate(1),
    ... )
    >>> summary.passed
    True
"""

from posqa_core.backoff import (
    FaultInjector,
    RetryOutcome,
    RetryPolicy,
    backoff_delays,
    is_exponential,
)
from posqa_core.conflict import (
    Conflict,
    ConflictStrategy,
    Resolution,
    Side,
    VersionedRecord,
    detect_conflict,
    merge_records,
    resolve,
    resolve_last_write_wins,
)
from posqa_core.errors import (
    ApiConnectionError,
    ApiError,
    ApiHttpError,
    ApiResponseError,
    ApiTimeoutError,
    ConfigurationError,
    ConflictError,
    DnsResolutionError,
    InjectedFault,
    PosqaError,
    StateError,
    StoreCorruptionError,
    StoreError,
    ValidationFailed,
    user_message,
)
from posqa_core.types import (
    AllCategoriesPass,
    AllOf,
    CategoryCounts,
    CategorySummary,
    ComprehensiveSummary,
    Expectation,
    HistoryEntry,
    ModuleKey,
    ModuleOutcome,
    ModuleReport,
    ModuleState,
    NoFailures,
    OutcomeStatus,
    PassPolicy,
    PassRule,
    PolicyKind,
    Recommendation,
    Regression,
    RequirementCoverage,
    RequirementGap,
    RequirementId,
    ScoreAtLeast,
    SuccessRateAtLeast,
    TestResult,
    Timestamp,
)
from posqa_core.validation import (
    FieldRule,
    IssueType,
    ValidationIssue,
    ValidationResult,
    validate,
)

__all__ = [
    # Errors
    "ApiConnectionError",
    "ApiError",
    "ApiHttpError",
    "ApiResponseError",
    "ApiTimeoutError",
    "ConfigurationError",
    "ConflictError",
    "DnsResolutionError",
    "InjectedFault",
    "PosqaError",
    "StateError",
    "StoreCorruptionError",
    "StoreError",
    "ValidationFailed",
    "user_message",
    # Types
    "AllCategoriesPass",
    "AllOf",
    "CategoryCounts",
    "CategorySummary",
    "ComprehensiveSummary",
    "Expectation",
    "HistoryEntry",
    "ModuleKey",
    "ModuleOutcome",
    "ModuleReport",
    "ModuleState",
    "NoFailures",
    "OutcomeStatus",
    "PassPolicy",
    "PassRule",
    "PolicyKind",
    "Recommendation",
    "Regression",
    "RequirementCoverage",
    "RequirementGap",
    "RequirementId",
    "ScoreAtLeast",
    "SuccessRateAtLeast",
    "TestResult",
    "Timestamp",
    # Backoff
    "FaultInjector",
    "RetryOutcome",
    "RetryPolicy",
    "backoff_delays",
    "is_exponential",
    # Conflict
    "Conflict",
    "ConflictStrategy",
    "Resolution",
    "Side",
    "VersionedRecord",
    "detect_conflict",
    "merge_records",
    "resolve",
    "resolve_last_write_wins",
    # Validation
    "FieldRule",
    "IssueType",
    "ValidationIssue",
    "ValidationResult",
    "validate",
]
