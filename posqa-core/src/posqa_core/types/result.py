"""Atomic test result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Expectation(Enum):
    """Expected outcome of one scenario.

    Attributes:
        SUCCESS: The operation is expected to complete and satisfy its check.
        FAILURE: The operation is expected to complete but fail its check
            (e.g., a validator rejecting bad input).
        EXCEPTION: The operation is expected to raise.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    EXCEPTION = "exception"


@dataclass(frozen=True)
class TestResult:
    """Pass/fail record produced by one scenario.

    Attributes:
        test_name: Human-readable name of the scenario.
        passed: Whether the observed outcome matched the expectation.
        requirement: Requirement reference covered by the scenario.
        message: Short description of the observed outcome.
        duration_ms: Time spent in the operation, in milliseconds.
        error: Message of the exception raised by the operation, if any.
        expectation: The expected outcome the scenario was evaluated against.
        details: Free-form measurements attached to the result.
    """

    __test__ = False

    test_name: str
    passed: bool
    requirement: str = ""
    message: str = ""
    duration_ms: float | None = None
    error: str | None = None
    expectation: Expectation = Expectation.SUCCESS
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "test_name": self.test_name,
            "passed": self.passed,
            "requirement": self.requirement,
            "message": self.message,
            "expectation": self.expectation.value,
        }
        if self.duration_ms is not None:
            data["duration_ms"] = round(self.duration_ms, 3)
        if self.error is not None:
            data["error"] = self.error
        if self.details:
            data["details"] = dict(self.details)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TestResult:
        """Create a result from its dictionary form."""
        return cls(
            test_name=data["test_name"],
            passed=bool(data["passed"]),
            requirement=data.get("requirement", ""),
            message=data.get("message", ""),
            duration_ms=data.get("duration_ms"),
            error=data.get("error"),
            expectation=Expectation(data.get("expectation", Expectation.SUCCESS.value)),
            details=dict(data.get("details", {})),
        )
