"""Scenarios with explicit expected outcomes.

A scenario is one sub-case of a test category (one browser, one viewport,
one role, one API action, ...). Every scenario states what it expects:

    Expectation.SUCCESS   the action completes and its check holds
    Expectation.FAILURE   the action completes and its check does not hold
    Expectation.EXCEPTION the action raises

``Scenario.evaluate`` applies this one rule to every scenario, so a raised
exception is a pass exactly when the scenario said it expected one.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from posqa_core.types.result import Expectation, TestResult

logger = logging.getLogger(__name__)

Action = Callable[[], Any]
"""Zero-argument callable, sync or async, performing the scenario."""


def _default_check(value: Any) -> bool:
    return bool(value)


@dataclass(frozen=True)
class Scenario:
    """One evaluable sub-case of a test category.

    Attributes:
        name: Scenario name, used as the result's test name.
        action: Zero-argument callable (sync or async) performing the operation.
        requirement: Requirement reference covered by the scenario.
        expect: Expected outcome.
        check: Predicate applied to the action's return value.
        raises: Exception types that count as "the action raised". Anything
            else is an unexpected error and always fails.
        describe: Builds the result message from the return value.
        details: Builds result details from the return value.
    """

    name: str
    action: Action
    requirement: str = ""
    expect: Expectation = Expectation.SUCCESS
    check: Callable[[Any], bool] = _default_check
    raises: tuple[type[BaseException], ...] = field(default=(Exception,))
    describe: Callable[[Any], str] | None = None
    details: Callable[[Any], Mapping[str, Any]] | None = None

    async def evaluate(self) -> TestResult:
        """Run the action and compare the outcome with the expectation.

        Never raises: unexpected errors become failed results carrying the
        exception message.
        """
        start = time.perf_counter()
        try:
            value = self.action()
            if inspect.isawaitable(value):
                value = await value
        except self.raises as exc:
            return self._raised(exc, start)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Scenario %s raised unexpectedly: %s", self.name, exc)
            return self._result(False, start, f"Unexpected error: {exc}", error=str(exc))

        if self.expect == Expectation.EXCEPTION:
            return self._result(False, start, "Expected an exception but the operation completed")

        try:
            holds = bool(self.check(value))
            message = self.describe(value) if self.describe else ""
            details = dict(self.details(value)) if self.details else {}
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Scenario %s check raised: %s", self.name, exc)
            return self._result(False, start, f"Check error: {exc}", error=str(exc))

        passed = holds if self.expect == Expectation.SUCCESS else not holds
        if not message:
            if self.expect == Expectation.SUCCESS:
                message = "Check passed" if holds else "Check failed"
            else:
                message = "Rejected as expected" if not holds else "Unexpectedly accepted"
        return self._result(passed, start, message, details=details)

    def _raised(self, exc: BaseException, start: float) -> TestResult:
        if self.expect == Expectation.EXCEPTION:
            return self._result(True, start, f"Raised as expected: {exc}", error=str(exc))
        logger.debug("Scenario %s raised: %s", self.name, exc)
        return self._result(False, start, str(exc), error=str(exc))

    def _result(
        self,
        passed: bool,
        start: float,
        message: str,
        error: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> TestResult:
        return TestResult(
            test_name=self.name,
            passed=passed,
            requirement=self.requirement,
            message=message,
            duration_ms=(time.perf_counter() - start) * 1000.0,
            error=error,
            expectation=self.expect,
            details=dict(details or {}),
        )


def expect_success(name: str, action: Action, requirement: str = "", **kwargs: Any) -> Scenario:
    """Build a scenario expecting the action to complete and pass its check."""
    return Scenario(name, action, requirement, Expectation.SUCCESS, **kwargs)


def expect_failure(name: str, action: Action, requirement: str = "", **kwargs: Any) -> Scenario:
    """Build a scenario expecting the action to complete but fail its check."""
    return Scenario(name, action, requirement, Expectation.FAILURE, **kwargs)


def expect_exception(name: str, action: Action, requirement: str = "", **kwargs: Any) -> Scenario:
    """Build a scenario expecting the action to raise."""
    return Scenario(name, action, requirement, Expectation.EXCEPTION, **kwargs)


def check(
    name: str,
    passed: bool,
    requirement: str = "",
    message: str = "",
    **details: Any,
) -> TestResult:
    """Build a result for a check computed directly, without an action."""
    return TestResult(
        test_name=name,
        passed=passed,
        requirement=requirement,
        message=message or ("Check passed" if passed else "Check failed"),
        details=details,
    )
