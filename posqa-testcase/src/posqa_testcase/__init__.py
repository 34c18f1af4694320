"""Test module framework for posqa.

This package provides the infrastructure test modules are built on:
scenarios with explicit expected outcomes, the TestModule base class with
its category declarations and state machine, the shared ModuleContext, the
client environment snapshot, and timing/fixture helpers.

Example usage:

    from posqa_testcase import TestModule, category, expect_success

    class SmokeModule(TestModule):
        name = "Smoke Testing"
        key = "smoke"

        @category("Bootstrap")
        async def test_bootstrap(self):
            api = self.context.require_api()
            return [expect_success("bootstrap", lambda: api.call("getBootstrapData"),
                                   check=lambda r: r.is_success)]

    report = await SmokeModule(context).run_all()
"""

from posqa_testcase.context import ModuleContext
from posqa_testcase.environment import (
    BrowserProfile,
    ClientCapabilities,
    ClientEnvironment,
    DeviceProfile,
    LayoutMetrics,
    Viewport,
    classify_width,
)
from posqa_testcase.module import CategorySpec, TestModule, category
from posqa_testcase.scenario import (
    Scenario,
    check,
    expect_exception,
    expect_failure,
    expect_success,
)
from posqa_testcase.utils import FixtureFactory, Stopwatch, TimingStats, approx_equal, percentile, timed

__all__ = [
    # Context
    "ModuleContext",
    # Environment
    "BrowserProfile",
    "ClientCapabilities",
    "ClientEnvironment",
    "DeviceProfile",
    "LayoutMetrics",
    "Viewport",
    "classify_width",
    # Modules
    "CategorySpec",
    "TestModule",
    "category",
    # Scenarios
    "Scenario",
    "check",
    "expect_exception",
    "expect_failure",
    "expect_success",
    # Utilities
    "FixtureFactory",
    "Stopwatch",
    "TimingStats",
    "approx_equal",
    "percentile",
    "timed",
]
