"""Unit tests for the TestModule base class."""

import asyncio

import pytest

from posqa_core.errors import StateError
from posqa_core.types.report import ModuleState
from posqa_core.types.rules import AllCategoriesPass, NoFailures
from posqa_core.types.summary import PassPolicy

from posqa_testcase.context import ModuleContext
from posqa_testcase.module import TestModule, category
from posqa_testcase.scenario import check, expect_failure, expect_success


class SampleModule(TestModule):
    """Module with three small categories."""

    name = "Sample Testing"
    key = "sample"

    @category("First")
    async def test_first(self):
        return [expect_success("one", lambda: True), expect_success("two", lambda: 2 == 2)]

    @category("Second", PassPolicy.tolerate(1))
    async def test_second(self):
        self.warn("slow path")
        return [check("three", False, message="broken"), expect_failure("four", lambda: False)]

    @category("Third")
    async def test_third(self):
        self.record_metric("items", 3)
        return [check("five", True)]


class ExplodingModule(TestModule):
    """Module whose category raises."""

    name = "Exploding Testing"
    key = "exploding"
    pass_rule = AllCategoriesPass()

    @category("Boom")
    async def test_boom(self):
        raise RuntimeError("kaboom")

    @category("Fine")
    async def test_fine(self):
        return [check("ok", True)]


class ObservingModule(TestModule):
    """Module whose second category only records observations."""

    name = "Observing Testing"
    key = "observing"
    pass_rule = NoFailures()

    @category("Checks")
    async def test_checks(self):
        return [check("ok", True)]

    @category("Orphans", PassPolicy.informational())
    async def test_orphans(self):
        self.warn("1 orphaned record")
        return [check("orphan", False, message="1 orphaned record")]


class ExtendedModule(SampleModule):
    """Subclass adding a category."""

    @category("Fourth")
    async def test_fourth(self):
        return [check("six", True)]


@pytest.fixture
def context() -> ModuleContext:
    return ModuleContext()


class TestCategories:
    """Tests for category declaration."""

    def test_definition_order(self) -> None:
        """Categories are listed in definition order."""
        names = [spec.name for spec in SampleModule.categories()]
        assert names == ["First", "Second", "Third"]

    def test_policies(self) -> None:
        """Declared policies are kept; the default is all_pass."""
        specs = {spec.name: spec for spec in SampleModule.categories()}
        assert specs["First"].policy == PassPolicy.all_pass()
        assert specs["Second"].policy == PassPolicy.tolerate(1)

    def test_inherited(self) -> None:
        """Subclasses inherit base categories before their own."""
        names = [spec.name for spec in ExtendedModule.categories()]
        assert names == ["First", "Second", "Third", "Fourth"]


class TestRunCategory:
    """Tests for running single categories."""

    async def test_accumulates(self, context: ModuleContext) -> None:
        """Each category folds into the running counters."""
        module = SampleModule(context)
        assert module.state == ModuleState.IDLE

        summary = await module.run_category("First")
        assert summary.counts.total == 2
        assert module.state == ModuleState.ACCUMULATED

        await module.run_category("test_second")
        counts = module.counts
        assert counts.total == 4
        assert counts.passed == 3
        assert counts.failed == 1
        assert counts.passed + counts.failed == counts.total

    async def test_policy_applied(self, context: ModuleContext) -> None:
        """A tolerated failure leaves the category passing."""
        module = SampleModule(context)
        summary = await module.run_category("Second")
        assert summary.passed
        assert summary.warnings == ("slow path",)

    async def test_unknown_category(self, context: ModuleContext) -> None:
        """Unknown categories raise ValueError."""
        module = SampleModule(context)
        with pytest.raises(ValueError, match="Unknown category"):
            await module.run_category("Nope")

    async def test_category_exception(self, context: ModuleContext) -> None:
        """A raising category becomes one failed result and the run continues."""
        module = ExplodingModule(context)
        report = await module.run_all()

        boom = report.category("Boom")
        assert boom is not None
        assert boom.counts.total == 1
        assert not boom.passed
        assert "kaboom" in boom.results[0].message
        assert report.category("Fine").passed
        assert "Boom: Boom - Category error: kaboom" in report.issues

    async def test_concurrent_run_rejected(self, context: ModuleContext) -> None:
        """A category cannot start while another is running."""
        gate = asyncio.Event()

        class SlowModule(TestModule):
            name = "Slow"
            key = "slow"

            @category("Wait")
            async def test_wait(self):
                await gate.wait()
                return [check("done", True)]

        module = SlowModule(context)
        task = asyncio.create_task(module.run_category("Wait"))
        await asyncio.sleep(0)
        assert module.state == ModuleState.RUNNING
        with pytest.raises(StateError):
            await module.run_category("Wait")
        with pytest.raises(StateError):
            module.report()
        gate.set()
        await task
        assert module.state == ModuleState.ACCUMULATED


class TestReport:
    """Tests for finalizing reports."""

    async def test_run_all(self, context: ModuleContext) -> None:
        """run_all runs every category and finalizes."""
        module = SampleModule(context)
        report = await module.run_all()

        assert module.state == ModuleState.FINALIZED
        assert report.module == "Sample Testing"
        assert report.key == "sample"
        assert [c.name for c in report.categories] == ["First", "Second", "Third"]
        assert report.counts.total == 5
        assert report.metrics == {"items": 3}
        assert report.score == 80.0
        assert "Second: three - broken" in report.issues
        assert report.warnings == 1

    async def test_report_idempotent(self, context: ModuleContext) -> None:
        """Finalizing twice returns the same report."""
        module = SampleModule(context)
        first = await module.run_all()
        assert module.report() is first

    async def test_finalized_rejects_runs(self, context: ModuleContext) -> None:
        """A finalized module must be reset before running again."""
        module = SampleModule(context)
        await module.run_all()
        with pytest.raises(StateError):
            await module.run_category("First")

    async def test_reset(self, context: ModuleContext) -> None:
        """reset() discards accumulated results."""
        module = SampleModule(context)
        await module.run_all()
        module.reset()
        assert module.state == ModuleState.IDLE
        assert module.counts.total == 0
        assert module.summaries == ()

    async def test_run_all_twice(self, context: ModuleContext) -> None:
        """run_all starts over rather than accumulating twice."""
        module = SampleModule(context)
        await module.run_all()
        report = await module.run_all()
        assert report.counts.total == 5

    async def test_empty_report(self, context: ModuleContext) -> None:
        """A module finalized without running has no results and passes."""
        report = SampleModule(context).report()
        assert report.counts.total == 0
        assert report.passed

    def test_not_collected(self) -> None:
        """TestModule is not collected by pytest."""
        assert TestModule.__test__ is False


class TestInformationalCategories:
    """Informational categories record observations without failing the module."""

    async def test_excluded_from_counts(self, context: ModuleContext) -> None:
        module = ObservingModule(context)
        report = await module.run_all()

        orphans = report.category("Orphans")
        assert orphans.passed
        assert orphans.counts.failed == 1
        assert orphans.failures == ()
        assert report.counts.total == 1
        assert report.counts.failed == 0
        assert report.score == 100.0

    async def test_rule_and_issues(self, context: ModuleContext) -> None:
        """The failed observation is a warning, not an issue or a violation."""
        report = await ObservingModule(context).run_all()
        assert ObservingModule.pass_rule.violations(report) == []
        assert report.issues == ()
        assert report.warnings == 1
