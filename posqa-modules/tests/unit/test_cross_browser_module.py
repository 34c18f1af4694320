"""Unit tests for the cross-browser test module."""

import dataclasses

from posqa_testcase.context import ModuleContext
from posqa_testcase.environment import (
    DEFAULT_BROWSERS,
    BrowserProfile,
    ClientCapabilities,
    ClientEnvironment,
    DeviceProfile,
    LayoutMetrics,
    Viewport,
)

from posqa_modules.cross_browser import CrossBrowserModule, browser_requirement, device_requirement


class TestRequirementMapping:
    """Tests for the requirement helpers."""

    def test_browser_requirement(self) -> None:
        """The first four browsers map to 6.1-6.4; any further ones to 6.4."""
        assert [browser_requirement(i) for i in range(6)] == ["6.1", "6.2", "6.3", "6.4", "6.4", "6.4"]

    def test_device_requirement(self) -> None:
        phone = DeviceProfile("Phone", "mobile", "", Viewport("Phone", 360, 780))
        tablet = DeviceProfile("Tablet", "tablet", "", Viewport("Tablet", 800, 1280))
        assert device_requirement(phone) == "6.5"
        assert device_requirement(tablet) == "6.6"


class TestCrossBrowserModule:
    """Tests for CrossBrowserModule."""

    async def test_default_environment_passes(self) -> None:
        report = await CrossBrowserModule(ModuleContext()).run_all()
        assert report.passed, report.issues
        assert [c.name for c in report.categories] == [
            "Browser Compatibility",
            "Device Emulation",
            "Viewport Sizes",
            "PWA Installation",
            "Touch Interactions",
            "Responsive Layout",
        ]

    async def test_runs_without_api(self, context) -> None:
        """Compatibility checks never call the backend."""
        context.api = None
        report = await CrossBrowserModule(context).run_all()
        assert report.passed

    async def test_incompatible_browser(self, context) -> None:
        legacy = BrowserProfile("Legacy", features=frozenset({"indexeddb"}), css=frozenset({"flexbox"}))
        context.environment = ClientEnvironment(browsers=(*DEFAULT_BROWSERS, legacy))
        module = CrossBrowserModule(context)
        summary = await module.run_category("Browser Compatibility")
        failure = summary.failures[0]
        assert failure.test_name == "Legacy"
        assert failure.requirement == "6.4"
        assert failure.message == "Legacy has compatibility issues: missing features: serviceworker; missing CSS: grid"
        # one failure in five is below the 90% minimum
        assert not summary.passed
        assert module.recommendations(module.report())[0].priority == "high"

    async def test_overflowing_layout(self, context) -> None:
        """Content wider than the viewport plus tolerance is reported."""
        context.environment = ClientEnvironment(
            viewports=(Viewport("Mobile Small", 320, 568), Viewport("Desktop", 1366, 768)),
            layouts={"Mobile Small": LayoutMetrics(scroll_width=331, min_font_px=12.0)},
        )
        summary = await CrossBrowserModule(context).run_category("Viewport Sizes")
        failed = [r.test_name for r in summary.failures]
        assert failed == ["Mobile Small horizontal overflow", "Mobile Small font size"]

    async def test_overflow_tolerance(self, context) -> None:
        context.environment = ClientEnvironment(
            viewports=(Viewport("Mobile Small", 320, 568),),
            layouts={"Mobile Small": LayoutMetrics(scroll_width=330)},
        )
        summary = await CrossBrowserModule(context).run_category("Viewport Sizes")
        assert summary.passed

    async def test_device_with_desktop_width(self, context) -> None:
        """A phone whose viewport gets the tablet layout is misclassified."""
        phablet = DeviceProfile("Phablet", "mobile", "", Viewport("Phablet", 800, 1280), touch=False)
        context.environment = ClientEnvironment(devices=(phablet,))
        summary = await CrossBrowserModule(context).run_category("Device Emulation")
        failed = [r.test_name for r in summary.failures]
        assert failed == ["Phablet viewport", "Phablet touch support"]

    async def test_not_installable_without_manifest(self, context) -> None:
        caps = dataclasses.replace(ClientCapabilities(), cached_urls=("/", "/index.html"), service_worker=False)
        context.environment = ClientEnvironment(capabilities=caps)
        summary = await CrossBrowserModule(context).run_category("PWA Installation")
        assert summary.counts.passed == 0

    async def test_missing_breakpoints(self, context) -> None:
        caps = dataclasses.replace(ClientCapabilities(), media_queries=frozenset({"(min-width: 1024px)"}))
        context.environment = ClientEnvironment(
            capabilities=caps, viewports=(Viewport("Desktop", 1920, 1080),)
        )
        summary = await CrossBrowserModule(context).run_category("Responsive Layout")
        assert summary.counts.failed == 3
        assert summary.results[-1].message == "Viewports cover desktop layouts"
