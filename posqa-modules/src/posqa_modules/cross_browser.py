"""Cross-browser and device compatibility testing.

Works entirely from the client environment snapshot: the browser and
device profiles to support, the viewports to lay out, the observed layout
metrics and the client's capabilities. Every category tolerates up to 10%
failed checks.
"""

from __future__ import annotations

import logging

from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.types.rules import SuccessRateAtLeast
from posqa_core.types.summary import PassPolicy

from posqa_testcase import TestModule, category, check
from posqa_testcase.environment import BREAKPOINT_QUERIES, ClientEnvironment, DeviceProfile, Viewport

logger = logging.getLogger(__name__)

REQUIRED_FEATURES = ("serviceworker", "indexeddb")
REQUIRED_CSS = ("flexbox", "grid")

# Layout may exceed the viewport by this many pixels before it overflows.
OVERFLOW_TOLERANCE_PX = 10
MIN_MOBILE_FONT_PX = 14.0
MANIFEST_URL = "/manifest.json"

POLICY = PassPolicy.min_rate(90.0)


def browser_requirement(index: int) -> str:
    """Return the requirement of the n-th supported browser (6.1 to 6.4)."""
    return f"6.{min(index, 3) + 1}"


def device_requirement(device: DeviceProfile) -> str:
    return "6.5" if device.kind == "mobile" else "6.6"


class CrossBrowserModule(TestModule):
    """Browser, device, viewport and installability checks."""

    name = "Cross-Browser Testing"
    key = "cross_browser"
    pass_rule = SuccessRateAtLeast(90.0)
    requirements = ("6.1", "6.2", "6.3", "6.4", "6.5", "6.6", "6.7", "6.8", "6.9", "6.10")

    @property
    def _env(self) -> ClientEnvironment:
        return self.context.environment

    @category("Browser Compatibility", POLICY)
    async def test_browser_compatibility(self) -> list[TestResult]:
        results = []
        for index, browser in enumerate(self._env.browsers):
            missing = [f for f in REQUIRED_FEATURES if f not in browser.features]
            missing_css = [c for c in REQUIRED_CSS if c not in browser.css]
            issues = []
            if missing:
                issues.append(f"missing features: {', '.join(missing)}")
            if missing_css:
                issues.append(f"missing CSS: {', '.join(missing_css)}")
            results.append(
                check(
                    browser.name,
                    not issues,
                    browser_requirement(index),
                    f"{browser.name} fully compatible with all features"
                    if not issues
                    else f"{browser.name} has compatibility issues: {'; '.join(issues)}",
                    features=sorted(browser.features),
                    css=sorted(browser.css),
                )
            )
        return results

    @category("Device Emulation", POLICY)
    async def test_device_emulation(self) -> list[TestResult]:
        results = []
        for device in self._env.devices:
            requirement = device_requirement(device)
            viewport = device.viewport
            layout = self._env.layout_for(viewport)
            fits = layout.scroll_width <= viewport.width + OVERFLOW_TOLERANCE_PX
            if device.kind == "mobile":
                matches = viewport.layout == "mobile"
            else:
                matches = viewport.layout in ("tablet", "desktop")
            results.append(
                check(
                    f"{device.name} viewport",
                    viewport.width > 0 and viewport.height > 0 and matches,
                    requirement,
                    f"{viewport.width}x{viewport.height} at {device.pixel_ratio:g}x uses the {viewport.layout} layout",
                )
            )
            results.append(
                check(
                    f"{device.name} layout fit",
                    fits,
                    requirement,
                    f"Content width {layout.scroll_width}px in a {viewport.width}px viewport",
                )
            )
            results.append(
                check(
                    f"{device.name} touch support",
                    device.touch and self._env.capabilities.touch_events,
                    "6.9",
                    "Touch input available" if device.touch else f"{device.name} is not a touch device",
                )
            )
        return results

    def _viewport_checks(self, viewport: Viewport) -> list[TestResult]:
        layout = self._env.layout_for(viewport)
        results = [
            check(
                f"{viewport.name} horizontal overflow",
                layout.scroll_width <= viewport.width + OVERFLOW_TOLERANCE_PX,
                "6.7",
                f"Content width {layout.scroll_width}px in a {viewport.width}px viewport",
            )
        ]
        if viewport.layout == "mobile":
            results.append(
                check(
                    f"{viewport.name} font size",
                    layout.min_font_px >= MIN_MOBILE_FONT_PX,
                    "6.7",
                    f"Smallest font {layout.min_font_px:g}px (minimum {MIN_MOBILE_FONT_PX:g}px)",
                )
            )
        if layout.nav_width is not None:
            results.append(
                check(
                    f"{viewport.name} navigation width",
                    layout.nav_width <= viewport.width,
                    "6.7",
                    f"Navigation {layout.nav_width}px wide",
                )
            )
        return results

    @category("Viewport Sizes", POLICY)
    async def test_viewport_sizes(self) -> list[TestResult]:
        results = []
        for viewport in self._env.viewports:
            results.extend(self._viewport_checks(viewport))
        return results

    @category("PWA Installation", POLICY)
    async def test_pwa_installation(self) -> list[TestResult]:
        caps = self._env.capabilities
        return [
            check("Web app manifest", MANIFEST_URL in caps.cached_urls, "6.8",
                  "Manifest cached" if MANIFEST_URL in caps.cached_urls else "Manifest not found in cache"),
            check("Service worker for install", caps.service_worker, "6.8"),
            check("Installable on Android", caps.service_worker and caps.cache_api, "6.8"),
            check(
                "Installable on iOS",
                MANIFEST_URL in caps.cached_urls,
                "6.8",
                "Add to Home Screen uses the manifest",
            ),
        ]

    @category("Touch Interactions", POLICY)
    async def test_touch_interactions(self) -> list[TestResult]:
        caps = self._env.capabilities
        return [
            check("Touch events", caps.touch_events, "6.9"),
            check("Pointer events", caps.pointer_events, "6.9"),
            check(
                "Coarse pointer media query",
                "(pointer: coarse)" in caps.media_queries,
                "6.9",
            ),
        ]

    @category("Responsive Layout", POLICY)
    async def test_responsive_layout(self) -> list[TestResult]:
        caps = self._env.capabilities
        results = [
            check(f"Breakpoint {query}", query in caps.media_queries, "6.10")
            for query in BREAKPOINT_QUERIES
        ]
        covered = {viewport.layout for viewport in self._env.viewports}
        results.append(
            check(
                "Layouts covered",
                covered >= {"mobile", "tablet", "desktop"},
                "6.10",
                f"Viewports cover {', '.join(sorted(covered)) or 'no'} layouts",
            )
        )
        return results

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        found = []
        for summary in report.categories:
            if not summary.failures:
                continue
            names = ", ".join(r.test_name for r in summary.failures[:5])
            found.append(
                Recommendation(
                    category="Cross-Browser",
                    priority="high" if not summary.passed else "medium",
                    issue=f"{summary.name}: {len(summary.failures)} checks failed ({names})",
                    solution="Add fallbacks or responsive styles for the affected browsers and sizes",
                    requirements=tuple(sorted({r.requirement for r in summary.failures if r.requirement})),
                )
            )
        return found
