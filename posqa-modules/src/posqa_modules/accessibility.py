"""Accessibility auditing of the application markup.

Audits the page markup from the client environment snapshot against a
subset of WCAG 2.1 AA: document structure, image alternatives, form
labels, accessible names of interactive elements and touch target sizes.

Every failed check carries an impact level. The module score starts at
100 and loses a weighted amount per failed check:

    critical 10, serious 5, moderate 2, minor 1

The module passes when the score is at least 95 and every category passes.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult
from posqa_core.types.rules import AllCategoriesPass, AllOf, ScoreAtLeast

from posqa_testcase import TestModule, category, check
from posqa_testcase.context import ModuleContext

logger = logging.getLogger(__name__)

IMPACT_WEIGHTS = {"critical": 10, "serious": 5, "moderate": 2, "minor": 1}

# WCAG 2.5.5 target size, in CSS pixels.
MIN_TOUCH_TARGET_PX = 44.0

UNLABELLED_INPUT_TYPES = frozenset({"hidden", "submit", "button", "reset", "image"})

LANDMARK_ROLES = frozenset({"main", "navigation", "banner", "contentinfo"})

_SIZE_RE = re.compile(r"(?:^|;)\s*(min-)?(width|height)\s*:\s*(\d+(?:\.\d+)?)px", re.IGNORECASE)


def parse_html(html: str) -> BeautifulSoup:
    """Parse page markup with the standard library parser backend."""
    return BeautifulSoup(html, "html.parser")


def describe_element(tag: Tag) -> str:
    """Return a short selector-like description of an element."""
    label = tag.name
    if tag.get("id"):
        label += f"#{tag['id']}"
    elif tag.get("class"):
        label += "." + ".".join(tag["class"])
    elif tag.get("name"):
        label += f"[name={tag['name']}]"
    return label


def accessible_name(tag: Tag, soup: BeautifulSoup) -> str:
    """Compute a simplified accessible name for an element.

    Looks at ``aria-label``, ``aria-labelledby``, the text content, the
    ``alt`` of contained images and finally ``title``.
    """
    if tag.get("aria-label", "").strip():
        return tag["aria-label"].strip()
    labelledby = tag.get("aria-labelledby", "").split()
    parts = []
    for ref in labelledby:
        target = soup.find(id=ref)
        if target is not None:
            parts.append(target.get_text(" ", strip=True))
    if any(parts):
        return " ".join(p for p in parts if p)
    text = tag.get_text(" ", strip=True)
    if text:
        return text
    for img in tag.find_all("img"):
        if img.get("alt", "").strip():
            return img["alt"].strip()
    if tag.name == "input" and tag.get("value", "").strip():
        return tag["value"].strip()
    return tag.get("title", "").strip()


def has_label(control: Tag, soup: BeautifulSoup) -> bool:
    """Return True if a form control has an associated label."""
    if control.get("aria-label", "").strip() or control.get("aria-labelledby", "").strip():
        return True
    if control.get("title", "").strip():
        return True
    control_id = control.get("id")
    if control_id and soup.find("label", attrs={"for": control_id}) is not None:
        return True
    return control.find_parent("label") is not None


def declared_size(tag: Tag) -> tuple[float | None, float | None]:
    """Return the (width, height) declared in an inline style, in pixels.

    ``min-width``/``min-height`` raise the declared value. Sizes given in
    other units are ignored.
    """
    sizes: dict[str, float] = {}
    for minimum, axis, value in _SIZE_RE.findall(tag.get("style", "")):
        amount = float(value)
        if minimum:
            sizes[axis] = max(sizes.get(axis, 0.0), amount)
        elif axis not in sizes:
            sizes[axis] = amount
        else:
            sizes[axis] = max(sizes[axis], amount)
    return sizes.get("width"), sizes.get("height")


def heading_levels(soup: BeautifulSoup) -> list[int]:
    return [int(h.name[1]) for h in soup.find_all(re.compile(r"^h[1-6]$"))]


def audit(name: str, passed: bool, wcag: str, impact: str, message: str, **details: Any) -> TestResult:
    """Build a result tagged with its WCAG criterion and impact."""
    return check(name, passed, f"wcag-{wcag}", message, impact=impact, **details)


def impact_score(results: list[TestResult]) -> float:
    """Return 100 minus the weighted impact of the failed results, floored at 0."""
    penalty = sum(IMPACT_WEIGHTS.get(r.details.get("impact", "minor"), 1) for r in results if not r.passed)
    return max(0.0, 100.0 - penalty)


class AccessibilityModule(TestModule):
    """WCAG 2.1 AA checks on the application markup."""

    name = "Accessibility Testing"
    key = "accessibility"
    pass_rule = AllOf(ScoreAtLeast(95.0), AllCategoriesPass())
    requirements = (
        "wcag-1.1.1",
        "wcag-1.3.1",
        "wcag-2.4.2",
        "wcag-2.4.3",
        "wcag-2.4.4",
        "wcag-2.5.5",
        "wcag-3.1.1",
        "wcag-4.1.2",
    )

    def __init__(self, context: ModuleContext) -> None:
        super().__init__(context)
        self._soup: BeautifulSoup | None = None

    def available(self) -> str | None:
        if self.context.environment.html is None:
            return "No page markup configured (client.html or client.html_path)"
        return None

    def reset(self) -> None:
        super().reset()
        self._soup = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = parse_html(self.context.environment.html or "")
        return self._soup

    @category("Document Structure")
    async def test_document_structure(self) -> list[TestResult]:
        soup = self.soup
        html = soup.find("html")
        lang = html.get("lang", "").strip() if html is not None else ""
        title = soup.title.get_text(strip=True) if soup.title is not None else ""
        levels = heading_levels(soup)
        skips = [(a, b) for a, b in zip(levels, levels[1:]) if b > a + 1]
        main = soup.find("main") or soup.find(attrs={"role": "main"})
        landmarks = {t.get("role") for t in soup.find_all(attrs={"role": True})} & LANDMARK_ROLES
        landmarks |= {
            role
            for tag, role in (("main", "main"), ("nav", "navigation"), ("header", "banner"), ("footer", "contentinfo"))
            if soup.find(tag) is not None
        }
        return [
            audit("Page language", bool(lang), "3.1.1", "serious",
                  f"Document language is '{lang}'" if lang else "<html> element has no lang attribute"),
            audit("Page title", bool(title), "2.4.2", "serious",
                  f"Document title is '{title}'" if title else "Document has no title"),
            audit("Top-level heading", 1 in levels, "1.3.1", "moderate",
                  "Page has an h1 heading" if 1 in levels else "Page has no h1 heading"),
            audit(
                "Heading order",
                not skips,
                "1.3.1",
                "moderate",
                "Heading levels increase one at a time"
                if not skips
                else "Heading levels skip: " + ", ".join(f"h{a} -> h{b}" for a, b in skips),
            ),
            audit("Main landmark", main is not None, "1.3.1", "moderate",
                  "Page has a main landmark" if main is not None else "Page has no main landmark",
                  landmarks=sorted(landmarks)),
        ]

    @category("Images")
    async def test_images(self) -> list[TestResult]:
        results = []
        images = self.soup.find_all("img") + self.soup.find_all("input", attrs={"type": "image"})
        for image in images:
            label = describe_element(image)
            has_alt = image.has_attr("alt") or bool(image.get("aria-label", "").strip())
            decorative = image.get("role") in ("presentation", "none")
            results.append(
                audit(
                    f"Image alternative: {label}",
                    has_alt or decorative,
                    "1.1.1",
                    "critical",
                    "Image has alternative text" if has_alt or decorative else f"{label} has no alt attribute",
                    src=image.get("src", ""),
                )
            )
        return results

    @category("Forms")
    async def test_forms(self) -> list[TestResult]:
        results = []
        for control in self.soup.find_all(["input", "select", "textarea"]):
            if control.name == "input" and control.get("type", "text").lower() in UNLABELLED_INPUT_TYPES:
                continue
            label = describe_element(control)
            labelled = has_label(control, self.soup)
            results.append(
                audit(
                    f"Form label: {label}",
                    labelled,
                    "1.3.1",
                    "critical",
                    "Control has a label" if labelled else f"{label} has no associated label",
                )
            )
        return results

    @category("Interactive Elements")
    async def test_interactive_elements(self) -> list[TestResult]:
        soup = self.soup
        results = []
        buttons = soup.find_all("button") + soup.find_all(attrs={"role": "button"})
        buttons += soup.find_all("input", attrs={"type": ["submit", "button", "reset"]})
        for button in buttons:
            label = describe_element(button)
            name = accessible_name(button, soup)
            results.append(
                audit(f"Button name: {label}", bool(name), "4.1.2", "serious",
                      f"Button named '{name}'" if name else f"{label} has no accessible name")
            )
        for link in soup.find_all("a", href=True):
            label = describe_element(link)
            name = accessible_name(link, soup)
            results.append(
                audit(f"Link name: {label}", bool(name), "2.4.4", "serious",
                      f"Link named '{name}'" if name else f"{label} ({link['href']}) has no accessible name")
            )

        positive = []
        for tag in soup.find_all(attrs={"tabindex": True}):
            try:
                if int(tag["tabindex"]) > 0:
                    positive.append(describe_element(tag))
            except ValueError:
                positive.append(describe_element(tag))
        results.append(
            audit(
                "Focus order",
                not positive,
                "2.4.3",
                "moderate",
                "No positive or invalid tabindex values"
                if not positive
                else f"Elements override the focus order: {', '.join(positive)}",
            )
        )
        return results

    @category("Touch Targets")
    async def test_touch_targets(self) -> list[TestResult]:
        soup = self.soup
        targets = soup.find_all(["button", "select"]) + soup.find_all("a", href=True)
        targets += soup.find_all(attrs={"role": "button"})
        targets += [i for i in soup.find_all("input") if i.get("type", "text").lower() != "hidden"]

        results = []
        seen: set[int] = set()
        for target in targets:
            if id(target) in seen:
                continue
            seen.add(id(target))
            width, height = declared_size(target)
            if width is None and height is None:
                continue
            small = [
                f"{axis} {value:g}px"
                for axis, value in (("width", width), ("height", height))
                if value is not None and value < MIN_TOUCH_TARGET_PX
            ]
            label = describe_element(target)
            results.append(
                audit(
                    f"Touch target: {label}",
                    not small,
                    "2.5.5",
                    "moderate",
                    f"{label} meets the {MIN_TOUCH_TARGET_PX:g}px minimum"
                    if not small
                    else f"{label} is too small: {', '.join(small)}",
                )
            )
        return results

    def _results(self) -> list[TestResult]:
        return [r for summary in self.summaries for r in summary.results]

    def score(self) -> float:
        results = self._results()
        impacts = {level: 0 for level in IMPACT_WEIGHTS}
        for result in results:
            if not result.passed and result.details.get("impact") in impacts:
                impacts[result.details["impact"]] += 1
        self.record_metric("violations_by_impact", impacts)
        return impact_score(results)

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        found = []
        for summary in report.categories:
            if not summary.failures:
                continue
            worst = max(
                (r.details.get("impact", "minor") for r in summary.failures),
                key=lambda level: IMPACT_WEIGHTS.get(level, 0),
            )
            if worst == "critical":
                priority = "high"
            elif worst == "serious":
                priority = "medium"
            else:
                priority = "low"
            found.append(
                Recommendation(
                    category="Accessibility",
                    priority=priority,
                    issue=f"{summary.name}: {len(summary.failures)} violations ({worst} impact)",
                    solution=f"Fix: {summary.failures[0].message}",
                    requirements=tuple(sorted({r.requirement for r in summary.failures})),
                )
            )
        return found
