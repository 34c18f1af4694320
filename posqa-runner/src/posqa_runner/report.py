"""Report rendering for comprehensive summaries.

Three formats are supported:
    html: Summary cards, a per-module table with categories, recommendations
        and the first issues.
    json: The summary's dictionary form.
    csv: One row per module (``Test Type,Status,Score,Issues,Timestamp``).
"""

from __future__ import annotations

import csv
import html
import io
import json
import logging
from pathlib import Path
from typing import Iterable

from posqa_core.types.report import ComprehensiveSummary, ModuleOutcome, OutcomeStatus

logger = logging.getLogger(__name__)

MAX_ISSUES = 10

CSV_HEADER = ("Test Type", "Status", "Score", "Issues", "Timestamp")

_STYLE = """
body { font-family: sans-serif; margin: 2em; color: #222; }
.cards { display: flex; flex-wrap: wrap; gap: 1em; }
.card { border: 1px solid #ccc; border-radius: 6px; padding: 1em; min-width: 10em; }
.passed { border-left: 6px solid #2e7d32; }
.failed, .error { border-left: 6px solid #c62828; }
.skipped { border-left: 6px solid #9e9e9e; }
.score { font-size: 1.8em; font-weight: bold; }
table { border-collapse: collapse; margin-top: 1em; }
th, td { border: 1px solid #ccc; padding: 0.3em 0.6em; text-align: left; }
.priority-critical, .priority-high { color: #c62828; }
.priority-medium { color: #ef6c00; }
.priority-low { color: #555; }
"""


def _e(value: object) -> str:
    return html.escape(str(value))


def _score_text(outcome: ModuleOutcome) -> str:
    return f"{outcome.score:g}%" if outcome.score is not None else "-"


def _card(title: str, value: str, status: str, detail: str) -> str:
    return (
        f'<div class="card {_e(status)}">'
        f"<h3>{_e(title)}</h3>"
        f'<div class="score">{_e(value)}</div>'
        f"<div>{_e(detail)}</div>"
        "</div>"
    )


def _module_rows(outcome: ModuleOutcome) -> list[str]:
    if outcome.report is None:
        note = outcome.error or "; ".join(outcome.violations) or ""
        return [
            "<tr>"
            f"<td>{_e(outcome.label)}</td><td colspan=\"3\">{_e(outcome.status.value)}</td>"
            f"<td>{_e(note)}</td>"
            "</tr>"
        ]
    rows = []
    for summary in outcome.report.categories:
        counts = summary.counts
        rows.append(
            "<tr>"
            f"<td>{_e(outcome.label)}</td>"
            f"<td>{_e(summary.name)}</td>"
            f"<td>{'PASS' if summary.passed else 'FAIL'}</td>"
            f"<td>{counts.passed}/{counts.total}</td>"
            f"<td>{_e('; '.join(summary.warnings))}</td>"
            "</tr>"
        )
    return rows


def render_html(summary: ComprehensiveSummary, title: str = "POS Test Report") -> str:
    """Render a summary as a standalone HTML page."""
    totals = summary.totals
    verdict = "passed" if summary.overall_passed else "failed"
    cards = [
        _card(
            "Overall",
            f"{summary.overall_score}%",
            verdict,
            f"{verdict.upper()} - {totals.passed}/{totals.total} tests passed",
        )
    ]
    for outcome in summary.modules.values():
        cards.append(
            _card(
                outcome.label,
                _score_text(outcome),
                outcome.status.value,
                f"{outcome.status.value.upper()} ({outcome.rule})" if outcome.rule else outcome.status.value.upper(),
            )
        )

    module_rows: list[str] = []
    for outcome in summary.modules.values():
        module_rows.extend(_module_rows(outcome))

    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{_e(title)}</title>",
        f"<style>{_STYLE}</style>",
        "</head>",
        "<body>",
        f"<h1>{_e(title)}</h1>",
        f"<p>Generated {_e(summary.timestamp.to_iso())} in {summary.total_execution_time_ms:.0f}ms</p>",
        '<section class="cards">',
        *cards,
        "</section>",
        "<h2>Modules</h2>",
        "<table>",
        "<tr><th>Module</th><th>Category</th><th>Status</th><th>Passed</th><th>Notes</th></tr>",
        *module_rows,
        "</table>",
    ]

    if summary.recommendations:
        parts.extend(["<h2>Recommendations</h2>", "<ul>"])
        for rec in summary.recommendations:
            refs = f" (requirements: {', '.join(rec.requirements)})" if rec.requirements else ""
            parts.append(
                f'<li class="priority-{_e(rec.priority)}">'
                f"<strong>[{_e(rec.priority.upper())}] {_e(rec.category)}:</strong> {_e(rec.issue)}"
                f"<br>{_e(rec.solution)}{_e(refs)}"
                "</li>"
            )
        parts.append("</ul>")

    if summary.regressions:
        parts.extend(["<h2>Regressions</h2>", "<ul>"])
        for regression in summary.regressions:
            parts.append(
                f"<li>{_e(regression.module)}: {regression.previous:g}% -&gt; "
                f"{regression.current:g}% ({regression.change:+.1f})</li>"
            )
        parts.append("</ul>")

    if summary.gaps:
        parts.extend(["<h2>Requirement Gaps</h2>", "<ul>"])
        for gap in summary.gaps:
            parts.append(
                f"<li>[{_e(gap.severity.upper())}] {_e(gap.requirement)} "
                f"{_e(gap.description)}: {_e(gap.reason)}</li>"
            )
        parts.append("</ul>")

    if summary.issues:
        parts.extend(["<h2>Issues</h2>", "<ul>"])
        for issue in summary.issues[:MAX_ISSUES]:
            parts.append(f"<li>{_e(issue)}</li>")
        if len(summary.issues) > MAX_ISSUES:
            parts.append(f"<li>... and {len(summary.issues) - MAX_ISSUES} more issues</li>")
        parts.append("</ul>")

    parts.extend(["</body>", "</html>"])
    return "\n".join(parts) + "\n"


def render_json(summary: ComprehensiveSummary) -> str:
    """Render a summary as indented JSON."""
    return json.dumps(summary.to_dict(), indent=2) + "\n"


def render_csv(summary: ComprehensiveSummary) -> str:
    """Render one CSV row per module."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    timestamp = summary.timestamp.to_iso()
    for outcome in summary.modules.values():
        status = {
            OutcomeStatus.PASSED: "PASS",
            OutcomeStatus.FAILED: "FAIL",
            OutcomeStatus.ERROR: "ERROR",
            OutcomeStatus.SKIPPED: "SKIP",
        }[outcome.status]
        score = f"{outcome.score:g}" if outcome.score is not None else ""
        writer.writerow((outcome.label, status, score, outcome.issue_count, timestamp))
    return output.getvalue()


RENDERERS = {
    "html": render_html,
    "json": render_json,
    "csv": render_csv,
}


def write_reports(
    summary: ComprehensiveSummary,
    formats: Iterable[str],
    output_dir: str | Path,
) -> list[Path]:
    """Render a summary in each format and write the files.

    Files are named ``posqa-report-<epoch-ms>.<format>``.

    Returns:
        The written paths, in the order of ``formats``.

    Raises:
        ValueError: If a format is unknown.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = f"posqa-report-{summary.timestamp.unix_ms}"
    paths = []
    for fmt in formats:
        renderer = RENDERERS.get(fmt)
        if renderer is None:
            raise ValueError(f"Unknown report format: {fmt}")
        path = output_dir / f"{stem}.{fmt}"
        path.write_text(renderer(summary), encoding="utf-8")
        logger.info("Wrote %s report to %s", fmt, path)
        paths.append(path)
    return paths
