"""Command-line interface for posqa.

Usage:
    # Run every enabled module and write the configured reports
    posqa --config posqa.yaml all

    # Run one suite
    posqa accessibility
    posqa run data_integrity

    # CI mode: exit 1 on regressions, missing required tests or a failed verdict
    posqa --ci --format json,csv --output build/reports all

    # Continuous monitoring every 60 seconds
    posqa monitor 60000

    # Show the last 5 stored runs
    posqa history 5
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import signal
import sys
from typing import AsyncIterator, Iterable

from posqa_core.errors import ConfigurationError
from posqa_core.types.report import ComprehensiveSummary

from posqa_client.client import PosApiClient

from posqa_store.history import ResultHistory
from posqa_store.store import SqliteStore

from posqa_testcase.context import ModuleContext

from posqa_runner.config import (
    REPORT_FORMATS,
    RunnerConfig,
    apply_env_overrides,
    default_config,
    load_config,
)
from posqa_runner.monitor import Monitor
from posqa_runner.notify import notify
from posqa_runner.orchestrator import REGISTRY, TestOrchestrator, ci_failures
from posqa_runner.report import write_reports

logger = logging.getLogger(__name__)

SUITES = {
    "all": None,
    "accessibility": ["accessibility"],
    "performance": ["performance"],
    "cross-browser": ["cross_browser"],
}


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_formats(value: str) -> list[str]:
    """Parse comma-separated report formats."""
    formats = [f.strip() for f in value.split(",") if f.strip()]
    for fmt in formats:
        if fmt not in REPORT_FORMATS:
            raise argparse.ArgumentTypeError(
                f"unknown format '{fmt}' (choose from {', '.join(REPORT_FORMATS)})"
            )
    return formats


def load_run_config(args: argparse.Namespace) -> RunnerConfig:
    """Build the run configuration from the file, environment and flags.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the config file is invalid.
    """
    config = load_config(args.config) if args.config else default_config()
    config = apply_env_overrides(config)

    reporting = config.reporting
    if args.format:
        reporting = dataclasses.replace(reporting, formats=tuple(args.format))
    if args.output:
        reporting = dataclasses.replace(reporting, output_dir=args.output)
    return dataclasses.replace(config, reporting=reporting)


@contextlib.asynccontextmanager
async def open_session(config: RunnerConfig) -> AsyncIterator[TestOrchestrator]:
    """Open the store and API client and yield a ready orchestrator."""
    if not config.environment.api_url:
        logger.warning("No API URL configured; API-backed checks will fail")
    async with SqliteStore(config.store_path) as store:
        async with PosApiClient(config.environment.api_config()) as api:
            context = ModuleContext(
                api=api,
                store=store,
                environment=config.client,
                thresholds=config.thresholds,
                fixtures=config.fixtures,
            )
            history = ResultHistory(store, cap=config.reporting.history_size)
            yield TestOrchestrator(config, context, history=history)


def format_summary(summary: ComprehensiveSummary) -> str:
    """Return a console summary of a run."""
    totals = summary.totals
    lines = [
        f"Overall: {'PASSED' if summary.overall_passed else 'FAILED'} "
        f"({summary.overall_score}% of modules, {totals.passed}/{totals.total} tests passed, "
        f"{summary.total_execution_time_ms:.0f}ms)",
    ]
    for outcome in summary.modules.values():
        score = f"{outcome.score:g}%" if outcome.score is not None else "-"
        lines.append(f"  {outcome.label}: {outcome.status.value.upper()} (score {score})")
        if outcome.error:
            lines.append(f"    error: {outcome.error}")
        for violation in outcome.violations:
            lines.append(f"    {violation}")
    if summary.regressions:
        lines.append("Regressions:")
        for regression in summary.regressions:
            lines.append(f"  {regression.module}: {regression.previous:g}% -> {regression.current:g}%")
    if summary.recommendations:
        lines.append("Recommendations:")
        for rec in summary.recommendations:
            lines.append(f"  [{rec.priority.upper()}] {rec.category}: {rec.issue}")
    return "\n".join(lines)


async def cmd_run(args: argparse.Namespace, config: RunnerConfig, keys: Iterable[str] | None) -> int:
    """Run modules, write reports and apply the CI gate."""
    async with open_session(config) as orchestrator:
        summary = await orchestrator.run(keys)

    print(format_summary(summary))
    for path in write_reports(summary, config.reporting.formats, config.reporting.output_dir):
        print(f"Report: {path}")

    if not (args.ci or config.ci.enabled):
        return 0

    failures = ci_failures(summary, config.ci)
    await notify(config.ci.webhooks, summary, failures, timeout=config.environment.timeout)
    if failures:
        print("\nCI check failed:")
        for reason in failures:
            print(f"  - {reason}")
        return 1
    print("\nCI check passed")
    return 0


async def cmd_monitor(args: argparse.Namespace, config: RunnerConfig) -> int:
    """Run continuous monitoring until interrupted."""
    interval_ms = args.interval if args.interval is not None else config.monitor.interval_ms
    async with open_session(config) as orchestrator:
        monitor = Monitor(
            orchestrator,
            interval_ms=interval_ms,
            window=config.monitor.window,
            threshold=config.threshold("regression"),
        )
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signum, monitor.stop)
        print(f"Monitoring every {interval_ms}ms (Ctrl-C to stop)")
        await monitor.run(cycles=args.cycles)

    print(f"Completed {monitor.cycles} cycles ({monitor.errors} errors)")
    return 0


async def cmd_history(args: argparse.Namespace, config: RunnerConfig) -> int:
    """Show stored run summaries, most recent first."""
    async with SqliteStore(config.store_path) as store:
        history = ResultHistory(store, cap=config.reporting.history_size)
        entries = await history.entries(limit=args.limit)

    if not entries:
        print("No stored test results.")
        return 0

    for entry in entries:
        summary = entry.summary
        totals = summary.totals
        print(
            f"{entry.timestamp.to_iso()}  {'PASS' if summary.overall_passed else 'FAIL'}  "
            f"{summary.overall_score:3d}%  {totals.passed}/{totals.total} tests  "
            f"[{', '.join(summary.tests_run)}]"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="posqa",
        description="POS test harness",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", help="Run configuration YAML file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--ci", action="store_true", help="Apply the CI gate (exit 1 on failure)")
    parser.add_argument(
        "--format", type=parse_formats,
        help="Report formats, comma-separated (default: from config)"
    )
    parser.add_argument("--output", "-o", help="Report output directory (default: from config)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("all", help="Run every enabled module")
    subparsers.add_parser("accessibility", help="Run the accessibility suite")
    subparsers.add_parser("performance", help="Run the performance suite")
    subparsers.add_parser("cross-browser", help="Run the cross-browser suite")

    run_parser = subparsers.add_parser("run", help="Run a single module")
    run_parser.add_argument("module", choices=sorted(REGISTRY), help="Module key")

    monitor_parser = subparsers.add_parser("monitor", help="Run continuously at an interval")
    monitor_parser.add_argument(
        "interval", type=int, nargs="?",
        help="Interval in milliseconds (default: from config, 300000)"
    )
    monitor_parser.add_argument(
        "--cycles", type=int,
        help="Stop after this many cycles (default: run until interrupted)"
    )

    history_parser = subparsers.add_parser("history", help="Show stored run results")
    history_parser.add_argument(
        "limit", type=int, nargs="?", default=10,
        help="Number of entries to show (default: 10)"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.debug)

    try:
        config = load_run_config(args)
    except (FileNotFoundError, ValueError, ConfigurationError) as exc:
        print(f"Error: {exc}")
        return 2

    if args.command in SUITES:
        return asyncio.run(cmd_run(args, config, SUITES[args.command]))
    elif args.command == "run":
        return asyncio.run(cmd_run(args, config, [args.module]))
    elif args.command == "monitor":
        return asyncio.run(cmd_monitor(args, config))
    elif args.command == "history":
        return asyncio.run(cmd_history(args, config))
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
