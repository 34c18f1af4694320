"""Continuous monitoring for posqa-runner.

The monitor repeats orchestrator runs at a fixed interval, keeps a bounded
window of the resulting summaries in memory, and logs a warning whenever a
module's score regressed against the previous cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable

from posqa_core.types.report import ComprehensiveSummary, Regression

from posqa_runner.orchestrator import TestOrchestrator, detect_regressions

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 300_000
DEFAULT_WINDOW = 288

RegressionCallback = Callable[[list[Regression]], None]


class Monitor:
    """Runs the orchestrator repeatedly until stopped.

    Example:
        monitor = Monitor(orchestrator, interval_ms=60_000)
        task = asyncio.create_task(monitor.run())
        ...
        monitor.stop()
        await task
    """

    def __init__(
        self,
        orchestrator: TestOrchestrator,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        window: int = DEFAULT_WINDOW,
        threshold: float = 5.0,
        on_regression: RegressionCallback | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            orchestrator: Orchestrator whose run() is repeated.
            interval_ms: Delay between the end of one cycle and the next.
            window: Number of summaries kept in memory.
            threshold: Score drop between cycles counted as a regression.
            on_regression: Called with the regressions of a cycle, if any.
        """
        if interval_ms <= 0:
            raise ValueError(f"Monitor interval must be positive: {interval_ms}")
        if window < 1:
            raise ValueError(f"Monitor window must be at least 1: {window}")
        self._orchestrator = orchestrator
        self._interval_ms = interval_ms
        self._threshold = threshold
        self._on_regression = on_regression
        self._results: deque[ComprehensiveSummary] = deque(maxlen=window)
        self._stop_event = asyncio.Event()
        self._cycles = 0
        self._errors = 0

    @property
    def results(self) -> list[ComprehensiveSummary]:
        """Return the summaries in the window, oldest first."""
        return list(self._results)

    @property
    def cycles(self) -> int:
        """Return the number of cycles attempted."""
        return self._cycles

    @property
    def errors(self) -> int:
        """Return the number of cycles that raised."""
        return self._errors

    @property
    def running(self) -> bool:
        """Return True until stop() is called."""
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Stop scheduling further cycles.

        A cycle in progress runs to completion. A stopped monitor does not
        start again.
        """
        if not self._stop_event.is_set():
            logger.info("Monitoring stop requested after %d cycles", self._cycles)
        self._stop_event.set()

    async def run_cycle(self) -> list[Regression]:
        """Run one cycle and return its regressions against the previous one."""
        self._cycles += 1
        summary = await self._orchestrator.run()
        previous = self._results[-1] if self._results else None
        self._results.append(summary)
        if previous is None:
            return []

        regressions = detect_regressions(previous.scores, summary.scores, self._threshold)
        if regressions:
            logger.warning(
                "Performance regression detected: %s",
                ", ".join(f"{r.module} {r.previous:g} -> {r.current:g}" for r in regressions),
            )
            if self._on_regression is not None:
                self._on_regression(regressions)
        return regressions

    async def run(self, cycles: int | None = None) -> None:
        """Run cycles until stop() is called or ``cycles`` have run.

        A cycle that raises is logged and counted; monitoring continues.
        """
        logger.info("Starting continuous monitoring (interval %dms)", self._interval_ms)
        completed = 0
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:  # pylint: disable=broad-except
                self._errors += 1
                logger.exception("Monitoring cycle %d failed", self._cycles)
            completed += 1
            if cycles is not None and completed >= cycles:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_ms / 1000.0)
            except asyncio.TimeoutError:
                pass
        logger.info("Monitoring stopped after %d cycles", self._cycles)
