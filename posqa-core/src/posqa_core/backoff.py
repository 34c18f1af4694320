"""Exponential backoff, retry policy and fault injection.

The retry policy is shared by the API client (real retries of network
failures) and by the test modules that exercise retry behaviour against
simulated operations. Simulated operations decide success through an
explicit FaultInjector rather than through randomness, so every run is
reproducible.

Example:
    >>> backoff_delays(100, 3)
    [100.0, 200.0, 400.0]
    >>> is_exponential([100, 200, 400])
    True
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from posqa_core.errors import InjectedFault

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


def backoff_delays(
    base: float,
    attempts: int,
    factor: float = 2.0,
    max_delay: float | None = None,
) -> list[float]:
    """Compute the delays of an exponential backoff.

    ``delay(i) = base * factor ** i`` for ``i`` in ``0..attempts-1``, capped at
    ``max_delay`` when given.

    Args:
        base: Delay before the first retry.
        attempts: Number of delays to compute.
        factor: Growth factor between consecutive delays.
        max_delay: Optional upper bound for a single delay.

    Returns:
        The list of delays, in the same unit as ``base``.

    Raises:
        ValueError: If ``base`` or ``attempts`` is negative.
    """
    if base < 0:
        raise ValueError(f"Base delay must be non-negative: {base}")
    if attempts < 0:
        raise ValueError(f"Attempts must be non-negative: {attempts}")
    delays = [float(base * factor**i) for i in range(attempts)]
    if max_delay is not None:
        delays = [min(d, max_delay) for d in delays]
    return delays


def is_exponential(delays: Sequence[float], min_ratio: float = 1.5) -> bool:
    """Check whether a sequence of delays grows exponentially.

    The check holds when there are at least two delays, the sequence is
    non-decreasing, and every delay is at least ``min_ratio`` times the
    previous one.
    """
    if len(delays) < 2:
        return False
    for previous, current in zip(delays, delays[1:]):
        if current < previous:
            return False
        if current < previous * min_ratio:
            return False
    return True


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of running an operation under a retry policy.

    Attributes:
        success: True if some attempt succeeded.
        attempts: Number of attempts made.
        delays: Delays slept between attempts, in seconds.
        value: Value returned by the successful attempt.
        error: Last error raised when no attempt succeeded.
    """

    success: bool
    attempts: int
    delays: tuple[float, ...] = ()
    value: T | None = None
    error: BaseException | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy with exponential backoff.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        base_delay: Delay in seconds before the first retry.
        factor: Growth factor between consecutive delays.
        max_delay: Optional upper bound for a single delay, in seconds.
        retry_on: Exception types that trigger a retry. Any other exception
            propagates immediately.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    factor: float = 2.0
    max_delay: float | None = None
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {self.max_attempts}")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Return a policy that makes a single attempt."""
        return cls(max_attempts=1, base_delay=0.0)

    def delays(self) -> list[float]:
        """Return the delays slept between attempts."""
        return backoff_delays(self.base_delay, self.max_attempts - 1, self.factor, self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        sleep: SleepFunc = asyncio.sleep,
    ) -> RetryOutcome[T]:
        """Run an operation until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument coroutine function to attempt.
            sleep: Coroutine used to wait between attempts (for testing).

        Returns:
            The retry outcome. Retryable errors are captured in it.

        Raises:
            Exception: Any error not listed in ``retry_on`` is re-raised.
        """
        planned = self.delays()
        slept: list[float] = []
        last_error: BaseException | None = None

        for attempt in range(self.max_attempts):
            try:
                value = await operation()
            except self.retry_on as exc:
                last_error = exc
                if attempt + 1 >= self.max_attempts:
                    break
                delay = planned[attempt]
                logger.debug(
                    "Attempt %d/%d failed (%s), retrying in %.3fs",
                    attempt + 1,
                    self.max_attempts,
                    exc,
                    delay,
                )
                slept.append(delay)
                await sleep(delay)
            else:
                return RetryOutcome(
                    success=True, attempts=attempt + 1, delays=tuple(slept), value=value
                )

        logger.debug("Giving up after %d attempts: %s", self.max_attempts, last_error)
        return RetryOutcome(
            success=False, attempts=self.max_attempts, delays=tuple(slept), error=last_error
        )

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        sleep: SleepFunc = asyncio.sleep,
    ) -> T:
        """Run an operation and return its value, raising the last error."""
        outcome = await self.run(operation, sleep)
        if not outcome.success:
            if outcome.error is None:
                raise RuntimeError("Retry gave up without recording an error")
            raise outcome.error
        return outcome.value  # type: ignore[return-value]


class FaultInjector:
    """Deterministic fault-injection hook for simulated operations.

    Stands in for a real dependency whose success is being simulated. Faults
    are injected at explicit indices (attempt numbers or item positions).

    Example:
        >>> injector = FaultInjector.first(2)
        >>> [injector.fails(i) for i in range(4)]
        [True, True, False, False]
    """

    def __init__(self, failing: Iterable[int] = (), *, fail_all: bool = False) -> None:
        """Initialize the injector.

        Args:
            failing: Indices at which a fault is injected.
            fail_all: Inject a fault at every index.
        """
        self._failing = frozenset(failing)
        self._fail_all = fail_all
        self._calls = 0

    @classmethod
    def never(cls) -> FaultInjector:
        """Return an injector that never injects a fault."""
        return cls()

    @classmethod
    def always(cls) -> FaultInjector:
        """Return an injector that injects a fault at every index."""
        return cls(fail_all=True)

    @classmethod
    def first(cls, count: int) -> FaultInjector:
        """Return an injector failing the first ``count`` indices."""
        return cls(range(count))

    @property
    def calls(self) -> int:
        """Return how many times ``check`` was called."""
        return self._calls

    def fails(self, index: int) -> bool:
        """Return True if a fault is injected at ``index``."""
        return self._fail_all or index in self._failing

    def check(self, index: int | None = None, what: str = "operation") -> None:
        """Raise InjectedFault if a fault is injected at this index.

        Args:
            index: Index to check. Defaults to the number of previous calls.
            what: Description used in the error message.

        Raises:
            InjectedFault: If a fault is injected at the index.
        """
        if index is None:
            index = self._calls
        self._calls += 1
        if self.fails(index):
            raise InjectedFault(index, what)

    def reset(self) -> None:
        """Reset the call counter."""
        self._calls = 0
