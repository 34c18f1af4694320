"""Tests for backoff, retry policy and fault injection."""

import pytest

from posqa_core.backoff import FaultInjector, RetryOutcome, RetryPolicy, backoff_delays, is_exponential
from posqa_core.errors import ConfigurationError, InjectedFault


class FakeSleep:
    """Records requested sleeps without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class TestBackoffDelays:
    """Tests for backoff_delays."""

    def test_doubling(self) -> None:
        """delay(i) = base * 2**i."""
        assert backoff_delays(100, 4) == [100.0, 200.0, 400.0, 800.0]

    def test_custom_factor(self) -> None:
        """The growth factor is configurable."""
        assert backoff_delays(10, 3, factor=3) == [10.0, 30.0, 90.0]

    def test_max_delay(self) -> None:
        """Delays are capped at max_delay."""
        assert backoff_delays(100, 4, max_delay=250) == [100.0, 200.0, 250.0, 250.0]

    def test_zero_attempts(self) -> None:
        """No attempts means no delays."""
        assert backoff_delays(100, 0) == []

    def test_negative_base_rejected(self) -> None:
        """A negative base delay is invalid."""
        with pytest.raises(ValueError):
            backoff_delays(-1, 3)


class TestIsExponential:
    """Tests for is_exponential."""

    def test_doubling_sequence(self) -> None:
        """Generated sequences pass the check."""
        assert is_exponential(backoff_delays(100, 5))

    def test_linear_sequence(self) -> None:
        """Linear growth below the ratio fails."""
        assert not is_exponential([100, 150, 200])

    def test_decreasing_sequence(self) -> None:
        """A decreasing sequence fails."""
        assert not is_exponential([400, 200, 100])

    def test_flat_sequence(self) -> None:
        """Constant delays fail."""
        assert not is_exponential([100, 100, 100])

    def test_too_short(self) -> None:
        """At least two delays are needed."""
        assert not is_exponential([100])

    def test_ratio_boundary(self) -> None:
        """A ratio of exactly min_ratio passes."""
        assert is_exponential([100, 150], min_ratio=1.5)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    async def test_succeeds_first_time(self) -> None:
        """A successful first attempt does not sleep."""
        sleep = FakeSleep()

        async def operation() -> str:
            return "ok"

        outcome = await RetryPolicy(max_attempts=3).run(operation, sleep=sleep)
        assert outcome.success
        assert outcome.attempts == 1
        assert outcome.value == "ok"
        assert sleep.calls == []

    async def test_retries_then_succeeds(self) -> None:
        """Failures are retried with exponential delays."""
        sleep = FakeSleep()
        injector = FaultInjector.first(2)

        async def operation() -> int:
            injector.check(what="sync")
            return injector.calls

        policy = RetryPolicy(max_attempts=3, base_delay=0.01)
        outcome = await policy.run(operation, sleep=sleep)
        assert outcome.success
        assert outcome.attempts == 3
        assert outcome.value == 3
        assert sleep.calls == [0.01, 0.02]
        assert is_exponential(outcome.delays)

    async def test_stops_after_max_attempts(self) -> None:
        """Retry ceases after max_attempts."""
        sleep = FakeSleep()
        injector = FaultInjector.always()

        async def operation() -> None:
            injector.check()

        outcome = await RetryPolicy(max_attempts=3, base_delay=0.1).run(operation, sleep=sleep)
        assert not outcome.success
        assert outcome.attempts == 3
        assert injector.calls == 3
        assert len(sleep.calls) == 2
        assert isinstance(outcome.error, InjectedFault)

    async def test_non_retryable_error_propagates(self) -> None:
        """Errors outside retry_on propagate immediately."""
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise ConfigurationError("API URL not configured")

        policy = RetryPolicy(max_attempts=3, retry_on=(InjectedFault,))
        with pytest.raises(ConfigurationError):
            await policy.run(operation, sleep=FakeSleep())
        assert calls == 1

    async def test_call_raises_last_error(self) -> None:
        """call() re-raises the last error once attempts are exhausted."""

        async def operation() -> None:
            raise InjectedFault(0)

        with pytest.raises(InjectedFault):
            await RetryPolicy(max_attempts=2).call(operation, sleep=FakeSleep())

    async def test_call_without_recorded_error(self) -> None:
        """A failed outcome with no error raises RuntimeError."""

        class SilentPolicy(RetryPolicy):
            async def run(self, operation, sleep=None):
                return RetryOutcome(success=False, attempts=1)

        async def operation() -> None:
            return None

        with pytest.raises(RuntimeError, match="without recording an error"):
            await SilentPolicy().call(operation)

    def test_no_retry(self) -> None:
        """no_retry makes a single attempt."""
        policy = RetryPolicy.no_retry()
        assert policy.max_attempts == 1
        assert policy.delays() == []

    def test_invalid_attempts(self) -> None:
        """At least one attempt is required."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestFaultInjector:
    """Tests for FaultInjector."""

    def test_never(self) -> None:
        """never() injects nothing."""
        injector = FaultInjector.never()
        assert not any(injector.fails(i) for i in range(10))

    def test_explicit_indices(self) -> None:
        """Faults are injected at the given indices only."""
        injector = FaultInjector([1, 3])
        assert [injector.fails(i) for i in range(5)] == [False, True, False, True, False]

    def test_check_counts_calls(self) -> None:
        """check() without an index uses the call counter."""
        injector = FaultInjector.first(1)
        with pytest.raises(InjectedFault):
            injector.check()
        injector.check()
        assert injector.calls == 2
        injector.reset()
        assert injector.calls == 0
