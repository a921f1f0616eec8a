"""Tests for timeouts, retries and circuit breakers."""

import asyncio

import pytest

from salesflow.core.exceptions import CircuitOpenError, NotFoundError, StepTimeoutError, TransientError
from salesflow.core.resilience import (
    CLOSED,
    HALF_OPEN,
    OPEN,
    CircuitBreaker,
    CircuitBreakerRegistry,
    call_with_timeout,
    get_delay,
    retry_async,
    should_retry,
)
from salesflow.models.core import ResiliencePolicy


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def failing():
    raise RuntimeError("boom")


async def succeeding():
    return "ok"


class TestBackoff:

    def test_exponential_without_jitter(self):
        policy = ResiliencePolicy(backoff_seconds=1.0, max_backoff_seconds=30.0, jitter=False)
        assert [get_delay(policy, attempt) for attempt in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        policy = ResiliencePolicy(backoff_seconds=1.0, max_backoff_seconds=5.0, jitter=False)
        assert get_delay(policy, 10) == 5.0

    def test_jitter_stays_between_half_and_full_delay(self):
        policy = ResiliencePolicy(backoff_seconds=2.0, jitter=True)
        for _ in range(50):
            assert 1.0 <= get_delay(policy, 1) <= 2.0

    def test_should_retry(self):
        assert should_retry(RuntimeError("x"))
        assert should_retry(TransientError("x"))
        assert not should_retry(NotFoundError("x"))


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects(self):
        clock = FakeClock()
        breaker = CircuitBreaker("crm.update", failure_threshold=2, recovery_timeout=10, clock=clock)

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)
        assert breaker.state == OPEN

        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        with pytest.raises(CircuitOpenError):
            await breaker.call(tracked)
        assert calls == []

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker("crm.update", failure_threshold=1, recovery_timeout=10, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(failing)

        clock.advance(10)
        assert breaker.state == HALF_OPEN
        assert await breaker.call(succeeding) == "ok"
        assert breaker.state == CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("crm.update", failure_threshold=3, recovery_timeout=10, clock=clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        clock.advance(11)
        with pytest.raises(RuntimeError):
            await breaker.call(failing)
        assert breaker.state == OPEN

    @pytest.mark.asyncio
    async def test_half_open_allows_single_trial(self):
        clock = FakeClock()
        breaker = CircuitBreaker("crm.update", failure_threshold=1, recovery_timeout=1, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(failing)
        clock.advance(1)

        gate = asyncio.Event()

        async def trial():
            await gate.wait()
            return "trial"

        first = asyncio.create_task(breaker.call(trial))
        await asyncio.sleep(0)
        with pytest.raises(CircuitOpenError):
            await breaker.call(succeeding)

        gate.set()
        assert await first == "trial"
        assert breaker.state == CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_half_open_slot(self):
        clock = FakeClock()
        breaker = CircuitBreaker("crm.update", failure_threshold=1, recovery_timeout=1, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(failing)
        clock.advance(1)

        async def hangs():
            await asyncio.sleep(10)

        trial = asyncio.create_task(breaker.call(hangs))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert breaker.state == HALF_OPEN
        assert await breaker.call(succeeding) == "ok"
        assert breaker.state == CLOSED

    def test_registry_reuses_breaker_per_capability(self):
        registry = CircuitBreakerRegistry()
        policy = ResiliencePolicy()
        first = registry.get("email", "send", policy)
        assert registry.get("email", "send", policy) is first
        assert registry.get("email", "pause", policy) is not first
        assert set(registry.snapshot()) == {"email.send", "email.pause"}
        assert registry.open_breakers() == 0


class TestTimeoutAndRetry:

    @pytest.mark.asyncio
    async def test_timeout_raises_step_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(StepTimeoutError) as exc_info:
            await call_with_timeout(slow, 0.01, "email.send")
        assert exc_info.value.recoverable
        assert exc_info.value.details["timeout_seconds"] == 0.01

    @pytest.mark.asyncio
    async def test_retry_makes_max_retries_plus_one_attempts(self):
        policy = ResiliencePolicy(max_retries=2, backoff_seconds=0.001, jitter=False)
        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            raise RuntimeError("still failing")

        with pytest.raises(RuntimeError):
            await retry_async(operation, policy, "test.op")
        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_retry_returns_first_success(self):
        policy = ResiliencePolicy(max_retries=3, backoff_seconds=0.001, jitter=False)

        async def operation(attempt):
            if attempt < 2:
                raise ConnectionError("flaky")
            return attempt

        assert await retry_async(operation, policy) == 2

    @pytest.mark.asyncio
    async def test_non_recoverable_errors_are_not_retried(self):
        policy = ResiliencePolicy(max_retries=3, backoff_seconds=0.001)
        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            raise NotFoundError("missing")

        with pytest.raises(NotFoundError):
            await retry_async(operation, policy)
        assert attempts == [1]

