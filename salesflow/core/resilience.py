"""Timeouts, retries and circuit breakers around capability calls."""

import asyncio
import random
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..models.core import ResiliencePolicy
from .exceptions import CircuitOpenError, OrchestratorError, StepTimeoutError, TransientError
from .logging import ErrorRecoveryLogger, get_logger


logger = get_logger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


def get_delay(policy: ResiliencePolicy, attempt: int) -> float:
    """Delay to wait after the given failed attempt (1-based)."""
    delay = policy.backoff_seconds * (2 ** (attempt - 1))
    delay = min(delay, policy.max_backoff_seconds)

    if policy.jitter:
        # Spread retries of concurrent executions apart
        delay *= (0.5 + random.random() * 0.5)

    return delay


def should_retry(error: Exception) -> bool:
    """Engine errors declare whether they are recoverable; anything else is retried."""
    if isinstance(error, OrchestratorError):
        return error.recoverable
    return True


class CircuitBreaker:
    """Circuit breaker guarding one capability against cascading failures."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = CLOSED
        self._trial_in_flight = False

        self.recovery_logger = ErrorRecoveryLogger("circuit_breaker")

    @property
    def state(self) -> str:
        if self._state == OPEN and self._should_attempt_reset():
            return HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run an async callable under breaker protection.

        Raises:
            CircuitOpenError: If the breaker is open, or half-open with a trial call already running
        """
        self._before_call()
        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise
        finally:
            # A cancelled trial must free the half-open slot
            self._trial_in_flight = False
        self._on_success()
        return result

    def _before_call(self) -> None:
        if self._state == OPEN:
            if self._should_attempt_reset():
                self._state = HALF_OPEN
                logger.info(f"Circuit breaker {self.name} transitioning to half-open state")
            else:
                raise self._open_error()

        if self._state == HALF_OPEN:
            if self._trial_in_flight:
                raise self._open_error()
            self._trial_in_flight = True

    def _open_error(self) -> CircuitOpenError:
        remaining = 0.0
        if self._opened_at is not None:
            remaining = max(0.0, self._opened_at + self.recovery_timeout - self._clock())
        reopen_at = datetime.utcnow() + timedelta(seconds=remaining)
        return CircuitOpenError(
            f"Circuit breaker {self.name} is open. Calls rejected until {reopen_at.isoformat()}",
            breaker_name=self.name,
            reopen_at=reopen_at,
        )

    def _should_attempt_reset(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() >= self._opened_at + self.recovery_timeout

    def _on_success(self):
        if self._state != CLOSED:
            logger.info(f"Circuit breaker {self.name} reset to closed state")
        self._state = CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def _on_failure(self):
        self._failure_count += 1
        self._trial_in_flight = False

        if self._state == HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = OPEN
            self._opened_at = self._clock()
            self.recovery_logger.log_recovery_failure(
                f"circuit_breaker_opened:{self.name}",
                TransientError(f"Circuit breaker opened after {self._failure_count} failures"),
                self._failure_count
            )

    def reset(self) -> None:
        self._state = CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


class CircuitBreakerRegistry:
    """One breaker per (agent, capability) pair, created on first use."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._breakers: Dict[Tuple[str, str], CircuitBreaker] = {}
        self._clock = clock

    def get(self, agent_id: str, capability: str, policy: ResiliencePolicy) -> CircuitBreaker:
        key = (agent_id, capability)
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                name=f"{agent_id}.{capability}",
                failure_threshold=policy.failure_threshold,
                recovery_timeout=policy.recovery_timeout_seconds,
                clock=self._clock,
            )
            self._breakers[key] = breaker
        return breaker

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {breaker.name: breaker.snapshot() for breaker in self._breakers.values()}

    def open_breakers(self) -> int:
        return sum(1 for breaker in self._breakers.values() if breaker.state != CLOSED)

    def reset(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


async def call_with_timeout(
    coro_factory: Callable[[], Awaitable[Any]],
    timeout: float,
    operation: str = "operation"
) -> Any:
    """
    Await a coroutine with a deadline.

    Raises:
        StepTimeoutError: If the call does not finish within ``timeout`` seconds
    """
    try:
        return await asyncio.wait_for(coro_factory(), timeout=timeout)
    except asyncio.TimeoutError:
        raise StepTimeoutError(
            f"{operation} timed out after {timeout}s",
            timeout=timeout
        ) from None


async def retry_async(
    operation: Callable[[int], Awaitable[Any]],
    policy: ResiliencePolicy,
    operation_name: str = "operation"
) -> Any:
    """
    Call ``operation(attempt)`` until it succeeds or attempts run out.

    Makes at most ``policy.max_retries + 1`` attempts with exponential
    backoff between them. Non-recoverable engine errors are raised at once.

    Args:
        operation: Async callable receiving the 1-based attempt number
        policy: Retry settings
        operation_name: Name used in recovery logs

    Returns:
        The operation's result

    Raises:
        The last error raised by the operation
    """
    recovery_logger = ErrorRecoveryLogger(operation_name)
    max_attempts = policy.max_attempts

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation(attempt)
        except Exception as e:
            if not should_retry(e) or attempt >= max_attempts:
                recovery_logger.log_recovery_failure(operation_name, e, attempt)
                raise

            delay = get_delay(policy, attempt)
            recovery_logger.log_recovery_attempt(operation_name, e, attempt, max_attempts, delay)
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            recovery_logger.log_recovery_success(operation_name, attempt)
        return result

