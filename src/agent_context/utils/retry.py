"""Retry and circuit breaking for enricher calls.

An enricher call is retried sequentially: the next attempt starts only
after the previous one failed and its backoff delay elapsed. A circuit
breaker per enricher counts whole retry sequences, so an enricher that
keeps exhausting its retries is short-circuited until it recovers.
"""

import asyncio
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from agent_context.config.models import RetryPolicy
from agent_context.utils.exceptions import (
    ConfigurationError,
    EnricherStateError,
    ResourceUnavailableError,
    ValidationError,
)
from agent_context.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# Errors that fail identically on every attempt
NON_RETRYABLE_ERRORS = (ConfigurationError, ValidationError, EnricherStateError)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls rejected until the recovery timeout passes
    HALF_OPEN = "half_open"  # Next call decides


class CircuitBreaker:
    """Circuit breaker guarding a single enricher.

    The circuit opens after ``failure_threshold`` consecutive failures.
    Once ``recovery_timeout`` seconds have passed the next call is let
    through as a probe: success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the circuit breaker.

        Args:
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds an open circuit rejects calls
            name: Label for logs and errors, usually the enricher id
            clock: Monotonic seconds
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name or f"circuit_{id(self)}"
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None

        self.total_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.rejected_calls = 0
        self.circuit_opens = 0

    def time_until_reset(self) -> float:
        """Seconds left before an open circuit accepts a probe."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self.opened_at))

    def allow_request(self) -> bool:
        """Whether a call may go through; moves a due OPEN circuit to HALF_OPEN."""
        if self.state != CircuitState.OPEN:
            return True
        if self.time_until_reset() > 0:
            return False

        self.state = CircuitState.HALF_OPEN
        logger.info(f"Circuit breaker {self.name} half-open, probing enricher")
        return True

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Await ``func`` through the breaker.

        Raises:
            ResourceUnavailableError: If the circuit is open
        """
        self.total_calls += 1
        if not self.allow_request():
            self.rejected_calls += 1
            raise ResourceUnavailableError(
                f"Circuit breaker {self.name} is open",
                details={
                    "failure_count": self.failure_count,
                    "time_until_reset": round(self.time_until_reset(), 2),
                },
            )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        self.successful_calls += 1
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            self.opened_at = None
            logger.info(f"Circuit breaker {self.name} closed, enricher recovered")

    def record_failure(self) -> None:
        self.failed_calls += 1
        self.failure_count += 1

        probe_failed = self.state == CircuitState.HALF_OPEN
        if probe_failed or (
            self.state == CircuitState.CLOSED
            and self.failure_count >= self.failure_threshold
        ):
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
            self.circuit_opens += 1
            logger.warning(
                f"Circuit breaker {self.name} opened after {self.failure_count} failures; "
                f"rejecting calls for {self.recovery_timeout:g}s"
            )

    def reset(self) -> None:
        """Close the circuit and forget recent failures."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        logger.info(f"Circuit breaker {self.name} reset")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "rejected_calls": self.rejected_calls,
            "circuit_opens": self.circuit_opens,
            "time_until_reset": round(self.time_until_reset(), 2),
        }


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate exponential backoff delay with optional jitter.

    Args:
        attempt: Attempt number (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


def policy_delay(policy: RetryPolicy, attempt: int) -> float:
    """Backoff in seconds before retry number ``attempt + 1`` under ``policy``."""
    return calculate_backoff_delay(
        attempt,
        base_delay=policy.base_delay_ms / 1000,
        max_delay=policy.max_delay_ms / 1000,
        exponential_base=2.0 if policy.exponential else 1.0,
        jitter=policy.jitter,
    )


def is_retryable_error(error: BaseException) -> bool:
    """Whether another attempt could succeed.

    Configuration, validation and lifecycle errors are never retried.
    """
    return not isinstance(error, NON_RETRYABLE_ERRORS)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    name: str = "operation",
) -> T:
    """Await ``operation`` until it succeeds or the retries run out.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_retries: Retries after the first attempt; negative means none
        policy: Backoff policy; defaults apply when omitted
        on_retry: Called with the error and the retry number (1-based)
            before the backoff sleep
        name: Label used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: A non-retryable error at once, otherwise the error of
            the final attempt
    """
    policy = policy or RetryPolicy()
    max_retries = max(0, max_retries)
    retries = 0

    while True:
        try:
            result = await operation()
        except Exception as e:
            if not is_retryable_error(e):
                raise
            if retries >= max_retries:
                if max_retries:
                    logger.error(f"{name} failed after {retries + 1} attempts: {e}")
                raise

            delay = policy_delay(policy, retries)
            retries += 1
            logger.warning(
                f"{name} failed (attempt {retries}/{max_retries + 1}): {e}. "
                f"Retrying in {delay * 1000:.0f}ms"
            )
            if on_retry is not None:
                on_retry(e, retries)
            await asyncio.sleep(delay)
            continue

        if retries:
            logger.info(f"{name} succeeded after {retries + 1} attempts")
        return result
