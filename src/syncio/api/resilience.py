#!/usr/bin/env python3
"""Resilience patterns for calls to the Stremio services.

A collection write either lands or it does not; the remote has no partial
state to resume from. That keeps the toolkit small:
    - RetryPolicy / retry_async: bounded retries with exponential backoff,
      transient errors only
    - with_timeout: a deadline for one attempt
    - CircuitBreaker: stop calling a remote that keeps failing
    - process_concurrent: bounded fan-out for group syncs

Example:
    # 3 retries after the first attempt, waiting 0.5s, 1s, 2s
    policy = RetryPolicy(max_retries=3, initial_backoff=0.5)
    await retry_async(client.addon_collection_set, auth_key, entries, policy=policy)

    breaker = CircuitBreaker(name="stremio_api", failure_threshold=5, timeout=60)
    body = await breaker.call(session_post, url, payload)
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import CircuitOpenError, RateLimitError, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (TransientRemoteError,)


# ============================================
# Retry
# ============================================

@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a transient failure.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        initial_backoff: Seconds before the first retry
        backoff_factor: Multiplier applied to each following wait
        max_backoff: Upper bound for a single wait, Retry-After included
        jitter: Spread each wait over 50%-150% of its nominal value
    """

    max_retries: int = 3
    initial_backoff: float = 0.5
    backoff_factor: float = 2.0
    max_backoff: float = 60.0
    jitter: bool = False

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, retry_number: int, error: Optional[Exception] = None) -> float:
        """Seconds to wait before retry number ``retry_number`` (1-based).

        A rate limit answer with Retry-After overrides the schedule.
        """
        if isinstance(error, RateLimitError) and error.retry_after:
            return min(float(error.retry_after), self.max_backoff)

        wait = min(self.initial_backoff * self.backoff_factor ** (retry_number - 1), self.max_backoff)
        if self.jitter:
            wait *= 0.5 + random.random()
        return wait

    def schedule(self) -> list[float]:
        """Nominal waits between attempts, ignoring jitter and Retry-After."""
        return [
            min(self.initial_backoff * self.backoff_factor ** n, self.max_backoff)
            for n in range(self.max_retries)
        ]


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    retry_on: tuple = TRANSIENT_ERRORS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying errors listed in ``retry_on``.

    Anything not in ``retry_on`` propagates from the attempt that raised it.
    After the last attempt the last error propagates unchanged.

    Args:
        func: Async callable making one attempt
        policy: Retry budget and backoff; defaults to RetryPolicy()
        retry_on: Exception types worth another attempt
        on_retry: Called with (error, retry_number) before each wait
    """
    policy = policy or RetryPolicy()
    retry_number = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            retry_number += 1
            if retry_number > policy.max_retries:
                logger.error(f"Giving up after {policy.max_attempts} attempt(s): {e}")
                raise

            wait = policy.backoff(retry_number, e)
            if on_retry:
                on_retry(e, retry_number)
            logger.warning(f"Attempt {retry_number}/{policy.max_attempts} failed: {e}. Retrying in {wait:.1f}s")
            await asyncio.sleep(wait)


async def with_timeout(
    func: Callable[..., Awaitable[T]],
    timeout_seconds: float,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)`` for at most ``timeout_seconds``.

    Raises:
        asyncio.TimeoutError: The call did not finish in time
    """
    return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)


# ============================================
# Circuit Breaker
# ============================================

class CircuitState(Enum):
    CLOSED = "closed"        # calls pass through
    OPEN = "open"            # calls rejected until the cool-down ends
    HALF_OPEN = "half_open"  # trial calls decide between CLOSED and OPEN


class CircuitBreaker:
    """Rejects calls to a remote that keeps failing.

    CLOSED opens after ``failure_threshold`` consecutive counted failures.
    OPEN lets a trial call through once ``timeout`` seconds have passed
    (HALF_OPEN). ``success_threshold`` trial successes close it again; a
    trial failure reopens it.

    Only ``counted`` errors move the breaker. A rejected manifest or an
    expired credential is the caller's problem, not a sign of an outage.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 2,
        name: str = "default",
        counted: tuple = TRANSIENT_ERRORS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.name = name
        self.counted = counted
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_successes = 0
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failures

    def _cooled_down(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.timeout

    def _move_to(self, state: CircuitState, why: str) -> None:
        if state != self._state:
            logger.info(f"Circuit '{self.name}': {self._state.value} -> {state.value} ({why})")
        self._state = state
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
        self._trial_successes = 0

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` unless the circuit is open.

        Raises:
            CircuitOpenError: The circuit is open and still cooling down
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooled_down():
                    remaining = self.timeout - (self._clock() - (self._opened_at or 0.0))
                    raise CircuitOpenError(
                        f"Circuit breaker '{self.name}' is open",
                        reset_at=datetime.now(timezone.utc) + timedelta(seconds=max(0.0, remaining)),
                        failure_count=self._failures,
                    )
                self._move_to(CircuitState.HALF_OPEN, "cool-down over")

        try:
            result = await func(*args, **kwargs)
        except self.counted as e:
            await self._record_failure(e)
            raise

        await self._record_success()
        return result

    async def _record_success(self) -> None:
        async with self._lock:
            self._failures = 0
            if self._state != CircuitState.HALF_OPEN:
                return
            self._trial_successes += 1
            if self._trial_successes >= self.success_threshold:
                self._move_to(CircuitState.CLOSED, f"{self.success_threshold} trial successes")

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._failures += 1
            self._last_failure_at = datetime.now(timezone.utc)
            if self._state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN, f"trial failed: {error}")
            elif self._failures >= self.failure_threshold:
                self._move_to(CircuitState.OPEN, f"{self._failures} consecutive failures")

    def reset(self) -> None:
        """Force the circuit closed and forget past failures."""
        self._move_to(CircuitState.CLOSED, "manual reset")
        self._failures = 0
        self._opened_at = None
        self._last_failure_at = None

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failures,
            "failure_threshold": self.failure_threshold,
            "timeout_seconds": self.timeout,
            "last_failure_at": self._last_failure_at.isoformat() if self._last_failure_at else None,
        }


# ============================================
# Bounded Concurrency
# ============================================

async def process_concurrent(
    items: list[T],
    processor: Callable[[T], Awaitable[Any]],
    max_concurrent: int = 10,
    return_exceptions: bool = False,
) -> list[Any]:
    """Run ``processor`` over ``items``, at most ``max_concurrent`` at a time.

    Results keep the order of ``items``.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def bounded(item: T) -> Any:
        async with semaphore:
            return await processor(item)

    return await asyncio.gather(*(bounded(item) for item in items), return_exceptions=return_exceptions)


__all__ = [
    "TRANSIENT_ERRORS",
    "RetryPolicy",
    "retry_async",
    "with_timeout",
    "CircuitState",
    "CircuitBreaker",
    "process_concurrent",
]
