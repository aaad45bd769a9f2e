"""Retry policies for async operations.

Provides a small policy object and helpers used by the operation runner,
the executor and logic points:

- :class:`RetryPolicy` - attempts, fixed delay, optional backoff and cap
- :func:`retry` - run an async callable until it succeeds or attempts run out
- :func:`retry_if` - retry only when a predicate accepts the error
- :func:`with_retry` - decorator form
- :func:`retry_with_timeout` - every attempt raced against a timeout

The error from the last attempt surfaces unchanged.

Example:
    >>> policy = RetryPolicy(max_attempts=3, delay_ms=250)
    >>> result = await retry(lambda: client.fetch("eth"), policy)

Tags:
    retry, backoff, resilience, execution, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from hinge.core.logging import get_logger
from hinge.execution.timeout import run_with_timeout

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

OnRetry = Callable[[int, BaseException, float], Any]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between.

    Attributes:
        max_attempts: Total attempts, including the first one.
        delay_ms: Delay before the second attempt.
        backoff_multiplier: Growth factor per attempt (1.0 = fixed delay).
        max_delay_ms: Upper bound for any single delay.
    """

    max_attempts: int = 3
    delay_ms: float = 1000
    backoff_multiplier: float = 1.0
    max_delay_ms: float = 30_000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")


def calculate_retry_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay in milliseconds after the given (1-based) failed attempt."""
    delay = policy.delay_ms * (policy.backoff_multiplier ** (attempt - 1))
    return min(delay, policy.max_delay_ms)


async def retry_if(
    fn: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool],
    policy: RetryPolicy | None = None,
    on_retry: OnRetry | None = None,
) -> T:
    """Run ``fn`` with retries, retrying only errors ``should_retry`` accepts."""
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            delay = calculate_retry_delay(attempt, policy)
            logger.debug(
                "retry.attempt_failed",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_ms=delay,
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await asyncio.sleep(delay / 1000)


async def retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: OnRetry | None = None,
) -> T:
    """Run ``fn`` until it succeeds or ``policy.max_attempts`` is reached."""
    return await retry_if(fn, lambda _: True, policy, on_retry)


async def retry_with_timeout(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None,
    timeout_ms: float | None,
    operation: str = "operation",
) -> T:
    """Retry ``fn`` with each attempt raced against ``timeout_ms``."""

    async def attempt() -> T:
        return await run_with_timeout(fn(), timeout_ms, operation)

    if policy is None:
        return await attempt()
    return await retry(attempt, policy)


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: OnRetry | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator factory adding retry logic to an async function.

    Example:
        >>> @with_retry(RetryPolicy(max_attempts=5, delay_ms=100))
        ... async def flaky():
        ...     return await call_api()
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry(lambda: func(*args, **kwargs), policy, on_retry)

        return wrapper

    return decorator


__all__ = [
    "RetryPolicy",
    "calculate_retry_delay",
    "retry",
    "retry_if",
    "retry_with_timeout",
    "with_retry",
]
