"""
Timeout races for async operations.

Timeouts in hinge are races, not preemption: when the deadline passes the
caller gets a :class:`~hinge.core.errors.TimeoutError`, while the abandoned
operation keeps running in the background and its eventual result (or error)
is discarded. External calls an Action already issued are never aborted
half-way.

Examples:
    >>> result = await run_with_timeout(fetch_quote(), 2_000, operation="quote")

    >>> async with deadline(5_000, operation="batch") as ctx:
    ...     for item in items:
    ...         ctx.check()
    ...         await process(item)

Tags:
    timeout, deadline, resilience, execution, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from hinge.core.errors import TimeoutError
from hinge.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def _discard_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("timeout.abandoned_failed", error=str(exc))


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_ms: float | None,
    operation: str = "operation",
) -> T:
    """Await ``awaitable``, giving up after ``timeout_ms`` milliseconds.

    Args:
        awaitable: Coroutine or future to race against the timer.
        timeout_ms: Deadline in milliseconds. ``None`` or ``0`` waits forever.
        operation: Name used in the timeout error message.

    Raises:
        TimeoutError: The deadline passed first. The operation itself is
            left running and its outcome discarded.
    """
    if not timeout_ms:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout_ms / 1000)
    except asyncio.TimeoutError:
        if task.done():
            # finished on the same tick the timer fired
            return task.result()
        task.add_done_callback(_discard_result)
        raise TimeoutError(timeout_ms=timeout_ms, operation=operation) from None
    except asyncio.CancelledError:
        task.cancel()
        raise


@dataclass
class Deadline:
    """Cooperative deadline tracking (monotonic milliseconds)."""

    timeout_ms: float
    operation: str = "operation"
    started_at: float = field(default_factory=lambda: time.monotonic() * 1000)

    @property
    def elapsed_ms(self) -> float:
        return time.monotonic() * 1000 - self.started_at

    @property
    def remaining_ms(self) -> float:
        return self.timeout_ms - self.elapsed_ms

    def is_expired(self) -> bool:
        return self.remaining_ms <= 0

    def check(self) -> None:
        """Raise :class:`TimeoutError` if the deadline has passed."""
        if self.is_expired():
            raise TimeoutError(timeout_ms=self.timeout_ms, operation=self.operation)


@asynccontextmanager
async def deadline(timeout_ms: float, operation: str = "operation") -> AsyncIterator[Deadline]:
    """Track a deadline across several awaits; call ``check()`` at suspension points."""
    if timeout_ms <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_ms}")
    yield Deadline(timeout_ms=timeout_ms, operation=operation)


__all__ = ["run_with_timeout", "Deadline", "deadline"]
