"""
Async Operation Runner - timeout, retry, de-duplication and batching.

Manifesto:
    The scheduler, the flow engine and ad-hoc plugin code all need the same
    handful of execution shapes for named asynchronous units. Centralising
    them keeps timeout and retry semantics identical everywhere.

    - **Races, not preemption:** a timed-out operation keeps running, its
      result is discarded
    - **Retry wraps timeout:** every attempt gets the full timeout
    - **Callbacks never mask outcomes:** on_success/on_error/on_finally
      failures are logged and swallowed
    - **Single-flight by id:** concurrent ``run_by_id`` callers share one run

Architecture:
    ::

        run(op)
          │
          ├─ retry(op.retry)
          │     └─ run_with_timeout(op.execute(), op.timeout_ms)
          │
          ├─ success → on_success(result)
          ├─ failure → on_error(error)        (error re-raised)
          └─ always  → on_finally()

        run_by_id(id) ──► _running[id] shared future ──► run(op)
        run_parallel(ops)            fail-fast, input order
        run_sequence(ops)            strict order
        run_with_concurrency(ops, n) ≤ n in flight, input order

Examples:
    >>> runner = AsyncOperationRunner()
    >>> op = create_async_operation("price", fetch_price, timeout_ms=2_000,
    ...                             retry=RetryPolicy(max_attempts=3, delay_ms=200))
    >>> price = await runner.run(op)

    >>> runner.register(op)
    >>> a, b = await asyncio.gather(runner.run_by_id(op.id), runner.run_by_id(op.id))
    >>> # fetch_price ran once; a == b

Guardrails:
    ❌ DON'T: rely on a timed-out operation being stopped
    ✅ DO: make side effects idempotent or check a cancellation marker

Tags:
    async, timeout, retry, single-flight, concurrency, hinge-core

Doc-Types:
    - API Reference
    - Concurrency Guide
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from hinge.core.errors import NotFoundError
from hinge.core.logging import get_logger
from hinge.execution.retry import RetryPolicy, retry_with_timeout

logger = get_logger(__name__)


@dataclass
class AsyncOperation:
    """A named asynchronous unit of work.

    Attributes:
        name: Human-readable name, used in logs and timeout messages.
        execute: Zero-argument coroutine function.
        id: Stable identifier for ``register``/``run_by_id``.
        timeout_ms: Optional deadline per attempt.
        retry: Optional retry policy.
        on_success: Called with the result.
        on_error: Called with the final error.
        on_finally: Called after either outcome.
    """

    name: str
    execute: Callable[[], Awaitable[Any]]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timeout_ms: float | None = None
    retry: RetryPolicy | None = None
    on_success: Callable[[Any], Any] | None = None
    on_error: Callable[[BaseException], Any] | None = None
    on_finally: Callable[[], Any] | None = None


def create_async_operation(
    name: str,
    execute: Callable[[], Awaitable[Any]],
    **options: Any,
) -> AsyncOperation:
    """Build an :class:`AsyncOperation` with a generated id."""
    return AsyncOperation(name=name, execute=execute, **options)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AsyncOperationRunner:
    """Runs :class:`AsyncOperation` instances with timeout and retry.

    Parameters
    ----------
    default_timeout_ms : float | None
        Applied when an operation has no ``timeout_ms`` (runtime
        ``task_timeout_ms``).
    default_concurrency : int
        Limit used by :meth:`run_with_concurrency` when none is given
        (runtime ``max_concurrent_tasks``).
    """

    def __init__(
        self,
        default_timeout_ms: float | None = None,
        default_concurrency: int = 10,
    ) -> None:
        self.default_timeout_ms = default_timeout_ms
        self.default_concurrency = default_concurrency
        self._operations: dict[str, AsyncOperation] = {}
        self._running: dict[str, asyncio.Future[Any]] = {}

    # ── Registration ─────────────────────────────────────────────────

    def register(self, operation: AsyncOperation) -> str:
        """Register ``operation`` for :meth:`run_by_id`. Returns its id."""
        self._operations[operation.id] = operation
        logger.debug("runner.registered", operation_id=operation.id, name=operation.name)
        return operation.id

    def unregister(self, operation_id: str) -> bool:
        return self._operations.pop(operation_id, None) is not None

    def get(self, operation_id: str) -> AsyncOperation | None:
        return self._operations.get(operation_id)

    def is_running(self, operation_id: str) -> bool:
        """True while a ``run_by_id`` execution for the id is in flight."""
        return operation_id in self._running

    # ── Execution ────────────────────────────────────────────────────

    async def run(self, operation: AsyncOperation) -> Any:
        """Execute ``operation`` with its timeout, retry policy and callbacks.

        Raises:
            TimeoutError: The last attempt exceeded ``timeout_ms``.
            Exception: Whatever the last attempt raised.
        """
        timeout_ms = operation.timeout_ms if operation.timeout_ms is not None else self.default_timeout_ms
        logger.debug("runner.start", operation=operation.name, operation_id=operation.id)
        try:
            result = await retry_with_timeout(
                operation.execute, operation.retry, timeout_ms, operation.name
            )
        except Exception as exc:
            logger.warning("runner.failed", operation=operation.name, error=str(exc))
            await self._callback(operation, "on_error", operation.on_error, exc)
            raise
        else:
            await self._callback(operation, "on_success", operation.on_success, result)
            return result
        finally:
            await self._callback(operation, "on_finally", operation.on_finally)

    async def _callback(
        self,
        operation: AsyncOperation,
        kind: str,
        callback: Callable[..., Any] | None,
        *args: Any,
    ) -> None:
        if callback is None:
            return
        try:
            await _maybe_await(callback(*args))
        except Exception as exc:
            logger.error(
                "runner.callback_failed",
                operation=operation.name,
                callback=kind,
                error=str(exc),
            )

    async def run_by_id(self, operation_id: str) -> Any:
        """Run a registered operation; concurrent callers share one execution.

        Raises:
            NotFoundError: No operation registered under ``operation_id``.
        """
        pending = self._running.get(operation_id)
        if pending is not None:
            return await asyncio.shield(pending)

        operation = self._operations.get(operation_id)
        if operation is None:
            raise NotFoundError("operation", operation_id)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._running[operation_id] = future
        try:
            result = await self.run(operation)
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(exc)
                future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._running.get(operation_id) is future:
                del self._running[operation_id]

    async def run_parallel(self, operations: Sequence[AsyncOperation]) -> list[Any]:
        """Run all operations concurrently.

        Fail-fast: the first failure is raised as soon as it happens; sibling
        operations are left to finish in the background and their results are
        discarded. On success results are returned in input order.
        """
        if not operations:
            return []
        tasks = [asyncio.ensure_future(self.run(op)) for op in operations]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.add_done_callback(_consume_outcome)
            raise

    async def run_sequence(self, operations: Sequence[AsyncOperation]) -> list[Any]:
        """Run operations one after another; stops at the first failure."""
        results: list[Any] = []
        for operation in operations:
            results.append(await self.run(operation))
        return results

    async def run_with_concurrency(
        self,
        operations: Sequence[AsyncOperation],
        limit: int | None = None,
    ) -> list[Any]:
        """Run operations with at most ``limit`` executing at any time.

        A fixed pool of ``limit`` workers pulls from a queue, so a finished
        slot is refilled by the next queued operation. Results are returned
        in input order. Fail-fast: after the first failure no further queued
        operations start, in-flight ones finish, and the error is raised.
        """
        if limit is None:
            limit = self.default_concurrency
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        results: list[Any] = [None] * len(operations)
        queue = list(enumerate(operations))
        queue.reverse()
        failure: list[BaseException] = []

        async def worker() -> None:
            while queue and not failure:
                index, operation = queue.pop()
                try:
                    results[index] = await self.run(operation)
                except Exception as exc:
                    failure.append(exc)

        await asyncio.gather(*(worker() for _ in range(min(limit, len(operations)))))
        if failure:
            raise failure[0]
        return results

    def clear(self) -> None:
        """Forget registered operations and in-flight markers."""
        self._operations.clear()
        self._running.clear()

    @property
    def operation_count(self) -> int:
        return len(self._operations)


def _consume_outcome(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


__all__ = ["AsyncOperation", "AsyncOperationRunner", "create_async_operation"]
