"""
Task manager - a priority queue of async tasks with bounded concurrency.

Manifesto:
    Ad-hoc background work submitted by plugins (``engine.schedule_task``)
    must not starve the runtime. The manager admits at most
    ``max_concurrent`` tasks at once, orders the backlog by priority, and
    lets ``stop()`` wait for everything in flight.

Architecture:
    ::

        enqueue(fn, priority) ──► _queue (priority desc, FIFO on ties)
                                     │
                         _process_queue()  while running < max_concurrent
                                     │
                                     ▼
                     asyncio.Task ─ run_with_timeout(fn(), timeout_ms)
                                     │
                     completed / failed ──► listeners(TaskEvent)

Tags:
    tasks, queue, concurrency, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hinge.core.errors import ExecutionError, NotFoundError, error_message
from hinge.core.logging import get_logger
from hinge.execution.timeout import run_with_timeout

logger = get_logger(__name__)

AUTO_CLEANUP_THRESHOLD = 1000


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Task:
    """A unit of queued work and its outcome."""

    execute: Callable[[], Awaitable[Any]]
    name: str = "Unnamed Task"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.PENDING
    timeout_ms: float | None = None
    priority: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: BaseException | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass
class TaskEvent:
    type: str  # started, completed, failed, cancelled
    task: Task


@dataclass
class TaskStats:
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


TaskListener = Callable[[TaskEvent], Any]


class TaskManager:
    """Priority queue with at most ``max_concurrent`` tasks running.

    Parameters
    ----------
    max_concurrent : int
        Concurrency bound (runtime ``max_concurrent_tasks``).
    default_timeout_ms : float | None
        Applied to tasks enqueued without a timeout (runtime ``task_timeout_ms``).
    """

    def __init__(self, max_concurrent: int = 10, default_timeout_ms: float | None = None) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._default_timeout_ms = default_timeout_ms
        self._tasks: dict[str, Task] = {}
        self._queue: list[str] = []
        self._running: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[TaskListener] = []

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def set_max_concurrent(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {value}")
        self._max_concurrent = value
        self._process_queue()

    # ── Submission ───────────────────────────────────────────────────

    def enqueue(
        self,
        execute: Callable[[], Awaitable[Any]],
        *,
        name: str = "Unnamed Task",
        timeout_ms: float | None = None,
        priority: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        """Queue ``execute``; must be called with a running event loop."""
        task = Task(
            execute=execute,
            name=name,
            timeout_ms=timeout_ms if timeout_ms is not None else self._default_timeout_ms,
            priority=priority,
            metadata=metadata or {},
        )
        self._tasks[task.id] = task
        self._queue.append(task.id)
        # stable sort keeps FIFO order among equal priorities
        self._queue.sort(key=lambda tid: -self._tasks[tid].priority)
        logger.debug("task.queued", task_id=task.id, name=name, priority=priority)
        self._process_queue()
        return task

    async def run(self, execute: Callable[[], Awaitable[Any]], **options: Any) -> Any:
        """Enqueue and wait for the result."""
        task = self.enqueue(execute, **options)
        return await self.wait_for(task.id)

    async def wait_for(self, task_id: str) -> Any:
        """Wait for a task and return its result.

        Raises:
            NotFoundError: Unknown task id.
            ExecutionError: The task was cancelled.
            Exception: The task's own error.
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        await task._done.wait()
        if task.status == TaskStatus.CANCELLED:
            raise ExecutionError(f"Task was cancelled: {task.name}").with_context(task_id=task_id)
        if task.status == TaskStatus.FAILED and task.error is not None:
            raise task.error
        return task.result

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Running tasks cannot be cancelled."""
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return False
        task.status = TaskStatus.CANCELLED
        task.completed_at = datetime.now(UTC)
        if task_id in self._queue:
            self._queue.remove(task_id)
        task._done.set()
        self._emit(TaskEvent("cancelled", task))
        return True

    # ── Inspection ───────────────────────────────────────────────────

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_all(self) -> list[Task]:
        return list(self._tasks.values())

    def get_pending(self) -> list[Task]:
        return [self._tasks[tid] for tid in self._queue if tid in self._tasks]

    def get_running(self) -> list[Task]:
        return [self._tasks[tid] for tid in self._running if tid in self._tasks]

    def get_stats(self) -> TaskStats:
        stats = TaskStats(total=len(self._tasks))
        for task in self._tasks.values():
            current = getattr(stats, task.status.value)
            setattr(stats, task.status.value, current + 1)
        return stats

    # ── Events ───────────────────────────────────────────────────────

    def on(self, listener: TaskListener) -> Callable[[], None]:
        """Subscribe to task events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.error("task.listener_failed", task_event=event.type, error=str(exc))

    # ── Processing ───────────────────────────────────────────────────

    def _process_queue(self) -> None:
        while self._queue and len(self._running) < self._max_concurrent:
            task_id = self._queue.pop(0)
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.PENDING:
                continue
            task.status = TaskStatus.RUNNING
            task.started_at = datetime.now(UTC)
            self._running[task_id] = asyncio.get_running_loop().create_task(
                self._execute(task), name=f"hinge-task-{task.name}"
            )

    async def _execute(self, task: Task) -> None:
        logger.debug("task.started", task_id=task.id, name=task.name)
        self._emit(TaskEvent("started", task))
        try:
            task.result = await run_with_timeout(task.execute(), task.timeout_ms, task.name)
        except Exception as exc:
            task.error = exc
            task.status = TaskStatus.FAILED
            task.completed_at = datetime.now(UTC)
            logger.error("task.failed", task_id=task.id, name=task.name, error=error_message(exc))
            self._emit(TaskEvent("failed", task))
        else:
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now(UTC)
            logger.debug("task.completed", task_id=task.id, name=task.name)
            self._emit(TaskEvent("completed", task))
        finally:
            task._done.set()
            self._running.pop(task.id, None)
            if len(self._tasks) > AUTO_CLEANUP_THRESHOLD:
                self.cleanup()
            self._process_queue()

    async def wait_all(self) -> None:
        """Wait until the queue is empty and nothing is running."""
        while self._queue or self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)
            if self._queue and not self._running:
                self._process_queue()

    def cleanup(self) -> int:
        """Forget finished tasks. Returns the number removed."""
        finished = [tid for tid, t in self._tasks.items() if t.is_finished]
        for tid in finished:
            del self._tasks[tid]
        logger.debug("task.cleanup", removed=len(finished))
        return len(finished)

    def clear(self) -> None:
        """Drop the queue and history; running asyncio tasks are cancelled."""
        for running in self._running.values():
            running.cancel()
        self._queue.clear()
        self._running.clear()
        self._tasks.clear()
        logger.info("task_manager.cleared")


__all__ = ["Task", "TaskEvent", "TaskManager", "TaskStats", "TaskStatus"]
