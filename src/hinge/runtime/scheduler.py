"""
Scheduler - recurring in-process tasks on intervals or simple cron patterns.

Manifesto:
    Plugins need "every 30 seconds" and "hourly" jobs, not a calendar
    engine. The scheduler turns an interval or a restricted cron expression
    into a fixed period and fires the task on an asyncio timer.

    - **Restricted cron:** presets plus ``*/n`` minutes or hours; anything
      else is rejected up front
    - **Failures are counted, not raised:** a failing task never stops the
      scheduler
    - **Overlap allowed:** each firing is its own asyncio task; a slow run
      does not delay the next firing

Architecture:
    ::

        schedule(fn, interval_ms | cron)
            └─► ScheduledTask(period_ms)
                     │ start()
                     ▼
            _timer(task): sleep(period) ─► _fire(task) ─► create_task(_run_task)
                                                               │
                              AsyncOperationRunner.run(fn, timeout=task_timeout_ms)
                                 ok   → run_count += 1, last_run
                                 fail → error_count += 1, scheduler:task:error
                                 both → next_run (run_once tasks disable on start)

Cron presets:
    ::

        @yearly   365 days     @daily    24 hours
        @monthly   30 days     @hourly    1 hour
        @weekly     7 days     @minutely  1 minute

        */n * * * *     every n minutes
        0 */n * * *     every n hours   (minute field 0 or *)

Guardrails:
    ❌ DON'T: expect wall-clock alignment ("at minute 0")
    ✅ DO: treat every schedule as a fixed period from ``start()``

Tags:
    scheduler, interval, cron, asyncio, hinge-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from hinge.core.errors import NotFoundError, ValidationError, error_message
from hinge.core.logging import get_logger
from hinge.execution.runner import AsyncOperation, AsyncOperationRunner
from hinge.hooks.dispatcher import HookDispatcher
from hinge.hooks.events import HookEvent, TaskEvent

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

CRON_PRESETS: dict[str, int] = {
    "@yearly": 365 * DAY_MS,
    "@monthly": 30 * DAY_MS,
    "@weekly": 7 * DAY_MS,
    "@daily": DAY_MS,
    "@hourly": HOUR_MS,
    "@minutely": MINUTE_MS,
}


def _step(field_value: str) -> int | None:
    if not field_value.startswith("*/"):
        return None
    digits = field_value[2:]
    if not digits.isdigit() or int(digits) < 1:
        return None
    return int(digits)


def parse_cron(expr: str) -> int:
    """Convert a supported cron expression into a period in milliseconds.

    Raises:
        ValidationError: Unsupported syntax.
    """
    expr = expr.strip()
    if expr in CRON_PRESETS:
        return CRON_PRESETS[expr]

    parts = expr.split()
    if len(parts) == 5 and all(p == "*" for p in parts[2:]):
        minute, hour = parts[0], parts[1]
        minutes = _step(minute)
        if minutes is not None and hour == "*":
            return minutes * MINUTE_MS
        hours = _step(hour)
        if hours is not None and minute in ("0", "*"):
            return hours * HOUR_MS

    raise ValidationError(
        f'Invalid cron expression: "{expr}". Use @hourly, @daily, @weekly, @monthly, '
        "@yearly, @minutely, or */n minute/hour patterns.",
        field="cron",
        value=expr,
    )


@dataclass
class ScheduledTask:
    """A recurring task and its counters."""

    name: str
    execute: Callable[[], Awaitable[Any]]
    period_ms: int
    interval_ms: int | None = None
    cron: str | None = None
    run_once: bool = False
    enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0
    last_error: str | None = None


@dataclass
class SchedulerStats:
    total: int = 0
    enabled: int = 0
    total_runs: int = 0
    total_errors: int = 0


class Scheduler:
    """Fires :class:`ScheduledTask` instances on asyncio timers.

    Args:
        runner: Executes each firing (timeout applied from ``default_timeout_ms``).
        hooks: When given, ``scheduler:task:run`` / ``scheduler:task:error`` are emitted.
        default_timeout_ms: Per-firing timeout (runtime ``task_timeout_ms``).
    """

    def __init__(
        self,
        runner: AsyncOperationRunner | None = None,
        hooks: HookDispatcher | None = None,
        default_timeout_ms: float | None = None,
    ) -> None:
        self._runner = runner or AsyncOperationRunner()
        self._hooks = hooks
        self._default_timeout_ms = default_timeout_ms
        self._tasks: dict[str, ScheduledTask] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._firings: set[asyncio.Task[None]] = set()
        self._running = False

    # ── Scheduling ───────────────────────────────────────────────────

    def schedule(
        self,
        execute: Callable[[], Awaitable[Any]],
        *,
        name: str = "Unnamed Task",
        interval_ms: int | None = None,
        cron: str | None = None,
        run_once: bool = False,
        immediate: bool = False,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Register a recurring task; it starts at once if the scheduler runs.

        Raises:
            ValidationError: Neither or both of ``interval_ms``/``cron``, a
                non-positive interval, or unsupported cron syntax.
        """
        if interval_ms is None and cron is None:
            raise ValidationError("Either interval or cron must be specified", field="interval_ms")
        if interval_ms is not None and cron is not None:
            raise ValidationError("Specify either interval or cron, not both", field="cron")
        if interval_ms is not None and interval_ms <= 0:
            raise ValidationError("Interval must be a positive number of milliseconds", field="interval_ms", value=interval_ms)

        period = interval_ms if interval_ms is not None else parse_cron(cron)
        task = ScheduledTask(
            name=name,
            execute=execute,
            period_ms=period,
            interval_ms=interval_ms,
            cron=cron,
            run_once=run_once,
            enabled=enabled,
        )
        self._tasks[task.id] = task
        logger.info("scheduler.task_scheduled", task_id=task.id, name=name, period_ms=period, cron=cron)

        if self._running and task.enabled:
            self._start_task(task, immediate)
        return task

    def start(self) -> None:
        """Start firing enabled tasks. Needs a running event loop."""
        if self._running:
            return
        self._running = True
        for task in self._tasks.values():
            if task.enabled:
                self._start_task(task)
        logger.info("scheduler.started", tasks=len(self._tasks))

    def stop(self) -> None:
        """Stop all timers. Firings already in progress finish on their own."""
        self._running = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        logger.info("scheduler.stopped")

    async def drain(self) -> None:
        """Wait for in-progress firings."""
        if self._firings:
            await asyncio.gather(*list(self._firings), return_exceptions=True)

    def _start_task(self, task: ScheduledTask, immediate: bool = False) -> None:
        self._stop_timer(task.id)
        loop = asyncio.get_running_loop()
        task.next_run = datetime.now(UTC) + timedelta(milliseconds=task.period_ms)
        self._timers[task.id] = loop.create_task(self._timer(task), name=f"hinge-scheduler-{task.name}")
        if immediate:
            self._fire(task)
        logger.debug("scheduler.timer_started", name=task.name, period_ms=task.period_ms)

    def _stop_timer(self, task_id: str) -> None:
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()

    async def _timer(self, task: ScheduledTask) -> None:
        interval = task.period_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self._fire(task)

    def _fire(self, task: ScheduledTask) -> None:
        firing = asyncio.get_running_loop().create_task(self._run_task(task))
        self._firings.add(firing)
        firing.add_done_callback(self._firings.discard)

    async def _run_task(self, task: ScheduledTask, *, force: bool = False) -> None:
        if not task.enabled and not force:
            return
        if task.run_once:
            # spent as soon as its firing starts; later ticks see it disabled
            self.disable(task.id)

        logger.debug("scheduler.task_running", task_id=task.id, name=task.name)
        if self._hooks is not None:
            await self._hooks.dispatch(TaskEvent(HookEvent.SCHEDULER_TASK_RUN, task_id=task.id, name=task.name))

        operation = AsyncOperation(name=task.name, execute=task.execute, timeout_ms=self._default_timeout_ms)
        try:
            await self._runner.run(operation)
        except Exception as exc:
            task.error_count += 1
            task.last_error = error_message(exc)
            logger.error("scheduler.task_failed", task_id=task.id, name=task.name, error=task.last_error)
            if self._hooks is not None:
                await self._hooks.dispatch(
                    TaskEvent(HookEvent.SCHEDULER_TASK_ERROR, task_id=task.id, name=task.name, error=task.last_error)
                )
        else:
            task.run_count += 1
            task.last_run = datetime.now(UTC)
            logger.debug("scheduler.task_completed", task_id=task.id, name=task.name)

        if not task.run_once:
            task.next_run = datetime.now(UTC) + timedelta(milliseconds=task.period_ms)

    # ── Per-task control ─────────────────────────────────────────────

    def enable(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.enabled = True
        if self._running:
            self._start_task(task)
        logger.debug("scheduler.task_enabled", name=task.name)
        return True

    def disable(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.enabled = False
        task.next_run = None
        self._stop_timer(task_id)
        logger.debug("scheduler.task_disabled", name=task.name)
        return True

    def remove(self, task_id: str) -> bool:
        self._stop_timer(task_id)
        removed = self._tasks.pop(task_id, None) is not None
        if removed:
            logger.debug("scheduler.task_removed", task_id=task_id)
        return removed

    async def run_now(self, task_id: str) -> None:
        """Run a task immediately, enabled or not, and update its counters.

        Raises:
            NotFoundError: Unknown task id.
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        await self._run_task(task, force=True)

    # ── Inspection ───────────────────────────────────────────────────

    def get(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def get_all(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> SchedulerStats:
        tasks = self._tasks.values()
        return SchedulerStats(
            total=len(self._tasks),
            enabled=sum(1 for t in tasks if t.enabled),
            total_runs=sum(t.run_count for t in tasks),
            total_errors=sum(t.error_count for t in tasks),
        )

    def clear(self) -> None:
        self.stop()
        self._tasks.clear()
        logger.info("scheduler.cleared")


__all__ = [
    "CRON_PRESETS",
    "ScheduledTask",
    "Scheduler",
    "SchedulerStats",
    "parse_cron",
]
