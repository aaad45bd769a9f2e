"""Execution layer - timeouts, retries, operation runner, tasks and logic points.

Modules:
    timeout       run_with_timeout race and Deadline helper
    retry         RetryPolicy and retry helpers
    runner        AsyncOperationRunner (single-flight, parallel, bounded)
    async_node    Status-tracked wrapper around one operation
    logic_points  Named decision/checkpoint handlers
    tasks         Priority task queue with bounded concurrency
"""

from hinge.execution.async_node import (
    AsyncNode,
    AsyncNodeStatus,
    cancel_async_node,
    create_async_node,
    execute_async_node,
)
from hinge.execution.logic_points import (
    LogicPoint,
    LogicPointConfig,
    LogicPointContext,
    LogicPointManager,
    LogicPointResult,
    LogicPointType,
)
from hinge.execution.retry import (
    RetryPolicy,
    calculate_retry_delay,
    retry,
    retry_if,
    retry_with_timeout,
    with_retry,
)
from hinge.execution.runner import AsyncOperation, AsyncOperationRunner, create_async_operation
from hinge.execution.tasks import Task, TaskEvent, TaskManager, TaskStats, TaskStatus
from hinge.execution.timeout import Deadline, deadline, run_with_timeout

__all__ = [
    "AsyncNode",
    "AsyncNodeStatus",
    "AsyncOperation",
    "AsyncOperationRunner",
    "Deadline",
    "LogicPoint",
    "LogicPointConfig",
    "LogicPointContext",
    "LogicPointManager",
    "LogicPointResult",
    "LogicPointType",
    "RetryPolicy",
    "Task",
    "TaskEvent",
    "TaskManager",
    "TaskStats",
    "TaskStatus",
    "calculate_retry_delay",
    "cancel_async_node",
    "create_async_node",
    "create_async_operation",
    "deadline",
    "execute_async_node",
    "retry",
    "retry_if",
    "retry_with_timeout",
    "run_with_timeout",
    "with_retry",
]
