"""Async nodes - trackable wrappers around a single async operation.

An :class:`AsyncNode` records status and timing for one execution of an
:class:`~hinge.execution.runner.AsyncOperation`, so UIs and diagnostics can
show what ran, for how long and how it ended.

Status flow::

    pending ──► running ──► completed
       │           │
       │           └──► failed
       └──────► cancelled (pending or running only)

Cancellation marks the node; a running operation is not interrupted and its
late result is ignored.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hinge.core.errors import error_message
from hinge.core.logging import get_logger
from hinge.execution.retry import RetryPolicy
from hinge.execution.runner import AsyncOperation, AsyncOperationRunner

logger = get_logger(__name__)


class AsyncNodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AsyncNode:
    """One tracked execution of an async operation."""

    operation: AsyncOperation
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AsyncNodeStatus = AsyncNodeStatus.PENDING
    result: Any = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.operation.name

    @property
    def duration_ms(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None

    @property
    def is_finished(self) -> bool:
        return self.status in (
            AsyncNodeStatus.COMPLETED,
            AsyncNodeStatus.FAILED,
            AsyncNodeStatus.CANCELLED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
        }


def create_async_node(
    name: str,
    execute: Callable[[], Awaitable[Any]],
    *,
    timeout_ms: float | None = None,
    retry: RetryPolicy | None = None,
) -> AsyncNode:
    """Wrap ``execute`` in a pending :class:`AsyncNode`."""
    operation = AsyncOperation(name=name, execute=execute, timeout_ms=timeout_ms, retry=retry)
    return AsyncNode(operation=operation)


async def execute_async_node(node: AsyncNode, runner: AsyncOperationRunner | None = None) -> AsyncNode:
    """Run a pending node through ``runner``; failures are recorded, not raised."""
    if node.status != AsyncNodeStatus.PENDING:
        return node

    runner = runner or AsyncOperationRunner()
    node.status = AsyncNodeStatus.RUNNING
    node.started_at = datetime.now(UTC)
    try:
        result = await runner.run(node.operation)
    except Exception as exc:
        if node.status == AsyncNodeStatus.RUNNING:
            node.status = AsyncNodeStatus.FAILED
            node.error = error_message(exc)
            logger.warning("async_node.failed", node_id=node.id, name=node.name, error=node.error)
    else:
        if node.status == AsyncNodeStatus.RUNNING:
            node.status = AsyncNodeStatus.COMPLETED
            node.result = result
    if node.completed_at is None:
        node.completed_at = datetime.now(UTC)
    return node


def cancel_async_node(node: AsyncNode) -> bool:
    """Mark a pending or running node cancelled. Returns False otherwise."""
    if node.status not in (AsyncNodeStatus.PENDING, AsyncNodeStatus.RUNNING):
        return False
    node.status = AsyncNodeStatus.CANCELLED
    node.completed_at = datetime.now(UTC)
    logger.info("async_node.cancelled", node_id=node.id, name=node.name)
    return True


__all__ = [
    "AsyncNode",
    "AsyncNodeStatus",
    "create_async_node",
    "execute_async_node",
    "cancel_async_node",
]
