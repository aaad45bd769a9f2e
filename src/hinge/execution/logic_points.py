"""Logic points - named decision and checkpoint handlers.

A logic point is a small async handler placed at a well-known position of a
larger procedure (entry, exit, checkpoint, decision, merge). The manager runs
points with an optional timeout, retries and a fallback value, chains them in
sequence, and routes decisions to branches.

Example::

    manager = LogicPointManager()
    check = manager.create("balance-ok", LogicPointType.DECISION, is_balance_ok)
    buy = manager.create("buy", LogicPointType.CHECKPOINT, place_order)
    skip = manager.create("skip", LogicPointType.EXIT, log_skip)

    result = await manager.execute_decision(
        check.id, LogicPointContext(input=order), {"true": buy.id, "default": skip.id}
    )

Tags:
    logic-point, decision, checkpoint, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from hinge.core.errors import NotFoundError, ValidationError
from hinge.core.logging import get_logger
from hinge.execution.retry import RetryPolicy, retry_with_timeout

logger = get_logger(__name__)

_NO_FALLBACK = object()


class LogicPointType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    CHECKPOINT = "checkpoint"
    DECISION = "decision"
    MERGE = "merge"


@dataclass
class LogicPointContext:
    input: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LogicPointResult:
    """What a handler returns: its output, optional next points, skip flag."""

    output: Any = None
    next_points: list[str] = field(default_factory=list)
    skip: bool = False
    used_fallback: bool = False


LogicPointHandler = Callable[[LogicPointContext], Awaitable[LogicPointResult]]


@dataclass
class LogicPointConfig:
    """Execution options for one logic point.

    ``fallback`` is returned as the output when every attempt fails; leave
    it unset to propagate the error instead.
    """

    timeout_ms: float | None = None
    retry_on_failure: bool = False
    max_retries: int = 0
    retry_delay_ms: float = 1000
    fallback: Any = _NO_FALLBACK

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not _NO_FALLBACK


@dataclass
class LogicPoint:
    name: str
    type: LogicPointType
    handler: LogicPointHandler
    config: LogicPointConfig = field(default_factory=LogicPointConfig)
    description: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def _branch_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class LogicPointManager:
    """Registry and executor for :class:`LogicPoint` handlers."""

    def __init__(self) -> None:
        self._points: dict[str, LogicPoint] = {}

    def create(
        self,
        name: str,
        type: LogicPointType | str,
        handler: LogicPointHandler,
        config: LogicPointConfig | None = None,
        description: str | None = None,
    ) -> LogicPoint:
        point = LogicPoint(
            name=name,
            type=LogicPointType(type),
            handler=handler,
            config=config or LogicPointConfig(),
            description=description,
        )
        self._points[point.id] = point
        logger.debug("logic_point.created", name=name, type=point.type.value)
        return point

    def get(self, point_id: str) -> LogicPoint | None:
        return self._points.get(point_id)

    def get_by_name(self, name: str) -> LogicPoint | None:
        for point in self._points.values():
            if point.name == name:
                return point
        return None

    def _require(self, point_id: str) -> LogicPoint:
        point = self._points.get(point_id)
        if point is None:
            raise NotFoundError("logic point", point_id)
        return point

    async def execute(self, point_id: str, context: LogicPointContext) -> LogicPointResult:
        """Run one point with its timeout, retries and fallback.

        Raises:
            NotFoundError: Unknown ``point_id``.
            Exception: The handler's last error when no fallback is configured.
        """
        point = self._require(point_id)
        config = point.config
        policy = None
        if config.retry_on_failure and config.max_retries > 0:
            policy = RetryPolicy(max_attempts=config.max_retries, delay_ms=config.retry_delay_ms)

        logger.debug("logic_point.execute", name=point.name)
        try:
            return await retry_with_timeout(
                lambda: point.handler(context),
                policy,
                config.timeout_ms,
                f"Logic point {point.name}",
            )
        except Exception as exc:
            if config.has_fallback:
                logger.warning("logic_point.fallback", name=point.name, error=str(exc))
                return LogicPointResult(output=config.fallback, used_fallback=True)
            raise

    async def execute_sequence(
        self,
        point_ids: Sequence[str],
        context: LogicPointContext,
    ) -> list[LogicPointResult]:
        """Run points in order, feeding each output to the next input.

        Stops after a result with ``skip`` set.
        """
        results: list[LogicPointResult] = []
        current = context
        for point_id in point_ids:
            result = await self.execute(point_id, current)
            results.append(result)
            if result.skip:
                break
            current = replace(current, input=result.output)
        return results

    async def execute_decision(
        self,
        point_id: str,
        context: LogicPointContext,
        branches: Mapping[str, str],
    ) -> LogicPointResult:
        """Run a decision point, then the branch its output selects.

        The output is matched by its string form (booleans as ``"true"`` /
        ``"false"``), falling back to the ``"default"`` branch.
        """
        decision = await self.execute(point_id, context)
        key = _branch_key(decision.output)
        next_id = branches.get(key, branches.get("default"))
        if next_id is None:
            raise ValidationError(f"No branch found for decision result: {key}", field="branches", value=key)
        return await self.execute(
            next_id,
            LogicPointContext(
                input=context.input,
                metadata={**context.metadata, "decision_result": decision.output},
            ),
        )

    def remove(self, point_id: str) -> bool:
        return self._points.pop(point_id, None) is not None

    def get_all(self) -> list[LogicPoint]:
        return list(self._points.values())

    def get_by_type(self, type: LogicPointType | str) -> list[LogicPoint]:
        wanted = LogicPointType(type)
        return [p for p in self._points.values() if p.type == wanted]

    def clear(self) -> None:
        self._points.clear()

    @property
    def size(self) -> int:
        return len(self._points)


__all__ = [
    "LogicPoint",
    "LogicPointConfig",
    "LogicPointContext",
    "LogicPointHandler",
    "LogicPointManager",
    "LogicPointResult",
    "LogicPointType",
]
