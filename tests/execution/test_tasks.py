"""
Tests for hinge.execution.tasks, async_node and logic_points.
"""

import asyncio

import pytest

from hinge.core.errors import ExecutionError, NotFoundError, TimeoutError, ValidationError
from hinge.execution.async_node import AsyncNodeStatus, cancel_async_node, create_async_node, execute_async_node
from hinge.execution.logic_points import (
    LogicPointConfig,
    LogicPointContext,
    LogicPointManager,
    LogicPointResult,
    LogicPointType,
)
from hinge.execution.tasks import TaskManager, TaskStatus


class TestTaskManager:
    """Test the bounded priority task queue."""

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        """run() enqueues and waits."""

        async def work():
            return 3

        manager = TaskManager()
        assert await manager.run(work, name="three") == 3
        assert manager.get_stats().completed == 1

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """No more than max_concurrent tasks run at once."""
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        manager = TaskManager(max_concurrent=2)
        for i in range(6):
            manager.enqueue(work, name=f"t{i}")
        await manager.wait_all()
        assert peak == 2
        assert manager.get_stats().completed == 6

    @pytest.mark.asyncio
    async def test_priority_order(self):
        """Higher priority pending tasks start first; equal priorities keep FIFO."""
        order = []
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        def record(name):
            async def run():
                order.append(name)

            return run

        manager = TaskManager(max_concurrent=1)
        manager.enqueue(blocker, name="blocker")
        manager.enqueue(record("low"), priority=0)
        manager.enqueue(record("high"), priority=5)
        manager.enqueue(record("low-2"), priority=0)
        assert [t.name for t in manager.get_running()] == ["blocker"]
        assert [t.priority for t in manager.get_pending()] == [5, 0, 0]
        gate.set()
        await manager.wait_all()
        assert order == ["high", "low", "low-2"]
        assert manager.get_pending() == []

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_raised(self):
        """A failing task is FAILED and wait_for re-raises its error."""

        async def fail():
            raise RuntimeError("broken")

        manager = TaskManager()
        task = manager.enqueue(fail)
        with pytest.raises(RuntimeError, match="broken"):
            await manager.wait_for(task.id)
        assert manager.get(task.id).status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_default_timeout(self):
        """Tasks without a timeout use the manager default."""

        async def slow():
            await asyncio.sleep(1)

        manager = TaskManager(default_timeout_ms=20)
        with pytest.raises(TimeoutError):
            await manager.run(slow)

    @pytest.mark.asyncio
    async def test_cancel_pending_only(self):
        """Pending tasks can be cancelled; running ones cannot."""
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        async def never():
            raise AssertionError("cancelled task ran")

        manager = TaskManager(max_concurrent=1)
        running = manager.enqueue(blocker)
        pending = manager.enqueue(never)

        assert manager.cancel(running.id) is False
        assert manager.cancel(pending.id) is True
        with pytest.raises(ExecutionError, match="cancelled"):
            await manager.wait_for(pending.id)

        gate.set()
        await manager.wait_all()
        assert manager.get_stats().to_dict()["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_listeners_and_unknown_ids(self):
        """Listeners see lifecycle events; unknown ids raise NotFoundError."""
        events = []

        async def work():
            return None

        manager = TaskManager()
        unsubscribe = manager.on(lambda e: events.append(e.type))
        await manager.run(work)
        unsubscribe()
        assert events == ["started", "completed"]

        with pytest.raises(NotFoundError):
            await manager.wait_for("missing")

    @pytest.mark.asyncio
    async def test_cleanup_and_limits(self):
        """cleanup() forgets finished tasks; limits below one are rejected."""

        async def work():
            return None

        manager = TaskManager()
        await manager.run(work)
        assert manager.cleanup() == 1
        assert manager.get_all() == []
        with pytest.raises(ValueError):
            manager.set_max_concurrent(0)


class TestAsyncNode:
    """Test status-tracked operations."""

    @pytest.mark.asyncio
    async def test_success(self):
        """A successful run records result and timing."""

        async def work():
            return "ok"

        node = await execute_async_node(create_async_node("work", work))
        assert node.status == AsyncNodeStatus.COMPLETED
        assert node.result == "ok"
        assert node.duration_ms is not None
        assert node.to_dict()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_failure_recorded(self):
        """Failures are recorded on the node, not raised."""

        async def fail():
            raise RuntimeError("nope")

        node = await execute_async_node(create_async_node("fail", fail))
        assert node.status == AsyncNodeStatus.FAILED
        assert node.error == "nope"

    @pytest.mark.asyncio
    async def test_cancelled_node_does_not_run(self):
        """A node cancelled while pending is left alone."""

        async def work():
            raise AssertionError("should not run")

        node = create_async_node("work", work)
        assert cancel_async_node(node)
        await execute_async_node(node)
        assert node.status == AsyncNodeStatus.CANCELLED
        assert not cancel_async_node(node)


class TestLogicPoints:
    """Test logic point execution."""

    @pytest.mark.asyncio
    async def test_sequence_feeds_outputs(self):
        """Each point receives the previous output as input."""
        manager = LogicPointManager()

        async def double(ctx):
            return LogicPointResult(output=ctx.input * 2)

        a = manager.create("a", LogicPointType.CHECKPOINT, double)
        b = manager.create("b", "checkpoint", double)
        results = await manager.execute_sequence([a.id, b.id], LogicPointContext(input=3))
        assert [r.output for r in results] == [6, 12]

    @pytest.mark.asyncio
    async def test_sequence_stops_on_skip(self):
        """A skip result ends the sequence."""
        manager = LogicPointManager()

        async def skip(ctx):
            return LogicPointResult(output=ctx.input, skip=True)

        async def never(ctx):
            raise AssertionError("should not run")

        a = manager.create("a", LogicPointType.ENTRY, skip)
        b = manager.create("b", LogicPointType.EXIT, never)
        results = await manager.execute_sequence([a.id, b.id], LogicPointContext(input=1))
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_fallback_after_retries(self):
        """After every retry fails the fallback is returned."""
        attempts = 0

        async def flaky(ctx):
            nonlocal attempts
            attempts += 1
            raise RuntimeError("down")

        manager = LogicPointManager()
        point = manager.create(
            "flaky",
            LogicPointType.CHECKPOINT,
            flaky,
            LogicPointConfig(retry_on_failure=True, max_retries=2, retry_delay_ms=1, fallback="default"),
        )
        result = await manager.execute(point.id, LogicPointContext())
        assert result.output == "default"
        assert result.used_fallback
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_error_without_fallback(self):
        """Without a fallback the error propagates."""

        async def fail(ctx):
            raise RuntimeError("down")

        manager = LogicPointManager()
        point = manager.create("fail", LogicPointType.CHECKPOINT, fail)
        with pytest.raises(RuntimeError):
            await manager.execute(point.id, LogicPointContext())
        with pytest.raises(NotFoundError):
            await manager.execute("missing", LogicPointContext())

    @pytest.mark.asyncio
    async def test_decision_branches(self):
        """Decision output selects the branch; booleans map to true/false."""
        manager = LogicPointManager()

        async def decide(ctx):
            return LogicPointResult(output=ctx.input > 10)

        async def big(ctx):
            return LogicPointResult(output=("big", ctx.metadata["decision_result"]))

        async def small(ctx):
            return LogicPointResult(output="small")

        decision = manager.create("decide", LogicPointType.DECISION, decide)
        big_point = manager.create("big", LogicPointType.EXIT, big)
        small_point = manager.create("small", LogicPointType.EXIT, small)
        branches = {"true": big_point.id, "default": small_point.id}

        result = await manager.execute_decision(decision.id, LogicPointContext(input=50), branches)
        assert result.output == ("big", True)
        result = await manager.execute_decision(decision.id, LogicPointContext(input=1), branches)
        assert result.output == "small"

        with pytest.raises(ValidationError):
            await manager.execute_decision(decision.id, LogicPointContext(input=1), {"true": big_point.id})

    def test_lookup_helpers(self):
        """get_by_name, get_by_type and remove."""

        async def handler(ctx):
            return LogicPointResult()

        manager = LogicPointManager()
        point = manager.create("entry", LogicPointType.ENTRY, handler)
        assert manager.get_by_name("entry") is point
        assert manager.get_by_type("entry") == [point]
        assert manager.remove(point.id)
        assert manager.size == 0
