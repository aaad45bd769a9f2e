"""
Integration tests for hinge.runtime.engine.

Boots a real RuntimeEngine with in-memory plugins and drives it through
initialize → start → stop, exercising actions, providers, evaluators,
scheduling and flows through the facade.
"""

import asyncio

import pytest

from hinge.core.errors import ExecutionError, HingeError, InvalidTransitionError, NotFoundError
from hinge.flow.edges import create_edge
from hinge.flow.models import ExecutionStatus, Flow
from hinge.flow.nodes import create_action_node, create_output_node, create_trigger_node
from hinge.hooks.events import HookEvent
from hinge.runtime.state_machine import RuntimeState


@pytest.fixture
def wallet(plugin_factory, action_factory, provider_factory, evaluator_factory):
    """Plugin with one action, one provider and one evaluator."""
    seen = {}

    async def init(core):
        seen["core"] = core

    plugin = plugin_factory(
        "wallet",
        init=init,
        actions=[action_factory("send")],
        providers=[provider_factory("balance", data={"eth": 3})],
        evaluators=[evaluator_factory("has-funds", answer=True)],
    )
    plugin.seen = seen
    return plugin


class TestRuntimeLifecycle:
    """Test initialize, start and stop."""

    @pytest.mark.asyncio
    async def test_state_sequence_and_system_events(self, engine):
        """The engine walks the boot path and emits system events."""
        events = []
        for kind in (HookEvent.SYSTEM_INIT, HookEvent.SYSTEM_READY, HookEvent.SYSTEM_SHUTDOWN):
            engine.hooks.on(kind, lambda p: events.append((p.event, p.data.state)))

        assert engine.get_state() == RuntimeState.UNINITIALIZED
        await engine.initialize()
        assert engine.get_state() == RuntimeState.READY
        report = await engine.start()
        assert engine.get_state() == RuntimeState.RUNNING
        assert report.activated == []
        await engine.stop()
        assert engine.get_state() == RuntimeState.SHUTDOWN

        assert events == [
            ("system:init", "ready"),
            ("system:ready", "running"),
            ("system:shutdown", "shutdown"),
        ]
        assert [t.to_state for t in engine.state.get_history()] == [
            RuntimeState.INITIALIZING,
            RuntimeState.LOADING_PLUGINS,
            RuntimeState.READY,
            RuntimeState.RUNNING,
            RuntimeState.SHUTDOWN,
        ]

    @pytest.mark.asyncio
    async def test_start_requires_ready(self, engine):
        """start() before initialize() is an invalid transition."""
        with pytest.raises(InvalidTransitionError):
            await engine.start()

    @pytest.mark.asyncio
    async def test_missing_plugin_package_sets_error(self):
        """A configured plugin that cannot be imported leaves the engine in error."""
        from hinge.runtime.engine import RuntimeEngine

        engine = RuntimeEngine(configure_logs=False, plugins=["hinge_no_such_plugin"])
        with pytest.raises(HingeError):
            await engine.initialize()
        assert engine.get_state() == RuntimeState.ERROR

    @pytest.mark.asyncio
    async def test_engines_are_isolated(self, wallet):
        """Two engines never share plugins or services."""
        from hinge.runtime.engine import RuntimeEngine

        first = RuntimeEngine(configure_logs=False, plugins=[])
        second = RuntimeEngine(configure_logs=False, plugins=[])
        await first.initialize()
        await first.register_plugin(wallet)

        assert first.plugins.registry.get("wallet") is wallet
        assert second.plugins.registry.get("wallet") is None
        assert second.services.get_action("send") is None


class TestRuntimeServices:
    """Test the capability facade with a running plugin."""

    @pytest.mark.asyncio
    async def test_plugin_capabilities(self, engine, wallet):
        """Actions, providers and evaluators resolve through the engine."""
        await engine.initialize()
        await engine.register_plugin(wallet)
        report = await engine.start()

        assert report.activated == ["wallet"]
        assert wallet.seen["core"] is engine
        assert await engine.execute_action("wallet:send", {"to": "0xabc"}) == {"to": "0xabc"}
        assert await engine.get_data("balance") == {"eth": 3}
        assert await engine.evaluate("has-funds", {"min": 1}) is True

        stats = engine.get_stats()
        assert stats.state == "running"
        assert stats.plugins == {"registered": 1, "active": 1}
        assert stats.services == {"actions": 1, "providers": 1, "evaluators": 1}
        assert stats.cache["max_size"] == engine.config.cache_max_size
        await engine.stop()

    @pytest.mark.asyncio
    async def test_unknown_capabilities(self, engine):
        """Unknown actions and providers raise ExecutionError; evaluators NotFoundError."""
        await engine.initialize()
        with pytest.raises(ExecutionError, match="Action not found"):
            await engine.execute_action("ghost")
        with pytest.raises(ExecutionError):
            await engine.get_data("ghost")
        with pytest.raises(NotFoundError):
            await engine.evaluate("ghost", None)

    @pytest.mark.asyncio
    async def test_failed_action_raises(self, engine, plugin_factory, action_factory):
        """A failed ActionResult surfaces as ExecutionError."""
        from hinge.services.capabilities import ActionResult

        async def refuse(ctx):
            return ActionResult.fail("paused")

        await engine.initialize()
        await engine.register_plugin(plugin_factory("dex", actions=[action_factory("swap", handler=refuse)]))
        await engine.start()
        with pytest.raises(ExecutionError, match="paused"):
            await engine.execute_action("swap")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_schedule_task(self, engine):
        """Scheduled tasks fire while the engine runs and stop with it."""
        runs = []

        async def tick():
            runs.append(1)

        await engine.initialize()
        await engine.start()
        task = engine.schedule_task(tick, name="tick", interval_ms=10)
        await asyncio.sleep(0.06)
        await engine.stop()

        assert runs
        assert task.run_count == len(runs)
        assert engine.get_stats().scheduler["total"] == 1

    @pytest.mark.asyncio
    async def test_flow_through_engine(self, engine, wallet):
        """Flows run plugin actions through the engine's executor."""
        await engine.initialize()
        await engine.register_plugin(wallet)
        await engine.start()

        flow = engine.flows.create(
            Flow(
                name="Pay",
                nodes=[
                    create_trigger_node("Start", id="trigger"),
                    create_action_node(
                        "Send", {"plugin_name": "wallet", "action_name": "send", "params": {"to": "{{to}}"}}, id="send"
                    ),
                    create_output_node("End", id="output"),
                ],
                edges=[create_edge("trigger", "send"), create_edge("send", "output")],
            )
        )
        context = await engine.flows.execute(flow.id, {"to": "0xdef"})

        assert context.status == ExecutionStatus.COMPLETED
        assert context.output == {"to": "0xdef"}
        assert engine.get_stats().flows == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_destroys_plugins(self, engine, plugin_factory, provider_factory):
        """stop() destroys active plugins, the runtime cache and provider caches."""
        from hinge.services.capabilities import CacheConfig

        destroyed = []

        async def destroy():
            destroyed.append("wallet")

        await engine.initialize()
        await engine.register_plugin(
            plugin_factory(
                "wallet",
                destroy=destroy,
                providers=[provider_factory("balance", data={"eth": 3}, cache_config=CacheConfig(ttl_ms=60_000))],
            )
        )
        await engine.start()
        engine.cache.set("k", 1)
        assert await engine.get_data("balance") == {"eth": 3}
        provider_cache = engine.executor._provider_caches["balance"]
        assert provider_cache._sweeper is not None

        await engine.stop()

        assert destroyed == ["wallet"]
        assert engine.plugins.get_active() == []
        assert engine.cache.size == 0
        assert engine.executor._provider_caches == {}
        assert provider_cache._sweeper is None
