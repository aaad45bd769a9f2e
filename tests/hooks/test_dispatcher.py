"""
Tests for hinge.hooks: event kinds and the dispatcher.

Covers:
- Priority ordering and registration-order ties
- once, filter, stop_on_error and per-hook timeouts
- Fire-and-forget emits and drain()
- Plugin-scoped unregistration
"""

import asyncio

import pytest

from hinge.hooks.dispatcher import Hook, HookDispatcher
from hinge.hooks.events import HookEvent, PluginEvent, SystemEvent, custom_event, is_valid_event


class TestHookEvents:
    """Test event kind helpers."""

    def test_custom_event_prefix(self):
        """custom_event adds the prefix once."""
        assert custom_event("price-alert") == "custom:price-alert"
        assert custom_event("custom:price-alert") == "custom:price-alert"

    def test_is_valid_event(self):
        """Known kinds and non-empty custom kinds are valid."""
        assert is_valid_event(HookEvent.FLOW_COMPLETE)
        assert is_valid_event("plugin:load")
        assert is_valid_event("custom:anything")
        assert not is_valid_event("custom:")
        assert not is_valid_event("made:up")

    def test_event_to_dict(self):
        """Typed events serialize their kind and fields."""
        data = PluginEvent(HookEvent.PLUGIN_LOAD, plugin="wallet", version="1.0.0").to_dict()
        assert data["kind"] == "plugin:load"
        assert data["plugin"] == "wallet"
        assert "timestamp" in data


class TestHookDispatcher:
    """Test registration and emission."""

    @pytest.mark.asyncio
    async def test_priority_order(self, hooks):
        """Handlers run by priority, highest first."""
        order = []
        for priority in (5, 1, 10):
            hooks.on("custom:x", lambda p, n=priority: order.append(n), priority=priority)

        results = await hooks.emit("custom:x")
        assert order == [10, 5, 1]
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_ties_keep_registration_order(self, hooks):
        """Equal priorities run in the order registered."""
        order = []
        for name in ("a", "b", "c"):
            hooks.on("custom:x", lambda p, n=name: order.append(n))
        await hooks.emit("custom:x")
        assert order == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_payload_fields(self, hooks):
        """Handlers receive event, data, source and metadata."""
        seen = []
        hooks.on(HookEvent.FLOW_START, seen.append)
        await hooks.emit(HookEvent.FLOW_START, {"flow_id": "f1"}, source="test", metadata={"k": 1})

        payload = seen[0]
        assert payload.event == "flow:start"
        assert payload.data == {"flow_id": "f1"}
        assert payload.source == "test"
        assert payload.metadata == {"k": 1}

    @pytest.mark.asyncio
    async def test_once_fires_once(self, hooks):
        """A once hook is removed after its first run."""
        calls = []
        hooks.once("custom:x", lambda p: calls.append(1))
        await hooks.emit("custom:x")
        await hooks.emit("custom:x")
        assert calls == [1]
        assert hooks.hook_count("custom:x") == 0

    @pytest.mark.asyncio
    async def test_once_unregisters_when_handler_raises(self, hooks):
        """A failing once hook is still removed after its first run."""
        calls = []

        def boom(payload):
            calls.append(1)
            raise RuntimeError("once failed")

        hooks.once("custom:x", boom, name="boom")
        first = await hooks.emit("custom:x")
        second = await hooks.emit("custom:x")

        assert calls == [1]
        assert [r.success for r in first] == [False]
        assert first[0].error == "once failed"
        assert second == []
        assert hooks.hook_count("custom:x") == 0

    @pytest.mark.asyncio
    async def test_filter_skips_handler(self, hooks):
        """A filter returning false means the handler is never invoked."""
        calls = []
        hooks.on("custom:x", lambda p: calls.append(p.data), filter=lambda p: p.data == "yes")

        assert await hooks.emit("custom:x", "no") == []
        await hooks.emit("custom:x", "yes")
        assert calls == ["yes"]

    @pytest.mark.asyncio
    async def test_failures_are_results(self, hooks):
        """A failing handler does not stop later handlers by default."""
        calls = []

        def boom(payload):
            raise RuntimeError("handler failed")

        hooks.on("custom:x", boom, priority=10, name="boom")
        hooks.on("custom:x", lambda p: calls.append(1))

        results = await hooks.emit("custom:x")
        assert [r.success for r in results] == [False, True]
        assert results[0].error == "handler failed"
        assert results[0].hook_name == "boom"
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_stop_on_error(self, hooks):
        """stop_on_error (per emit or per hook) halts the chain."""
        calls = []

        async def boom(payload):
            raise RuntimeError("nope")

        hooks.on("custom:x", boom, priority=10)
        hooks.on("custom:x", lambda p: calls.append(1))

        results = await hooks.emit("custom:x", stop_on_error=True)
        assert len(results) == 1
        assert calls == []

        hooks.clear()
        hooks.on("custom:y", boom, priority=10, stop_on_error=True)
        hooks.on("custom:y", lambda p: calls.append(1))
        await hooks.emit("custom:y")
        assert calls == []

    @pytest.mark.asyncio
    async def test_hook_timeout(self, hooks):
        """A slow async handler fails with a timeout."""

        async def slow(payload):
            await asyncio.sleep(1)

        hooks.on("custom:x", slow, timeout_ms=20)
        results = await hooks.emit("custom:x")
        assert not results[0].success
        assert "timed out" in results[0].error

    @pytest.mark.asyncio
    async def test_fire_and_forget(self, hooks):
        """wait=False returns immediately; drain() waits for the handlers."""
        calls = []

        async def handler(payload):
            await asyncio.sleep(0.01)
            calls.append(payload.data)

        hooks.on("custom:x", handler)
        assert await hooks.emit("custom:x", 1, wait=False) == []
        assert calls == []
        await hooks.drain()
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_dispatch_typed_event(self, hooks):
        """dispatch() emits under the event's kind with the event as data."""
        seen = []
        hooks.on(HookEvent.SYSTEM_READY, lambda p: seen.append(p.data))
        await hooks.dispatch(SystemEvent(HookEvent.SYSTEM_READY, state="running"))
        assert seen[0].state == "running"

    @pytest.mark.asyncio
    async def test_no_handlers(self, hooks):
        """Emitting an event with no hooks returns no results."""
        assert await hooks.emit("custom:none") == []

    def test_unsubscribe_is_idempotent(self, hooks):
        """unsubscribe() removes one registration exactly once."""
        reg = hooks.on("custom:x", lambda p: None)
        hooks.on("custom:x", lambda p: None)
        assert reg.unsubscribe() is True
        assert reg.unsubscribe() is False
        assert hooks.hook_count("custom:x") == 1

    def test_unregister_plugin(self, hooks):
        """All hooks of one plugin are removed together."""
        hooks.register(Hook(name="a", event="custom:x", handler=lambda p: None), "wallet")
        hooks.register(Hook(name="b", event=HookEvent.FLOW_START, handler=lambda p: None), "wallet")
        hooks.register(Hook(name="c", event="custom:x", handler=lambda p: None), "swap")

        assert hooks.unregister_plugin("wallet") == 2
        assert [h.name for h in hooks.get_hooks("custom:x")] == ["c"]
        assert hooks.get_events() == ["custom:x"]
        assert hooks.total_hook_count == 1
        assert {e: [h.name for h in hs] for e, hs in hooks.get_all_hooks().items()} == {"custom:x": ["c"]}
