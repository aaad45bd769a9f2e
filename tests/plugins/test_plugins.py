"""
Tests for hinge.plugins: loader, registry and lifecycle.

Covers:
- Loading from instances, factories, module files and packages
- Registry validation, dependency queries and load ordering
- Activation in dependency order, failure containment and teardown
"""

import textwrap

import pytest

from hinge.core.errors import DependencyError, ExecutionError, HingeError, NotFoundError, ValidationError
from hinge.hooks.dispatcher import Hook
from hinge.hooks.events import HookEvent
from hinge.plugins.base import BasePlugin
from hinge.plugins.lifecycle import LifecycleEvent, PluginLifecycle
from hinge.plugins.loader import PluginLoader, PluginSource, validate_plugin
from hinge.plugins.registry import PluginRegistry, PluginStatus


PLUGIN_MODULE = textwrap.dedent(
    """
    from hinge.plugins.base import create_plugin

    plugin = create_plugin("from-file", "2.0.0")
    """
)


class TestPluginLoader:
    """Test source resolution."""

    @pytest.mark.asyncio
    async def test_instance(self, plugin_factory):
        """Instances are validated and returned as-is."""
        plugin = plugin_factory("wallet")
        assert await PluginLoader().load(PluginSource.instance(plugin)) is plugin

    @pytest.mark.asyncio
    async def test_factory_receives_config(self, plugin_factory):
        """Factories get the source config; async factories are awaited."""
        seen = []

        async def factory(config):
            seen.append(config)
            return plugin_factory("wallet")

        plugin = await PluginLoader().load(PluginSource.from_factory(factory, {"rpc": "http://node"}))
        assert plugin.name == "wallet"
        assert seen == [{"rpc": "http://node"}]

    @pytest.mark.asyncio
    async def test_factory_failure(self):
        """A raising factory surfaces as ExecutionError."""

        def factory(config):
            raise RuntimeError("no rpc")

        with pytest.raises(ExecutionError, match="no rpc"):
            await PluginLoader().load(PluginSource.from_factory(factory))

    @pytest.mark.asyncio
    async def test_module_file_is_cached(self, tmp_path):
        """A module file exporting ``plugin`` is loaded once."""
        path = tmp_path / "file_plugin.py"
        path.write_text(PLUGIN_MODULE)

        loader = PluginLoader()
        first = await loader.load(PluginSource.module(path))
        second = await loader.load(PluginSource.module(path))
        assert first.name == "from-file"
        assert first is second
        assert loader.cache_size == 1
        assert loader.uncache(str(path))

    @pytest.mark.asyncio
    async def test_missing_module_file(self, tmp_path):
        """A missing file is an ExecutionError."""
        with pytest.raises(ExecutionError):
            await PluginLoader().load(PluginSource.module(tmp_path / "missing.py"))

    @pytest.mark.asyncio
    async def test_package_with_plugin_class(self, tmp_path, monkeypatch):
        """A package exporting a class under ``default`` is instantiated."""
        (tmp_path / "hinge_test_pkg_plugin.py").write_text(
            textwrap.dedent(
                """
                from hinge.plugins.base import BasePlugin

                class Plugin(BasePlugin):
                    name = "pkg"
                    version = "0.1.0"

                default = Plugin
                """
            )
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        plugin = await PluginLoader().load(PluginSource.package("hinge_test_pkg_plugin"))
        assert plugin.name == "pkg"
        assert isinstance(plugin, BasePlugin)

    @pytest.mark.asyncio
    async def test_load_parallel_skips_failures(self, plugin_factory):
        """load_parallel keeps the plugins that loaded."""
        sources = [
            PluginSource.instance(plugin_factory("a")),
            PluginSource.package("hinge_no_such_plugin_package"),
            PluginSource.instance(plugin_factory("b")),
        ]
        plugins = await PluginLoader().load_parallel(sources)
        assert [p.name for p in plugins] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_load_all_propagates_failure(self, plugin_factory):
        """load_all loads in order and stops at the first failure."""
        loader = PluginLoader()
        sources = [PluginSource.instance(plugin_factory("a")), PluginSource.instance(plugin_factory("b"))]
        plugins = await loader.load_all(sources)
        assert [p.name for p in plugins] == ["a", "b"]
        with pytest.raises(ExecutionError):
            await loader.load_all([PluginSource.package("hinge_no_such_plugin_package")])

    def test_validate_plugin(self, plugin_factory):
        """Structural checks reject incomplete plugins."""

        class NoInit:
            name = "x"
            version = "1.0.0"

        with pytest.raises(ValidationError, match="valid name"):
            validate_plugin(plugin_factory(""))
        with pytest.raises(ValidationError, match="valid version"):
            validate_plugin(plugin_factory("x", version=""))
        with pytest.raises(ValidationError, match="init"):
            validate_plugin(NoInit())


class TestPluginRegistry:
    """Test registration and ordering."""

    def test_duplicate_name_rejected(self, plugin_factory):
        """A second plugin with the same name is a ValidationError."""
        registry = PluginRegistry()
        registry.register(plugin_factory("wallet"))
        with pytest.raises(ValidationError, match='"wallet" is already registered'):
            registry.register(plugin_factory("wallet"))
        registry.register(plugin_factory("wallet"), name="wallet-2")
        assert registry.get_names() == ["wallet", "wallet-2"]

    def test_duplicate_capability_names_rejected(self, plugin_factory, action_factory):
        """A plugin may not contain two actions with one name."""
        plugin = plugin_factory("wallet", actions=[action_factory("send"), action_factory("send")])
        with pytest.raises(ValidationError, match="Duplicate action"):
            PluginRegistry().register(plugin)

    def test_capabilities_recorded(self, plugin_factory, action_factory, provider_factory):
        """The entry lists capability names and metadata."""
        registry = PluginRegistry()
        registry.register(
            plugin_factory("wallet", actions=[action_factory("send")], providers=[provider_factory("balance")])
        )
        state = registry.get_state("wallet")
        assert state.status == PluginStatus.REGISTERED
        assert state.capabilities.actions == ["send"]
        assert state.capabilities.providers == ["balance"]
        assert state.metadata["version"] == "1.0.0"

    def test_load_order_puts_dependencies_first(self, plugin_factory):
        """Dependencies precede dependents."""
        registry = PluginRegistry()
        registry.register(plugin_factory("swap", dependencies=["wallet", "prices"]))
        registry.register(plugin_factory("prices", dependencies=["wallet"]))
        registry.register(plugin_factory("wallet"))

        order = registry.get_load_order()
        assert order.index("wallet") < order.index("prices") < order.index("swap")

    def test_load_order_priority(self, plugin_factory):
        """Among independent plugins, higher priority comes first."""
        registry = PluginRegistry()
        registry.register(plugin_factory("a"))
        registry.register(plugin_factory("b"), priority=5)
        registry.register(plugin_factory("c"))
        assert registry.get_load_order() == ["b", "a", "c"]

    def test_optional_dependencies_order_when_present(self, plugin_factory):
        """Registered optional dependencies also come first."""
        registry = PluginRegistry()
        registry.register(plugin_factory("alerts", optional_dependencies=["prices", "absent"]))
        registry.register(plugin_factory("prices"))
        assert registry.get_load_order() == ["prices", "alerts"]

    def test_cycle_detected(self, plugin_factory):
        """A dependency cycle raises DependencyError with the path."""
        registry = PluginRegistry()
        registry.register(plugin_factory("a", dependencies=["b"]))
        registry.register(plugin_factory("b", dependencies=["a"]))
        with pytest.raises(DependencyError) as exc_info:
            registry.get_load_order()
        assert exc_info.value.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in exc_info.value.message

    def test_missing_and_dependents(self, plugin_factory):
        """Dependency queries and guarded unregistration."""
        registry = PluginRegistry()
        registry.register(plugin_factory("swap", dependencies=["wallet", "gas"]))
        registry.register(plugin_factory("wallet"))

        assert registry.get_missing_dependencies("swap") == ["gas"]
        assert not registry.are_dependencies_satisfied("swap")
        assert registry.get_dependents("wallet") == ["swap"]
        with pytest.raises(DependencyError):
            registry.unregister("wallet")
        assert registry.unregister("swap")
        assert registry.unregister("wallet")
        assert not registry.unregister("wallet")


class TestPluginLifecycle:
    """Test activation and teardown."""

    @pytest.mark.asyncio
    async def test_init_order_follows_dependencies(self, lifecycle, plugin_factory):
        """Each plugin initializes after its dependencies."""
        order = []

        def tracked(name, **parts):
            async def init(core):
                order.append(name)

            return plugin_factory(name, init=init, **parts)

        lifecycle.registry.register(tracked("swap", dependencies=["wallet"]))
        lifecycle.registry.register(tracked("wallet"))

        report = await lifecycle.init_all()
        assert report.ok
        assert order == ["wallet", "swap"]
        assert lifecycle.get_active() == ["swap", "wallet"]

    @pytest.mark.asyncio
    async def test_capabilities_registered_after_init(
        self, lifecycle, services, hooks, plugin_factory, action_factory
    ):
        """Actions and hooks become visible once the plugin is active."""
        hook = Hook(name="on-load", event=HookEvent.FLOW_START, handler=lambda p: None)
        lifecycle.registry.register(plugin_factory("wallet", actions=[action_factory("send")], hooks=[hook]))

        await lifecycle.init_plugin("wallet")
        assert services.get_owner("action", "send") == "wallet"
        assert hooks.hook_count(HookEvent.FLOW_START) == 1

    @pytest.mark.asyncio
    async def test_failed_init_leaves_nothing_registered(self, lifecycle, services, plugin_factory, action_factory):
        """A failing init is reported and its capabilities are absent."""

        async def init(core):
            raise RuntimeError("no rpc")

        lifecycle.registry.register(plugin_factory("wallet", init=init, actions=[action_factory("send")]))
        lifecycle.registry.register(plugin_factory("swap", dependencies=["wallet"]))
        lifecycle.registry.register(plugin_factory("prices"))

        report = await lifecycle.init_all()
        assert not report.ok
        assert set(report.failed) == {"wallet", "swap"}
        assert isinstance(report.failed["swap"], DependencyError)
        assert report.activated == ["prices"]
        assert services.get_action("send") is None
        assert lifecycle.get_status("wallet") == PluginStatus.ERROR

    @pytest.mark.asyncio
    async def test_missing_dependency_never_inits(self, lifecycle, plugin_factory):
        """A plugin with a missing dependency is not initialized."""
        ran = []

        async def init(core):
            ran.append(True)

        lifecycle.registry.register(plugin_factory("swap", dependencies=["wallet"], init=init))
        with pytest.raises(DependencyError) as exc_info:
            await lifecycle.init_plugin("swap")
        assert exc_info.value.missing == ["wallet"]
        assert ran == []

    @pytest.mark.asyncio
    async def test_cycle_prevents_any_init(self, lifecycle, plugin_factory):
        """init_all raises on a cycle before initializing anything."""
        ran = []

        async def init(core):
            ran.append(True)

        lifecycle.registry.register(plugin_factory("a", dependencies=["b"], init=init))
        lifecycle.registry.register(plugin_factory("b", dependencies=["a"], init=init))
        lifecycle.registry.register(plugin_factory("c", init=init))

        with pytest.raises(DependencyError):
            await lifecycle.init_all()
        assert ran == []

    @pytest.mark.asyncio
    async def test_init_receives_core(self, services, hooks, plugin_factory):
        """init() gets the attached core; without one it fails."""
        core = object()
        seen = []

        async def init(c):
            seen.append(c)

        lifecycle = PluginLifecycle(services=services, hooks=hooks)
        lifecycle.registry.register(plugin_factory("wallet", init=init))
        with pytest.raises(HingeError):
            await lifecycle.init_plugin("wallet")

        lifecycle.set_core(core)
        await lifecycle.init_plugin("wallet")
        assert seen == [core]

    @pytest.mark.asyncio
    async def test_unknown_plugin(self, lifecycle):
        """Initializing an unknown plugin raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await lifecycle.init_plugin("ghost")

    @pytest.mark.asyncio
    async def test_lifecycle_events_and_plugin_hooks(self, lifecycle, hooks, plugin_factory):
        """Lifecycle handlers and plugin:* hook events fire in order."""
        events = []
        loads = []
        lifecycle.on_lifecycle(None, lambda event, plugin, error: events.append((event, plugin.name)))
        hooks.on(HookEvent.PLUGIN_LOAD, lambda p: loads.append(p.data.plugin))

        lifecycle.registry.register(plugin_factory("wallet"))
        await lifecycle.init_plugin("wallet")
        await lifecycle.destroy_plugin("wallet")

        assert events == [
            (LifecycleEvent.BEFORE_INIT, "wallet"),
            (LifecycleEvent.AFTER_INIT, "wallet"),
            (LifecycleEvent.BEFORE_DESTROY, "wallet"),
            (LifecycleEvent.AFTER_DESTROY, "wallet"),
        ]
        assert loads == ["wallet"]

    @pytest.mark.asyncio
    async def test_destroy_guard_and_destroy_all(self, lifecycle, services, plugin_factory, action_factory):
        """Active dependents block destroy; destroy_all tears down dependents first."""
        destroyed = []

        def tracked(name, **parts):
            async def destroy():
                destroyed.append(name)

            return plugin_factory(name, destroy=destroy, **parts)

        lifecycle.registry.register(tracked("wallet", actions=[action_factory("send")]))
        lifecycle.registry.register(tracked("swap", dependencies=["wallet"]))
        await lifecycle.init_all()

        with pytest.raises(DependencyError):
            await lifecycle.destroy_plugin("wallet")

        await lifecycle.destroy_all()
        assert destroyed == ["swap", "wallet"]
        assert services.get_action("send") is None
        assert lifecycle.get_status("wallet") == PluginStatus.DESTROYED
        assert not await lifecycle.destroy_plugin("wallet")

    @pytest.mark.asyncio
    async def test_load_plugin_and_reload(self, lifecycle, plugin_factory):
        """load_plugin registers; reload destroys and initializes again."""
        inits = []

        async def init(core):
            inits.append(core)

        await lifecycle.load_plugin(PluginSource.instance(plugin_factory("wallet", init=init)), priority=3)
        assert lifecycle.registry.get_entry("wallet").options.priority == 3

        await lifecycle.init_plugin("wallet")
        await lifecycle.reload_plugin("wallet")
        assert len(inits) == 2
        assert lifecycle.is_active("wallet")

    @pytest.mark.asyncio
    async def test_base_plugin_helpers(self, lifecycle, services, hooks, action_factory):
        """BasePlugin subclasses register capabilities in on_init."""

        class WalletPlugin(BasePlugin):
            name = "wallet"
            version = "1.0.0"

            async def on_init(self):
                self.register_action(action_factory("send"))
                self.register_hook(Hook(name="audit", event=HookEvent.SYSTEM_READY, handler=lambda p: None))

        plugin = WalletPlugin()
        lifecycle.registry.register(plugin)
        await lifecycle.init_plugin("wallet")

        assert plugin.is_initialized
        assert services.get_owner("action", "send") == "wallet"
        assert plugin.get_info()["version"] == "1.0.0"
        assert hooks.hook_count(HookEvent.SYSTEM_READY) == 1
