"""
Runtime Engine - the facade that wires every hinge component together.

Manifesto:
    Plugins receive one object at ``init(core)`` and reach everything else
    through it. The engine owns no module-level state: each instance builds
    its own cache, registries, dispatcher, runner, task manager, scheduler
    and flow engine, and hands them to each other explicitly. Two engines
    in one process never see each other's plugins.

Architecture:
    ::

        RuntimeEngine(settings | **overrides)
          ├── config     CoreSettings
          ├── state      RuntimeStateMachine
          ├── cache      TTLCache(cache_default_ttl_ms, cache_max_size)
          ├── services   ServiceRegistry
          ├── executor   Executor(services, core=self, default_chain_id)
          ├── hooks      HookDispatcher
          ├── plugins    PluginLifecycle(registry, loader, services, hooks)
          ├── runner     AsyncOperationRunner(task_timeout_ms, max_concurrent_tasks)
          ├── tasks      TaskManager(max_concurrent_tasks, task_timeout_ms)
          ├── scheduler  Scheduler(runner, hooks, task_timeout_ms)
          └── flows      FlowEngine(executor, runner, hooks)

        initialize()  uninitialized → initializing → loading_plugins → ready
        start()       ready → running      (plugins init, scheduler start)
        stop()        running → shutdown   (scheduler stop, tasks drained,
                                            plugins destroyed, caches destroyed)

Examples:
    >>> engine = RuntimeEngine(plugins=["hinge_wallet"], log_level="DEBUG")
    >>> await engine.initialize()
    >>> await engine.start()
    >>> balance = await engine.get_data("wallet:balance", {"address": addr})
    >>> await engine.stop()

Guardrails:
    ❌ DON'T: share components between engines
    ✅ DO: register extra plugins with ``register_plugin`` before ``start()``

    ❌ DON'T: ignore the result of ``start()``
    ✅ DO: inspect ``ActivationReport.failed`` for plugins that did not come up

Tags:
    runtime, engine, facade, dependency-injection, hinge-core

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from hinge.core.cache import TTLCache
from hinge.core.config import CoreSettings, load_settings
from hinge.core.errors import ExecutionError, error_message
from hinge.core.logging import configure_logging, get_logger
from hinge.execution.runner import AsyncOperationRunner
from hinge.execution.tasks import TaskManager
from hinge.flow.engine import FlowEngine
from hinge.hooks.dispatcher import HookDispatcher
from hinge.hooks.events import HookEvent, SystemEvent
from hinge.plugins.base import Plugin
from hinge.plugins.lifecycle import ActivationReport, PluginLifecycle
from hinge.plugins.loader import PluginLoader, PluginSource
from hinge.plugins.registry import PluginRegistry
from hinge.runtime.scheduler import ScheduledTask, Scheduler
from hinge.runtime.state_machine import RuntimeState, RuntimeStateMachine
from hinge.services.executor import Executor
from hinge.services.registry import ServiceRegistry

logger = get_logger(__name__)


@dataclass
class RuntimeStats:
    """Point-in-time counters across the engine's components."""

    state: str
    plugins: dict[str, int] = field(default_factory=dict)
    services: dict[str, int] = field(default_factory=dict)
    hooks: int = 0
    tasks: dict[str, int] = field(default_factory=dict)
    scheduler: dict[str, int] = field(default_factory=dict)
    cache: dict[str, Any] = field(default_factory=dict)
    flows: int = 0


class RuntimeEngine:
    """Owns and wires one instance of every runtime component.

    Args:
        settings: Fully built settings. When omitted, settings are loaded
            from the environment with ``overrides`` applied on top.
        configure_logs: Call :func:`configure_logging` during ``initialize``.
        **overrides: :class:`CoreSettings` fields, e.g. ``plugins=[...]``.

    Raises:
        ConfigError: ``overrides`` do not validate.
    """

    def __init__(
        self,
        settings: CoreSettings | None = None,
        *,
        configure_logs: bool = True,
        **overrides: Any,
    ) -> None:
        self.config = settings if settings is not None else load_settings(**overrides)
        self._configure_logs = configure_logs
        timeout_ms = self.config.task_timeout_ms

        self.state = RuntimeStateMachine()
        self.cache = TTLCache(
            default_ttl_ms=self.config.cache_default_ttl_ms,
            max_size=self.config.cache_max_size,
        )
        self.services = ServiceRegistry()
        self.hooks = HookDispatcher()
        self.executor = Executor(
            self.services,
            core=self,
            default_chain_id=self.config.default_chain_id,
        )
        self.plugins = PluginLifecycle(PluginRegistry(), PluginLoader(), self.services, self.hooks)
        self.plugins.set_core(self)
        self.runner = AsyncOperationRunner(
            default_timeout_ms=timeout_ms,
            default_concurrency=self.config.max_concurrent_tasks,
        )
        self.tasks = TaskManager(
            max_concurrent=self.config.max_concurrent_tasks,
            default_timeout_ms=timeout_ms,
        )
        self.scheduler = Scheduler(self.runner, self.hooks, default_timeout_ms=timeout_ms)
        self.flows = FlowEngine(
            self.executor,
            runner=self.runner,
            hooks=self.hooks,
            default_timeout_ms=timeout_ms,
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Boot the runtime and register the configured plugins.

        Plugins named in ``config.plugins`` are imported as packages and
        receive ``config.plugin_config[name]``. They are registered, not
        initialized; ``start()`` initializes them.

        Raises:
            InvalidTransitionError: The engine was already initialized.
            HingeError: A plugin failed to load; the state is ``error``.
        """
        await self.state.transition_to(RuntimeState.INITIALIZING)
        if self._configure_logs:
            configure_logging(level=self.config.effective_log_level)
        logger.info("runtime.initializing", plugins=len(self.config.plugins))

        try:
            await self.state.transition_to(RuntimeState.LOADING_PLUGINS)
            for name in self.config.plugins:
                source = PluginSource.package(name, self.config.plugin_config.get(name))
                await self.plugins.load_plugin(source)
            await self.state.transition_to(RuntimeState.READY)
        except Exception as exc:
            logger.error("runtime.initialize_failed", error=error_message(exc))
            await self.state.transition_to(RuntimeState.ERROR)
            raise

        await self.hooks.dispatch(SystemEvent(HookEvent.SYSTEM_INIT, state=self.state.state.value))
        logger.info("runtime.initialized", plugins=self.plugins.registry.get_names())

    async def register_plugin(self, source: PluginSource | Any, *, name: str | None = None, priority: int = 0) -> Plugin:
        """Load and register a plugin given as a source or a plugin object."""
        if not isinstance(source, PluginSource):
            source = PluginSource.instance(source)
        return await self.plugins.load_plugin(source, name=name, priority=priority)

    async def start(self) -> ActivationReport:
        """Initialize plugins in dependency order and start the scheduler.

        Raises:
            InvalidTransitionError: The engine is not ``ready``.
            DependencyError: The plugin dependency graph has a cycle.
        """
        await self.state.transition_to(RuntimeState.RUNNING)
        try:
            report = await self.plugins.init_all()
        except Exception as exc:
            logger.error("runtime.start_failed", error=error_message(exc))
            await self.state.transition_to(RuntimeState.ERROR)
            raise
        self.scheduler.start()

        await self.hooks.dispatch(SystemEvent(HookEvent.SYSTEM_READY, state=self.state.state.value))
        logger.info(
            "runtime.started",
            active=report.activated,
            failed=sorted(report.failed),
        )
        return report

    async def stop(self) -> None:
        """Tear everything down in reverse order and enter ``shutdown``."""
        logger.info("runtime.stopping", state=self.state.state.value)
        self.scheduler.stop()
        await self.scheduler.drain()
        await self.tasks.wait_all()
        await self.plugins.destroy_all()
        self.executor.clear_cache()
        self.cache.destroy()
        await self.state.transition_to(RuntimeState.SHUTDOWN)

        await self.hooks.dispatch(SystemEvent(HookEvent.SYSTEM_SHUTDOWN, state=self.state.state.value))
        await self.hooks.drain()
        logger.info("runtime.stopped")

    # ── Services ─────────────────────────────────────────────────────

    async def execute_action(self, name: str, input: Any = None, **options: Any) -> Any:
        """Run an action and return its data.

        Raises:
            ExecutionError: The action is unknown or reported failure.
        """
        result = await self.executor.execute_action(name, input, **options)
        if not result.success:
            raise ExecutionError(result.error or f"Action {name} failed").with_context(action=name)
        return result.data

    async def get_data(self, name: str, query: Any = None, **options: Any) -> Any:
        """Fetch provider data.

        Raises:
            ExecutionError: The provider is unknown or reported failure.
        """
        result = await self.executor.get_data(name, query, **options)
        if not result.success:
            raise ExecutionError(result.error or f"Provider {name} failed").with_context(provider=name)
        return result.data

    async def evaluate(self, name: str, condition: Any, data: Any = None) -> bool:
        return await self.executor.evaluate(name, condition, data)

    def schedule_task(self, execute: Callable[[], Awaitable[Any]], **options: Any) -> ScheduledTask:
        """Register a recurring task; see :meth:`Scheduler.schedule`."""
        return self.scheduler.schedule(execute, **options)

    # ── Inspection ───────────────────────────────────────────────────

    def get_state(self) -> RuntimeState:
        return self.state.state

    def get_stats(self) -> RuntimeStats:
        registry = self.plugins.registry
        service_stats = self.services.get_stats()
        scheduler_stats = self.scheduler.get_stats()
        return RuntimeStats(
            state=self.state.state.value,
            plugins={"registered": len(registry.get_names()), "active": len(self.plugins.get_active())},
            services={
                "actions": service_stats.actions,
                "providers": service_stats.providers,
                "evaluators": service_stats.evaluators,
            },
            hooks=self.hooks.total_hook_count,
            tasks=self.tasks.get_stats().to_dict(),
            scheduler={
                "total": scheduler_stats.total,
                "enabled": scheduler_stats.enabled,
                "total_runs": scheduler_stats.total_runs,
                "total_errors": scheduler_stats.total_errors,
            },
            cache={"size": self.cache.size, "max_size": self.cache.max_size},
            flows=len(self.flows.get_all()),
        )


__all__ = ["RuntimeEngine", "RuntimeStats"]
