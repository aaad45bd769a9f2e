"""
Plugin lifecycle - dependency-ordered activation and teardown.

Manifesto:
    A plugin becomes useful only after ``init(core)`` succeeded and its
    capabilities are visible in the service registry and hook dispatcher.
    The lifecycle manager owns that transition, in both directions, and
    keeps one failing plugin from taking the others down.

    - **Dependencies first:** a plugin initializes after its dependencies
    - **Never half-registered:** capabilities are registered only after a
      successful ``init``, and removed before ``destroy``
    - **Single-flight init:** concurrent ``init_plugin`` calls share one run
    - **Contained failure:** ``init_all`` reports failures and keeps going

Architecture:
    ::

        init_all()
          order = registry.get_load_order()      cycle → DependencyError, no init
          for name in order:
              failed hard dep?  → DependencyError recorded, skip
              init_plugin(name)
                 ├─ missing deps        → DependencyError (never reaches init)
                 ├─ init deps first     (call chain detects cycles)
                 ├─ before_init → plugin.init(core)
                 ├─ register actions/providers/evaluators/hooks
                 └─ ACTIVE → after_init → plugin:load
          └─► ActivationReport(activated, failed)

        destroy_all()   reverse load order, errors logged

Guardrails:
    ❌ DON'T: destroy a plugin other active plugins depend on
    ✅ DO: destroy dependents first (``destroy_all`` does)

Tags:
    plugins, lifecycle, activation, dependency-order, hinge-core

Doc-Types:
    - API Reference
    - Plugin Authoring Guide
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from hinge.core.errors import (
    DependencyError,
    ErrorCategory,
    ExecutionError,
    HingeError,
    NotFoundError,
    error_message,
)
from hinge.core.logging import get_logger
from hinge.hooks.dispatcher import HookDispatcher
from hinge.hooks.events import HookEvent, PluginEvent
from hinge.plugins.base import Plugin
from hinge.plugins.loader import PluginLoader, PluginSource
from hinge.plugins.registry import PluginRegistry, PluginStatus, dependencies_of, optional_dependencies_of
from hinge.services.registry import ServiceRegistry

if TYPE_CHECKING:
    from hinge.runtime.engine import RuntimeEngine

logger = get_logger(__name__)


class LifecycleEvent(str, Enum):
    BEFORE_INIT = "before_init"
    AFTER_INIT = "after_init"
    BEFORE_DESTROY = "before_destroy"
    AFTER_DESTROY = "after_destroy"
    ERROR = "error"


LifecycleHandler = Callable[[LifecycleEvent, Plugin, BaseException | None], Any]


@dataclass
class ActivationReport:
    """Outcome of :meth:`PluginLifecycle.init_all`."""

    activated: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class PluginLifecycle:
    """Drives ``init``/``destroy`` for registered plugins.

    Args:
        registry: Plugin registry (created when omitted).
        loader: Plugin loader (created when omitted).
        services: Receives each active plugin's actions, providers and evaluators.
        hooks: Receives each active plugin's hooks and ``plugin:*`` events.
    """

    def __init__(
        self,
        registry: PluginRegistry | None = None,
        loader: PluginLoader | None = None,
        services: ServiceRegistry | None = None,
        hooks: HookDispatcher | None = None,
    ) -> None:
        self.registry = registry or PluginRegistry()
        self.loader = loader or PluginLoader()
        self.services = services or ServiceRegistry()
        self.hooks = hooks or HookDispatcher()
        self._core: RuntimeEngine | None = None
        self._handlers: list[tuple[LifecycleEvent | None, LifecycleHandler]] = []
        self._init_futures: dict[str, asyncio.Future[None]] = {}

    def set_core(self, core: RuntimeEngine) -> None:
        self._core = core

    # ── Lifecycle events ─────────────────────────────────────────────

    def on_lifecycle(
        self,
        event: LifecycleEvent | str | None,
        handler: LifecycleHandler,
    ) -> Callable[[], None]:
        """Subscribe ``handler`` to one lifecycle event (``None`` = all)."""
        entry = (LifecycleEvent(event) if event is not None else None, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    async def _emit(self, event: LifecycleEvent, plugin: Plugin, error: BaseException | None = None) -> None:
        for wanted, handler in list(self._handlers):
            if wanted is not None and wanted != event:
                continue
            try:
                result = handler(event, plugin, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("plugin_lifecycle.handler_failed", lifecycle_event=event.value, error=str(exc))

    # ── Loading ──────────────────────────────────────────────────────

    async def load_plugin(self, source: PluginSource, *, name: str | None = None, priority: int = 0) -> Plugin:
        """Load a plugin and register it."""
        plugin = await self.loader.load(source)
        self.registry.register(plugin, name=name, priority=priority, config=source.config)
        return plugin

    # ── Initialization ───────────────────────────────────────────────

    async def init_plugin(self, name: str, _chain: tuple[str, ...] = ()) -> None:
        """Initialize ``name`` and, first, its dependencies.

        Raises:
            NotFoundError: ``name`` is not registered.
            DependencyError: Missing dependency, failed dependency or cycle.
            ExecutionError: ``init`` raised.
        """
        if name in _chain:
            cycle = [*_chain[_chain.index(name):], name]
            raise DependencyError(
                f"Circular dependency detected: {' -> '.join(cycle)}",
                plugin=name,
                cycle=cycle,
            )

        pending = self._init_futures.get(name)
        if pending is not None:
            return await asyncio.shield(pending)

        plugin = self.registry.get(name)
        if plugin is None:
            raise NotFoundError("plugin", name)
        if self.registry.get_state(name).status == PluginStatus.ACTIVE:
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._init_futures[name] = future
        try:
            await self._init_dependencies(name, plugin, (*_chain, name))
            await self._do_init(name, plugin)
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(exc)
                future.exception()
            raise
        else:
            future.set_result(None)
        finally:
            if self._init_futures.get(name) is future:
                del self._init_futures[name]

    async def _init_dependencies(self, name: str, plugin: Plugin, chain: tuple[str, ...]) -> None:
        missing = self.registry.get_missing_dependencies(name)
        if missing:
            error = DependencyError(
                f'Plugin "{name}" has missing dependencies: {", ".join(missing)}',
                plugin=name,
                missing=missing,
            )
            self.registry.update_status(name, PluginStatus.ERROR, error)
            raise error

        for dep in dependencies_of(plugin):
            try:
                await self.init_plugin(dep, chain)
            except DependencyError as exc:
                if exc.cycle:
                    raise
                self._fail_dependency(name, dep, exc)
            except HingeError as exc:
                self._fail_dependency(name, dep, exc)

        for dep in optional_dependencies_of(plugin):
            if not self.registry.has(dep):
                continue
            try:
                await self.init_plugin(dep, chain)
            except DependencyError as exc:
                if exc.cycle:
                    raise
                logger.warning("plugin.optional_dependency_failed", plugin=name, dependency=dep, error=exc.message)
            except HingeError as exc:
                logger.warning("plugin.optional_dependency_failed", plugin=name, dependency=dep, error=exc.message)

    def _fail_dependency(self, name: str, dep: str, cause: BaseException) -> None:
        error = DependencyError(
            f'Plugin "{name}" cannot start: dependency "{dep}" failed',
            plugin=name,
            missing=[dep],
            cause=cause,
        )
        self.registry.update_status(name, PluginStatus.ERROR, error)
        raise error

    async def _do_init(self, name: str, plugin: Plugin) -> None:
        if self._core is None:
            raise HingeError("Plugin lifecycle has no core attached", category=ErrorCategory.STATE)

        logger.info("plugin.initializing", plugin=name)
        self.registry.update_status(name, PluginStatus.INITIALIZING)
        await self._emit(LifecycleEvent.BEFORE_INIT, plugin)
        try:
            await plugin.init(self._core)
            self._register_capabilities(name, plugin)
        except Exception as exc:
            self.services.unregister_plugin(name)
            self.hooks.unregister_plugin(name)
            error = ExecutionError(
                f'Plugin "{name}" failed to initialize: {error_message(exc)}',
                cause=exc,
            ).with_context(plugin=name)
            self.registry.update_status(name, PluginStatus.ERROR, error)
            await self._emit(LifecycleEvent.ERROR, plugin, exc)
            await self.hooks.dispatch(PluginEvent(HookEvent.PLUGIN_ERROR, plugin=name, error=error.message))
            logger.error("plugin.init_failed", plugin=name, error=error_message(exc))
            raise error from exc

        self.registry.update_status(name, PluginStatus.ACTIVE)
        await self._emit(LifecycleEvent.AFTER_INIT, plugin)
        await self.hooks.dispatch(PluginEvent(HookEvent.PLUGIN_LOAD, plugin=name, version=plugin.version))
        logger.info("plugin.initialized", plugin=name)

    def _register_capabilities(self, name: str, plugin: Plugin) -> None:
        for action in getattr(plugin, "actions", None) or []:
            self.services.register_action(action, name)
        for provider in getattr(plugin, "providers", None) or []:
            self.services.register_provider(provider, name)
        for evaluator in getattr(plugin, "evaluators", None) or []:
            self.services.register_evaluator(evaluator, name)
        for hook in getattr(plugin, "hooks", None) or []:
            self.hooks.register(hook, name)

    async def init_all(self) -> ActivationReport:
        """Initialize every registered plugin in load order.

        Raises:
            DependencyError: The dependency graph has a cycle; no plugin is
                initialized in that case.
        """
        order = self.registry.get_load_order()
        logger.info("plugins.initializing", count=len(order), order=order)
        report = ActivationReport()
        for name in order:
            failed_deps = [d for d in dependencies_of(self.registry.get(name)) if d in report.failed]
            if failed_deps:
                error = DependencyError(
                    f'Plugin "{name}" cannot start: dependency "{failed_deps[0]}" failed',
                    plugin=name,
                    missing=failed_deps,
                )
                self.registry.update_status(name, PluginStatus.ERROR, error)
                report.failed[name] = error
                continue
            try:
                await self.init_plugin(name)
            except HingeError as exc:
                report.failed[name] = exc
            else:
                report.activated.append(name)
        logger.info("plugins.initialized", activated=len(report.activated), failed=len(report.failed))
        return report

    # ── Teardown ─────────────────────────────────────────────────────

    async def destroy_plugin(self, name: str) -> bool:
        """Deactivate an active plugin. Returns False if it was not active.

        Raises:
            DependencyError: Active plugins depend on ``name``.
            ExecutionError: ``destroy`` raised.
        """
        plugin = self.registry.get(name)
        if plugin is None or self.registry.get_state(name).status != PluginStatus.ACTIVE:
            return False

        active_dependents = [d for d in self.registry.get_dependents(name) if self.is_active(d)]
        if active_dependents:
            raise DependencyError(
                f'Cannot destroy "{name}": active plugins depend on it: {", ".join(active_dependents)}',
                plugin=name,
            )

        logger.info("plugin.destroying", plugin=name)
        await self._emit(LifecycleEvent.BEFORE_DESTROY, plugin)
        self.services.unregister_plugin(name)
        self.hooks.unregister_plugin(name)
        destroy = getattr(plugin, "destroy", None)
        try:
            if destroy is not None:
                await destroy()
        except Exception as exc:
            error = ExecutionError(
                f'Plugin "{name}" failed to destroy: {error_message(exc)}',
                cause=exc,
            ).with_context(plugin=name)
            self.registry.update_status(name, PluginStatus.ERROR, error)
            await self._emit(LifecycleEvent.ERROR, plugin, exc)
            logger.error("plugin.destroy_failed", plugin=name, error=error_message(exc))
            raise error from exc

        self.registry.update_status(name, PluginStatus.DESTROYED)
        await self._emit(LifecycleEvent.AFTER_DESTROY, plugin)
        await self.hooks.dispatch(PluginEvent(HookEvent.PLUGIN_UNLOAD, plugin=name, version=plugin.version))
        logger.info("plugin.destroyed", plugin=name)
        return True

    async def destroy_all(self) -> None:
        """Destroy every active plugin, dependents first; errors are logged."""
        try:
            order = self.registry.get_load_order()
        except DependencyError as exc:
            logger.warning("plugins.destroy_order_unavailable", error=exc.message)
            order = self.registry.get_names()
        for name in reversed(order):
            try:
                await self.destroy_plugin(name)
            except HingeError as exc:
                logger.error("plugin.destroy_skipped", plugin=name, error=exc.message)
        logger.info("plugins.destroyed")

    async def reload_plugin(self, name: str) -> None:
        await self.destroy_plugin(name)
        await self.init_plugin(name)

    # ── Inspection ───────────────────────────────────────────────────

    def get_status(self, name: str) -> PluginStatus | None:
        state = self.registry.get_state(name)
        return state.status if state else None

    def is_active(self, name: str) -> bool:
        return self.get_status(name) == PluginStatus.ACTIVE

    def get_active(self) -> list[str]:
        return [n for n in self.registry.get_names() if self.is_active(n)]

    async def clear(self) -> None:
        await self.destroy_all()
        self.registry.clear()
        self.loader.clear_cache()
        self._handlers.clear()
        self._init_futures.clear()


__all__ = ["ActivationReport", "LifecycleEvent", "LifecycleHandler", "PluginLifecycle"]
