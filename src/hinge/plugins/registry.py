"""
Plugin registry - registration, state and dependency ordering.

Manifesto:
    Plugins declare dependencies by name. The registry is the single
    place that knows which plugins exist, what state each is in, and in
    what order they can be activated so that every plugin starts after
    the plugins it depends on.

Architecture:
    ::

        register(plugin, name, priority)
            └─► _entries[name] = PluginEntry(id, plugin, options, state)

        get_load_order()   DFS over dependencies
            candidates: priority desc, then name
            edges:      registered hard and optional deps
            cycle       → DependencyError(cycle=[a, b, a])

Tags:
    plugins, registry, dependency-resolution, topological-sort, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hinge.core.errors import DependencyError, ValidationError
from hinge.core.logging import get_logger
from hinge.plugins.base import Plugin
from hinge.plugins.loader import validate_plugin

logger = get_logger(__name__)


class PluginStatus(str, Enum):
    REGISTERED = "registered"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    ERROR = "error"
    DESTROYED = "destroyed"


@dataclass
class PluginOptions:
    name: str
    priority: int = 0
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginCapabilities:
    actions: list[str] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)
    evaluators: list[str] = field(default_factory=list)
    hooks: list[str] = field(default_factory=list)


@dataclass
class PluginState:
    status: PluginStatus = PluginStatus.REGISTERED
    error: BaseException | None = None
    loaded_at: datetime | None = None
    capabilities: PluginCapabilities = field(default_factory=PluginCapabilities)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginEntry:
    id: str
    plugin: Plugin
    options: PluginOptions
    state: PluginState


def dependencies_of(plugin: Any) -> list[str]:
    return list(getattr(plugin, "dependencies", None) or [])


def optional_dependencies_of(plugin: Any) -> list[str]:
    return list(getattr(plugin, "optional_dependencies", None) or [])


def _names(items: Any) -> list[str]:
    return [item.name for item in (items or [])]


def _check_unique(kind: str, names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValidationError(f"Duplicate {kind} name in plugin: {name}", field=kind, value=name)
        seen.add(name)


class PluginRegistry:
    """Registered plugins keyed by name, with state and load ordering."""

    def __init__(self) -> None:
        self._entries: dict[str, PluginEntry] = {}
        self._load_order: list[str] | None = None

    def register(
        self,
        plugin: Plugin,
        *,
        name: str | None = None,
        priority: int = 0,
        config: dict[str, Any] | None = None,
    ) -> PluginEntry:
        """Register ``plugin`` under ``name`` (defaults to ``plugin.name``).

        Raises:
            ValidationError: Duplicate name, invalid plugin, or duplicate
                capability names inside the plugin.
        """
        validate_plugin(plugin)
        key = name or plugin.name
        if key in self._entries:
            raise ValidationError(f'Plugin "{key}" is already registered', field="name", value=key)

        capabilities = PluginCapabilities(
            actions=_names(getattr(plugin, "actions", None)),
            providers=_names(getattr(plugin, "providers", None)),
            evaluators=_names(getattr(plugin, "evaluators", None)),
            hooks=_names(getattr(plugin, "hooks", None)),
        )
        _check_unique("action", capabilities.actions)
        _check_unique("provider", capabilities.providers)
        _check_unique("evaluator", capabilities.evaluators)

        entry = PluginEntry(
            id=str(uuid.uuid4()),
            plugin=plugin,
            options=PluginOptions(name=key, priority=priority, config=config or {}),
            state=PluginState(
                capabilities=capabilities,
                metadata={
                    "name": plugin.name,
                    "version": plugin.version,
                    "description": getattr(plugin, "description", None),
                    "author": getattr(plugin, "author", None),
                },
            ),
        )
        self._entries[key] = entry
        self._load_order = None
        logger.info(
            "plugin.registered",
            plugin=key,
            version=plugin.version,
            actions=len(capabilities.actions),
            providers=len(capabilities.providers),
        )
        return entry

    def unregister(self, name: str) -> bool:
        """Remove a plugin nothing else depends on.

        Raises:
            DependencyError: Registered plugins declare ``name`` as a dependency.
        """
        if name not in self._entries:
            return False
        dependents = self.get_dependents(name)
        if dependents:
            raise DependencyError(
                f'Cannot unregister "{name}": plugins depend on it: {", ".join(dependents)}',
                plugin=name,
            )
        del self._entries[name]
        self._load_order = None
        logger.info("plugin.unregistered", plugin=name)
        return True

    # ── Lookup ───────────────────────────────────────────────────────

    def get(self, name: str) -> Plugin | None:
        entry = self._entries.get(name)
        return entry.plugin if entry else None

    def get_entry(self, name: str) -> PluginEntry | None:
        return self._entries.get(name)

    def get_state(self, name: str) -> PluginState | None:
        entry = self._entries.get(name)
        return entry.state if entry else None

    def update_status(self, name: str, status: PluginStatus, error: BaseException | None = None) -> None:
        entry = self._entries.get(name)
        if entry is None:
            return
        entry.state.status = status
        entry.state.error = error
        if status == PluginStatus.ACTIVE:
            entry.state.loaded_at = datetime.now(UTC)

    def has(self, name: str) -> bool:
        return name in self._entries

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def get_all(self) -> list[Plugin]:
        return [e.plugin for e in self._entries.values()]

    def get_names(self) -> list[str]:
        return list(self._entries)

    @property
    def size(self) -> int:
        return len(self._entries)

    # ── Dependencies ─────────────────────────────────────────────────

    def get_dependents(self, name: str) -> list[str]:
        """Registered plugins whose hard dependencies include ``name``."""
        return [key for key, entry in self._entries.items() if name in dependencies_of(entry.plugin)]

    def get_missing_dependencies(self, name: str) -> list[str]:
        entry = self._entries.get(name)
        if entry is None:
            return []
        return [dep for dep in dependencies_of(entry.plugin) if dep not in self._entries]

    def are_dependencies_satisfied(self, name: str) -> bool:
        return not self.get_missing_dependencies(name)

    def get_load_order(self) -> list[str]:
        """Plugin names ordered so that dependencies come first.

        Unregistered dependencies are skipped here; activation reports them.

        Raises:
            DependencyError: The dependency graph has a cycle (``cycle``
                holds the path).
        """
        if self._load_order is not None:
            return list(self._load_order)

        order: list[str] = []
        visited: set[str] = set()
        path: list[str] = []

        def visit(key: str) -> None:
            if key in visited:
                return
            if key in path:
                cycle = path[path.index(key):] + [key]
                raise DependencyError(
                    f"Circular dependency detected: {' -> '.join(cycle)}",
                    plugin=key,
                    cycle=cycle,
                )
            path.append(key)
            plugin = self._entries[key].plugin
            edges = [d for d in dependencies_of(plugin) + optional_dependencies_of(plugin) if d in self._entries]
            for dep in edges:
                visit(dep)
            path.pop()
            visited.add(key)
            order.append(key)

        candidates = sorted(self._entries.items(), key=lambda kv: (-kv[1].options.priority, kv[0]))
        for key, _ in candidates:
            visit(key)

        self._load_order = order
        return list(order)

    def clear(self) -> None:
        self._entries.clear()
        self._load_order = None
        logger.info("plugin_registry.cleared")


__all__ = [
    "PluginCapabilities",
    "PluginEntry",
    "PluginOptions",
    "PluginRegistry",
    "PluginState",
    "PluginStatus",
    "dependencies_of",
    "optional_dependencies_of",
]
