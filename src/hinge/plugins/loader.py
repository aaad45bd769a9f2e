"""
Plugin loader - resolve plugin sources into validated plugin objects.

Manifesto:
    The runtime should not care where a plugin came from. A source is one
    of four capability providers and the loader turns each into a plugin
    object that passed validation, or raises.

Architecture:
    ::

        PluginSource.instance(plugin)          → plugin
        PluginSource.from_factory(fn, config)  → await fn(config)
        PluginSource.module("plugins/x.py")    → import file → extract_plugin
        PluginSource.package("acme.plugin")    → import_module → extract_plugin
                                                      │
                              extract_plugin(obj) ────┘
                                instance | class | factory |
                                module.plugin | module.default | module.create_plugin
                                                      │
                                            validate_plugin(plugin)

    Module and package results are cached by path / dotted name.

Guardrails:
    ❌ DON'T: expect a module source to be re-imported after a change
    ✅ DO: call ``uncache(path)`` first

Tags:
    plugins, loader, importlib, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any

from hinge.core.errors import ExecutionError, HingeError, ValidationError, error_message
from hinge.core.logging import get_logger
from hinge.plugins.base import Plugin

logger = get_logger(__name__)

PluginFactory = Callable[..., Any]

_CAPABILITY_LISTS = ("actions", "providers", "evaluators", "hooks", "dependencies", "optional_dependencies")


class SourceKind(str, Enum):
    INSTANCE = "instance"
    FACTORY = "factory"
    MODULE = "module"
    PACKAGE = "package"


@dataclass
class PluginSource:
    """Where a plugin comes from. Build with the classmethods."""

    kind: SourceKind
    plugin: Any = None
    factory: PluginFactory | None = None
    path: str | None = None
    name: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def instance(cls, plugin: Any) -> PluginSource:
        return cls(kind=SourceKind.INSTANCE, plugin=plugin)

    @classmethod
    def from_factory(cls, factory: PluginFactory, config: dict[str, Any] | None = None) -> PluginSource:
        return cls(kind=SourceKind.FACTORY, factory=factory, config=config or {})

    @classmethod
    def module(cls, path: str | Path, config: dict[str, Any] | None = None) -> PluginSource:
        return cls(kind=SourceKind.MODULE, path=str(path), config=config or {})

    @classmethod
    def package(cls, name: str, config: dict[str, Any] | None = None) -> PluginSource:
        return cls(kind=SourceKind.PACKAGE, name=name, config=config or {})

    @property
    def label(self) -> str:
        return self.path or self.name or self.kind.value


def _is_plugin(value: Any) -> bool:
    return (
        value is not None
        and not inspect.isclass(value)
        and not isinstance(value, ModuleType)
        and isinstance(getattr(value, "name", None), str)
        and isinstance(getattr(value, "version", None), str)
        and callable(getattr(value, "init", None))
    )


def validate_plugin(plugin: Any) -> None:
    """Check the structural plugin contract.

    Raises:
        ValidationError: Missing name/version, non-callable init, or a
            capability attribute that is not a list.
    """
    name = getattr(plugin, "name", None)
    if not name or not isinstance(name, str):
        raise ValidationError("Plugin must have a valid name", field="name", value=name)
    version = getattr(plugin, "version", None)
    if not version or not isinstance(version, str):
        raise ValidationError("Plugin must have a valid version", field="version", value=version)
    if not callable(getattr(plugin, "init", None)):
        raise ValidationError("Plugin must have an init function", field="init")
    for attr in _CAPABILITY_LISTS:
        value = getattr(plugin, attr, None)
        if value is not None and not isinstance(value, (list, tuple)):
            raise ValidationError(f"Plugin {attr} must be a list", field=attr, value=value)


class PluginLoader:
    """Turns :class:`PluginSource` values into validated plugins."""

    def __init__(self) -> None:
        self._cache: dict[str, Plugin] = {}

    async def load(self, source: PluginSource) -> Plugin:
        """Load one plugin.

        Raises:
            ValidationError: The resolved object is not a valid plugin.
            ExecutionError: Importing or calling the factory failed.
        """
        if source.kind == SourceKind.INSTANCE:
            validate_plugin(source.plugin)
            return source.plugin
        if source.kind == SourceKind.FACTORY:
            return await self.load_from_factory(source.factory, source.config)
        if source.kind == SourceKind.MODULE:
            return await self._load_cached(source.path, source.config, self._import_file)
        if source.kind == SourceKind.PACKAGE:
            return await self._load_cached(source.name, source.config, importlib.import_module)
        raise ValidationError(f"Unknown plugin source type: {source.kind}", field="kind")

    async def load_from_factory(self, factory: PluginFactory | None, config: dict[str, Any] | None = None) -> Plugin:
        if factory is None or not callable(factory):
            raise ValidationError("Plugin factory must be callable", field="factory")
        logger.debug("plugin_loader.factory", factory=getattr(factory, "__name__", repr(factory)))
        try:
            plugin = factory(config or {})
            if inspect.isawaitable(plugin):
                plugin = await plugin
        except HingeError:
            raise
        except Exception as exc:
            raise ExecutionError(f"Plugin factory failed: {error_message(exc)}", cause=exc) from exc
        validate_plugin(plugin)
        return plugin

    async def _load_cached(
        self,
        key: str | None,
        config: dict[str, Any],
        importer: Callable[[str], ModuleType],
    ) -> Plugin:
        if not key:
            raise ValidationError("Plugin source needs a path or package name", field="path")
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("plugin_loader.cache_hit", source=key)
            return cached
        try:
            module = importer(key)
        except Exception as exc:
            logger.error("plugin_loader.import_failed", source=key, error=str(exc))
            raise ExecutionError(f'Failed to load plugin from "{key}": {error_message(exc)}', cause=exc) from exc
        plugin = await self.extract_plugin(module, config)
        validate_plugin(plugin)
        self._cache[key] = plugin
        logger.info("plugin_loader.loaded", plugin=plugin.name, version=plugin.version, source=key)
        return plugin

    @staticmethod
    def _import_file(path: str) -> ModuleType:
        file = Path(path).resolve()
        if not file.is_file():
            raise FileNotFoundError(f"No such plugin module: {file}")
        module_name = f"hinge_plugin_{file.stem}_{abs(hash(str(file))):x}"
        spec = importlib.util.spec_from_file_location(module_name, file)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot import plugin module: {file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module

    async def extract_plugin(self, obj: Any, config: dict[str, Any] | None = None) -> Plugin:
        """Find the plugin in an instance, class, factory or module.

        Modules are searched for ``plugin``, ``default`` and ``create_plugin``
        attributes in that order.

        Raises:
            ValidationError: Nothing plugin-like was found.
        """
        if _is_plugin(obj):
            return obj
        if inspect.isclass(obj):
            return await self.load_from_factory(lambda _config: obj(), config)
        if isinstance(obj, ModuleType):
            for attr in ("plugin", "default", "create_plugin"):
                candidate = getattr(obj, attr, None)
                if candidate is not None:
                    return await self.extract_plugin(candidate, config)
            raise ValidationError("Module does not export a valid plugin", value=obj.__name__)
        if callable(obj):
            return await self.load_from_factory(obj, config)
        raise ValidationError("Module does not export a valid plugin", value=repr(obj))

    async def load_all(self, sources: Sequence[PluginSource]) -> list[Plugin]:
        """Load sequentially; the first failure propagates."""
        return [await self.load(source) for source in sources]

    async def load_parallel(self, sources: Sequence[PluginSource]) -> list[Plugin]:
        """Load concurrently; failures are logged and left out of the result."""
        outcomes = await asyncio.gather(*(self.load(s) for s in sources), return_exceptions=True)
        plugins: list[Plugin] = []
        errors: list[str] = []
        for source, outcome in zip(sources, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                errors.append(f"{source.label}: {error_message(outcome)}")
            else:
                plugins.append(outcome)
        if errors:
            logger.warning("plugin_loader.partial_failure", failed=len(errors), errors=errors)
        return plugins

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("plugin_loader.cache_cleared")

    def uncache(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    @property
    def cache_size(self) -> int:
        return len(self._cache)


__all__ = ["PluginFactory", "PluginLoader", "PluginSource", "SourceKind", "validate_plugin"]
