"""Plugin contract, loading, registration and lifecycle.

Modules
-------
base       Plugin protocol, BasePlugin, create_plugin
loader     PluginSource and PluginLoader
registry   PluginRegistry with dependency ordering
lifecycle  PluginLifecycle -- init/destroy in dependency order
"""

from hinge.plugins.base import BasePlugin, Plugin, SimplePlugin, create_plugin
from hinge.plugins.lifecycle import ActivationReport, LifecycleEvent, PluginLifecycle
from hinge.plugins.loader import PluginLoader, PluginSource, SourceKind, validate_plugin
from hinge.plugins.registry import PluginEntry, PluginRegistry, PluginState, PluginStatus

__all__ = [
    "ActivationReport",
    "BasePlugin",
    "LifecycleEvent",
    "Plugin",
    "PluginEntry",
    "PluginLifecycle",
    "PluginLoader",
    "PluginRegistry",
    "PluginSource",
    "PluginState",
    "PluginStatus",
    "SimplePlugin",
    "SourceKind",
    "create_plugin",
    "validate_plugin",
]
