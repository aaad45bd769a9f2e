"""
Hinge - orchestration core for pluggable automation runtimes.

Plugins contribute actions, providers, evaluators and hooks; the runtime
initializes them in dependency order, exposes their capabilities through
one executor and runs flow graphs and scheduled tasks on top of them.

Quick start:
    >>> from hinge import RuntimeEngine
    >>> engine = RuntimeEngine(plugins=["hinge_wallet"])
    >>> await engine.initialize()
    >>> await engine.start()
    >>> await engine.execute_action("wallet:transfer", {"to": addr, "amount": 1})
"""

from hinge.core.errors import (
    ConfigError,
    DependencyError,
    ExecutionError,
    HingeError,
    InvalidTransitionError,
    NotFoundError,
    TimeoutError,
    ValidationError,
)
from hinge.flow.engine import FlowEngine
from hinge.flow.service import FlowService
from hinge.hooks.dispatcher import HookDispatcher
from hinge.hooks.events import HookEvent
from hinge.plugins.loader import PluginSource
from hinge.runtime.engine import RuntimeEngine
from hinge.runtime.state_machine import RuntimeState
from hinge.services.capabilities import ActionResult, ProviderResult

__version__ = "0.1.0"

__all__ = [
    "ActionResult",
    "ConfigError",
    "DependencyError",
    "ExecutionError",
    "FlowEngine",
    "FlowService",
    "HingeError",
    "HookDispatcher",
    "HookEvent",
    "InvalidTransitionError",
    "NotFoundError",
    "PluginSource",
    "ProviderResult",
    "RuntimeEngine",
    "RuntimeState",
    "TimeoutError",
    "ValidationError",
    "__version__",
]
