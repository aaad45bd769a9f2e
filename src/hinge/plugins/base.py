"""Plugin contract and convenience base class.

A plugin is any object with ``name``, ``version`` and an async ``init(core)``;
everything else is optional. Two ways to write one:

Subclass :class:`BasePlugin`::

    class PricePlugin(BasePlugin):
        name = "prices"
        version = "1.0.0"

        async def on_init(self) -> None:
            self.register_provider(PriceProvider())

Or build one from parts with :func:`create_plugin`::

    plugin = create_plugin("prices", "1.0.0", providers=[PriceProvider()])
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from hinge.core.errors import HingeError
from hinge.core.logging import get_logger
from hinge.hooks.dispatcher import Hook
from hinge.services.capabilities import Action, Evaluator, Provider

if TYPE_CHECKING:
    from hinge.runtime.engine import RuntimeEngine


@runtime_checkable
class Plugin(Protocol):
    """Structural plugin contract.

    Optional attributes read by the runtime when present: ``dependencies``,
    ``optional_dependencies``, ``actions``, ``providers``, ``evaluators``,
    ``hooks``, ``description``, ``author``, ``metadata`` and ``destroy()``.
    """

    name: str
    version: str

    async def init(self, core: RuntimeEngine) -> None: ...


class BasePlugin:
    """Base class supplying defaults, a bound logger and registration helpers.

    Subclasses set ``name``/``version`` and override :meth:`on_init` (and
    optionally :meth:`on_destroy`).
    """

    name: str = ""
    version: str = ""
    description: str | None = None
    author: str | None = None

    def __init__(self) -> None:
        self.core: RuntimeEngine | None = None
        self.dependencies: list[str] = list(getattr(type(self), "dependencies", []) or [])
        self.optional_dependencies: list[str] = list(getattr(type(self), "optional_dependencies", []) or [])
        self.actions: list[Action] = []
        self.providers: list[Provider] = []
        self.evaluators: list[Evaluator] = []
        self.hooks: list[Hook] = []
        self.metadata: dict[str, Any] = {}
        self.logger = get_logger(f"hinge.plugins.{self.name or 'plugin'}")

    async def init(self, core: RuntimeEngine) -> None:
        self.core = core
        self.logger = get_logger(f"hinge.plugins.{self.name}").bind(plugin=self.name)
        self.logger.debug("plugin.initializing")
        try:
            await self.on_init()
        except Exception as exc:
            self.logger.error("plugin.init_failed", error=str(exc))
            raise
        self.logger.info("plugin.initialized")

    async def destroy(self) -> None:
        self.logger.debug("plugin.destroying")
        try:
            await self.on_destroy()
        except Exception as exc:
            self.logger.error("plugin.destroy_failed", error=str(exc))
            raise
        self.core = None
        self.logger.info("plugin.destroyed")

    async def on_init(self) -> None:
        """Override to set the plugin up."""

    async def on_destroy(self) -> None:
        """Override to release resources."""

    @property
    def is_initialized(self) -> bool:
        return self.core is not None

    def get_core(self) -> RuntimeEngine:
        if self.core is None:
            raise HingeError(f"Plugin {self.name} is not initialized")
        return self.core

    # ── Capability helpers ───────────────────────────────────────────

    def register_action(self, action: Action) -> None:
        self.actions.append(action)

    def register_provider(self, provider: Provider) -> None:
        self.providers.append(provider)

    def register_evaluator(self, evaluator: Evaluator) -> None:
        self.evaluators.append(evaluator)

    def register_hook(self, hook: Hook) -> None:
        self.hooks.append(hook)

    async def execute_action(self, action_name: str, input: Any = None) -> Any:
        return await self.get_core().execute_action(action_name, input)

    async def get_data(self, provider_name: str, query: Any = None) -> Any:
        return await self.get_core().get_data(provider_name, query)

    async def emit(self, event: str, data: Any = None) -> None:
        await self.get_core().hooks.emit(event, data, source=self.name)

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            **self.metadata,
        }


@dataclass
class SimplePlugin:
    """Plugin assembled from plain parts; see :func:`create_plugin`."""

    name: str
    version: str
    description: str | None = None
    author: str | None = None
    dependencies: list[str] = field(default_factory=list)
    optional_dependencies: list[str] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    providers: list[Provider] = field(default_factory=list)
    evaluators: list[Evaluator] = field(default_factory=list)
    hooks: list[Hook] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    on_init: Callable[[RuntimeEngine], Awaitable[None]] | None = field(default=None, repr=False)
    on_destroy: Callable[[], Awaitable[None]] | None = field(default=None, repr=False)

    async def init(self, core: RuntimeEngine) -> None:
        if self.on_init is not None:
            await self.on_init(core)

    async def destroy(self) -> None:
        if self.on_destroy is not None:
            await self.on_destroy()


def create_plugin(
    name: str,
    version: str,
    *,
    init: Callable[[RuntimeEngine], Awaitable[None]] | None = None,
    destroy: Callable[[], Awaitable[None]] | None = None,
    **parts: Any,
) -> SimplePlugin:
    """Build a plugin from capability lists and optional init/destroy callables."""
    return SimplePlugin(name=name, version=version, on_init=init, on_destroy=destroy, **parts)


__all__ = ["BasePlugin", "Plugin", "SimplePlugin", "create_plugin"]
