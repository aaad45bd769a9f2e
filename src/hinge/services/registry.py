"""Service registry - name-keyed lookup of plugin capabilities.

Manifesto:
    Actions, providers and evaluators are looked up by name at call time,
    never imported directly, so plugins can come and go while the runtime
    keeps running. Each registration remembers its owning plugin so that
    unloading a plugin removes everything it contributed.

Collisions are last-writer-wins: registering a name that already exists
replaces the earlier capability and logs ``service.overwritten``.

Tags:
    services, registry, capability-discovery, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from hinge.core.logging import get_logger
from hinge.services.capabilities import Action, Evaluator, Provider

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RegisteredService(Generic[T]):
    service: T
    plugin_name: str


@dataclass
class ServiceStats:
    actions: int = 0
    providers: int = 0
    evaluators: int = 0

    @property
    def total(self) -> int:
        return self.actions + self.providers + self.evaluators


class ServiceRegistry:
    """Three name-keyed maps of capabilities, each entry tagged with its plugin."""

    def __init__(self) -> None:
        self._actions: dict[str, RegisteredService[Action]] = {}
        self._providers: dict[str, RegisteredService[Provider]] = {}
        self._evaluators: dict[str, RegisteredService[Evaluator]] = {}

    def _register(self, kind: str, store: dict[str, RegisteredService], service: object, plugin_name: str) -> None:
        name = service.name  # type: ignore[attr-defined]
        previous = store.get(name)
        if previous is not None:
            logger.warning(
                "service.overwritten",
                kind=kind,
                name=name,
                previous_plugin=previous.plugin_name,
                plugin=plugin_name,
            )
        store[name] = RegisteredService(service=service, plugin_name=plugin_name)
        logger.debug("service.registered", kind=kind, name=name, plugin=plugin_name)

    # ── Registration ─────────────────────────────────────────────────

    def register_action(self, action: Action, plugin_name: str) -> None:
        self._register("action", self._actions, action, plugin_name)

    def register_provider(self, provider: Provider, plugin_name: str) -> None:
        self._register("provider", self._providers, provider, plugin_name)

    def register_evaluator(self, evaluator: Evaluator, plugin_name: str) -> None:
        self._register("evaluator", self._evaluators, evaluator, plugin_name)

    # ── Lookup ───────────────────────────────────────────────────────

    def get_action(self, name: str) -> Action | None:
        entry = self._actions.get(name)
        return entry.service if entry else None

    def get_provider(self, name: str) -> Provider | None:
        entry = self._providers.get(name)
        return entry.service if entry else None

    def get_evaluator(self, name: str) -> Evaluator | None:
        entry = self._evaluators.get(name)
        return entry.service if entry else None

    def get_owner(self, kind: str, name: str) -> str | None:
        """Plugin that registered ``name`` (kind: action, provider, evaluator)."""
        store = {"action": self._actions, "provider": self._providers, "evaluator": self._evaluators}[kind]
        entry = store.get(name)
        return entry.plugin_name if entry else None

    def get_all_actions(self) -> list[Action]:
        return [e.service for e in self._actions.values()]

    def get_all_providers(self) -> list[Provider]:
        return [e.service for e in self._providers.values()]

    def get_all_evaluators(self) -> list[Evaluator]:
        return [e.service for e in self._evaluators.values()]

    # ── Removal ──────────────────────────────────────────────────────

    def unregister_plugin(self, plugin_name: str) -> int:
        """Remove every capability owned by ``plugin_name``. Returns the count."""
        doomed = [
            (store, name)
            for store in (self._actions, self._providers, self._evaluators)
            for name, entry in store.items()
            if entry.plugin_name == plugin_name
        ]
        for store, name in doomed:
            del store[name]
        if doomed:
            logger.debug("service.plugin_unregistered", plugin=plugin_name, removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._actions.clear()
        self._providers.clear()
        self._evaluators.clear()

    def get_stats(self) -> ServiceStats:
        return ServiceStats(
            actions=len(self._actions),
            providers=len(self._providers),
            evaluators=len(self._evaluators),
        )


__all__ = ["RegisteredService", "ServiceRegistry", "ServiceStats"]
