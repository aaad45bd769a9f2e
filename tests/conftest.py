"""
Shared pytest fixtures for hinge-core tests.

This module provides:
- Fresh runtime components (hooks, services, executor, lifecycle, engine)
- Factories for fake actions, providers, evaluators and plugins
- An injectable millisecond clock for cache TTL tests

Usage:
    def test_something(services, action_factory):
        services.register_action(action_factory("ping"), "net")
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from hinge.hooks.dispatcher import HookDispatcher
from hinge.plugins.base import create_plugin
from hinge.plugins.lifecycle import PluginLifecycle
from hinge.runtime.engine import RuntimeEngine
from hinge.services.capabilities import (
    ActionContext,
    ActionResult,
    CacheConfig,
    EvaluatorContext,
    ProviderContext,
    ProviderResult,
)
from hinge.services.executor import Executor
from hinge.services.registry import ServiceRegistry


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(str(item.fspath))
        if "integration" in test_path.parts or test_path.name.startswith("test_engine_integration"):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake capabilities
# =============================================================================


@dataclass
class FakeAction:
    name: str
    handler: Callable[[ActionContext], Awaitable[Any]] | None = None
    calls: list[Any] = field(default_factory=list)
    contexts: list[ActionContext] = field(default_factory=list)

    async def execute(self, context: ActionContext) -> ActionResult:
        self.calls.append(context.input)
        self.contexts.append(context)
        if self.handler is None:
            return ActionResult.ok(context.input)
        return await self.handler(context)


@dataclass
class FakeProvider:
    name: str
    data: Any = None
    type: str = "data"
    cache_config: CacheConfig | None = None
    calls: int = 0

    async def get(self, context: ProviderContext) -> ProviderResult:
        self.calls += 1
        return ProviderResult(success=True, data=self.data if self.data is not None else context.query)


@dataclass
class FakeEvaluator:
    name: str
    answer: bool = True
    contexts: list[EvaluatorContext] = field(default_factory=list)

    async def evaluate(self, context: EvaluatorContext) -> bool:
        self.contexts.append(context)
        return self.answer


@pytest.fixture
def action_factory() -> Callable[..., FakeAction]:
    """Build a recording action; without a handler it echoes its input."""
    return FakeAction


@pytest.fixture
def provider_factory() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def evaluator_factory() -> Callable[..., FakeEvaluator]:
    return FakeEvaluator


@pytest.fixture
def plugin_factory() -> Callable[..., Any]:
    """``plugin_factory(name, dependencies=[...], init=..., actions=[...])``."""

    def build(name: str, version: str = "1.0.0", **parts: Any) -> Any:
        return create_plugin(name, version, **parts)

    return build


# =============================================================================
# Runtime components
# =============================================================================


@pytest.fixture
def hooks() -> HookDispatcher:
    return HookDispatcher()


@pytest.fixture
def services() -> ServiceRegistry:
    return ServiceRegistry()


@pytest.fixture
def executor(services: ServiceRegistry) -> Executor:
    return Executor(services, agent_id="test-agent", default_chain_id=1)


@pytest.fixture
def lifecycle(services: ServiceRegistry, hooks: HookDispatcher) -> PluginLifecycle:
    """Lifecycle with a bare ``object()`` standing in for the runtime core."""
    lc = PluginLifecycle(services=services, hooks=hooks)
    lc.set_core(object())  # type: ignore[arg-type]
    return lc


@pytest.fixture
def engine() -> RuntimeEngine:
    """Engine built from explicit settings; the environment is not read."""
    return RuntimeEngine(configure_logs=False, plugins=[], log_level="DEBUG")


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
