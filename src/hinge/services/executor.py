"""Executor - calls registered capabilities by name.

Manifesto:
    Callers (flows, scheduled tasks, other plugins) should not care whether
    an action raised, returned a failure or does not exist: they always get
    an :class:`ActionResult` back. Errors become data at this boundary.

Architecture:
    ::

        execute_action("swap:quote", input)
              │
              ├─ _resolve_action: full name, then "<plugin>:<action>"
              ├─ action.validate(input)        invalid → ActionResult(fail)
              ├─ retry_with_timeout(action.execute(ctx))
              └─ exception → ActionResult(success=False, error=str(exc))

        get_data("price", query)
              └─ provider.cache_config → TTLCache.get_or_set(create_cache_key(name, query))
                                          (one provider call per concurrent miss)

Tags:
    executor, actions, providers, evaluators, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from hinge.core.cache import TTLCache, create_cache_key
from hinge.core.errors import NotFoundError, error_message
from hinge.core.logging import get_logger
from hinge.execution.retry import RetryPolicy, retry_with_timeout
from hinge.services.capabilities import (
    Action,
    ActionContext,
    ActionResult,
    EvaluatorContext,
    ProviderContext,
    ProviderResult,
)
from hinge.services.registry import ServiceRegistry

if TYPE_CHECKING:
    from hinge.runtime.engine import RuntimeEngine

logger = get_logger(__name__)

ACTION_RETRY_DELAY_MS = 1000


class _UncachedResult(Exception):
    """Unsuccessful provider result; raised so the cache stores nothing."""

    def __init__(self, result: ProviderResult):
        super().__init__(result.error)
        self.result = result


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Executor:
    """Runs actions, providers and evaluators looked up in a :class:`ServiceRegistry`."""

    def __init__(
        self,
        services: ServiceRegistry,
        *,
        agent_id: str | None = None,
        core: RuntimeEngine | None = None,
        default_chain_id: int | None = None,
    ) -> None:
        self.services = services
        self.agent_id = agent_id or str(uuid.uuid4())
        self.core = core
        self.default_chain_id = default_chain_id
        self._provider_caches: dict[str, TTLCache] = {}

    def _resolve_action(self, name: str) -> tuple[Action | None, str]:
        action = self.services.get_action(name)
        if action is not None:
            return action, self.services.get_owner("action", name) or name.split(":")[0]
        plugin_name, sep, action_name = name.partition(":")
        if sep:
            action = self.services.get_action(action_name)
            if action is not None and self.services.get_owner("action", action_name) == plugin_name:
                return action, plugin_name
        return None, plugin_name

    async def execute_action(
        self,
        name: str,
        input: Any = None,
        *,
        chain_id: int | None = None,
        retry: bool = False,
        max_retries: int = 3,
        timeout_ms: float | None = None,
    ) -> ActionResult:
        """Execute an action; never raises for action failures."""
        action, plugin_name = self._resolve_action(name)
        if action is None:
            return ActionResult.fail(f"Action not found: {name}")

        context = ActionContext(
            input=input,
            plugin_name=plugin_name,
            agent_id=self.agent_id,
            chain_id=chain_id if chain_id is not None else self.default_chain_id,
            core=self.core,
        )
        logger.debug("action.execute", action=name, plugin=plugin_name)

        try:
            validate = getattr(action, "validate", None)
            if validate is not None:
                validation = await _maybe_await(validate(input))
                if not validation.valid:
                    return ActionResult.fail(f"Validation failed: {', '.join(validation.errors)}")

            policy = RetryPolicy(max_attempts=max_retries, delay_ms=ACTION_RETRY_DELAY_MS) if retry else None
            return await retry_with_timeout(
                lambda: action.execute(context), policy, timeout_ms, f"Action {name}"
            )
        except Exception as exc:
            logger.error("action.failed", action=name, error=error_message(exc))
            return ActionResult.fail(error_message(exc))

    def _cache_for(self, name: str, provider: Any) -> TTLCache | None:
        config = getattr(provider, "cache_config", None)
        if config is None:
            return None
        cache = self._provider_caches.get(name)
        if cache is None:
            cache = TTLCache(default_ttl_ms=config.ttl_ms, max_size=config.max_size)
            self._provider_caches[name] = cache
        return cache

    async def get_data(
        self,
        name: str,
        query: Any = None,
        *,
        chain_id: int | None = None,
        use_cache: bool = True,
    ) -> ProviderResult:
        """Fetch data from a provider, through its cache when it declares one."""
        provider = self.services.get_provider(name)
        if provider is None:
            return ProviderResult(success=False, error=f"Provider not found: {name}")

        context = ProviderContext(
            query=query,
            plugin_name=self.services.get_owner("provider", name) or "unknown",
            agent_id=self.agent_id,
            chain_id=chain_id if chain_id is not None else self.default_chain_id,
            core=self.core,
        )
        logger.debug("provider.get", provider=name)

        cache = self._cache_for(name, provider) if use_cache else None

        async def fetch() -> ProviderResult:
            result = await provider.get(context)
            if cache is not None and not result.success:
                raise _UncachedResult(result)
            return result

        try:
            if cache is None:
                return await fetch()
            key = create_cache_key(name, query if isinstance(query, dict) else {"query": query})
            hit = cache.get(key)
            if hit is not None:
                return replace(hit, cached=True)
            # concurrent misses for one key share a single provider call
            return await cache.get_or_set(key, fetch)
        except _UncachedResult as unsuccessful:
            return unsuccessful.result
        except Exception as exc:
            logger.error("provider.failed", provider=name, error=error_message(exc))
            return ProviderResult(success=False, error=error_message(exc))

    async def evaluate(self, name: str, condition: Any, data: Any = None) -> bool:
        """Run an evaluator.

        Raises:
            NotFoundError: No evaluator registered under ``name``.
        """
        evaluator = self.services.get_evaluator(name)
        if evaluator is None:
            raise NotFoundError("evaluator", name, f"Evaluator not found: {name}")
        context = EvaluatorContext(
            condition=condition,
            data=data,
            plugin_name=self.services.get_owner("evaluator", name) or "unknown",
            agent_id=self.agent_id,
            core=self.core,
        )
        logger.debug("evaluator.evaluate", evaluator=name)
        return bool(await evaluator.evaluate(context))

    def available_actions(self) -> list[str]:
        return [a.name for a in self.services.get_all_actions()]

    def available_providers(self) -> list[str]:
        return [p.name for p in self.services.get_all_providers()]

    def available_evaluators(self) -> list[str]:
        return [e.name for e in self.services.get_all_evaluators()]

    def clear_cache(self) -> None:
        """Drop every provider cache."""
        for cache in self._provider_caches.values():
            cache.destroy()
        self._provider_caches.clear()


__all__ = ["Executor"]
