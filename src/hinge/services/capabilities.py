"""Capability contracts - what plugins contribute to the runtime.

Three capability kinds:

- **Action**: does something (``execute(context) -> ActionResult``)
- **Provider**: supplies data (``get(context) -> ProviderResult``)
- **Evaluator**: answers yes/no (``evaluate(context) -> bool``)

Each kind is a structural :class:`typing.Protocol`, so a plugin may use plain
classes, dataclasses or simple namespaces without inheriting anything.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from hinge.runtime.engine import RuntimeEngine


def _now_ms() -> float:
    return time.time() * 1000


# ── Results ──────────────────────────────────────────────────────────────


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


@dataclass
class ProviderResult:
    success: bool
    data: Any = None
    error: str | None = None
    timestamp: float = field(default_factory=_now_ms)
    cached: bool = False


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class CacheConfig:
    """Provider-level caching: results live ``ttl_ms`` in a cache of ``max_size``."""

    ttl_ms: int = 30_000
    max_size: int = 1_000


# ── Contexts ─────────────────────────────────────────────────────────────


@dataclass
class ActionContext:
    input: Any = None
    plugin_name: str = "unknown"
    agent_id: str | None = None
    chain_id: int | None = None
    core: RuntimeEngine | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderContext:
    query: Any = None
    plugin_name: str = "unknown"
    agent_id: str | None = None
    chain_id: int | None = None
    core: RuntimeEngine | None = None


@dataclass
class EvaluatorContext:
    condition: Any = None
    data: Any = None
    plugin_name: str = "unknown"
    agent_id: str | None = None
    core: RuntimeEngine | None = None


# ── Protocols ────────────────────────────────────────────────────────────


@runtime_checkable
class Action(Protocol):
    name: str

    async def execute(self, context: ActionContext) -> ActionResult: ...


@runtime_checkable
class Provider(Protocol):
    name: str
    type: str

    async def get(self, context: ProviderContext) -> ProviderResult: ...


@runtime_checkable
class Evaluator(Protocol):
    name: str

    async def evaluate(self, context: EvaluatorContext) -> bool: ...


__all__ = [
    "Action",
    "ActionContext",
    "ActionResult",
    "CacheConfig",
    "Evaluator",
    "EvaluatorContext",
    "Provider",
    "ProviderContext",
    "ProviderResult",
    "ValidationResult",
]
