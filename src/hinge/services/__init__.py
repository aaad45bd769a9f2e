"""Plugin capabilities: contracts, the service registry and the executor."""

from hinge.services.capabilities import (
    Action,
    ActionContext,
    ActionResult,
    CacheConfig,
    Evaluator,
    EvaluatorContext,
    Provider,
    ProviderContext,
    ProviderResult,
    ValidationResult,
)
from hinge.services.executor import Executor
from hinge.services.registry import RegisteredService, ServiceRegistry, ServiceStats

__all__ = [
    "Action",
    "ActionContext",
    "ActionResult",
    "CacheConfig",
    "Evaluator",
    "EvaluatorContext",
    "Executor",
    "Provider",
    "ProviderContext",
    "ProviderResult",
    "RegisteredService",
    "ServiceRegistry",
    "ServiceStats",
    "ValidationResult",
]
