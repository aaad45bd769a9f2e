"""
Core primitives shared by every hinge component.

Modules
-------
errors      Typed error hierarchy (HingeError and subclasses)
logging     structlog configuration and helpers
config      CoreSettings (pydantic-settings, ``HINGE_*`` env vars)
cache       TTLCache with FIFO eviction and single-flight get_or_set
"""

from hinge.core.cache import TTLCache, create_cache_key
from hinge.core.config import CoreSettings, get_settings, load_settings
from hinge.core.errors import (
    ConfigError,
    DependencyError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    HingeError,
    InvalidTransitionError,
    NotFoundError,
    TimeoutError,
    ValidationError,
)
from hinge.core.logging import configure_logging, get_logger

__all__ = [
    "TTLCache",
    "create_cache_key",
    "CoreSettings",
    "get_settings",
    "load_settings",
    "ConfigError",
    "DependencyError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionError",
    "HingeError",
    "InvalidTransitionError",
    "NotFoundError",
    "TimeoutError",
    "ValidationError",
    "configure_logging",
    "get_logger",
]
