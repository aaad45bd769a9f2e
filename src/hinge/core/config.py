"""
Runtime configuration for hinge.

Manifesto:
    One validated settings object holds every recognized runtime option.
    The engine, the task manager, the operation runner and the flow engine
    all read their defaults from it, so a call site that does not override
    ``task_timeout_ms`` or ``max_concurrent_tasks`` gets the configured value.

:class:`CoreSettings` reads ``HINGE_*`` environment variables (and an
optional ``.env`` file). Complex values use JSON, e.g.
``HINGE_PLUGINS='["hinge_wallet", "hinge_swap"]'``.

Tags:
    hinge-core, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hinge.core.errors import ConfigError
from hinge.core.logging import LOG_LEVELS


class CoreSettings(BaseSettings):
    """Hinge runtime configuration.

    All fields can be set via ``HINGE_*`` environment variables or passed
    directly as keyword arguments.
    """

    model_config = SettingsConfigDict(
        env_prefix="HINGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Diagnostics ──────────────────────────────────────────────
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO", description="Gates diagnostic verbosity")

    # ── Plugins ──────────────────────────────────────────────────
    plugins: list[str] = Field(default_factory=list, description="Importable plugin packages")
    plugin_config: dict[str, dict[str, Any]] = Field(default_factory=dict)

    # ── Chains ───────────────────────────────────────────────────
    default_chain_id: int | None = Field(default=None)
    chains: list[int] = Field(default_factory=list)

    # ── Execution defaults ───────────────────────────────────────
    max_concurrent_tasks: int = Field(default=10, ge=1)
    task_timeout_ms: int | None = Field(default=None, gt=0)

    # ── Cache ────────────────────────────────────────────────────
    cache_default_ttl_ms: int = Field(default=30_000, gt=0)
    cache_max_size: int = Field(default=10_000, ge=1)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def effective_log_level(self) -> str:
        """``DEBUG`` when ``debug`` is set, else ``log_level``."""
        return "DEBUG" if self.debug else self.log_level


def load_settings(**overrides: Any) -> CoreSettings:
    """Build settings, turning pydantic failures into :class:`ConfigError`."""
    try:
        return CoreSettings(**overrides)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid runtime configuration: {exc}", cause=exc) from exc


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, CoreSettings] = {}


def get_settings(*, _force_reload: bool = False) -> CoreSettings:
    """Load, validate and cache a :class:`CoreSettings` from the environment."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = load_settings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["CoreSettings", "load_settings", "get_settings", "clear_settings_cache"]
