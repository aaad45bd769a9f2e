"""
Hinge Logging - structured logging for the runtime and its plugins.

Every hinge component logs through structlog with dotted event names and
keyword fields, so a plugin failure, a scheduler firing and a flow node
result all land in the same machine-readable stream.

Manifesto:
    A runtime that loads third-party plugins must be able to say which
    plugin, task or flow execution a log line belongs to.

    - **Structured:** JSON output for log aggregation
    - **Correlated:** execution_id / plugin / task_id bound via contextvars
    - **Gated:** the runtime ``log_level`` decides verbosity

Architecture:
    ::

        configure_logging(level, json_format, service)
              │
              ▼
        [TimeStamper]  merge_contextvars  add_log_level  add_logger_name
        ServiceStamp(service)  set_exc_info  ── JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.info("plugin.initialized", plugin="wallet")

Examples:
    >>> configure_logging(level="DEBUG", json_format=True)
    >>> get_logger(__name__).info("scheduler.started", tasks=3)

    Scoped context:

    >>> async with LogContext(execution_id="abc"):
    ...     logger.info("flow.node.completed", node_id="n1")

Guardrails:
    ❌ DON'T: pass ``event=`` as a field; structlog owns that key
    ✅ DO: use a qualified name (``hook_event``, ``task_event``)

Tags:
    logging, structlog, observability, hinge-core

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ServiceStamp:
    """Processor that tags every entry with the emitting service."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service)
        return event_dict


def _build_chain(service: str, json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        ServiceStamp(service),
        structlog.dev.set_exc_info,
    ]
    if json_format:
        chain += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "hinge",
    add_timestamp: bool = True,
) -> None:
    """Install the structlog processor chain and the level gate.

    Args:
        level: One of :data:`LOG_LEVELS`; unknown names fall back to INFO.
        json_format: ``None`` picks JSON when stdout is not a terminal.
        service: Value of the ``service`` field on every entry.
        add_timestamp: Prefix entries with a UTC ISO timestamp.
    """
    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        threshold = logging.INFO
    if json_format is None:
        json_format = not sys.stdout.isatty()

    structlog.configure(
        processors=_build_chain(service, json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    # structlog renders the line; the stdlib handler only writes it
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=threshold, force=True)


def get_logger(name: str | None = None) -> Any:
    """Lazy structlog logger; call sites use ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**fields: Any) -> None:
    """Attach ``fields`` to every entry logged from this context onwards."""
    structlog.contextvars.bind_contextvars(**fields)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` / ``async with`` block.

    Fields that were bound before the block get their old values back.

    Example:
        with LogContext(plugin="wallet"):
            logger.info("plugin.initializing")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._previous: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._previous = structlog.contextvars.bind_contextvars(**self.fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._previous)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "LOG_LEVELS",
    "LogContext",
    "ServiceStamp",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
