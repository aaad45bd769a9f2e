"""Hook event kinds and typed runtime event payloads.

Usage::

    from hinge.hooks.events import FlowEvent, HookEvent

    await hooks.dispatch(FlowEvent(HookEvent.FLOW_START, flow_id="f1", execution_id="e1"))

    # equivalent untyped form
    await hooks.emit(HookEvent.FLOW_START, {"flow_id": "f1"})

Custom events are plain strings prefixed ``custom:`` (see :func:`custom_event`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

CUSTOM_PREFIX = "custom:"


class HookEvent(str, Enum):
    """Built-in event kinds emitted by the runtime."""

    SYSTEM_INIT = "system:init"
    SYSTEM_READY = "system:ready"
    SYSTEM_SHUTDOWN = "system:shutdown"

    PLUGIN_LOAD = "plugin:load"
    PLUGIN_UNLOAD = "plugin:unload"
    PLUGIN_ERROR = "plugin:error"

    FLOW_START = "flow:start"
    FLOW_COMPLETE = "flow:complete"
    FLOW_ERROR = "flow:error"
    FLOW_NODE_BEFORE = "flow:node:before"
    FLOW_NODE_AFTER = "flow:node:after"
    FLOW_NODE_ERROR = "flow:node:error"

    ACTION_BEFORE = "action:before"
    ACTION_AFTER = "action:after"
    ACTION_ERROR = "action:error"

    SCHEDULER_TASK_RUN = "scheduler:task:run"
    SCHEDULER_TASK_ERROR = "scheduler:task:error"


def event_key(event: HookEvent | str) -> str:
    """Normalize an event kind to its string form."""
    return event.value if isinstance(event, HookEvent) else str(event)


def custom_event(name: str) -> str:
    """``custom_event("price-alert")`` → ``"custom:price-alert"``."""
    return name if name.startswith(CUSTOM_PREFIX) else f"{CUSTOM_PREFIX}{name}"


def is_valid_event(event: HookEvent | str) -> bool:
    key = event_key(event)
    if key.startswith(CUSTOM_PREFIX):
        return len(key) > len(CUSTOM_PREFIX)
    return key in {e.value for e in HookEvent}


# ── Typed payloads ───────────────────────────────────────────────────────


@dataclass
class RuntimeEvent:
    """Base payload; ``kind`` selects the handlers that receive it."""

    kind: HookEvent | str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), kw_only=True)

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k not in ("kind", "timestamp")}
        return {"kind": event_key(self.kind), "timestamp": self.timestamp.isoformat(), **data}


@dataclass
class SystemEvent(RuntimeEvent):
    state: str | None = None


@dataclass
class PluginEvent(RuntimeEvent):
    plugin: str = ""
    version: str | None = None
    error: str | None = None


@dataclass
class FlowEvent(RuntimeEvent):
    flow_id: str = ""
    execution_id: str = ""
    status: str | None = None
    error: str | None = None


@dataclass
class FlowNodeEvent(RuntimeEvent):
    flow_id: str = ""
    execution_id: str = ""
    node_id: str = ""
    node_type: str = ""
    output: Any = None
    error: str | None = None


@dataclass
class ActionEvent(RuntimeEvent):
    action: str = ""
    input: Any = None
    success: bool | None = None
    error: str | None = None


@dataclass
class TaskEvent(RuntimeEvent):
    task_id: str = ""
    name: str = ""
    error: str | None = None


__all__ = [
    "ActionEvent",
    "FlowEvent",
    "FlowNodeEvent",
    "HookEvent",
    "PluginEvent",
    "RuntimeEvent",
    "SystemEvent",
    "TaskEvent",
    "custom_event",
    "event_key",
    "is_valid_event",
]
