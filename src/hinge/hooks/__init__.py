"""Hook dispatcher and runtime event kinds.

Modules
-------
events      HookEvent enum and typed RuntimeEvent payloads
dispatcher  HookDispatcher -- prioritized, filterable handlers
"""

from hinge.hooks.dispatcher import (
    Hook,
    HookDispatcher,
    HookExecutionResult,
    HookPayload,
    HookRegistration,
)
from hinge.hooks.events import (
    ActionEvent,
    FlowEvent,
    FlowNodeEvent,
    HookEvent,
    PluginEvent,
    RuntimeEvent,
    SystemEvent,
    TaskEvent,
    custom_event,
)

__all__ = [
    "ActionEvent",
    "FlowEvent",
    "FlowNodeEvent",
    "Hook",
    "HookDispatcher",
    "HookEvent",
    "HookExecutionResult",
    "HookPayload",
    "HookRegistration",
    "PluginEvent",
    "RuntimeEvent",
    "SystemEvent",
    "TaskEvent",
    "custom_event",
]
