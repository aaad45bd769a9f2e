"""Flow Templates - pre-built graphs for common flow shapes.

Manifesto:
    Most flows start from the same handful of shapes: run one action,
    branch on a condition, handle an action's failure, run on a schedule.
    Templates give editors a wired-up starting point; the action nodes are
    left blank (``plugin_name``/``action_name`` empty) and must be filled in
    before the flow validates.

ARCHITECTURE
────────────
::

    simple-action    trigger → action → output                       Basic
    conditional      trigger → condition ─true→  action ─┐            Basic
                                         └false→ action ─┴→ output
    error-handling   trigger → action ─output→ output                Basic
                                      └error──→ action → output
    scheduled        schedule trigger (0 * * * *) → action → log      Automation

    get_template(id)  get_templates_by_category(c)  get_template_categories()
    create_empty_flow(name)  create_from_template(id, name)

Tags:
    flow, templates, presets, hinge-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

from hinge.flow.edges import create_edge, create_false_edge, create_true_edge
from hinge.flow.models import EdgeType, Flow, FlowSettings, FlowTemplate, Handle, Position
from hinge.flow.nodes import (
    create_action_node,
    create_condition_node,
    create_output_node,
    create_trigger_node,
)


def _at(x: float, y: float) -> Position:
    return Position(x=x, y=y)


def create_empty_flow(name: str, description: str | None = None) -> Flow:
    """A new flow holding a single manual ``Start`` trigger."""
    return Flow(
        name=name,
        description=description,
        nodes=[create_trigger_node("Start", {"trigger_type": "manual"}, position=_at(100, 100))],
        settings=FlowSettings(max_execution_time_ms=60_000, retry_on_failure=False),
    )


def _simple_action() -> FlowTemplate:
    return FlowTemplate(
        id="simple-action",
        name="Simple Action",
        description="A basic flow with one action",
        category="Basic",
        flow=Flow(
            name="Simple Action Flow",
            description="Execute a single action",
            nodes=[
                create_trigger_node("Start", id="trigger", position=_at(100, 100)),
                create_action_node("Execute Action", id="action", position=_at(300, 100)),
                create_output_node("End", id="output", position=_at(500, 100)),
            ],
            edges=[
                create_edge("trigger", "action"),
                create_edge("action", "output", source_handle=Handle.OUTPUT),
            ],
        ),
    )


def _conditional() -> FlowTemplate:
    return FlowTemplate(
        id="conditional",
        name="Conditional Flow",
        description="A flow with conditional branching",
        category="Basic",
        flow=Flow(
            name="Conditional Flow",
            description="Execute different actions based on condition",
            nodes=[
                create_trigger_node("Start", id="trigger", position=_at(100, 200)),
                create_condition_node("Check Condition", id="condition", position=_at(300, 200)),
                create_action_node("True Action", id="true-action", position=_at(500, 100)),
                create_action_node("False Action", id="false-action", position=_at(500, 300)),
                create_output_node("End", id="output", position=_at(700, 200)),
            ],
            edges=[
                create_edge("trigger", "condition"),
                create_true_edge("condition", "true-action"),
                create_false_edge("condition", "false-action"),
                create_edge("true-action", "output", source_handle=Handle.OUTPUT),
                create_edge("false-action", "output", source_handle=Handle.OUTPUT),
            ],
        ),
    )


def _error_handling() -> FlowTemplate:
    return FlowTemplate(
        id="error-handling",
        name="Error Handling",
        description="A flow with error handling",
        category="Basic",
        flow=Flow(
            name="Error Handling Flow",
            description="Handle errors from actions",
            nodes=[
                create_trigger_node("Start", id="trigger", position=_at(100, 200)),
                create_action_node("Main Action", id="main-action", position=_at(300, 200)),
                create_action_node("Handle Error", id="error-handler", position=_at(500, 300)),
                create_output_node("Success", id="success-output", position=_at(500, 100)),
                create_output_node("Error Output", id="error-output", position=_at(700, 300)),
            ],
            edges=[
                create_edge("trigger", "main-action"),
                create_edge(
                    "main-action", "success-output", source_handle=Handle.OUTPUT, type=EdgeType.SUCCESS, label="Success"
                ),
                create_edge(
                    "main-action", "error-handler", source_handle=Handle.ERROR, type=EdgeType.FAILURE, label="Error"
                ),
                create_edge("error-handler", "error-output", source_handle=Handle.OUTPUT),
            ],
        ),
    )


def _scheduled() -> FlowTemplate:
    return FlowTemplate(
        id="scheduled",
        name="Scheduled Flow",
        description="A flow that runs on a schedule",
        category="Automation",
        flow=Flow(
            name="Scheduled Flow",
            description="Run actions on a schedule",
            nodes=[
                create_trigger_node(
                    "Schedule",
                    {"trigger_type": "schedule", "config": {"cron": "0 * * * *", "timezone": "UTC"}},
                    id="trigger",
                    position=_at(100, 100),
                ),
                create_action_node("Scheduled Action", id="action", position=_at(300, 100)),
                create_output_node("Complete", {"output_type": "log"}, id="output", position=_at(500, 100)),
            ],
            edges=[
                create_edge("trigger", "action"),
                create_edge("action", "output", source_handle=Handle.OUTPUT),
            ],
        ),
    )


FLOW_TEMPLATES: list[FlowTemplate] = [
    _simple_action(),
    _conditional(),
    _error_handling(),
    _scheduled(),
]


def get_templates() -> list[FlowTemplate]:
    return list(FLOW_TEMPLATES)


def get_template(template_id: str) -> FlowTemplate | None:
    return next((t for t in FLOW_TEMPLATES if t.id == template_id), None)


def get_templates_by_category(category: str) -> list[FlowTemplate]:
    return [t for t in FLOW_TEMPLATES if t.category == category]


def get_template_categories() -> list[str]:
    """Categories in first-seen order."""
    return list(dict.fromkeys(t.category for t in FLOW_TEMPLATES))


def create_from_template(template_id: str, name: str | None = None) -> Flow | None:
    """Deep copy of a template's flow under a new id, or ``None`` if unknown."""
    template = get_template(template_id)
    if template is None:
        return None
    flow = template.flow
    return Flow.model_validate(
        {**flow.model_dump(exclude={"id", "created_at", "updated_at"}), "name": name or flow.name}
    )


__all__ = [
    "FLOW_TEMPLATES",
    "create_empty_flow",
    "create_from_template",
    "get_template",
    "get_template_categories",
    "get_templates",
    "get_templates_by_category",
]
