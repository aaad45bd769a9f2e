"""Edge builders and graph helpers for flows."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from typing import Any

from hinge.flow.models import ConditionOperator, EdgeType, FlowCondition, FlowEdge, Handle

EDGE_TYPE_LABELS: dict[EdgeType, str] = {
    EdgeType.DEFAULT: "Default",
    EdgeType.SUCCESS: "Success",
    EdgeType.FAILURE: "Failure",
    EdgeType.CONDITIONAL: "Conditional",
}

_OPERATOR_LABELS: dict[ConditionOperator, str] = {
    ConditionOperator.EQ: "=",
    ConditionOperator.NEQ: "!=",
    ConditionOperator.GT: ">",
    ConditionOperator.GTE: ">=",
    ConditionOperator.LT: "<",
    ConditionOperator.LTE: "<=",
    ConditionOperator.CONTAINS: "contains",
    ConditionOperator.STARTS_WITH: "starts with",
    ConditionOperator.ENDS_WITH: "ends with",
    ConditionOperator.MATCHES: "matches",
    ConditionOperator.IN: "in",
    ConditionOperator.NOT_IN: "not in",
    ConditionOperator.IS_NULL: "is null",
    ConditionOperator.IS_NOT_NULL: "is not null",
}


def _handle(value: Handle | str | None) -> str | None:
    return value.value if isinstance(value, Handle) else value


def create_edge(
    source: str,
    target: str,
    *,
    id: str | None = None,
    source_handle: Handle | str | None = None,
    target_handle: Handle | str | None = None,
    type: EdgeType | str = EdgeType.DEFAULT,
    label: str | None = None,
    condition: FlowCondition | dict[str, Any] | None = None,
) -> FlowEdge:
    return FlowEdge(
        id=id or str(uuid.uuid4()),
        source=source,
        target=target,
        source_handle=_handle(source_handle),
        target_handle=_handle(target_handle),
        type=EdgeType(type),
        label=label,
        condition=condition,
    )


def create_success_edge(source: str, target: str, *, id: str | None = None, label: str | None = None) -> FlowEdge:
    return create_edge(
        source, target, id=id, source_handle=Handle.OUTPUT, type=EdgeType.SUCCESS, label=label or "Success"
    )


def create_failure_edge(source: str, target: str, *, id: str | None = None, label: str | None = None) -> FlowEdge:
    return create_edge(
        source, target, id=id, source_handle=Handle.ERROR, type=EdgeType.FAILURE, label=label or "Failure"
    )


def create_conditional_edge(
    source: str,
    target: str,
    condition: FlowCondition | dict[str, Any],
    *,
    id: str | None = None,
    label: str | None = None,
) -> FlowEdge:
    condition = FlowCondition.model_validate(condition)
    return create_edge(
        source,
        target,
        id=id,
        type=EdgeType.CONDITIONAL,
        condition=condition,
        label=label or format_condition(condition),
    )


def create_true_edge(source: str, target: str, *, id: str | None = None) -> FlowEdge:
    return create_edge(source, target, id=id, source_handle=Handle.TRUE, type=EdgeType.CONDITIONAL, label="True")


def create_false_edge(source: str, target: str, *, id: str | None = None) -> FlowEdge:
    return create_edge(source, target, id=id, source_handle=Handle.FALSE, type=EdgeType.CONDITIONAL, label="False")


def create_iteration_edge(source: str, target: str, *, id: str | None = None) -> FlowEdge:
    return create_edge(source, target, id=id, source_handle=Handle.ITERATION, label="Each Item")


def create_loop_complete_edge(source: str, target: str, *, id: str | None = None) -> FlowEdge:
    return create_edge(source, target, id=id, source_handle=Handle.COMPLETE, label="Complete")


def clone_edge(edge: FlowEdge) -> FlowEdge:
    return edge.model_copy(update={"id": str(uuid.uuid4())}, deep=True)


def update_edge_endpoints(
    edge: FlowEdge,
    *,
    source: str | None = None,
    source_handle: str | None = None,
    target: str | None = None,
    target_handle: str | None = None,
) -> FlowEdge:
    """Copy of ``edge`` reconnected to new endpoints; omitted ones are kept."""
    return edge.model_copy(
        update={
            "source": source or edge.source,
            "source_handle": source_handle or edge.source_handle,
            "target": target or edge.target,
            "target_handle": target_handle or edge.target_handle,
        }
    )


def format_condition(condition: FlowCondition) -> str:
    """Human-readable label, e.g. ``age >= 18`` or ``name is null``."""
    op = _OPERATOR_LABELS.get(condition.operator, condition.operator.value)
    if condition.operator in (ConditionOperator.IS_NULL, ConditionOperator.IS_NOT_NULL):
        return f"{condition.field} {op}"
    if isinstance(condition.value, str):
        value = f'"{condition.value}"'
    else:
        value = json.dumps(condition.value, default=str)
    return f"{condition.field} {op} {value}"


# ── Graph helpers ────────────────────────────────────────────────────


def get_outgoing_edges(edges: Iterable[FlowEdge], node_id: str) -> list[FlowEdge]:
    return [e for e in edges if e.source == node_id]


def get_incoming_edges(edges: Iterable[FlowEdge], node_id: str) -> list[FlowEdge]:
    return [e for e in edges if e.target == node_id]


def get_edges_between(edges: Iterable[FlowEdge], source_id: str, target_id: str) -> list[FlowEdge]:
    return [e for e in edges if e.source == source_id and e.target == target_id]


def are_nodes_connected(edges: Iterable[FlowEdge], source_id: str, target_id: str) -> bool:
    return any(e.source == source_id and e.target == target_id for e in edges)


def remove_node_edges(edges: Iterable[FlowEdge], node_id: str) -> list[FlowEdge]:
    """Edges not touching ``node_id``."""
    return [e for e in edges if e.source != node_id and e.target != node_id]


__all__ = [
    "EDGE_TYPE_LABELS",
    "are_nodes_connected",
    "clone_edge",
    "create_conditional_edge",
    "create_edge",
    "create_failure_edge",
    "create_false_edge",
    "create_iteration_edge",
    "create_loop_complete_edge",
    "create_success_edge",
    "create_true_edge",
    "format_condition",
    "get_edges_between",
    "get_incoming_edges",
    "get_outgoing_edges",
    "remove_node_edges",
    "update_edge_endpoints",
]
