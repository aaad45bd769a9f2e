"""
Node factories and the fixed port contract of each node type.

Port contracts::

    type       inputs            outputs
    trigger    -                 output
    action     input (required)  output, error
    condition  input (required)  true, false
    loop       input (required)  iteration, complete
    delay      input (required)  output
    subflow    input (required)  output, error
    output     input (required)  -
"""

from __future__ import annotations

import uuid
from typing import Any

from hinge.core.errors import ValidationError
from hinge.flow.models import (
    ActionNodeData,
    ConditionNodeData,
    DelayNodeData,
    FlowModel,
    FlowNode,
    Handle,
    LoopNodeData,
    NODE_DATA_MODELS,
    NodePort,
    NodeType,
    OutputNodeData,
    Position,
    SubflowNodeData,
    TriggerNodeData,
)

NODE_TYPE_LABELS: dict[NodeType, str] = {
    NodeType.TRIGGER: "Trigger",
    NodeType.ACTION: "Action",
    NodeType.CONDITION: "Condition",
    NodeType.LOOP: "Loop",
    NodeType.DELAY: "Delay",
    NodeType.SUBFLOW: "Subflow",
    NodeType.OUTPUT: "Output",
}

_INPUT = (Handle.INPUT, "Input", "any", True)

_PORTS: dict[NodeType, tuple[tuple, tuple]] = {
    NodeType.TRIGGER: ((), ((Handle.OUTPUT, "Output", "any"),)),
    NodeType.ACTION: ((_INPUT,), ((Handle.OUTPUT, "Output", "any"), (Handle.ERROR, "Error", "error"))),
    NodeType.CONDITION: ((_INPUT,), ((Handle.TRUE, "True", "any"), (Handle.FALSE, "False", "any"))),
    NodeType.LOOP: ((_INPUT,), ((Handle.ITERATION, "Iteration", "any"), (Handle.COMPLETE, "Complete", "any"))),
    NodeType.DELAY: ((_INPUT,), ((Handle.OUTPUT, "Output", "any"),)),
    NodeType.SUBFLOW: ((_INPUT,), ((Handle.OUTPUT, "Output", "any"), (Handle.ERROR, "Error", "error"))),
    NodeType.OUTPUT: ((_INPUT,), ()),
}


def _port(spec: tuple) -> NodePort:
    handle, name, port_type, *required = spec
    return NodePort(id=handle.value, name=name, type=port_type, required=bool(required and required[0]))


def get_default_ports(node_type: NodeType | str) -> tuple[list[NodePort], list[NodePort]]:
    """Fresh ``(inputs, outputs)`` port lists for ``node_type``."""
    inputs, outputs = _PORTS[NodeType(node_type)]
    return [_port(p) for p in inputs], [_port(p) for p in outputs]


def get_output_handles(node_type: NodeType | str) -> set[str]:
    return {spec[0].value for spec in _PORTS[NodeType(node_type)][1]}


def get_default_node_data(node_type: NodeType | str) -> FlowModel:
    """Starter data for a freshly added node.

    Raises:
        ValidationError: Unknown node type.
    """
    try:
        node_type = NodeType(node_type)
    except ValueError:
        raise ValidationError(f"Unknown node type: {node_type}", field="type", value=node_type) from None
    if node_type == NodeType.LOOP:
        return LoopNodeData(loop_type="count", count=10)
    return NODE_DATA_MODELS[node_type]()


def create_node(
    node_type: NodeType | str,
    name: str,
    data: FlowModel | dict[str, Any] | None = None,
    *,
    id: str | None = None,
    description: str | None = None,
    position: Position | dict[str, float] | None = None,
) -> FlowNode:
    """Build a node of any type with its fixed port contract."""
    node_type = NodeType(node_type)
    inputs, outputs = get_default_ports(node_type)
    return FlowNode(
        id=id or str(uuid.uuid4()),
        type=node_type,
        name=name,
        description=description,
        position=position or Position(),
        data=data if data is not None else get_default_node_data(node_type),
        inputs=inputs,
        outputs=outputs,
    )


def create_trigger_node(name: str, data: TriggerNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.TRIGGER, name, data, **options)


def create_action_node(name: str, data: ActionNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.ACTION, name, data, **options)


def create_condition_node(
    name: str, data: ConditionNodeData | dict[str, Any] | None = None, **options: Any
) -> FlowNode:
    return create_node(NodeType.CONDITION, name, data, **options)


def create_loop_node(name: str, data: LoopNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.LOOP, name, data, **options)


def create_delay_node(name: str, data: DelayNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.DELAY, name, data, **options)


def create_subflow_node(name: str, data: SubflowNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.SUBFLOW, name, data, **options)


def create_output_node(name: str, data: OutputNodeData | dict[str, Any] | None = None, **options: Any) -> FlowNode:
    return create_node(NodeType.OUTPUT, name, data, **options)


def clone_node(node: FlowNode, offset: tuple[float, float] = (50, 50)) -> FlowNode:
    """Deep copy with a new id, shifted by ``offset``."""
    clone = node.model_copy(deep=True)
    clone.id = str(uuid.uuid4())
    clone.position = Position(x=node.position.x + offset[0], y=node.position.y + offset[1])
    return clone


__all__ = [
    "NODE_TYPE_LABELS",
    "clone_node",
    "create_action_node",
    "create_condition_node",
    "create_delay_node",
    "create_loop_node",
    "create_node",
    "create_output_node",
    "create_subflow_node",
    "create_trigger_node",
    "get_default_node_data",
    "get_default_ports",
    "get_output_handles",
]
