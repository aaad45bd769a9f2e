"""
Flow validation - structural checks run before any node executes.

Manifesto:
    A flow that references missing nodes or wires an edge to a port the
    node does not have cannot be executed meaningfully. Validation sorts
    problems into **errors** (the engine refuses to run) and **warnings**
    (suspicious but runnable: cycles, extra triggers, orphans).

Architecture:
    ::

        validate_flow(flow)
          ├── flow: name, at least one node
          ├── nodes: unique ids, validate_node(node) per type
          ├── edges: endpoints exist, handles match port contracts
          └── graph: triggers, self-loops, detect_cycles, reachability

        get_topological_order(flow)   Kahn's algorithm, None on cycle

Tags:
    flow, validation, graph, cycle-detection, hinge-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from hinge.flow.models import (
    Flow,
    FlowNode,
    NODE_DATA_MODELS,
    NodeType,
)
from hinge.flow.nodes import NODE_TYPE_LABELS, get_default_ports, get_output_handles


@dataclass
class FlowValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class CycleResult:
    has_cycle: bool
    path: list[str] = field(default_factory=list)


def validate_node(node: FlowNode) -> list[str]:
    """Structural and type-specific errors for a single node."""
    errors: list[str] = []
    if not node.id:
        errors.append("Node must have an ID")
    if not node.name:
        errors.append(f"Node {node.id} must have a name")

    label = NODE_TYPE_LABELS[node.type]
    data = node.data
    if not isinstance(data, NODE_DATA_MODELS[node.type]):
        errors.append(f"{label} node {node.id} has invalid data")
        return errors

    match node.type:
        case NodeType.ACTION:
            if not data.plugin_name or not data.action_name:
                errors.append(f"Action node {node.id} must have plugin_name and action_name")
        case NodeType.LOOP:
            if data.loop_type == "count" and (data.count is None or data.count < 0):
                errors.append(f"Loop node {node.id} must have a non-negative count")
            elif data.loop_type == "forEach" and data.items is None:
                errors.append(f"Loop node {node.id} must have items")
            elif data.loop_type == "while" and data.condition is None:
                errors.append(f"Loop node {node.id} must have a condition")
        case NodeType.DELAY:
            if data.delay_ms < 0:
                errors.append(f"Delay node {node.id} must have a non-negative delay_ms")
            if data.delay_type == "random" and data.max_delay_ms is not None and data.max_delay_ms < data.delay_ms:
                errors.append(f"Delay node {node.id} must have max_delay_ms >= delay_ms")
        case NodeType.SUBFLOW:
            if not data.flow_id:
                errors.append(f"Subflow node {node.id} must have flow_id")
    return errors


def _adjacency(flow: Flow) -> dict[str, list[str]]:
    graph: dict[str, list[str]] = {node.id: [] for node in flow.nodes}
    for edge in flow.edges:
        graph.setdefault(edge.source, []).append(edge.target)
    return graph


def detect_cycles(flow: Flow) -> CycleResult:
    """First directed cycle found by DFS, as a closed path ``[a, b, a]``."""
    graph = _adjacency(flow)
    visited: set[str] = set()
    on_stack: list[str] = []

    def dfs(node_id: str) -> list[str] | None:
        visited.add(node_id)
        on_stack.append(node_id)
        for neighbor in graph.get(node_id, []):
            if neighbor in on_stack:
                return on_stack[on_stack.index(neighbor):] + [neighbor]
            if neighbor not in visited:
                cycle = dfs(neighbor)
                if cycle:
                    return cycle
        on_stack.pop()
        return None

    for node in flow.nodes:
        if node.id not in visited:
            cycle = dfs(node.id)
            if cycle:
                return CycleResult(has_cycle=True, path=cycle)
    return CycleResult(has_cycle=False)


def _reachable_from_triggers(flow: Flow) -> set[str]:
    graph = _adjacency(flow)
    seen: set[str] = set()
    queue = deque(node.id for node in flow.trigger_nodes())
    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        queue.extend(n for n in graph.get(node_id, []) if n not in seen)
    return seen


def validate_flow(flow: Flow) -> FlowValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if not flow.name:
        errors.append("Flow must have a name")
    if not flow.nodes:
        errors.append("Flow must have at least one node")

    nodes: dict[str, FlowNode] = {}
    triggers = 0
    for node in flow.nodes:
        if node.id in nodes:
            errors.append(f"Duplicate node ID: {node.id}")
        nodes[node.id] = node
        errors.extend(validate_node(node))
        if node.type == NodeType.TRIGGER:
            triggers += 1

    if triggers > 1:
        warnings.append("Flow has multiple trigger nodes")
    if triggers == 0 and flow.nodes:
        warnings.append("Flow has no trigger node")

    for edge in flow.edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if source is None:
            errors.append(f"Edge references non-existent source node: {edge.source}")
        elif edge.source_handle is not None and edge.source_handle not in get_output_handles(source.type):
            errors.append(
                f'Edge {edge.id} uses handle "{edge.source_handle}" not exposed by {source.type.value} node {source.id}'
            )
        if target is None:
            errors.append(f"Edge references non-existent target node: {edge.target}")
        elif edge.target_handle is not None:
            inputs, _ = get_default_ports(target.type)
            if edge.target_handle not in {port.id for port in inputs}:
                errors.append(
                    f'Edge {edge.id} uses handle "{edge.target_handle}" not exposed by '
                    f"{target.type.value} node {target.id}"
                )
        if edge.source == edge.target:
            warnings.append(f"Edge creates self-loop on node: {edge.source}")

    cycles = detect_cycles(flow)
    if cycles.has_cycle:
        warnings.append(f"Flow contains cycles: {' -> '.join(cycles.path)}")

    connected = _reachable_from_triggers(flow)
    for node in flow.nodes:
        if node.id not in connected and node.type != NodeType.TRIGGER:
            warnings.append(f'Node "{node.name}" ({node.id}) is disconnected')

    return FlowValidationResult(valid=not errors, errors=errors, warnings=warnings)


def get_topological_order(flow: Flow) -> list[str] | None:
    """Node ids in dependency order, or ``None`` when the graph has a cycle."""
    graph = _adjacency(flow)
    in_degree = {node.id: 0 for node in flow.nodes}
    for edge in flow.edges:
        if edge.target in in_degree:
            in_degree[edge.target] += 1

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for neighbor in graph.get(node_id, []):
            if neighbor not in in_degree:
                continue
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(order) != len(in_degree):
        return None
    return order


__all__ = [
    "CycleResult",
    "FlowValidationResult",
    "detect_cycles",
    "get_topological_order",
    "validate_flow",
    "validate_node",
]
