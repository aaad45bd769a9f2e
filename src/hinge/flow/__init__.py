"""Flow graphs: models, builders, validation, execution and templates.

Modules
-------
models      pydantic models for flows, nodes, edges and executions
nodes       node factories and port contracts
edges       edge builders and graph helpers
conditions  condition operators, variable paths, param templates
validation  validate_flow, detect_cycles, get_topological_order
engine      FlowEngine -- store and depth-first executor
templates   built-in flow templates
service     FlowService -- import/export, clone, search
"""

from hinge.flow.conditions import evaluate_condition, evaluate_flow_condition, get_value_from_path, resolve_params
from hinge.flow.edges import (
    create_conditional_edge,
    create_edge,
    create_failure_edge,
    create_false_edge,
    create_iteration_edge,
    create_loop_complete_edge,
    create_success_edge,
    create_true_edge,
)
from hinge.flow.engine import FlowEngine
from hinge.flow.models import (
    ConditionOperator,
    EdgeType,
    ExecutionStatus,
    Flow,
    FlowCondition,
    FlowEdge,
    FlowExecutionContext,
    FlowNode,
    FlowSettings,
    FlowTemplate,
    Handle,
    NodeExecutionResult,
    NodeStatus,
    NodeType,
)
from hinge.flow.nodes import (
    create_action_node,
    create_condition_node,
    create_delay_node,
    create_loop_node,
    create_node,
    create_output_node,
    create_subflow_node,
    create_trigger_node,
)
from hinge.flow.service import FlowService
from hinge.flow.validation import FlowValidationResult, detect_cycles, get_topological_order, validate_flow

__all__ = [
    "ConditionOperator",
    "EdgeType",
    "ExecutionStatus",
    "Flow",
    "FlowCondition",
    "FlowEdge",
    "FlowEngine",
    "FlowExecutionContext",
    "FlowNode",
    "FlowService",
    "FlowSettings",
    "FlowTemplate",
    "FlowValidationResult",
    "Handle",
    "NodeExecutionResult",
    "NodeStatus",
    "NodeType",
    "create_action_node",
    "create_condition_node",
    "create_conditional_edge",
    "create_delay_node",
    "create_edge",
    "create_failure_edge",
    "create_false_edge",
    "create_iteration_edge",
    "create_loop_complete_edge",
    "create_loop_node",
    "create_node",
    "create_output_node",
    "create_subflow_node",
    "create_success_edge",
    "create_trigger_node",
    "create_true_edge",
    "detect_cycles",
    "evaluate_condition",
    "evaluate_flow_condition",
    "get_topological_order",
    "get_value_from_path",
    "resolve_params",
    "validate_flow",
]
