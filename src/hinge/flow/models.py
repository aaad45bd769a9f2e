"""
Flow models - nodes, edges, flows and execution state as pydantic models.

Manifesto:
    Flows are data. They are authored in an editor, stored by an external
    store and shipped around as JSON, so every piece of the graph is a
    pydantic model that validates on the way in and serializes with
    camelCase aliases on the way out.

    - **Typed node data:** ``FlowNode.data`` is coerced to the data model
      matching ``FlowNode.type``
    - **Snake or camel:** either key style is accepted on input
    - **Execution state is per run:** a :class:`FlowExecutionContext` is
      created by every ``execute()`` call and never shared

Architecture:
    ::

        Flow
          ├── nodes: [FlowNode(type, data: <Type>NodeData, inputs, outputs)]
          ├── edges: [FlowEdge(source, source_handle, target, type, condition)]
          ├── variables: [FlowVariable]
          └── settings: FlowSettings(max_execution_time_ms, retry_on_failure,
                                     max_retries, retry_delay_ms,
                                     node_timeout_ms)

        FlowExecutionContext
          ├── variables        mutable, seeded from execute(input)
          ├── node_results     node_id → NodeExecutionResult (latest visit)
          └── status           pending → running → completed | failed | cancelled

Examples:
    >>> flow = Flow.model_validate_json(payload)
    >>> flow.get_node("action").data.plugin_name
    'prices'
    >>> flow.model_dump_json(by_alias=True)

Tags:
    flow, graph, pydantic, models, hinge-core

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


# ── Enums ────────────────────────────────────────────────────────────


class NodeType(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    LOOP = "loop"
    DELAY = "delay"
    SUBFLOW = "subflow"
    OUTPUT = "output"


class EdgeType(str, Enum):
    DEFAULT = "default"
    SUCCESS = "success"
    FAILURE = "failure"
    CONDITIONAL = "conditional"


class Handle(str, Enum):
    """Port ids used as edge ``source_handle`` / ``target_handle``."""

    INPUT = "input"
    OUTPUT = "output"
    ERROR = "error"
    TRUE = "true"
    FALSE = "false"
    ITERATION = "iteration"
    COMPLETE = "complete"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    MATCHES = "matches"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ── Base ─────────────────────────────────────────────────────────────


class FlowModel(BaseModel):
    """Shared config: camelCase aliases, snake_case accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Building blocks ──────────────────────────────────────────────────


class Position(FlowModel):
    x: float = 0
    y: float = 0


class NodePort(FlowModel):
    id: str
    name: str
    type: str = "any"
    required: bool = False


class FlowCondition(FlowModel):
    """``field`` is a dotted path into the execution variables."""

    field: str
    operator: ConditionOperator
    value: Any = None


# ── Node data ────────────────────────────────────────────────────────


class TriggerNodeData(FlowModel):
    trigger_type: Literal["manual", "schedule", "event", "webhook"] = "manual"
    config: dict[str, Any] = Field(default_factory=dict)


class ActionNodeData(FlowModel):
    plugin_name: str = ""
    action_name: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


class ConditionNodeData(FlowModel):
    conditions: list[FlowCondition] = Field(default_factory=list)
    operator: Literal["and", "or"] = "and"
    evaluator_name: str | None = None


class LoopNodeData(FlowModel):
    """``items`` is either a literal list or a variables path (forEach)."""

    loop_type: Literal["count", "forEach", "while"] = "count"
    count: int | None = None
    items: str | list[Any] | None = None
    condition: FlowCondition | None = None
    max_iterations: int = Field(default=1000, ge=1)


class DelayNodeData(FlowModel):
    delay_ms: int = 1000
    delay_type: Literal["fixed", "random"] = "fixed"
    max_delay_ms: int | None = None


class SubflowNodeData(FlowModel):
    flow_id: str = ""
    input_mapping: dict[str, str] = Field(default_factory=dict)
    output_mapping: dict[str, str] = Field(default_factory=dict)


class OutputNodeData(FlowModel):
    output_type: Literal["return", "log", "notify", "store"] = "return"
    config: dict[str, Any] = Field(default_factory=dict)


NodeData = (
    TriggerNodeData
    | ActionNodeData
    | ConditionNodeData
    | LoopNodeData
    | DelayNodeData
    | SubflowNodeData
    | OutputNodeData
)

NODE_DATA_MODELS: dict[NodeType, type[FlowModel]] = {
    NodeType.TRIGGER: TriggerNodeData,
    NodeType.ACTION: ActionNodeData,
    NodeType.CONDITION: ConditionNodeData,
    NodeType.LOOP: LoopNodeData,
    NodeType.DELAY: DelayNodeData,
    NodeType.SUBFLOW: SubflowNodeData,
    NodeType.OUTPUT: OutputNodeData,
}


# ── Graph ────────────────────────────────────────────────────────────


class FlowNode(FlowModel):
    id: str = Field(default_factory=_uuid)
    type: NodeType
    name: str = ""
    description: str | None = None
    position: Position = Field(default_factory=Position)
    data: NodeData
    inputs: list[NodePort] = Field(default_factory=list)
    outputs: list[NodePort] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coerce_data(cls, values: Any) -> Any:
        if not isinstance(values, dict) or "type" not in values:
            return values
        model = NODE_DATA_MODELS[NodeType(values["type"])]
        data = values.get("data")
        if isinstance(data, model):
            return values
        if isinstance(data, BaseModel):
            data = data.model_dump()
        return {**values, "data": model.model_validate(data or {})}


class FlowEdge(FlowModel):
    id: str = Field(default_factory=_uuid)
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    type: EdgeType = EdgeType.DEFAULT
    label: str | None = None
    condition: FlowCondition | None = None

    @property
    def is_error_edge(self) -> bool:
        return self.source_handle == Handle.ERROR.value or self.type == EdgeType.FAILURE


class FlowVariable(FlowModel):
    name: str
    type: Literal["string", "number", "boolean", "object", "array"] = "string"
    default_value: Any = None
    description: str | None = None


class FlowSettings(FlowModel):
    """Execution limits; ``None`` timeouts fall back to the runtime defaults."""

    max_execution_time_ms: int | None = None
    retry_on_failure: bool = False
    max_retries: int = Field(default=0, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    node_timeout_ms: int | None = None
    log_level: str = "info"


class Flow(FlowModel):
    id: str = Field(default_factory=_uuid)
    name: str = ""
    description: str | None = None
    version: str = "1.0.0"
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    variables: list[FlowVariable] = Field(default_factory=list)
    settings: FlowSettings = Field(default_factory=FlowSettings)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def get_node(self, node_id: str) -> FlowNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def trigger_nodes(self) -> list[FlowNode]:
        return [n for n in self.nodes if n.type == NodeType.TRIGGER]

    def default_variables(self) -> dict[str, Any]:
        return {v.name: v.default_value for v in self.variables if v.default_value is not None}


class FlowTemplate(FlowModel):
    id: str
    name: str
    description: str = ""
    category: str = "Basic"
    flow: Flow


# ── Execution ────────────────────────────────────────────────────────


class NodeExecutionResult(FlowModel):
    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    output: Any = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float | None = None

    def finish(self, status: NodeStatus, *, output: Any = None, error: str | None = None) -> None:
        self.status = status
        self.output = output
        self.error = error
        self.completed_at = _now()
        if self.started_at is not None:
            self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000


class FlowExecutionContext(FlowModel):
    flow_id: str
    execution_id: str = Field(default_factory=_uuid)
    variables: dict[str, Any] = Field(default_factory=dict)
    node_results: dict[str, NodeExecutionResult] = Field(default_factory=dict)
    current_node_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    output: Any = None
    error: str | None = None
    started_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


__all__ = [
    "ActionNodeData",
    "ConditionNodeData",
    "ConditionOperator",
    "DelayNodeData",
    "EdgeType",
    "ExecutionStatus",
    "Flow",
    "FlowCondition",
    "FlowEdge",
    "FlowExecutionContext",
    "FlowModel",
    "FlowNode",
    "FlowSettings",
    "FlowTemplate",
    "FlowVariable",
    "Handle",
    "LoopNodeData",
    "NODE_DATA_MODELS",
    "NodeData",
    "NodeExecutionResult",
    "NodePort",
    "NodeStatus",
    "NodeType",
    "OutputNodeData",
    "Position",
    "SubflowNodeData",
    "TriggerNodeData",
]
