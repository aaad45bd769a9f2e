"""
Flow engine - stores flows and executes them node by node.

Manifesto:
    A flow is a graph, not a list. Execution walks it depth-first from the
    trigger nodes, picks the outgoing edges that match each node's outcome,
    and records what every visited node did. Node failures are data: they
    either follow an ``error`` edge or end the run as ``failed``. Nothing
    leaks out of ``execute()`` except a malformed or unknown flow, or the
    cancellation of the task awaiting it.

    - **Per-run context:** concurrent executions of one flow never share state
    - **Actions through the runner:** node timeout and retry come from
      :class:`FlowSettings`, falling back to the runtime task timeout
    - **Cooperative cancel:** ``cancel()`` flips the status; traversal checks
      it before each node
    - **Bounded depth:** a cyclic graph fails the run with
      :class:`FlowDepthError` after ``MAX_TRAVERSAL_DEPTH`` nested nodes

Architecture:
    ::

        execute(flow_id, input)
          │  validate_flow → ValidationError
          ▼
        FlowExecutionContext(status=running, variables=defaults | input)
          │  flow:start
          ▼
        _visit(trigger)  (not recorded, seeds variables)
          └─► _visit(node)
                ├─ record NodeExecutionResult(running)     flow:node:before
                ├─ _run_node(node)
                │     action    runner.run(executor.execute_action("plugin:action"))
                │     condition and/or over FlowConditions (or an Evaluator)
                │     loop      iteration edges per item, then complete edges
                │     delay     asyncio.sleep(fixed | random)
                │     subflow   nested execute of data.flow_id
                │     output    _lastOutput → context.output
                ├─ ok   → flow:node:after → follow matching edges
                └─ fail → flow:node:error → error/failure edges with _error
                                             or the run ends failed

        completed | failed | cancelled       flow:complete / flow:error

Variables written during a run:
    ::

        _lastOutput       data of the last successful action
        _conditionResult  boolean of the last condition node
        _loopIndex        current iteration (0-based)
        _loopItem         current forEach item
        _error            {message, node_id, node_name} before error edges

Guardrails:
    ❌ DON'T: rely on cancel() aborting an action already in flight
    ✅ DO: keep actions idempotent; cancellation takes effect at the next node

Tags:
    flow, engine, graph-execution, asyncio, hinge-core

Doc-Types:
    - API Reference
    - Execution Model
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hinge.core.errors import (
    ExecutionError,
    NotFoundError,
    ValidationError,
    error_message,
)
from hinge.core.logging import get_logger
from hinge.execution.retry import RetryPolicy
from hinge.execution.runner import AsyncOperation, AsyncOperationRunner
from hinge.execution.timeout import run_with_timeout
from hinge.flow.conditions import evaluate_flow_condition, get_value_from_path, resolve_params
from hinge.flow.edges import get_outgoing_edges
from hinge.flow.models import (
    ExecutionStatus,
    Flow,
    FlowEdge,
    FlowExecutionContext,
    FlowNode,
    Handle,
    NodeExecutionResult,
    NodeStatus,
    NodeType,
)
from hinge.flow.validation import FlowValidationResult, validate_flow
from hinge.hooks.dispatcher import HookDispatcher
from hinge.hooks.events import FlowEvent, FlowNodeEvent, HookEvent, RuntimeEvent, custom_event
from hinge.services.executor import Executor

logger = get_logger(__name__)

LAST_OUTPUT = "_lastOutput"
CONDITION_RESULT = "_conditionResult"
LOOP_INDEX = "_loopIndex"
LOOP_ITEM = "_loopItem"
ERROR = "_error"

MAX_TRAVERSAL_DEPTH = 128


class _UnhandledNodeFailure(Exception):
    """A node failed and had no error edge; unwinds the traversal."""

    def __init__(self, node: FlowNode, error: BaseException):
        super().__init__(error_message(error))
        self.node = node
        self.error = error


class FlowDepthError(ExecutionError):
    """Traversal nested deeper than :data:`MAX_TRAVERSAL_DEPTH` nodes.

    Raised when a cyclic graph keeps following edges without reaching an
    end; the run fails instead of exhausting the interpreter stack.
    """


def _now() -> datetime:
    return datetime.now(UTC)


def _build_flow(data: Mapping[str, Any]) -> Flow:
    try:
        return Flow.model_validate(data)
    except PydanticValidationError as exc:
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        raise ValidationError(
            f"Invalid flow definition: {'; '.join(errors)}",
            field="flow",
            errors=errors,
            cause=exc,
        ) from exc


class FlowEngine:
    """In-memory flow store and executor.

    Args:
        executor: Resolves ``plugin:action`` names and evaluators for nodes.
        runner: Applies node timeout and retry (shared runtime runner).
        hooks: When given, flow and node events are dispatched.
        default_timeout_ms: Node timeout when ``FlowSettings.node_timeout_ms``
            is unset (runtime ``task_timeout_ms``).
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        runner: AsyncOperationRunner | None = None,
        hooks: HookDispatcher | None = None,
        default_timeout_ms: float | None = None,
    ) -> None:
        self.executor = executor
        self.runner = runner or AsyncOperationRunner()
        self.hooks = hooks
        self.default_timeout_ms = default_timeout_ms
        self._flows: dict[str, Flow] = {}
        self._executions: dict[str, FlowExecutionContext] = {}
        self._depths: dict[str, int] = {}

    # ── Flow store ───────────────────────────────────────────────────

    def create(self, flow: Flow | Mapping[str, Any]) -> Flow:
        """Store a copy of ``flow`` under a fresh id and timestamps.

        Raises:
            ValidationError: ``flow`` is a mapping that is not a valid flow.
        """
        if not isinstance(flow, Flow):
            flow = _build_flow(flow)
        now = _now()
        stored = _build_flow(
            {**flow.model_dump(exclude={"id", "created_at", "updated_at"}), "created_at": now, "updated_at": now}
        )
        self._flows[stored.id] = stored
        logger.info("flow.created", flow_id=stored.id, name=stored.name, nodes=len(stored.nodes))
        return stored

    def get(self, flow_id: str) -> Flow | None:
        return self._flows.get(flow_id)

    def _require(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise NotFoundError("flow", flow_id)
        return flow

    def update(self, flow_id: str, **changes: Any) -> Flow:
        """Replace fields of a stored flow; ``id`` and ``created_at`` are kept.

        Raises:
            NotFoundError: Unknown ``flow_id``.
            ValidationError: The changes do not form a valid flow; the stored
                flow is left as it was.
        """
        flow = self._require(flow_id)
        changes.pop("id", None)
        changes.pop("created_at", None)
        updated = _build_flow({**flow.model_dump(), **changes, "updated_at": _now()})
        self._flows[flow_id] = updated
        logger.info("flow.updated", flow_id=flow_id, fields=sorted(changes))
        return updated

    def delete(self, flow_id: str) -> bool:
        deleted = self._flows.pop(flow_id, None) is not None
        if deleted:
            logger.info("flow.deleted", flow_id=flow_id)
        return deleted

    def get_all(self) -> list[Flow]:
        return list(self._flows.values())

    def validate(self, flow: Flow | str) -> FlowValidationResult:
        if isinstance(flow, str):
            flow = self._require(flow)
        return validate_flow(flow)

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, flow_id: str, input: Mapping[str, Any] | None = None) -> FlowExecutionContext:
        """Run a stored flow and return its finished execution context.

        Node failures do not raise: the context comes back ``failed`` with
        the error on the node's result.

        Raises:
            NotFoundError: Unknown ``flow_id``.
            ValidationError: The flow has validation errors; no node ran.
            asyncio.CancelledError: The awaiting task was cancelled; the
                execution is recorded as ``cancelled``.
        """
        return await self._execute(self._require(flow_id), input, ())

    async def _execute(
        self,
        flow: Flow,
        input: Mapping[str, Any] | None,
        stack: tuple[str, ...],
    ) -> FlowExecutionContext:
        validation = validate_flow(flow)
        if not validation.valid:
            raise ValidationError(
                f"Invalid flow: {', '.join(validation.errors)}",
                field="flow",
                value=flow.id,
                errors=validation.errors,
            )

        context = FlowExecutionContext(
            flow_id=flow.id,
            variables={**flow.default_variables(), **(input or {})},
            status=ExecutionStatus.RUNNING,
        )
        self._executions[context.execution_id] = context
        log = logger.bind(flow_id=flow.id, execution_id=context.execution_id)
        log.info("flow.execution_started", name=flow.name)
        await self._emit(FlowEvent(HookEvent.FLOW_START, flow_id=flow.id, execution_id=context.execution_id))

        stack = (*stack, flow.id)
        try:
            await run_with_timeout(
                self._traverse(flow, context, stack),
                flow.settings.max_execution_time_ms,
                f"Flow {flow.name}",
            )
        except _UnhandledNodeFailure as failure:
            if context.is_running:
                context.status = ExecutionStatus.FAILED
                context.error = error_message(failure.error)
        except asyncio.CancelledError:
            if context.is_running:
                context.status = ExecutionStatus.CANCELLED
            context.completed_at = _now()
            log.info("flow.execution_cancelled", reason="task cancelled")
            raise
        except Exception as exc:
            # TimeoutError, FlowDepthError and anything raised outside a node
            if context.is_running:
                context.status = ExecutionStatus.FAILED
                context.error = error_message(exc)
        else:
            if context.is_running:
                context.status = ExecutionStatus.COMPLETED
        finally:
            self._depths.pop(context.execution_id, None)
        context.completed_at = _now()

        if context.status == ExecutionStatus.FAILED:
            log.error("flow.execution_failed", error=context.error)
            await self._emit(
                FlowEvent(
                    HookEvent.FLOW_ERROR,
                    flow_id=flow.id,
                    execution_id=context.execution_id,
                    status=context.status.value,
                    error=context.error,
                )
            )
        else:
            log.info("flow.execution_finished", status=context.status.value, duration_ms=context.duration_ms)
            await self._emit(
                FlowEvent(
                    HookEvent.FLOW_COMPLETE,
                    flow_id=flow.id,
                    execution_id=context.execution_id,
                    status=context.status.value,
                )
            )
        return context

    async def _traverse(self, flow: Flow, context: FlowExecutionContext, stack: tuple[str, ...]) -> None:
        for trigger in flow.trigger_nodes():
            await self._visit(flow, trigger, context, stack)

    async def _visit(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
    ) -> None:
        if not context.is_running:
            return

        depth = self._depths.get(context.execution_id, 0) + 1
        if depth > MAX_TRAVERSAL_DEPTH:
            raise FlowDepthError(
                f"Flow traversal exceeded {MAX_TRAVERSAL_DEPTH} nested nodes at {node.id}; check the graph for cycles"
            )
        self._depths[context.execution_id] = depth
        try:
            await self._visit_node(flow, node, context, stack)
        finally:
            self._depths[context.execution_id] = depth - 1

    async def _visit_node(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
    ) -> None:
        if node.type == NodeType.TRIGGER:
            await self._follow(flow, node, context, stack, self._select_edges(flow, node, context))
            return

        context.current_node_id = node.id
        result = NodeExecutionResult(node_id=node.id, status=NodeStatus.RUNNING, started_at=_now())
        context.node_results[node.id] = result
        logger.debug("flow.node_started", node_id=node.id, node_type=node.type.value, name=node.name)
        await self._emit(self._node_event(HookEvent.FLOW_NODE_BEFORE, context, node))

        try:
            output = await self._run_node(flow, node, context, stack)
        except (_UnhandledNodeFailure, FlowDepthError) as failure:
            # raised from inside a loop body
            result.finish(NodeStatus.FAILED, error=str(failure))
            raise
        except Exception as exc:
            result.finish(NodeStatus.FAILED, error=error_message(exc))
            logger.warning("flow.node_failed", node_id=node.id, name=node.name, error=result.error)
            await self._emit(self._node_event(HookEvent.FLOW_NODE_ERROR, context, node, error=result.error))
            await self._route_failure(flow, node, context, stack, exc)
            return

        result.finish(NodeStatus.COMPLETED, output=output)
        await self._emit(self._node_event(HookEvent.FLOW_NODE_AFTER, context, node, output=output))
        if node.type == NodeType.LOOP:
            edges = self._select_edges(flow, node, context, handle=Handle.COMPLETE)
        else:
            edges = self._select_edges(flow, node, context, output=output)
        await self._follow(flow, node, context, stack, edges)

    async def _follow(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
        edges: list[FlowEdge],
    ) -> None:
        for edge in edges:
            target = flow.get_node(edge.target)
            if target is not None:
                await self._visit(flow, target, context, stack)

    def _select_edges(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        *,
        output: Any = None,
        handle: Handle | None = None,
    ) -> list[FlowEdge]:
        """Outgoing edges to follow after ``node`` succeeded."""
        selected: list[FlowEdge] = []
        for edge in get_outgoing_edges(flow.edges, node.id):
            if edge.is_error_edge:
                continue
            if node.type == NodeType.LOOP:
                # unlabelled loop edges run once, after the last iteration
                if (edge.source_handle or Handle.COMPLETE.value) != handle.value:
                    continue
            elif node.type == NodeType.CONDITION and edge.source_handle in (Handle.TRUE.value, Handle.FALSE.value):
                expected = Handle.TRUE.value if output else Handle.FALSE.value
                if edge.source_handle != expected:
                    continue
            if edge.condition is not None and not evaluate_flow_condition(edge.condition, context.variables):
                continue
            selected.append(edge)
        return selected

    async def _route_failure(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
        error: BaseException,
    ) -> None:
        error_edges = [e for e in get_outgoing_edges(flow.edges, node.id) if e.is_error_edge]
        if not error_edges:
            raise _UnhandledNodeFailure(node, error)
        context.variables[ERROR] = {
            "message": error_message(error),
            "node_id": node.id,
            "node_name": node.name,
        }
        await self._follow(flow, node, context, stack, error_edges)

    # ── Node types ───────────────────────────────────────────────────

    async def _run_node(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
    ) -> Any:
        match node.type:
            case NodeType.ACTION:
                return await self._run_action(flow, node, context)
            case NodeType.CONDITION:
                return await self._run_condition(node, context)
            case NodeType.LOOP:
                return await self._run_loop(flow, node, context, stack)
            case NodeType.DELAY:
                return await self._run_delay(node)
            case NodeType.SUBFLOW:
                return await self._run_subflow(flow, node, context, stack)
            case NodeType.OUTPUT:
                return await self._run_output(flow, node, context)
        raise ExecutionError(f"Unknown node type: {node.type}")

    def _operation(self, flow: Flow, node: FlowNode, execute: Callable[[], Awaitable[Any]]) -> AsyncOperation:
        settings = flow.settings
        policy = None
        if settings.retry_on_failure and settings.max_retries > 0:
            policy = RetryPolicy(max_attempts=settings.max_retries + 1, delay_ms=settings.retry_delay_ms)
        timeout_ms = settings.node_timeout_ms if settings.node_timeout_ms is not None else self.default_timeout_ms
        return AsyncOperation(name=f"{flow.name}/{node.name}", execute=execute, timeout_ms=timeout_ms, retry=policy)

    async def _run_action(self, flow: Flow, node: FlowNode, context: FlowExecutionContext) -> Any:
        if self.executor is None:
            raise ExecutionError("Flow engine has no executor for action nodes")
        data = node.data
        name = f"{data.plugin_name}:{data.action_name}"
        params = resolve_params(data.params, context.variables)

        async def call() -> Any:
            result = await self.executor.execute_action(name, params)
            if not result.success:
                raise ExecutionError(result.error or f"Action {name} failed")
            return result.data

        output = await self.runner.run(self._operation(flow, node, call))
        context.variables[LAST_OUTPUT] = output
        return output

    async def _run_condition(self, node: FlowNode, context: FlowExecutionContext) -> bool:
        data = node.data
        if data.evaluator_name:
            if self.executor is None:
                raise ExecutionError("Flow engine has no executor for evaluators")
            conditions = [c.model_dump(mode="json") for c in data.conditions]
            result = bool(await self.executor.evaluate(data.evaluator_name, conditions, context.variables))
        elif not data.conditions:
            result = True
        else:
            outcomes = [evaluate_flow_condition(c, context.variables) for c in data.conditions]
            result = all(outcomes) if data.operator == "and" else any(outcomes)
        context.variables[CONDITION_RESULT] = result
        return result

    async def _run_loop(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
    ) -> list[int]:
        data = node.data
        iterations: list[int] = []

        async def iterate(index: int, item: Any = None, with_item: bool = False) -> None:
            context.variables[LOOP_INDEX] = index
            if with_item:
                context.variables[LOOP_ITEM] = item
            iterations.append(index)
            edges = self._select_edges(flow, node, context, handle=Handle.ITERATION)
            await self._follow(flow, node, context, stack, edges)

        match data.loop_type:
            case "count":
                for index in range(data.count or 0):
                    if not context.is_running:
                        break
                    await iterate(index)
            case "forEach":
                items = data.items
                if isinstance(items, str):
                    items = get_value_from_path(context.variables, items)
                if not isinstance(items, (list, tuple)):
                    raise ExecutionError(f"Loop node {node.id}: items is not a list")
                for index, item in enumerate(items):
                    if not context.is_running:
                        break
                    await iterate(index, item, with_item=True)
            case "while":
                index = 0
                while (
                    index < data.max_iterations
                    and context.is_running
                    and evaluate_flow_condition(data.condition, context.variables)
                ):
                    await iterate(index)
                    index += 1
        return iterations

    async def _run_delay(self, node: FlowNode) -> int:
        data = node.data
        delay_ms = data.delay_ms
        if data.delay_type == "random" and data.max_delay_ms:
            delay_ms = random.randint(data.delay_ms, data.max_delay_ms)
        logger.debug("flow.delay", node_id=node.id, delay_ms=delay_ms)
        await asyncio.sleep(delay_ms / 1000)
        return delay_ms

    async def _run_subflow(
        self,
        flow: Flow,
        node: FlowNode,
        context: FlowExecutionContext,
        stack: tuple[str, ...],
    ) -> Any:
        data = node.data
        child = self._require(data.flow_id)
        if child.id in stack:
            raise ExecutionError(f"Recursive subflow: {' -> '.join((*stack, child.id))}")

        if data.input_mapping:
            child_input = {
                key: get_value_from_path(context.variables, path) for key, path in data.input_mapping.items()
            }
        else:
            child_input = {k: v for k, v in context.variables.items() if not k.startswith("_")}

        async def call() -> FlowExecutionContext:
            return await self._execute(child, child_input, stack)

        child_context = await self.runner.run(self._operation(flow, node, call))
        if child_context.status != ExecutionStatus.COMPLETED:
            raise ExecutionError(
                f'Subflow "{child.name}" {child_context.status.value}: {child_context.error or "no error"}'
            )

        for key, path in data.output_mapping.items():
            context.variables[key] = get_value_from_path(child_context.variables, path)
        output = child_context.output
        context.variables[LAST_OUTPUT] = output
        return output

    async def _run_output(self, flow: Flow, node: FlowNode, context: FlowExecutionContext) -> Any:
        data = node.data
        value = context.variables.get(LAST_OUTPUT)
        match data.output_type:
            case "return":
                context.output = value
            case "log":
                logger.info("flow.output", flow_id=flow.id, node_id=node.id, output=value)
            case "store":
                context.variables[data.config.get("variable", "output")] = value
            case "notify":
                await self._emit_raw(
                    custom_event(data.config.get("event", "flow:notify")),
                    {"flow_id": flow.id, "execution_id": context.execution_id, "output": value},
                )
        return value

    # ── Events ───────────────────────────────────────────────────────

    def _node_event(
        self,
        kind: HookEvent,
        context: FlowExecutionContext,
        node: FlowNode,
        *,
        output: Any = None,
        error: str | None = None,
    ) -> FlowNodeEvent:
        return FlowNodeEvent(
            kind,
            flow_id=context.flow_id,
            execution_id=context.execution_id,
            node_id=node.id,
            node_type=node.type.value,
            output=output,
            error=error,
        )

    async def _emit(self, event: RuntimeEvent) -> None:
        if self.hooks is not None:
            await self.hooks.dispatch(event, source="flow")

    async def _emit_raw(self, event: str, data: Any) -> None:
        if self.hooks is not None:
            await self.hooks.emit(event, data, source="flow")

    # ── Executions ───────────────────────────────────────────────────

    def get_execution(self, execution_id: str) -> FlowExecutionContext | None:
        return self._executions.get(execution_id)

    def get_executions(self, flow_id: str | None = None) -> list[FlowExecutionContext]:
        executions = self._executions.values()
        if flow_id is None:
            return list(executions)
        return [e for e in executions if e.flow_id == flow_id]

    def cancel(self, execution_id: str) -> bool:
        """Mark a running execution cancelled; it stops before its next node."""
        context = self._executions.get(execution_id)
        if context is None or not context.is_running:
            return False
        context.status = ExecutionStatus.CANCELLED
        logger.info("flow.execution_cancelled", flow_id=context.flow_id, execution_id=execution_id)
        return True

    def clear(self) -> None:
        self._flows.clear()
        self._executions.clear()
        logger.info("flow_engine.cleared")


__all__ = [
    "CONDITION_RESULT",
    "ERROR",
    "FlowDepthError",
    "FlowEngine",
    "LAST_OUTPUT",
    "LOOP_INDEX",
    "LOOP_ITEM",
    "MAX_TRAVERSAL_DEPTH",
]
