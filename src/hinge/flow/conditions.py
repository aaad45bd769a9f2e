"""
Condition evaluation and variable resolution for flow execution.

The operator set is fixed (see :class:`ConditionOperator`). Comparisons are
deliberately narrow:

- ``eq`` / ``neq``: type-aware equality; ``1 == 1.0`` holds, ``1 == "1"``
  and ``True == 1`` do not
- ``gt`` / ``gte`` / ``lt`` / ``lte``: numeric; non-numeric operands → False
- ``contains`` / ``startsWith`` / ``endsWith``: on ``str()`` of both sides
- ``matches``: ``re.search(right, str(left))``; an invalid pattern → False
- ``in`` / ``notIn``: right side must be a list, tuple or set, else False
- ``isNull`` / ``isNotNull``: ``value`` is ignored
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from hinge.core.logging import get_logger
from hinge.flow.models import ConditionOperator, FlowCondition

logger = get_logger(__name__)

_TEMPLATE = re.compile(r"^\{\{\s*(.+?)\s*\}\}$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float | None:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _strict_equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _compare(left: Any, right: Any, op: str) -> bool:
    a, b = _to_number(left), _to_number(right)
    if a is None or b is None:
        return False
    if op == "gt":
        return a > b
    if op == "gte":
        return a >= b
    if op == "lt":
        return a < b
    return a <= b


def evaluate_condition(operator: ConditionOperator | str, left: Any, right: Any = None) -> bool:
    """Apply ``operator`` to a resolved field value and a literal."""
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.warning("flow.condition.unknown_operator", operator=str(operator))
        return False

    match op:
        case ConditionOperator.EQ:
            return _strict_equal(left, right)
        case ConditionOperator.NEQ:
            return not _strict_equal(left, right)
        case ConditionOperator.GT | ConditionOperator.GTE | ConditionOperator.LT | ConditionOperator.LTE:
            return _compare(left, right, op.value)
        case ConditionOperator.CONTAINS:
            return str(right) in str(left)
        case ConditionOperator.STARTS_WITH:
            return str(left).startswith(str(right))
        case ConditionOperator.ENDS_WITH:
            return str(left).endswith(str(right))
        case ConditionOperator.MATCHES:
            try:
                return re.search(str(right), str(left)) is not None
            except re.error:
                return False
        case ConditionOperator.IN:
            return isinstance(right, (list, tuple, set)) and left in right
        case ConditionOperator.NOT_IN:
            return isinstance(right, (list, tuple, set)) and left not in right
        case ConditionOperator.IS_NULL:
            return left is None
        case ConditionOperator.IS_NOT_NULL:
            return left is not None
    return False


def get_value_from_path(obj: Any, path: str) -> Any:
    """Resolve a dotted path (``"user.name"``, ``"items.0"``); missing → None.

    Mappings are indexed by key, sequences by integer segment, other objects
    by public attribute.
    """
    if not path:
        return obj
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        elif part.startswith("_"):
            return None
        else:
            current = getattr(current, part, None)
    return current


def evaluate_flow_condition(condition: FlowCondition, variables: Mapping[str, Any]) -> bool:
    return evaluate_condition(
        condition.operator,
        get_value_from_path(variables, condition.field),
        condition.value,
    )


def resolve_value(value: Any, variables: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        match = _TEMPLATE.match(value)
        return get_value_from_path(variables, match.group(1)) if match else value
    if isinstance(value, Mapping):
        return {k: resolve_value(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, variables) for v in value]
    return value


def resolve_params(params: Mapping[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
    """Replace ``"{{path}}"`` strings with variable values, recursively."""
    return {key: resolve_value(value, variables) for key, value in params.items()}


__all__ = [
    "evaluate_condition",
    "evaluate_flow_condition",
    "get_value_from_path",
    "resolve_params",
    "resolve_value",
]
