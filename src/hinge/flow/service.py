"""Flow service: the application-facing API over a :class:`FlowEngine`.

Adds template instantiation, JSON import/export, cloning and search on top
of the engine's store. Unknown ids raise :class:`NotFoundError`.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from hinge.core.errors import NotFoundError, ValidationError
from hinge.core.logging import get_logger
from hinge.flow.engine import FlowEngine
from hinge.flow.models import Flow, FlowExecutionContext, FlowTemplate
from hinge.flow.templates import create_empty_flow, create_from_template, get_template, get_templates
from hinge.flow.validation import FlowValidationResult

logger = get_logger(__name__)


class FlowService:
    def __init__(self, engine: FlowEngine | None = None) -> None:
        self.engine = engine or FlowEngine()

    def create_empty(self, name: str, description: str | None = None) -> Flow:
        return self.engine.create(create_empty_flow(name, description))

    def create_from_template(self, template_id: str, name: str | None = None) -> Flow:
        flow = create_from_template(template_id, name)
        if flow is None:
            raise NotFoundError("template", template_id)
        return self.engine.create(flow)

    def import_json(self, payload: str | bytes | Mapping[str, Any]) -> Flow:
        """Create a flow from exported JSON; its id and timestamps are replaced.

        Raises:
            ValidationError: Not UTF-8 JSON, no name, no ``nodes`` list, or
                node and edge definitions the flow model rejects.
        """
        if isinstance(payload, (str, bytes)):
            try:
                data = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise ValidationError(f"Invalid flow JSON: {exc}", field="payload") from exc
        else:
            data = dict(payload)

        if not isinstance(data, dict):
            raise ValidationError("Flow JSON must be an object", field="payload")
        if not data.get("name"):
            raise ValidationError("Flow must have a name", field="name")
        if not isinstance(data.get("nodes"), list):
            raise ValidationError("Flow must have nodes array", field="nodes")

        for key in ("id", "createdAt", "created_at", "updatedAt", "updated_at"):
            data.pop(key, None)
        flow = self.engine.create(data)
        logger.info("flow.imported", flow_id=flow.id, name=flow.name)
        return flow

    def export_json(self, flow_id: str) -> str:
        """Pretty-printed camelCase JSON for ``flow_id``."""
        return self._require(flow_id).model_dump_json(by_alias=True, indent=2)

    def clone(self, flow_id: str, name: str | None = None) -> Flow:
        flow = self._require(flow_id)
        copy = flow.model_copy(update={"name": name or f"{flow.name} (Copy)"}, deep=True)
        return self.engine.create(copy)

    def _require(self, flow_id: str) -> Flow:
        flow = self.engine.get(flow_id)
        if flow is None:
            raise NotFoundError("flow", flow_id)
        return flow

    def get(self, flow_id: str) -> Flow | None:
        return self.engine.get(flow_id)

    def get_all(self) -> list[Flow]:
        return self.engine.get_all()

    def search(self, query: str) -> list[Flow]:
        """Flows whose name or description contains ``query`` (case-insensitive)."""
        needle = query.lower()
        return [
            flow
            for flow in self.engine.get_all()
            if needle in flow.name.lower() or needle in (flow.description or "").lower()
        ]

    def update(self, flow_id: str, **changes: Any) -> Flow:
        return self.engine.update(flow_id, **changes)

    def delete(self, flow_id: str) -> bool:
        return self.engine.delete(flow_id)

    def validate(self, flow_id: str) -> FlowValidationResult:
        return self.engine.validate(flow_id)

    async def execute(self, flow_id: str, input: Mapping[str, Any] | None = None) -> FlowExecutionContext:
        return await self.engine.execute(flow_id, input)

    def get_templates(self) -> list[FlowTemplate]:
        return get_templates()

    def get_template(self, template_id: str) -> FlowTemplate | None:
        return get_template(template_id)

    def clear(self) -> None:
        self.engine.clear()


__all__ = ["FlowService"]
