"""Data model for workflow graphs and their executions."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from core.constants import StepStatus


class Node(BaseModel):
    """A unit of the workflow graph, either a trigger or an action.

    Accepts the flat shape ``{id, type, label, config, enabled}`` as well
    as the editor shape ``{id, data: {type, label, config, enabled}}``.
    """

    id: str = Field(min_length=1, description="Node identifier, unique within a graph")
    kind: str = Field(alias="type", description="trigger or action")
    label: str = Field(default="", description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")
    enabled: bool = Field(default=True, description="Disabled nodes are skipped")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def _flatten_editor_shape(cls, values: Any) -> Any:
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            data = values["data"]
            flat = {k: v for k, v in values.items() if k != "data"}
            for key in ("type", "label", "config", "enabled"):
                if key in data:
                    flat.setdefault(key, data[key])
            return flat
        return values

    @field_validator("label", mode="before")
    @classmethod
    def _label_or_empty(cls, v: Any) -> str:
        return v or ""

    @field_validator("config", mode="before")
    @classmethod
    def _config_or_empty(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @field_validator("enabled", mode="before")
    @classmethod
    def _enabled_unless_false(cls, v: Any) -> bool:
        # Only an explicit false disables a node
        return v is not False

    @property
    def action_type(self) -> Optional[str]:
        value = self.config.get("actionType")
        return value if isinstance(value, str) and value else None


class Edge(BaseModel):
    """A directed dependency from source to target."""

    id: str = ""
    source: str
    target: str

    class Config:
        extra = "ignore"


class ExecutionInput(BaseModel):
    """Everything one run needs; read-only for the duration of the run."""

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    trigger_input: Optional[Dict[str, Any]] = Field(default=None, alias="triggerInput")
    execution_id: Optional[str] = Field(default=None, alias="executionId")
    workflow_id: Optional[str] = Field(default=None, alias="workflowId")

    class Config:
        populate_by_name = True
        extra = "ignore"


class StepContext(BaseModel):
    """Observability context handed to every step invocation."""

    execution_id: Optional[str] = None
    node_id: str
    node_name: str
    node_type: str
    loop_iteration: Optional[int] = None

    def to_log_fields(self) -> Dict[str, Any]:
        fields = {
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "node_name": self.node_name,
            "node_type": self.node_type,
        }
        if self.loop_iteration is not None:
            fields["loop_iteration"] = self.loop_iteration
        return fields


class NodeOutput(BaseModel):
    """Data produced by a node, keyed by sanitized node id."""

    label: str
    data: Any = None


class NodeResult(BaseModel):
    """Terminal result of one executed node."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "NodeResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "NodeResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


class ExecutionResult(BaseModel):
    """Aggregated outcome of a run."""

    success: bool
    results: Dict[str, NodeResult] = Field(default_factory=dict)
    outputs: Dict[str, NodeOutput] = Field(default_factory=dict)
    error: Optional[str] = None
    statuses: Dict[str, StepStatus] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "results": {nid: r.to_dict() for nid, r in self.results.items()},
            "outputs": {key: o.model_dump() for key, o in self.outputs.items()},
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload
