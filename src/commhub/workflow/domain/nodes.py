"""
Workflow Node Catalog
=====================

Typed configuration for every node type the engine knows how to execute:

- START / END: entry and exit points
- SEND_EMAIL / SEND_SMS / SEND_WHATSAPP / MAKE_CALL: outbound communication
- CREATE_TASK: create a follow-up task for an operator
- CONDITION: AND-combined predicates selecting a true/false branch
- DELAY: suspend the instance until an external scheduler resumes it
- ESCALATE: notify escalation recipients

Each node type has its own frozen Pydantic config model. Node types without
a model (custom or future types) keep a generic config so the engine can
still pass through them.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from commhub.config import Channel, ConditionOperator, NodeType


class NodeConfig(BaseModel):
    """Base class for node configuration."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ActionNodeConfig(NodeConfig):
    """Config for nodes that perform a side effect and move on."""
    next_node_id: Optional[str] = Field(
        default=None,
        alias="nextNodeId",
        description="Explicit successor; falls back to the first outgoing edge"
    )


class StartNodeConfig(NodeConfig):
    trigger: str = "MANUAL"


class EndNodeConfig(NodeConfig):
    outcome: Literal["SUCCESS", "FAILURE", "CANCELLED"] = "SUCCESS"


class SendEmailConfig(ActionNodeConfig):
    """
    Send an email.

    `to`, `subject` and `body` may contain `{{path.to.value}}` placeholders
    resolved against the instance context and variables.
    """
    to: Union[str, List[str]]
    cc: Optional[Union[str, List[str]]] = None
    subject: str = Field(..., min_length=1)
    body: str = ""


class SendSmsConfig(ActionNodeConfig):
    to: Union[str, List[str]]
    message: str = Field(..., min_length=1)
    from_number: Optional[str] = Field(default=None, alias="from")


class SendWhatsAppConfig(ActionNodeConfig):
    to: Union[str, List[str]]
    message: str = Field(..., min_length=1)
    from_number: Optional[str] = Field(default=None, alias="from")

    @model_validator(mode="before")
    @classmethod
    def accept_content_text(cls, data: Any) -> Any:
        """Templates store the text under `content.text`."""
        if isinstance(data, dict) and "message" not in data:
            content = data.get("content")
            if isinstance(content, dict) and content.get("text"):
                return {**data, "message": content["text"]}
        return data


class MakeCallConfig(ActionNodeConfig):
    to: str = Field(..., min_length=1)
    from_number: Optional[str] = Field(default=None, alias="from")
    record: bool = Field(default=False, alias="recording")
    max_duration_seconds: Optional[int] = Field(default=None, alias="maxDuration", ge=1)


class CreateTaskConfig(ActionNodeConfig):
    title: str = Field(..., min_length=1)
    description: str = ""
    task_type: str = Field(default="FOLLOW_UP", alias="taskType")
    priority: Literal["LOW", "MEDIUM", "HIGH", "URGENT"] = "MEDIUM"
    assign_to: Optional[Union[str, List[str]]] = Field(default=None, alias="assignTo")
    due_in_minutes: Optional[int] = Field(default=None, alias="dueInMinutes", ge=1)


class Condition(NodeConfig):
    """Single predicate evaluated against context then variables."""
    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any = None


class ConditionBranches(NodeConfig):
    true: str = Field(..., min_length=1)
    false: str = Field(..., min_length=1)


class ConditionConfig(NodeConfig):
    """All conditions must hold (AND) to follow the `true` branch."""
    conditions: List[Condition] = Field(default_factory=list)
    branches: ConditionBranches


class DelayConfig(ActionNodeConfig):
    delay_minutes: Optional[float] = Field(default=None, alias="delayMinutes", gt=0)
    delay_until: Optional[datetime] = Field(default=None, alias="delayUntil")

    @model_validator(mode="after")
    def validate_delay(self) -> "DelayConfig":
        """Either a relative or an absolute delay must be given."""
        if self.delay_minutes is None and self.delay_until is None:
            raise ValueError("DELAY node requires delayMinutes or delayUntil")
        return self


class EscalateConfig(ActionNodeConfig):
    escalate_to: List[str] = Field(default_factory=list, alias="escalateTo")
    reason: str = ""
    priority: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = "HIGH"
    notify_via: List[Channel] = Field(default_factory=list, alias="notifyVia")

    @field_validator("escalate_to", mode="before")
    @classmethod
    def coerce_recipients(cls, v: Any) -> Any:
        """Accept a single recipient id as well as a list."""
        if isinstance(v, str):
            return [v]
        return v


class GenericNodeConfig(NodeConfig):
    """Config for node types without a dedicated model; keeps every key."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")
    next_node_id: Optional[str] = Field(default=None, alias="nextNodeId")


# Mapping: node type → config class
NODE_CONFIG_CLASSES: Dict[str, type] = {
    NodeType.START.value: StartNodeConfig,
    NodeType.END.value: EndNodeConfig,
    NodeType.SEND_EMAIL.value: SendEmailConfig,
    NodeType.SEND_SMS.value: SendSmsConfig,
    NodeType.SEND_WHATSAPP.value: SendWhatsAppConfig,
    NodeType.MAKE_CALL.value: MakeCallConfig,
    NodeType.CREATE_TASK.value: CreateTaskConfig,
    NodeType.CONDITION.value: ConditionConfig,
    NodeType.DELAY.value: DelayConfig,
    NodeType.ESCALATE.value: EscalateConfig,
}


class WorkflowNode(BaseModel):
    """
    A unit of work in a workflow graph.

    `type` is kept as a plain string so definitions may carry node types
    this engine has no executor for; `node_type` gives the typed variant
    when one exists.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique node identifier")
    type: str = Field(..., min_length=1)
    label: Optional[str] = Field(None, description="Human-readable label")
    config: NodeConfig = Field(default_factory=GenericNodeConfig)

    @model_validator(mode="before")
    @classmethod
    def build_typed_config(cls, data: Any) -> Any:
        """Parse `config` into the model registered for the node type."""
        if not isinstance(data, dict):
            return data
        node_type = str(data.get("type", "")).upper()
        config = data.get("config")
        if config is None or isinstance(config, dict):
            config_class = NODE_CONFIG_CLASSES.get(node_type, GenericNodeConfig)
            config = config_class.model_validate(config or {})
        return {**data, "type": node_type, "config": config}

    @field_validator("id")
    @classmethod
    def validate_id_not_empty(cls, v: str) -> str:
        """Ensure ID is not empty or whitespace"""
        if not v.strip():
            raise ValueError("Node ID cannot be empty")
        return v

    @property
    def node_type(self) -> Optional[NodeType]:
        """Typed node variant, or None for unknown node types."""
        try:
            return NodeType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "config": self.config.to_dict(),
        }


def create_node_from_dict(node_data: Dict[str, Any]) -> WorkflowNode:
    """
    Factory function: creates a node with its typed config from a dictionary.

    Raises:
        ValueError: If validation of the node or its config fails

    Example:
        >>> node = create_node_from_dict({
        ...     "id": "check_amount",
        ...     "type": "CONDITION",
        ...     "config": {
        ...         "conditions": [{"field": "amount", "operator": "greater_than", "value": 1000}],
        ...         "branches": {"true": "approve", "false": "auto_close"},
        ...     },
        ... })
        >>> isinstance(node.config, ConditionConfig)
        True
    """
    try:
        return WorkflowNode.model_validate(node_data)
    except Exception as e:
        raise ValueError(f"Failed to create {node_data.get('type')} node {node_data.get('id')}: {e}")
