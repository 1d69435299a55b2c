"""
Workflow Domain Layer
=====================

Domain layer for the workflow execution module.

Contains:
- Entities: WorkflowDefinition, WorkflowInstance (with its state machine)
- Nodes: typed node catalog and node factory
- Value Objects: EntityRef, SLAConfig, EscalationRule, execution log records
- Context: controlled access to instance context/variables, condition evaluation
- Triggers: rules starting workflows from platform events

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from commhub.workflow.domain.context import (
    ConditionEvaluator,
    ContextView,
    get_nested_value,
    validate_json_object,
)
from commhub.workflow.domain.entities import (
    STATUS_TRANSITIONS,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowInstance,
)
from commhub.workflow.domain.nodes import (
    Condition,
    ConditionConfig,
    CreateTaskConfig,
    DelayConfig,
    EndNodeConfig,
    EscalateConfig,
    GenericNodeConfig,
    MakeCallConfig,
    SendEmailConfig,
    SendSmsConfig,
    SendWhatsAppConfig,
    StartNodeConfig,
    WorkflowNode,
    create_node_from_dict,
)
from commhub.workflow.domain.triggers import WorkflowEventTrigger
from commhub.workflow.domain.value_objects import (
    EntityRef,
    EscalationRule,
    ExecutionError,
    ExecutionLogEntry,
    Recipient,
    SLAConfig,
)

__all__ = [
    # Entities
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowInstance",
    "STATUS_TRANSITIONS",
    # Nodes
    "WorkflowNode",
    "create_node_from_dict",
    "StartNodeConfig",
    "EndNodeConfig",
    "SendEmailConfig",
    "SendSmsConfig",
    "SendWhatsAppConfig",
    "MakeCallConfig",
    "CreateTaskConfig",
    "Condition",
    "ConditionConfig",
    "DelayConfig",
    "EscalateConfig",
    "GenericNodeConfig",
    # Triggers
    "WorkflowEventTrigger",
    # Value Objects
    "EntityRef",
    "EscalationRule",
    "SLAConfig",
    "ExecutionLogEntry",
    "ExecutionError",
    "Recipient",
    # Context
    "ContextView",
    "ConditionEvaluator",
    "get_nested_value",
    "validate_json_object",
]
