"""
Workflow Event Triggers
=======================

Rules that start a workflow automatically when a platform event arrives
(a document upload, a status change, a missed call, ...).

A trigger matches an event type and, optionally, one predicate evaluated
against the event data.
"""

from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from commhub.workflow.domain.context import ConditionEvaluator, ContextView
from commhub.workflow.domain.nodes import Condition


class WorkflowEventTrigger(BaseModel):
    """Starts `workflow_definition_id` for events of `event_type`."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str = Field(..., min_length=1, alias="eventType")
    workflow_definition_id: str = Field(..., min_length=1, alias="workflowId")
    condition: Optional[Condition] = None
    priority: int = Field(default=0, description="Higher priorities are evaluated first")
    is_active: bool = Field(default=True, alias="isActive")

    def matches(self, view: ContextView) -> bool:
        """A trigger without a condition matches every event of its type."""
        if self.condition is None:
            return True
        return ConditionEvaluator.evaluate(self.condition, view)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "workflow_definition_id": self.workflow_definition_id,
            "condition": self.condition.model_dump(mode="json") if self.condition else None,
            "priority": self.priority,
            "is_active": self.is_active,
        }
