"""
Workflow Domain Entities
========================

Pure Python domain entities for workflow execution.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from commhub.config import (
    DefinitionStatus, NodeType, Priority, WorkflowStatus, TERMINAL_STATUSES
)
from commhub.core.exceptions import DefinitionImmutable, InvalidStatusTransition
from commhub.workflow.domain.nodes import WorkflowNode
from commhub.workflow.domain.value_objects import (
    EntityRef, ExecutionError, ExecutionLogEntry, SLAConfig
)


# Allowed status changes; terminal states have no outgoing transition
STATUS_TRANSITIONS: Dict[WorkflowStatus, frozenset] = {
    WorkflowStatus.NOT_STARTED: frozenset({WorkflowStatus.IN_PROGRESS}),
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.PAUSED,
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.PAUSED: frozenset({
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}


class WorkflowEdge(BaseModel):
    """Directed edge between two nodes of a definition."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    condition: Optional[str] = None
    label: Optional[str] = None


class WorkflowDefinition(BaseModel):
    """
    Versioned workflow graph.

    Definitions are immutable value-like aggregates: once ACTIVE and
    referenced by instances they are never edited; publishing a change
    creates a new version.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    description: Optional[str] = None
    category: str = "GENERAL"
    version: int = Field(default=1, ge=1)
    status: DefinitionStatus = DefinitionStatus.DRAFT
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    sla_config: Optional[SLAConfig] = Field(default=None, alias="slaConfig")
    escalation_workflow_id: Optional[str] = Field(default=None, alias="escalationWorkflowId")

    @model_validator(mode="after")
    def validate_graph(self) -> "WorkflowDefinition":
        """Node ids are unique and every edge connects existing nodes."""
        node_ids = [n.id for n in self.nodes]
        duplicates = {i for i in node_ids if node_ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate node ids: {sorted(duplicates)}")

        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known or edge.target not in known:
                raise ValueError(
                    f"Edge {edge.source} -> {edge.target} references a non-existent node"
                )
        return self

    @property
    def is_active(self) -> bool:
        return self.status == DefinitionStatus.ACTIVE

    @property
    def is_published(self) -> bool:
        """ACTIVE and ARCHIVED versions may be pinned by instances."""
        return self.status in (DefinitionStatus.ACTIVE, DefinitionStatus.ARCHIVED)

    def ensure_replaceable_by(self, other: "WorkflowDefinition") -> None:
        """
        Check that `other` may overwrite this stored version.

        A published version only changes its lifecycle status, and never
        goes back to DRAFT.

        Raises:
            DefinitionImmutable: The content or the status change is not allowed
        """
        if not self.is_published:
            return
        mine, theirs = self.to_dict(), other.to_dict()
        mine.pop("status")
        theirs.pop("status")
        if mine != theirs or other.status == DefinitionStatus.DRAFT:
            raise DefinitionImmutable(self.id, self.version)

    @property
    def start_node(self) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.type == NodeType.START.value:
                return node
        return None

    def get_node(self, node_id: Optional[str]) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: Optional[str]) -> bool:
        return self.get_node(node_id) is not None

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def next_node_id(self, node_id: str) -> Optional[str]:
        """Target of the first outgoing edge, or None for a sink node."""
        edges = self.outgoing_edges(node_id)
        return edges[0].target if edges else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
            "status": self.status.value,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.model_dump(exclude_none=True) for e in self.edges],
            "sla_config": self.sla_config.model_dump(mode="json") if self.sla_config else None,
            "escalation_workflow_id": self.escalation_workflow_id,
        }


@dataclass
class WorkflowInstance:
    """
    One live execution of a workflow definition against a business entity.

    Mutated only by the workflow engine. The execution log and error list
    are append-only and the step number never decreases.
    """

    workflow_definition_id: str
    workflow_version: int
    entity: EntityRef

    id: str = field(default_factory=lambda: str(uuid4()))
    status: WorkflowStatus = WorkflowStatus.NOT_STARTED
    priority: Priority = Priority.MEDIUM
    assigned_to: Optional[str] = None

    current_node_id: Optional[str] = None
    current_step_number: int = 0
    total_steps: int = 0

    context: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    execution_log: List[ExecutionLogEntry] = field(default_factory=list)
    errors: List[ExecutionError] = field(default_factory=list)

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in (WorkflowStatus.IN_PROGRESS, WorkflowStatus.PAUSED)

    def can_transition_to(self, target: WorkflowStatus) -> bool:
        return target in STATUS_TRANSITIONS[self.status]

    def transition_to(self, target: WorkflowStatus) -> None:
        """Change status along the state machine or raise."""
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(self.status, target)
        self.status = target

    def start(self, start_node_id: str, timestamp: Optional[datetime] = None) -> None:
        self.transition_to(WorkflowStatus.IN_PROGRESS)
        self.current_node_id = start_node_id
        self.started_at = timestamp or datetime.now(timezone.utc)

    def pause(self, resume_at: Optional[datetime] = None, timestamp: Optional[datetime] = None) -> None:
        self.transition_to(WorkflowStatus.PAUSED)
        self.paused_at = timestamp or datetime.now(timezone.utc)
        self.resume_at = resume_at

    def resume(self) -> None:
        self.transition_to(WorkflowStatus.IN_PROGRESS)
        self.resume_at = None

    def complete(self, timestamp: Optional[datetime] = None) -> None:
        self.transition_to(WorkflowStatus.COMPLETED)
        self.completed_at = timestamp or datetime.now(timezone.utc)

    def fail(self, node_id: str, message: str, timestamp: Optional[datetime] = None) -> None:
        timestamp = timestamp or datetime.now(timezone.utc)
        self.transition_to(WorkflowStatus.FAILED)
        self.errors.append(ExecutionError(node_id=node_id, message=message, timestamp=timestamp))
        self.completed_at = timestamp

    def cancel(self, timestamp: Optional[datetime] = None) -> None:
        self.transition_to(WorkflowStatus.CANCELLED)
        self.completed_at = timestamp or datetime.now(timezone.utc)

    def record_step(self, entry: ExecutionLogEntry) -> None:
        """Append a log entry and advance the step counter."""
        self.execution_log.append(entry)
        self.current_step_number += 1
