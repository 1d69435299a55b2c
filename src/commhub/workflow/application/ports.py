"""
Workflow Ports
==============

Abstract interfaces the workflow engine depends on (Dependency Inversion).

Concrete implementations live in `commhub.workflow.infrastructure`:
in-memory ones for tests and single-process runs, SQLAlchemy ones for
durable storage, httpx/logging channel adapters and an APScheduler-backed
resume scheduler.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from commhub.config import Channel, WorkflowStatus
from commhub.workflow.domain import (
    EntityRef, Recipient, WorkflowDefinition, WorkflowEventTrigger, WorkflowInstance
)


# ========== Repository Interfaces ==========

class IDefinitionRepository(ABC):
    """Interface for workflow definition data access."""

    @abstractmethod
    async def get(self, definition_id: str, version: int) -> Optional[WorkflowDefinition]:
        """Get a definition by id and version, whatever its status."""

    @abstractmethod
    async def get_active(self, definition_id: str) -> Optional[WorkflowDefinition]:
        """Get the ACTIVE version of a definition."""

    @abstractmethod
    async def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Insert or replace the (id, version) record.

        Raises:
            DefinitionImmutable: The stored version is published and the content differs
        """


class IInstanceRepository(ABC):
    """Interface for workflow instance data access."""

    @abstractmethod
    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Get instance by id."""

    @abstractmethod
    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist a new instance."""

    @abstractmethod
    async def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist the current state of an existing instance."""

    @abstractmethod
    async def list_active(
        self,
        statuses: Sequence[WorkflowStatus],
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        """List instances in the given statuses started inside the window."""


class IEntityContextProvider(ABC):
    """Supplies the initial context for a workflow started against an entity."""

    @abstractmethod
    async def get_context(self, entity: EntityRef) -> Dict[str, Any]:
        """Return a JSON object describing the entity (may be empty)."""


class IEventTriggerRepository(ABC):
    """Interface for workflow event trigger data access."""

    @abstractmethod
    async def list_active(self, event_type: str) -> List[WorkflowEventTrigger]:
        """Active triggers for an event type, highest priority first."""

    @abstractmethod
    async def save(self, trigger: WorkflowEventTrigger) -> WorkflowEventTrigger:
        """Insert or replace a trigger."""


class IRecipientDirectory(ABC):
    """Resolves user ids to reachable recipients."""

    @abstractmethod
    async def get(self, recipient_id: str) -> Optional[Recipient]:
        """Get recipient by id, or None if unknown."""


# ========== Side-effect Interfaces ==========

@dataclass(frozen=True)
class OutboundMessage:
    """Message handed to a channel adapter."""
    body: str
    subject: Optional[str] = None
    cc: List[str] = field(default_factory=list)
    sender: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChannelSendResult:
    """Outcome reported by a channel provider."""
    external_id: Optional[str]
    status: str

    def to_dict(self) -> dict:
        return {"external_id": self.external_id, "status": self.status}


class IChannelAdapter(ABC):
    """Outbound communication channel (e-mail, SMS, WhatsApp, voice call)."""

    channel: Channel

    @abstractmethod
    async def send(self, recipient: str, message: OutboundMessage) -> ChannelSendResult:
        """
        Deliver a message to one recipient address.

        Raises:
            ChannelSendError: If the provider rejects or cannot be reached
        """


@dataclass(frozen=True)
class TaskRequest:
    """Follow-up task created by a CREATE_TASK node."""
    instance_id: str
    entity: EntityRef
    title: str
    description: str
    task_type: str
    priority: str
    assigned_to: List[str]
    due_at: Optional[datetime]


class ITaskSink(ABC):
    """Destination for follow-up tasks."""

    @abstractmethod
    async def create_task(self, task: TaskRequest) -> str:
        """Create the task and return its id."""


class IResumeScheduler(ABC):
    """Arranges for a paused instance to be resumed later."""

    @abstractmethod
    async def schedule_resume(self, instance_id: str, run_at: datetime) -> None:
        """Call `resume_workflow(instance_id)` at `run_at`."""


class IEventPublisher(ABC):
    """Publishes domain events to whatever transport is configured."""

    @abstractmethod
    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Publish one event. Implementations must not raise on transport errors."""
