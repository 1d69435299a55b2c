"""
TAT Domain Entities
===================

Pure Python domain entities for turn-around-time monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from commhub.config import (
    NotificationPriority, NotificationType, Priority, TATStatus
)
from commhub.workflow.domain import EntityRef, EscalationRule


@dataclass(frozen=True)
class ApproachingDeadline:
    """
    An active instance past its warning threshold but not yet its deadline.

    `threshold_percentage` is the share of the TAT still remaining.
    """
    instance_id: str
    workflow_definition_id: str
    workflow_name: str
    entity: EntityRef
    priority: Priority
    assigned_to: Optional[str]
    started_at: datetime
    deadline_at: datetime
    time_remaining: int
    threshold_percentage: int
    elapsed_minutes: float
    escalation_rule: Optional[EscalationRule] = None

    def to_dict(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "workflow_definition_id": self.workflow_definition_id,
            "workflow_name": self.workflow_name,
            "entity_type": self.entity.entity_type.value,
            "entity_id": self.entity.entity_id,
            "priority": self.priority.value,
            "assigned_to": self.assigned_to,
            "started_at": self.started_at.isoformat(),
            "deadline_at": self.deadline_at.isoformat(),
            "time_remaining": self.time_remaining,
            "threshold_percentage": self.threshold_percentage,
            "elapsed_minutes": self.elapsed_minutes,
            "escalation_rule": self.escalation_rule.model_dump(mode="json") if self.escalation_rule else None,
        }


@dataclass(frozen=True)
class BreachedDeadline:
    """An active instance whose deadline has passed."""
    instance_id: str
    workflow_definition_id: str
    workflow_name: str
    entity: EntityRef
    priority: Priority
    assigned_to: Optional[str]
    started_at: datetime
    deadline_at: datetime
    overdue_minutes: int
    elapsed_minutes: float
    escalation_rule: Optional[EscalationRule] = None
    escalation_workflow_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "workflow_definition_id": self.workflow_definition_id,
            "workflow_name": self.workflow_name,
            "entity_type": self.entity.entity_type.value,
            "entity_id": self.entity.entity_id,
            "priority": self.priority.value,
            "assigned_to": self.assigned_to,
            "started_at": self.started_at.isoformat(),
            "deadline_at": self.deadline_at.isoformat(),
            "overdue_minutes": self.overdue_minutes,
            "elapsed_minutes": self.elapsed_minutes,
            "escalation_rule": self.escalation_rule.model_dump(mode="json") if self.escalation_rule else None,
            "escalation_workflow_id": self.escalation_workflow_id,
        }


@dataclass
class TrackedEntity:
    """
    Business record whose TAT status is tracked (e.g. a communication thread).

    BREACHED also marks the SLA status as breached.
    """
    entity: EntityRef
    tat_status: TATStatus = TATStatus.ON_TRACK
    sla_status: Optional[str] = None
    sla_deadline: Optional[datetime] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def set_tat_status(self, status: TATStatus, timestamp: Optional[datetime] = None) -> None:
        self.tat_status = TATStatus(status)
        if self.tat_status == TATStatus.BREACHED:
            self.sla_status = TATStatus.BREACHED.value
        self.updated_at = timestamp or datetime.now(timezone.utc)

    def extend_deadline(self, minutes: float, timestamp: Optional[datetime] = None) -> "TATExtension":
        """
        Push the deadline back and reset TAT status to ON_TRACK.

        Without a current deadline the extension counts from `timestamp`.
        """
        now = timestamp or datetime.now(timezone.utc)
        old_deadline = self.sla_deadline or now
        new_deadline = old_deadline + timedelta(minutes=minutes)

        self.sla_deadline = new_deadline
        self.tat_status = TATStatus.ON_TRACK
        self.updated_at = now

        return TATExtension(
            entity=self.entity,
            old_deadline=old_deadline,
            new_deadline=new_deadline,
            extension_minutes=minutes,
            reason="",
            extended_at=now,
        )


@dataclass
class TATExtension:
    """Audit record of a deadline extension."""
    entity: EntityRef
    old_deadline: datetime
    new_deadline: datetime
    extension_minutes: float
    reason: str
    extended_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity.entity_type.value,
            "entity_id": self.entity.entity_id,
            "old_deadline": self.old_deadline.isoformat(),
            "new_deadline": self.new_deadline.isoformat(),
            "extension_minutes": self.extension_minutes,
            "reason": self.reason,
            "extended_at": self.extended_at.isoformat(),
        }


@dataclass
class Notification:
    """In-app notification for a user."""
    user_id: str
    type: NotificationType
    title: str
    message: str
    entity: EntityRef
    priority: NotificationPriority
    action_url: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read_at: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None
