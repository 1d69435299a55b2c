"""
Workflow Value Objects
======================

Immutable value objects for the workflow domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from commhub.config import Channel, EntityType


@dataclass(frozen=True)
class EntityRef:
    """Reference to the business entity a workflow instance runs against."""
    entity_type: EntityType
    entity_id: str

    @classmethod
    def of(cls, entity_type: str, entity_id: str) -> "EntityRef":
        return cls(EntityType(entity_type), str(entity_id))

    def __str__(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}"


@dataclass(frozen=True)
class Recipient:
    """A user that can be reached over notification channels."""
    id: str
    full_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    def address_for(self, channel: Channel) -> Optional[str]:
        """E-mail address for EMAIL, phone number for every other channel."""
        if channel == Channel.EMAIL:
            return self.email
        return self.phone


class EscalationRule(BaseModel):
    """
    Escalation policy step.

    Once `after_minutes` have elapsed since the workflow started, the listed
    recipients are notified on every listed channel.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    after_minutes: float = Field(alias="afterMinutes", ge=0, description="Elapsed minutes threshold")
    escalate_to: List[str] = Field(
        default_factory=list,
        alias="escalateTo",
        description="Recipient (user) ids"
    )
    notify_via: List[Channel] = Field(
        default_factory=list,
        alias="notifyVia",
        description="Channels used to reach the recipients"
    )


class SLAConfig(BaseModel):
    """
    SLA commitments attached to a workflow definition.

    Effective TAT = resolution time × priority multiplier (see the TAT
    deadline calculator).
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    response_time_minutes: Optional[float] = Field(default=None, alias="responseTimeMinutes")
    resolution_time_minutes: Optional[float] = Field(default=None, alias="resolutionTimeMinutes")
    escalation_rules: List[EscalationRule] = Field(default_factory=list, alias="escalationRules")

    @property
    def is_valid(self) -> bool:
        """Whether this config can produce a deadline."""
        return bool(self.resolution_time_minutes and self.resolution_time_minutes > 0)


@dataclass(frozen=True)
class ExecutionLogEntry:
    """One executed node, appended to the instance execution log."""
    node_id: str
    node_name: Optional[str]
    node_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    output: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_name": self.node_name,
            "node_type": self.node_type,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionLogEntry":
        return cls(
            node_id=data["node_id"],
            node_name=data.get("node_name"),
            node_type=data.get("node_type", ""),
            status=data["status"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            output=data.get("output") or {},
        )


@dataclass(frozen=True)
class ExecutionError:
    """Error captured when a node fails. Retries are not attempted."""
    node_id: str
    message: str
    timestamp: datetime
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionError":
        return cls(
            node_id=data.get("node_id", ""),
            message=data["message"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            retry_count=data.get("retry_count", 0),
        )
