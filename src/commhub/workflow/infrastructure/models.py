"""
Workflow Infrastructure Models
==============================

SQLAlchemy ORM models for the workflow module.

These are the database representations of our domain entities.
Graph structure, context, variables and logs are stored as JSON columns.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commhub.config import DefinitionStatus, Priority, WorkflowStatus
from commhub.infrastructure.database import Base


class WorkflowDefinitionModel(Base):
    """
    Database model for WorkflowDefinition.

    Maps to the 'workflow_definitions' table. One row per (id, version).
    """
    __tablename__ = "workflow_definitions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="GENERAL")
    status: Mapped[DefinitionStatus] = mapped_column(
        String(50), nullable=False, default=DefinitionStatus.DRAFT, index=True
    )

    nodes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    edges: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    sla_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    escalation_workflow_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class WorkflowInstanceModel(Base):
    """
    Database model for WorkflowInstance.

    Maps to the 'workflow_instances' table.
    """
    __tablename__ = "workflow_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Pinned definition
    workflow_definition_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    workflow_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Entity reference
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    status: Mapped[WorkflowStatus] = mapped_column(
        String(50), nullable=False, default=WorkflowStatus.NOT_STARTED, index=True
    )
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Progress
    current_node_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_step_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # State
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    variables: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    execution_log: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resume_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class WorkflowTaskModel(Base):
    """
    Follow-up task created by CREATE_TASK nodes.

    Maps to the 'workflow_tasks' table.
    """
    __tablename__ = "workflow_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)

    task_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    assigned_to: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class RecipientModel(Base):
    """
    Users reachable by notifications.

    Maps to the 'recipients' table.
    """
    __tablename__ = "recipients"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)


class WorkflowEventTriggerModel(Base):
    """
    Rule starting a workflow when a platform event arrives.

    Maps to the 'workflow_event_triggers' table.
    """
    __tablename__ = "workflow_event_triggers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    workflow_definition_id: Mapped[str] = mapped_column(String(255), nullable=False)
    condition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class EntityContextModel(Base):
    """
    Snapshot of a business entity used as the starting context of workflows.

    Maps to the 'entity_contexts' table. Written by the integrations that
    own shipments, threads and customers.
    """
    __tablename__ = "entity_contexts"

    entity_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
