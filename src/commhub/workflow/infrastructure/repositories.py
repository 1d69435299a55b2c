"""
Workflow Infrastructure Repositories
====================================

Concrete implementations of the workflow ports.

- SQLAlchemy*: durable storage, one transactional session per call
- InMemory*: process-local storage for tests and single-process runs;
  values are copied in and out so callers never share mutable state
  with the store.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commhub.config import DefinitionStatus, Priority, WorkflowStatus
from commhub.core.exceptions import RepositoryException
from commhub.infrastructure.database import as_utc, session_scope
from commhub.workflow.application.ports import (
    IDefinitionRepository,
    IEntityContextProvider,
    IEventTriggerRepository,
    IInstanceRepository,
    IRecipientDirectory,
    ITaskSink,
    TaskRequest,
)
from commhub.workflow.domain import (
    EntityRef,
    ExecutionError,
    ExecutionLogEntry,
    Recipient,
    WorkflowDefinition,
    WorkflowEventTrigger,
    WorkflowInstance,
    validate_json_object,
)
from commhub.workflow.infrastructure.models import (
    EntityContextModel,
    RecipientModel,
    WorkflowDefinitionModel,
    WorkflowEventTriggerModel,
    WorkflowInstanceModel,
    WorkflowTaskModel,
)


# ========== Mapping ==========

def _definition_to_entity(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate({
        "id": model.id,
        "name": model.name,
        "description": model.description,
        "category": model.category,
        "version": model.version,
        "status": model.status,
        "nodes": model.nodes or [],
        "edges": model.edges or [],
        "sla_config": model.sla_config,
        "escalation_workflow_id": model.escalation_workflow_id,
    })


def _instance_to_entity(model: WorkflowInstanceModel) -> WorkflowInstance:
    return WorkflowInstance(
        id=model.id,
        workflow_definition_id=model.workflow_definition_id,
        workflow_version=model.workflow_version,
        entity=EntityRef.of(model.entity_type, model.entity_id),
        status=WorkflowStatus(model.status),
        priority=Priority(model.priority),
        assigned_to=model.assigned_to,
        current_node_id=model.current_node_id,
        current_step_number=model.current_step_number,
        total_steps=model.total_steps,
        context=dict(model.context or {}),
        variables=dict(model.variables or {}),
        execution_log=[ExecutionLogEntry.from_dict(e) for e in model.execution_log or []],
        errors=[ExecutionError.from_dict(e) for e in model.errors or []],
        created_at=as_utc(model.created_at),
        started_at=as_utc(model.started_at),
        paused_at=as_utc(model.paused_at),
        resume_at=as_utc(model.resume_at),
        completed_at=as_utc(model.completed_at),
    )


def _copy_instance_to_model(instance: WorkflowInstance, model: WorkflowInstanceModel) -> None:
    model.workflow_definition_id = instance.workflow_definition_id
    model.workflow_version = instance.workflow_version
    model.entity_type = instance.entity.entity_type.value
    model.entity_id = instance.entity.entity_id
    model.status = instance.status.value
    model.priority = instance.priority.value
    model.assigned_to = instance.assigned_to
    model.current_node_id = instance.current_node_id
    model.current_step_number = instance.current_step_number
    model.total_steps = instance.total_steps
    model.context = copy.deepcopy(instance.context)
    model.variables = copy.deepcopy(instance.variables)
    model.execution_log = [e.to_dict() for e in instance.execution_log]
    model.errors = [e.to_dict() for e in instance.errors]
    model.created_at = instance.created_at
    model.started_at = instance.started_at
    model.paused_at = instance.paused_at
    model.resume_at = instance.resume_at
    model.completed_at = instance.completed_at


# ========== SQLAlchemy ==========

class SQLAlchemyDefinitionRepository(IDefinitionRepository):
    """
    SQLAlchemy implementation of the definition repository.

    Definitions are keyed by (id, version).
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, definition_id: str, version: int) -> Optional[WorkflowDefinition]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(WorkflowDefinitionModel, (definition_id, version))
            return _definition_to_entity(model) if model else None

    async def get_active(self, definition_id: str) -> Optional[WorkflowDefinition]:
        async with session_scope(self._session_maker) as session:
            stmt = (
                select(WorkflowDefinitionModel)
                .where(WorkflowDefinitionModel.id == definition_id)
                .where(WorkflowDefinitionModel.status == DefinitionStatus.ACTIVE.value)
                .order_by(WorkflowDefinitionModel.version.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _definition_to_entity(model) if model else None

    async def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        data = definition.to_dict()
        async with session_scope(self._session_maker) as session:
            model = await session.get(WorkflowDefinitionModel, (definition.id, definition.version))
            if model is None:
                model = WorkflowDefinitionModel(id=definition.id, version=definition.version)
                session.add(model)
            else:
                _definition_to_entity(model).ensure_replaceable_by(definition)

            model.name = data["name"]
            model.description = data["description"]
            model.category = data["category"]
            model.status = data["status"]
            model.nodes = data["nodes"]
            model.edges = data["edges"]
            model.sla_config = data["sla_config"]
            model.escalation_workflow_id = data["escalation_workflow_id"]
            await session.flush()

        return definition


class SQLAlchemyInstanceRepository(IInstanceRepository):
    """SQLAlchemy implementation of the workflow instance repository."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(WorkflowInstanceModel, instance_id)
            return _instance_to_entity(model) if model else None

    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with session_scope(self._session_maker) as session:
            if await session.get(WorkflowInstanceModel, instance.id) is not None:
                raise RepositoryException(f"Workflow instance {instance.id} already exists")
            model = WorkflowInstanceModel(id=instance.id)
            _copy_instance_to_model(instance, model)
            session.add(model)
            await session.flush()
        return instance

    async def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with session_scope(self._session_maker) as session:
            model = await session.get(WorkflowInstanceModel, instance.id)
            if model is None:
                raise RepositoryException(f"Workflow instance {instance.id} not found")
            _copy_instance_to_model(instance, model)
            await session.flush()
        return instance

    async def list_active(
        self,
        statuses: Sequence[WorkflowStatus],
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        async with session_scope(self._session_maker) as session:
            stmt = select(WorkflowInstanceModel).where(
                WorkflowInstanceModel.status.in_([WorkflowStatus(s).value for s in statuses])
            )
            if started_after is not None:
                stmt = stmt.where(WorkflowInstanceModel.started_at >= started_after)
            if started_before is not None:
                stmt = stmt.where(WorkflowInstanceModel.started_at <= started_before)
            stmt = stmt.order_by(WorkflowInstanceModel.started_at.asc())

            result = await session.execute(stmt)
            return [_instance_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyTaskSink(ITaskSink):
    """Stores follow-up tasks in the 'workflow_tasks' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def create_task(self, task: TaskRequest) -> str:
        task_id = str(uuid4())
        async with session_scope(self._session_maker) as session:
            session.add(WorkflowTaskModel(
                id=task_id,
                instance_id=task.instance_id,
                entity_type=task.entity.entity_type.value,
                entity_id=task.entity.entity_id,
                task_type=task.task_type,
                title=task.title,
                description=task.description,
                priority=task.priority,
                assigned_to=list(task.assigned_to),
                due_at=task.due_at,
            ))
            await session.flush()
        return task_id


class SQLAlchemyRecipientDirectory(IRecipientDirectory):
    """Looks up recipients in the 'recipients' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, recipient_id: str) -> Optional[Recipient]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(RecipientModel, recipient_id)
            if model is None:
                return None
            return Recipient(
                id=model.id,
                full_name=model.full_name,
                email=model.email,
                phone=model.phone,
            )

    async def save(self, recipient: Recipient) -> Recipient:
        async with session_scope(self._session_maker) as session:
            await session.merge(RecipientModel(
                id=recipient.id,
                full_name=recipient.full_name,
                email=recipient.email,
                phone=recipient.phone,
            ))
        return recipient


class SQLAlchemyEventTriggerRepository(IEventTriggerRepository):
    """Reads and writes the 'workflow_event_triggers' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_active(self, event_type: str) -> List[WorkflowEventTrigger]:
        async with session_scope(self._session_maker) as session:
            stmt = (
                select(WorkflowEventTriggerModel)
                .where(WorkflowEventTriggerModel.event_type == event_type)
                .where(WorkflowEventTriggerModel.is_active.is_(True))
                .order_by(WorkflowEventTriggerModel.priority.desc(), WorkflowEventTriggerModel.id)
            )
            result = await session.execute(stmt)
            return [
                WorkflowEventTrigger(
                    id=m.id,
                    event_type=m.event_type,
                    workflow_definition_id=m.workflow_definition_id,
                    condition=m.condition,
                    priority=m.priority,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    async def save(self, trigger: WorkflowEventTrigger) -> WorkflowEventTrigger:
        data = trigger.to_dict()
        async with session_scope(self._session_maker) as session:
            await session.merge(WorkflowEventTriggerModel(**data))
        return trigger


class SQLAlchemyEntityContextProvider(IEntityContextProvider):
    """
    Entity context read from the 'entity_contexts' table.

    Unknown entities get an empty context.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_context(self, entity: EntityRef) -> Dict[str, Any]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(
                EntityContextModel, (entity.entity_type.value, entity.entity_id)
            )
            return dict(model.context or {}) if model else {}

    async def save_context(self, entity: EntityRef, context: Dict[str, Any]) -> None:
        """Replace the stored snapshot of an entity."""
        context = validate_json_object(context, name="entity context")
        async with session_scope(self._session_maker) as session:
            await session.merge(EntityContextModel(
                entity_type=entity.entity_type.value,
                entity_id=entity.entity_id,
                context=context,
                updated_at=datetime.now(timezone.utc),
            ))


# ========== In-Memory ==========

class InMemoryDefinitionRepository(IDefinitionRepository):
    """Store definitions in local memory. Not persisted across restarts."""

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()):
        self._definitions: Dict[tuple, WorkflowDefinition] = {}
        for definition in definitions:
            self._definitions[(definition.id, definition.version)] = definition

    async def get(self, definition_id: str, version: int) -> Optional[WorkflowDefinition]:
        return self._definitions.get((definition_id, version))

    async def get_active(self, definition_id: str) -> Optional[WorkflowDefinition]:
        active = [
            d for (i, _), d in self._definitions.items()
            if i == definition_id and d.status == DefinitionStatus.ACTIVE
        ]
        if not active:
            return None
        return max(active, key=lambda d: d.version)

    async def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        existing = self._definitions.get((definition.id, definition.version))
        if existing is not None:
            existing.ensure_replaceable_by(definition)
        # Definitions are frozen pydantic models, safe to share
        self._definitions[(definition.id, definition.version)] = definition
        return definition


class InMemoryInstanceRepository(IInstanceRepository):
    """Store workflow instances in local memory. Not persisted across restarts."""

    def __init__(self):
        self._instances: Dict[str, WorkflowInstance] = {}

    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        instance = self._instances.get(instance_id)
        return copy.deepcopy(instance) if instance else None

    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        if instance.id in self._instances:
            raise RepositoryException(f"Workflow instance {instance.id} already exists")
        self._instances[instance.id] = copy.deepcopy(instance)
        return instance

    async def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        if instance.id not in self._instances:
            raise RepositoryException(f"Workflow instance {instance.id} not found")
        self._instances[instance.id] = copy.deepcopy(instance)
        return instance

    async def list_active(
        self,
        statuses: Sequence[WorkflowStatus],
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        wanted = {WorkflowStatus(s) for s in statuses}
        results = []
        for instance in self._instances.values():
            if instance.status not in wanted or instance.started_at is None:
                continue
            if started_after is not None and instance.started_at < started_after:
                continue
            if started_before is not None and instance.started_at > started_before:
                continue
            results.append(copy.deepcopy(instance))
        return sorted(results, key=lambda i: i.started_at)

    async def list_all(self) -> List[WorkflowInstance]:
        return [copy.deepcopy(i) for i in self._instances.values()]


class InMemoryTaskSink(ITaskSink):
    """Collects created tasks in a list."""

    def __init__(self):
        self.tasks: List[Dict[str, Any]] = []

    async def create_task(self, task: TaskRequest) -> str:
        task_id = str(uuid4())
        self.tasks.append({"id": task_id, "task": task})
        return task_id


class InMemoryRecipientDirectory(IRecipientDirectory):
    """Fixed set of recipients keyed by id."""

    def __init__(self, recipients: Iterable[Recipient] = ()):
        self._recipients = {r.id: r for r in recipients}

    async def get(self, recipient_id: str) -> Optional[Recipient]:
        return self._recipients.get(recipient_id)

    def add(self, recipient: Recipient) -> None:
        self._recipients[recipient.id] = recipient


class InMemoryEventTriggerRepository(IEventTriggerRepository):
    """Store event triggers in local memory."""

    def __init__(self, triggers: Iterable[WorkflowEventTrigger] = ()):
        self._triggers: Dict[str, WorkflowEventTrigger] = {t.id: t for t in triggers}

    async def list_active(self, event_type: str) -> List[WorkflowEventTrigger]:
        matching = [
            t for t in self._triggers.values()
            if t.event_type == event_type and t.is_active
        ]
        return sorted(matching, key=lambda t: (-t.priority, t.id))

    async def save(self, trigger: WorkflowEventTrigger) -> WorkflowEventTrigger:
        self._triggers[trigger.id] = trigger
        return trigger


class StaticEntityContextProvider(IEntityContextProvider):
    """
    Entity context served from a dictionary keyed by "TYPE:id".

    Unknown entities get an empty context.
    """

    def __init__(self, contexts: Optional[Dict[str, Dict[str, Any]]] = None):
        self._contexts = dict(contexts or {})

    async def get_context(self, entity: EntityRef) -> Dict[str, Any]:
        return copy.deepcopy(self._contexts.get(str(entity), {}))

    def set_context(self, entity: EntityRef, context: Dict[str, Any]) -> None:
        self._contexts[str(entity)] = dict(context)
