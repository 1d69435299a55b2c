from datetime import timedelta

import pytest
from sqlalchemy import select

from commhub.config import (
    NotificationPriority, NotificationType, Priority, TATStatus, WorkflowStatus
)
from commhub.core.exceptions import DefinitionImmutable, RepositoryException
from commhub.infrastructure.database import get_session_context
from commhub.tat.domain import Notification, TrackedEntity
from commhub.tat.infrastructure import (
    SQLAlchemyExtensionRepository,
    SQLAlchemyNotificationLedger,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTrackedEntityRepository,
)
from commhub.workflow.application import TaskRequest
from commhub.workflow.domain import (
    EntityRef, ExecutionLogEntry, Recipient, WorkflowEventTrigger, WorkflowInstance
)
from commhub.workflow.infrastructure import (
    SQLAlchemyDefinitionRepository,
    SQLAlchemyEntityContextProvider,
    SQLAlchemyEventTriggerRepository,
    SQLAlchemyInstanceRepository,
    SQLAlchemyRecipientDirectory,
    SQLAlchemyTaskSink,
)
from commhub.workflow.infrastructure.models import WorkflowTaskModel

THREAD = EntityRef.of("THREAD", "T-77")

NODES = [
    {"id": "start", "type": "START"},
    {"id": "wait", "type": "DELAY", "config": {"delayMinutes": 15}},
    {"id": "end", "type": "END"},
]


# ========== Workflow ==========

@pytest.mark.asyncio
async def test_definition_versions(session_maker, build_definition):
    repo = SQLAlchemyDefinitionRepository(session_maker)
    sla = {"resolutionTimeMinutes": 240, "escalationRules": [{"afterMinutes": 200, "escalateTo": ["lead"]}]}

    await repo.save(build_definition(NODES, [("start", "wait"), ("wait", "end")], slaConfig=sla))
    await repo.save(build_definition(NODES, [("start", "end")], version=2, escalationWorkflowId="wf_esc"))
    await repo.save(build_definition(NODES, version=3, status="DRAFT"))

    active = await repo.get_active("wf_test")
    assert active.version == 2
    assert active.escalation_workflow_id == "wf_esc"
    assert active.next_node_id("start") == "end"

    first = await repo.get("wf_test", 1)
    assert first.sla_config.resolution_time_minutes == 240
    assert first.sla_config.escalation_rules[0].escalate_to == ["lead"]
    assert first.get_node("wait").config.delay_minutes == 15

    assert await repo.get("wf_test", 9) is None
    assert await repo.get_active("missing") is None


@pytest.mark.asyncio
async def test_published_definition_is_immutable(session_maker, build_definition):
    repo = SQLAlchemyDefinitionRepository(session_maker)
    await repo.save(build_definition(NODES, [("start", "wait"), ("wait", "end")]))

    with pytest.raises(DefinitionImmutable):
        await repo.save(build_definition(NODES, [("start", "end")]))

    await repo.save(build_definition(NODES, [("start", "wait"), ("wait", "end")], status="ARCHIVED"))

    stored = await repo.get("wf_test", 1)
    assert stored.next_node_id("start") == "wait"
    assert not stored.is_active
    assert await repo.get_active("wf_test") is None


@pytest.mark.asyncio
async def test_instance_round_trip(session_maker, clock):
    repo = SQLAlchemyInstanceRepository(session_maker)
    instance = WorkflowInstance(
        workflow_definition_id="wf_test",
        workflow_version=1,
        entity=THREAD,
        priority=Priority.HIGH,
        assigned_to="agent_7",
        context={"customer": {"name": "Ravi"}},
    )
    instance.start("start", timestamp=clock.now)
    await repo.create(instance)

    instance.variables["attempts"] = 2
    instance.execution_log.append(ExecutionLogEntry(
        node_id="start", node_name=None, node_type="START", status="COMPLETED",
        started_at=clock.now, completed_at=clock.now,
    ))
    await repo.save(instance)

    loaded = await repo.get(instance.id)
    assert loaded.status == WorkflowStatus.IN_PROGRESS
    assert loaded.priority == Priority.HIGH
    assert loaded.entity == THREAD
    assert loaded.context == {"customer": {"name": "Ravi"}}
    assert loaded.variables == {"attempts": 2}
    assert loaded.execution_log[0].node_id == "start"
    assert loaded.started_at == clock.now
    assert await repo.get("nope") is None


@pytest.mark.asyncio
async def test_instance_create_and_save_guards(session_maker):
    repo = SQLAlchemyInstanceRepository(session_maker)
    instance = WorkflowInstance(workflow_definition_id="wf_test", workflow_version=1, entity=THREAD)

    with pytest.raises(RepositoryException):
        await repo.save(instance)

    await repo.create(instance)
    with pytest.raises(RepositoryException):
        await repo.create(instance)


@pytest.mark.asyncio
async def test_list_active_window(session_maker, clock):
    repo = SQLAlchemyInstanceRepository(session_maker)

    async def add(days_ago, status):
        instance = WorkflowInstance(
            workflow_definition_id="wf_test", workflow_version=1, entity=THREAD,
            status=status, started_at=clock.now - timedelta(days=days_ago),
        )
        await repo.create(instance)
        return instance.id

    recent = await add(1, WorkflowStatus.IN_PROGRESS)
    paused = await add(3, WorkflowStatus.PAUSED)
    await add(2, WorkflowStatus.COMPLETED)
    await add(10, WorkflowStatus.IN_PROGRESS)

    found = await repo.list_active(
        [WorkflowStatus.IN_PROGRESS, WorkflowStatus.PAUSED],
        started_after=clock.now - timedelta(days=7),
        started_before=clock.now,
    )

    assert [i.id for i in found] == [paused, recent]


@pytest.mark.asyncio
async def test_task_sink_and_recipients(session_maker, clock):
    sink = SQLAlchemyTaskSink(session_maker)
    task_id = await sink.create_task(TaskRequest(
        instance_id="i-1",
        entity=THREAD,
        task_type="FOLLOW_UP",
        title="Call the consignee",
        description="Shipment stuck at customs",
        priority="HIGH",
        assigned_to=["ops_manager"],
        due_at=clock.now + timedelta(hours=2),
    ))

    async with get_session_context() as session:
        rows = (await session.execute(select(WorkflowTaskModel))).scalars().all()
    assert [r.id for r in rows] == [task_id]
    assert rows[0].assigned_to == ["ops_manager"]

    directory = SQLAlchemyRecipientDirectory(session_maker)
    await directory.save(Recipient(id="ops_manager", full_name="Asha Rao", email="ops@example.com"))
    await directory.save(Recipient(id="ops_manager", full_name="Asha Rao", email="asha@example.com"))

    recipient = await directory.get("ops_manager")
    assert recipient.email == "asha@example.com"
    assert recipient.phone is None
    assert await directory.get("ghost") is None


# ========== TAT ==========

@pytest.mark.asyncio
async def test_tracked_entity_and_extensions(session_maker, clock):
    tracked = SQLAlchemyTrackedEntityRepository(session_maker)
    extensions = SQLAlchemyExtensionRepository(session_maker)

    entity = TrackedEntity(entity=THREAD, sla_deadline=clock.now, updated_at=clock.now)
    await tracked.save(entity)
    entity.set_tat_status(TATStatus.BREACHED, timestamp=clock.now)
    await tracked.save(entity)

    loaded = await tracked.get(THREAD)
    assert loaded.tat_status == TATStatus.BREACHED
    assert loaded.sla_status == "BREACHED"
    assert loaded.sla_deadline == clock.now
    assert await tracked.get(EntityRef.of("THREAD", "other")) is None

    extension = loaded.extend_deadline(45, timestamp=clock.now)
    extension.reason = "Port congestion"
    await extensions.create(extension)

    stored = await extensions.list_for_entity(THREAD)
    assert len(stored) == 1
    assert stored[0].new_deadline == clock.now + timedelta(minutes=45)
    assert stored[0].reason == "Port congestion"


@pytest.mark.asyncio
async def test_notifications_newest_first(session_maker, clock):
    repo = SQLAlchemyNotificationRepository(session_maker)

    for minutes, title in [(0, "older"), (5, "newer")]:
        await repo.create(Notification(
            user_id="agent_1",
            type=NotificationType.SLA_WARNING,
            title=title,
            message="m",
            entity=THREAD,
            priority=NotificationPriority.HIGH,
            created_at=clock.now + timedelta(minutes=minutes),
        ))

    found = await repo.list_for_user("agent_1")
    assert [n.title for n in found] == ["newer", "older"]
    assert found[0].entity == THREAD
    assert not found[0].is_read
    assert await repo.list_for_user("someone_else") == []


@pytest.mark.asyncio
async def test_notification_ledger(session_maker, clock):
    ledger = SQLAlchemyNotificationLedger(session_maker)

    assert await ledger.last_notified("i-1", "breached") is None

    await ledger.mark("i-1", "breached", clock.now)
    await ledger.mark("i-1", "breached", clock.now + timedelta(minutes=5))

    assert await ledger.last_notified("i-1", "breached") == clock.now + timedelta(minutes=5)
    assert await ledger.last_notified("i-1", "approaching") is None


@pytest.mark.asyncio
async def test_event_triggers(session_maker):
    repo = SQLAlchemyEventTriggerRepository(session_maker)
    await repo.save(WorkflowEventTrigger(id="t-1", event_type="MISSED_CALL", workflow_definition_id="wf_callback"))
    await repo.save(WorkflowEventTrigger(
        id="t-2", event_type="MISSED_CALL", workflow_definition_id="wf_vip_callback", priority=5,
        condition={"field": "customer.tier", "operator": "equals", "value": "GOLD"},
    ))
    await repo.save(WorkflowEventTrigger(
        id="t-3", event_type="MISSED_CALL", workflow_definition_id="wf_old", is_active=False
    ))

    found = await repo.list_active("MISSED_CALL")

    assert [t.id for t in found] == ["t-2", "t-1"]
    assert found[0].condition.value == "GOLD"
    assert found[1].condition is None
    assert await repo.list_active("KYC_PENDING") == []


@pytest.mark.asyncio
async def test_entity_context_provider(session_maker):
    provider = SQLAlchemyEntityContextProvider(session_maker)
    assert await provider.get_context(THREAD) == {}

    await provider.save_context(THREAD, {"customer": {"name": "Ravi"}, "delay_days": 2})
    await provider.save_context(THREAD, {"customer": {"name": "Ravi"}, "delay_days": 3})

    assert await provider.get_context(THREAD) == {"customer": {"name": "Ravi"}, "delay_days": 3}
    assert await provider.get_context(EntityRef.of("SHIPMENT", "T-77")) == {}
