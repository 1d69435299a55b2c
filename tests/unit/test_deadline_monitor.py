from datetime import timedelta

import pytest
import pytest_asyncio

from commhub.config import Priority, WorkflowStatus
from commhub.tat.application import DeadlineMonitor
from commhub.workflow.domain import EntityRef, WorkflowInstance

SLA = {
    "resolutionTimeMinutes": 100,
    "escalationRules": [
        {"afterMinutes": 80, "escalateTo": ["ops_manager"], "notifyVia": ["EMAIL"]},
        {"afterMinutes": 100, "escalateTo": ["supervisor"], "notifyVia": ["EMAIL", "SMS"]},
    ],
}


@pytest_asyncio.fixture
async def tat_definitions(definitions, build_definition):
    await definitions.save(build_definition(
        [{"id": "start", "type": "START"}],
        definition_id="wf_tat",
        name="Delay Follow-up",
        slaConfig=SLA,
        escalationWorkflowId="wf_escalation",
    ))
    await definitions.save(build_definition([{"id": "start", "type": "START"}], definition_id="wf_no_sla"))
    return definitions


@pytest.fixture
def add_instance(instances, clock):
    async def add(minutes_ago, status=WorkflowStatus.IN_PROGRESS, priority=Priority.MEDIUM,
                  definition_id="wf_tat", entity_id="T-1"):
        instance = WorkflowInstance(
            workflow_definition_id=definition_id,
            workflow_version=1,
            entity=EntityRef.of("THREAD", entity_id),
            status=status,
            priority=priority,
            assigned_to="agent_1",
            started_at=clock.now - timedelta(minutes=minutes_ago),
        )
        await instances.create(instance)
        return instance
    return add


@pytest.fixture
def monitor(instances, tat_definitions, clock):
    return DeadlineMonitor(instances, tat_definitions, lookback_days=7, clock=clock)


@pytest.mark.asyncio
async def test_approaching_deadline(monitor, add_instance):
    instance = await add_instance(85)

    approaching = await monitor.get_approaching_deadlines()
    breached = await monitor.get_breached_deadlines()

    assert breached == []
    assert len(approaching) == 1
    item = approaching[0]
    assert item.instance_id == instance.id
    assert item.workflow_name == "Delay Follow-up"
    assert item.time_remaining == 15
    assert item.threshold_percentage == 15
    assert item.elapsed_minutes == 85
    assert item.escalation_rule.escalate_to == ["ops_manager"]
    assert item.assigned_to == "agent_1"


@pytest.mark.asyncio
async def test_time_remaining_is_floored(monitor, add_instance):
    await add_instance(85.5)

    item = (await monitor.get_approaching_deadlines())[0]

    assert item.time_remaining == 14
    assert item.threshold_percentage == 14


@pytest.mark.asyncio
async def test_breached_deadline(monitor, add_instance):
    instance = await add_instance(130, status=WorkflowStatus.PAUSED)

    breached = await monitor.get_breached_deadlines()

    assert await monitor.get_approaching_deadlines() == []
    assert [b.instance_id for b in breached] == [instance.id]
    assert breached[0].overdue_minutes == 30
    assert breached[0].escalation_rule.escalate_to == ["supervisor"]
    assert breached[0].escalation_workflow_id == "wf_escalation"


@pytest.mark.asyncio
async def test_exactly_at_deadline_is_breached_with_zero_overdue(monitor, add_instance):
    await add_instance(100)

    breached = await monitor.get_breached_deadlines()

    assert breached[0].overdue_minutes == 0
    assert await monitor.get_approaching_deadlines() == []


@pytest.mark.asyncio
async def test_priority_shortens_deadline(monitor, add_instance):
    await add_instance(45, priority=Priority.HIGH)

    item = (await monitor.get_approaching_deadlines())[0]

    assert item.priority == Priority.HIGH
    assert item.time_remaining == 5
    assert item.threshold_percentage == 10


@pytest.mark.asyncio
async def test_excluded_instances(monitor, add_instance):
    await add_instance(50)
    await add_instance(130, status=WorkflowStatus.COMPLETED)
    await add_instance(130, status=WorkflowStatus.CANCELLED)
    await add_instance(130, definition_id="wf_no_sla")
    await add_instance(130, definition_id="wf_deleted")
    await add_instance(60 * 24 * 10)

    assert await monitor.get_approaching_deadlines() == []
    assert await monitor.get_breached_deadlines() == []


@pytest.mark.asyncio
async def test_explicit_now_overrides_clock(monitor, add_instance, clock):
    await add_instance(50)

    later = clock.now + timedelta(minutes=60)

    breached = await monitor.get_breached_deadlines(later)
    assert breached[0].overdue_minutes == 10
