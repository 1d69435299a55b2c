import logging
from datetime import timedelta

import pytest
import pytest_asyncio

from commhub.config import Channel, Priority, WorkflowStatus
from commhub.tat.services import SLACheckWorker
from commhub.tat.application import DeadlineMonitor, EscalationDispatcher
from commhub.tat.infrastructure import (
    InMemoryExtensionRepository,
    InMemoryNotificationRepository,
    InMemoryTrackedEntityRepository,
    TATScheduler,
)
from commhub.workflow.application import NotificationFanOut
from commhub.workflow.domain import EntityRef, WorkflowInstance
from commhub.workflow.infrastructure import InMemoryInstanceRepository


class PickyNotificationRepository(InMemoryNotificationRepository):
    """Refuses notifications for one user."""

    async def create(self, notification):
        if notification.user_id == "broken_user":
            raise RuntimeError("notification store unavailable")
        return await super().create(notification)


class UnavailableInstanceRepository(InMemoryInstanceRepository):
    async def list_active(self, statuses, started_after=None, started_before=None):
        raise RuntimeError("database unavailable")


@pytest_asyncio.fixture
async def tat_definitions(definitions, build_definition):
    await definitions.save(build_definition(
        [{"id": "start", "type": "START"}],
        definition_id="wf_tat",
        name="Delay Follow-up",
        slaConfig={
            "resolutionTimeMinutes": 100,
            "escalationRules": [{"afterMinutes": 80, "escalateTo": ["ops_manager"], "notifyVia": ["EMAIL"]}],
        },
    ))
    return definitions


@pytest.fixture
def add_instance(instances, clock):
    async def add(minutes_ago, assigned_to="agent_1"):
        instance = WorkflowInstance(
            workflow_definition_id="wf_tat",
            workflow_version=1,
            entity=EntityRef.of("THREAD", "T-1"),
            status=WorkflowStatus.IN_PROGRESS,
            priority=Priority.MEDIUM,
            assigned_to=assigned_to,
            started_at=clock.now - timedelta(minutes=minutes_ago),
        )
        await instances.create(instance)
        return instance
    return add


@pytest.fixture
def make_worker(tat_definitions, adapters, recipients, events, clock):
    def make(instances, notifications=None):
        dispatcher = EscalationDispatcher(
            tracked_entities=InMemoryTrackedEntityRepository(),
            notifications=notifications or InMemoryNotificationRepository(),
            extensions=InMemoryExtensionRepository(),
            fan_out=NotificationFanOut(adapters, recipients),
            clock=clock,
        )
        monitor = DeadlineMonitor(instances, tat_definitions, lookback_days=7, clock=clock)
        return SLACheckWorker(monitor, dispatcher, event_publisher=events, clock=clock)
    return make


@pytest.mark.asyncio
async def test_check_summarises_pass(make_worker, instances, add_instance, events, clock, adapters):
    await add_instance(90)
    await add_instance(120)
    await add_instance(10)

    summary = await make_worker(instances).check_deadlines()

    assert summary == {"checked": 2, "warnings": 1, "escalations": 1, "failures": 0}
    assert len(adapters[Channel.EMAIL].sent) == 2
    published = events.of_type("sla.check.completed")
    assert published == [{**summary, "timestamp": clock.now.isoformat()}]


@pytest.mark.asyncio
async def test_failed_item_does_not_stop_the_pass(make_worker, instances, add_instance):
    await add_instance(90, assigned_to="broken_user")
    await add_instance(120)

    notifications = PickyNotificationRepository()
    summary = await make_worker(instances, notifications).check_deadlines()

    assert summary == {"checked": 2, "warnings": 0, "escalations": 1, "failures": 1}
    assert [n.user_id for n in notifications.notifications] == ["agent_1"]


@pytest.mark.asyncio
async def test_each_pass_logs_under_its_own_correlation_id(make_worker, instances, add_instance, caplog):
    caplog.set_level(logging.INFO, logger="commhub.tat.services")
    await add_instance(90)
    worker = make_worker(instances)

    await worker.check_deadlines()
    await worker.check_deadlines()

    ids = [
        r.correlation_id for r in caplog.records
        if r.getMessage() == "TAT deadline check completed"
    ]
    assert len(ids) == 2
    assert all(i.startswith("tat-check-") for i in ids)
    assert ids[0] != ids[1]


@pytest.mark.asyncio
async def test_query_failure_aborts_check_but_not_run(make_worker, events):
    worker = make_worker(UnavailableInstanceRepository())

    with pytest.raises(RuntimeError):
        await worker.check_deadlines()

    await worker.run()
    assert events.of_type("sla.check.completed") == []


@pytest.mark.asyncio
async def test_scheduler_registers_single_interval_job():
    calls = []

    async def job():
        calls.append(1)

    scheduler = TATScheduler(interval_seconds=30)
    await scheduler.start(job)
    try:
        assert scheduler.is_running
        registered = scheduler._scheduler.get_job("tat_deadline_check")
        assert registered.max_instances == 1
        assert registered.coalesce
        assert registered.trigger.interval == timedelta(seconds=30)

        await scheduler.start(job)
        assert len(scheduler._scheduler.get_jobs()) == 1
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
