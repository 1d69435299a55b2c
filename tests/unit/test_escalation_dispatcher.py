from datetime import timedelta

import pytest

from commhub.config import (
    Channel, NotificationPriority, NotificationType, Priority, TATStatus, WorkflowStatus
)
from commhub.core.exceptions import InvalidExtension, TrackedEntityNotFound
from commhub.tat.application import EscalationDispatcher
from commhub.tat.domain import ApproachingDeadline, BreachedDeadline, TrackedEntity
from commhub.tat.infrastructure import (
    InMemoryExtensionRepository,
    InMemoryNotificationLedger,
    InMemoryNotificationRepository,
    InMemoryTrackedEntityRepository,
)
from commhub.workflow.application import NotificationFanOut
from commhub.workflow.domain import EntityRef, EscalationRule

THREAD = EntityRef.of("THREAD", "T-1")


@pytest.fixture
def tracked(clock):
    return InMemoryTrackedEntityRepository([TrackedEntity(entity=THREAD, sla_deadline=clock.now)])


@pytest.fixture
def notifications():
    return InMemoryNotificationRepository()


@pytest.fixture
def extensions():
    return InMemoryExtensionRepository()


@pytest.fixture
def make_dispatcher(tracked, notifications, extensions, adapters, recipients, engine, events, clock):
    def make(**kwargs):
        return EscalationDispatcher(
            tracked_entities=tracked,
            notifications=notifications,
            extensions=extensions,
            fan_out=NotificationFanOut(adapters, recipients),
            engine=engine,
            event_publisher=events,
            frontend_url="https://hub.example.com",
            clock=clock,
            **kwargs,
        )
    return make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


def approaching(clock, entity=THREAD, rule=True):
    return ApproachingDeadline(
        instance_id="inst-1",
        workflow_definition_id="wf_tat",
        workflow_name="Delay Follow-up",
        entity=entity,
        priority=Priority.MEDIUM,
        assigned_to="agent_1",
        started_at=clock.now - timedelta(minutes=85),
        deadline_at=clock.now + timedelta(minutes=15),
        time_remaining=15,
        threshold_percentage=15,
        elapsed_minutes=85,
        escalation_rule=EscalationRule(
            after_minutes=80, escalate_to=["ops_manager"], notify_via=[Channel.EMAIL, Channel.SMS]
        ) if rule else None,
    )


def breached(clock, escalation_workflow_id="wf_escalation"):
    return BreachedDeadline(
        instance_id="inst-2",
        workflow_definition_id="wf_tat",
        workflow_name="Delay Follow-up",
        entity=THREAD,
        priority=Priority.HIGH,
        assigned_to="agent_1",
        started_at=clock.now - timedelta(minutes=130),
        deadline_at=clock.now - timedelta(minutes=30),
        overdue_minutes=30,
        elapsed_minutes=130,
        escalation_rule=EscalationRule(
            after_minutes=100, escalate_to=["supervisor"], notify_via=[Channel.EMAIL]
        ),
        escalation_workflow_id=escalation_workflow_id,
    )


# ========== Approaching ==========

@pytest.mark.asyncio
async def test_approaching_marks_at_risk_and_notifies(dispatcher, tracked, notifications, adapters, clock, events):
    result = await dispatcher.dispatch_approaching(approaching(clock))

    assert result.status_updated
    assert (await tracked.get(THREAD)).tat_status == TATStatus.AT_RISK

    notification = notifications.notifications[0]
    assert notification.user_id == "agent_1"
    assert notification.type == NotificationType.SLA_WARNING
    assert notification.priority == NotificationPriority.HIGH
    assert notification.title == "TAT Warning: Delay Follow-up"
    assert notification.message == "THREAD approaching deadline in 15 minutes"
    assert notification.action_url == "https://hub.example.com/workflows/inst-1"
    assert result.notification_id == notification.id

    assert (result.sent, result.failed) == (2, 0)
    recipient, email = adapters[Channel.EMAIL].sent[0]
    assert recipient == "ops@example.com"
    assert email.subject == "TAT Warning: Delay Follow-up"
    assert email.body.startswith("Hi Asha Rao,")
    assert "15 minutes (15% of TAT)" in email.body
    assert adapters[Channel.SMS].sent[0][1].body.startswith("TAT Warning: Delay Follow-up")

    assert events.of_type("tat.status.updated")[0]["status"] == "AT_RISK"


@pytest.mark.asyncio
async def test_untracked_entity_still_notifies(dispatcher, notifications, clock):
    result = await dispatcher.dispatch_approaching(approaching(clock, entity=EntityRef.of("THREAD", "other")))

    assert not result.status_updated
    assert len(notifications.notifications) == 1


@pytest.mark.asyncio
async def test_no_rule_means_no_fan_out(dispatcher, adapters, clock):
    result = await dispatcher.dispatch_approaching(approaching(clock, rule=False))

    assert (result.sent, result.failed) == (0, 0)
    assert all(a.sent == [] for a in adapters.values())


@pytest.mark.asyncio
async def test_channel_failure_is_counted_not_raised(dispatcher, adapters, clock):
    adapters[Channel.SMS].fail = True

    result = await dispatcher.dispatch_approaching(approaching(clock))

    assert (result.sent, result.failed) == (1, 1)


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_reminders(make_dispatcher, notifications, clock):
    dispatcher = make_dispatcher(ledger=InMemoryNotificationLedger(), cooldown_minutes=60)

    first = await dispatcher.dispatch_approaching(approaching(clock))
    clock.now += timedelta(minutes=10)
    second = await dispatcher.dispatch_approaching(approaching(clock))
    clock.now += timedelta(minutes=55)
    third = await dispatcher.dispatch_approaching(approaching(clock))

    assert (first.skipped, second.skipped, third.skipped) == (False, True, False)
    assert len(notifications.notifications) == 2


# ========== Breached ==========

@pytest.mark.asyncio
async def test_breach_escalates(dispatcher, tracked, notifications, adapters, definitions, build_definition, instances, clock):
    await definitions.save(build_definition(
        [{"id": "start", "type": "START"}, {"id": "end", "type": "END"}],
        [("start", "end")],
        definition_id="wf_escalation",
    ))

    result = await dispatcher.dispatch_breached(breached(clock))

    entity = await tracked.get(THREAD)
    assert entity.tat_status == TATStatus.BREACHED
    assert entity.sla_status == "BREACHED"

    notification = notifications.notifications[0]
    assert notification.type == NotificationType.SLA_BREACH
    assert notification.priority == NotificationPriority.CRITICAL
    assert notification.message == "THREAD overdue by 30 minutes"

    recipient, email = adapters[Channel.EMAIL].sent[0]
    assert recipient == "sup@example.com"
    assert "BREACHED TAT by 30 minutes" in email.body

    escalation = await instances.get(result.escalation_instance_id)
    assert escalation.workflow_definition_id == "wf_escalation"
    assert escalation.status == WorkflowStatus.COMPLETED
    assert escalation.priority == Priority.HIGH
    assert escalation.context == {
        "original_instance_id": "inst-2",
        "breach_time": clock.now.isoformat(),
        "overdue_minutes": 30,
    }


@pytest.mark.asyncio
async def test_missing_escalation_workflow_is_logged(dispatcher, notifications, clock):
    result = await dispatcher.dispatch_breached(breached(clock, escalation_workflow_id="wf_missing"))

    assert result.escalation_instance_id is None
    assert len(notifications.notifications) == 1


@pytest.mark.asyncio
async def test_breach_without_escalation_workflow(dispatcher, instances, clock):
    result = await dispatcher.dispatch_breached(breached(clock, escalation_workflow_id=None))

    assert result.escalation_instance_id is None
    assert await instances.list_all() == []


# ========== Status and extensions ==========

@pytest.mark.asyncio
async def test_update_status_of_untracked_entity(dispatcher):
    with pytest.raises(TrackedEntityNotFound):
        await dispatcher.update_tat_status(EntityRef.of("SHIPMENT", "SHP-9"), TATStatus.AT_RISK)


@pytest.mark.asyncio
async def test_extend_deadline(dispatcher, tracked, extensions, clock, events):
    await dispatcher.update_tat_status(THREAD, TATStatus.BREACHED)

    extension = await dispatcher.extend_tat_deadline(THREAD, 120, "Customer requested more time")

    entity = await tracked.get(THREAD)
    assert entity.sla_deadline == clock.now + timedelta(minutes=120)
    assert entity.tat_status == TATStatus.ON_TRACK
    assert extension.old_deadline == clock.now
    assert extension.new_deadline == clock.now + timedelta(minutes=120)
    assert extension.reason == "Customer requested more time"
    assert await extensions.list_for_entity(THREAD) == [extension]
    assert events.of_type("tat.deadline.extended")[0]["extension_minutes"] == 120


@pytest.mark.asyncio
async def test_extension_without_deadline_counts_from_now(make_dispatcher, tracked, clock):
    other = EntityRef.of("SHIPMENT", "SHP-5")
    await tracked.save(TrackedEntity(entity=other))

    extension = await make_dispatcher().extend_tat_deadline(other, 30, "")

    assert extension.new_deadline == clock.now + timedelta(minutes=30)


@pytest.mark.asyncio
@pytest.mark.parametrize("minutes", [0, -10])
async def test_extension_must_be_positive(dispatcher, minutes):
    with pytest.raises(InvalidExtension):
        await dispatcher.extend_tat_deadline(THREAD, minutes, "oops")


@pytest.mark.asyncio
async def test_extend_untracked_entity(dispatcher):
    with pytest.raises(TrackedEntityNotFound):
        await dispatcher.extend_tat_deadline(EntityRef.of("CUSTOMER", "C-1"), 60, "")
