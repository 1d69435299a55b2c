import pytest

from commhub.config import Channel, WorkflowStatus
from commhub.core.exceptions import ValidationException
from commhub.workflow.application import WorkflowTriggerService
from commhub.workflow.domain import EntityRef, WorkflowEventTrigger
from commhub.workflow.infrastructure import InMemoryEventTriggerRepository

SHIPMENT = EntityRef.of("SHIPMENT", "SHP-7")

NOTIFY_CUSTOMER = [
    {"id": "start", "type": "START"},
    {"id": "email", "type": "SEND_EMAIL", "config": {"to": "{{customer.email}}", "subject": "Now {{new_status}}"}},
    {"id": "end", "type": "END"},
]


@pytest.fixture
def triggers():
    return InMemoryEventTriggerRepository()


@pytest.fixture
def service(triggers, engine, events):
    return WorkflowTriggerService(triggers, engine, event_publisher=events)


def _trigger(trigger_id, workflow_id, event_type="STATUS_CHANGED", **kwargs):
    return WorkflowEventTrigger(id=trigger_id, event_type=event_type, workflow_definition_id=workflow_id, **kwargs)


@pytest.mark.asyncio
async def test_matching_trigger_starts_workflow_with_event_data(service, triggers, definitions, build_definition,
                                                                instances, adapters, events):
    await definitions.save(build_definition(
        NOTIFY_CUSTOMER, [("start", "email"), ("email", "end")], definition_id="wf_notify"
    ))
    await triggers.save(_trigger(
        "t-delivered", "wf_notify",
        condition={"field": "new_status", "operator": "equals", "value": "DELIVERED"},
    ))
    data = {"new_status": "DELIVERED", "customer": {"email": "buyer@example.com"}}

    result = await service.handle_event("STATUS_CHANGED", data, SHIPMENT, priority="high")

    assert len(result.started) == 1
    instance = await instances.get(result.started[0])
    assert instance.status == WorkflowStatus.COMPLETED
    assert instance.entity == SHIPMENT
    assert instance.context == data
    assert instance.priority.value == "HIGH"
    recipient, message = adapters[Channel.EMAIL].sent[0]
    assert recipient == "buyer@example.com"
    assert message.subject == "Now DELIVERED"
    assert events.of_type("workflow.triggered") == [{
        "event_type": "STATUS_CHANGED",
        "trigger_id": "t-delivered",
        "instance_id": instance.id,
        "entity_type": "SHIPMENT",
        "entity_id": "SHP-7",
    }]


@pytest.mark.asyncio
async def test_triggers_run_by_priority_and_skip_unmatched(service, triggers, definitions, build_definition, instances):
    await definitions.save(build_definition([{"id": "start", "type": "START"}], definition_id="wf_a"))
    await definitions.save(build_definition([{"id": "start", "type": "START"}], definition_id="wf_b"))
    await triggers.save(_trigger("low", "wf_a", priority=1))
    await triggers.save(_trigger("high", "wf_b", priority=10))
    await triggers.save(_trigger(
        "vip_only", "wf_a", priority=5,
        condition={"field": "customer.tier", "operator": "in", "value": ["GOLD", "PLATINUM"]},
    ))
    await triggers.save(_trigger("inactive", "wf_a", is_active=False))
    await triggers.save(_trigger("other_event", "wf_a", event_type="MISSED_CALL"))

    result = await service.handle_event("STATUS_CHANGED", {"customer": {"tier": "SILVER"}}, SHIPMENT)

    started = [await instances.get(i) for i in result.started]
    assert [i.workflow_definition_id for i in started] == ["wf_b", "wf_a"]
    assert result.unmatched == ["vip_only"]
    assert result.failed == []


@pytest.mark.asyncio
async def test_failing_trigger_does_not_block_others(service, triggers, definitions, build_definition):
    await definitions.save(build_definition([{"id": "start", "type": "START"}], definition_id="wf_ok"))
    await triggers.save(_trigger("missing", "wf_missing", priority=2))
    await triggers.save(_trigger("ok", "wf_ok", priority=1))

    result = await service.handle_event("STATUS_CHANGED", {}, SHIPMENT)

    assert len(result.started) == 1
    assert [f["trigger_id"] for f in result.failed] == ["missing"]
    assert "wf_missing" in result.failed[0]["error"]


@pytest.mark.asyncio
async def test_event_without_triggers(service, instances):
    result = await service.handle_event("KYC_PENDING", {"kyc_pending_days": 3}, EntityRef.of("CUSTOMER", "C-1"))

    assert result.to_dict() == {"event_type": "KYC_PENDING", "started": [], "unmatched": [], "failed": []}
    assert await instances.list_all() == []


@pytest.mark.asyncio
async def test_event_data_must_be_json(service):
    with pytest.raises(ValidationException):
        await service.handle_event("STATUS_CHANGED", {"callback": object()}, SHIPMENT)
