"""Shared fixtures for the workflow and TAT test suites."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from commhub.config import Channel, DefinitionStatus
from commhub.core.exceptions import ChannelSendError
from commhub.workflow.application import (
    ChannelSendResult,
    IChannelAdapter,
    IResumeScheduler,
    OutboundMessage,
    WorkflowEngine,
    build_default_registry,
)
from commhub.workflow.domain import Recipient, WorkflowDefinition
from commhub.workflow.infrastructure import (
    InMemoryDefinitionRepository,
    InMemoryEventPublisher,
    InMemoryInstanceRepository,
    InMemoryRecipientDirectory,
    InMemoryTaskSink,
    StaticEntityContextProvider,
)

T0 = datetime(2026, 2, 6, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock passed to services instead of datetime.now."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingAdapter(IChannelAdapter):
    """Channel adapter that records sends; can be told to fail or to take its time."""

    def __init__(self, channel: Channel, fail: bool = False, delay: float = 0):
        self.channel = channel
        self.fail = fail
        self.delay = delay
        self.sent: List[Tuple[str, OutboundMessage]] = []

    async def send(self, recipient: str, message: OutboundMessage) -> ChannelSendResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ChannelSendError(self.channel.value, "provider unavailable")
        self.sent.append((recipient, message))
        return ChannelSendResult(external_id=f"{self.channel.value.lower()}-{len(self.sent)}", status="SENT")


class RecordingResumeScheduler(IResumeScheduler):
    def __init__(self):
        self.scheduled: List[Tuple[str, datetime]] = []

    async def schedule_resume(self, instance_id: str, run_at: datetime) -> None:
        self.scheduled.append((instance_id, run_at))


def make_definition(
    nodes: List[Dict[str, Any]],
    edges: Optional[List[Tuple[str, str]]] = None,
    definition_id: str = "wf_test",
    **kwargs: Any
) -> WorkflowDefinition:
    """Build an ACTIVE definition from node dicts and (source, target) pairs."""
    data = {
        "id": definition_id,
        "name": kwargs.pop("name", "Test Workflow"),
        "status": kwargs.pop("status", DefinitionStatus.ACTIVE),
        "nodes": nodes,
        "edges": [{"source": s, "target": t} for s, t in (edges or [])],
    }
    data.update(kwargs)
    return WorkflowDefinition.model_validate(data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adapters():
    return {channel: RecordingAdapter(channel) for channel in Channel}


@pytest.fixture
def recipients():
    return InMemoryRecipientDirectory([
        Recipient(id="ops_manager", full_name="Asha Rao", email="ops@example.com", phone="+911111111111"),
        Recipient(id="supervisor", full_name="Lee Park", email="sup@example.com", phone="+912222222222"),
        Recipient(id="no_phone", full_name="Mail Only", email="mail@example.com"),
    ])


@pytest.fixture
def task_sink():
    return InMemoryTaskSink()


@pytest.fixture
def definitions():
    return InMemoryDefinitionRepository()


@pytest.fixture
def instances():
    return InMemoryInstanceRepository()


@pytest.fixture
def events():
    return InMemoryEventPublisher()


@pytest.fixture
def resume_scheduler():
    return RecordingResumeScheduler()


@pytest.fixture
def context_provider():
    return StaticEntityContextProvider()


@pytest.fixture
def engine(definitions, instances, adapters, task_sink, recipients, context_provider,
           resume_scheduler, events, clock):
    return WorkflowEngine(
        definitions=definitions,
        instances=instances,
        registry=build_default_registry(adapters, task_sink, recipients),
        context_provider=context_provider,
        resume_scheduler=resume_scheduler,
        event_publisher=events,
        clock=clock,
    )


@pytest.fixture
def build_definition():
    return make_definition
