import json

import httpx
import pytest

from commhub.config import Channel
from commhub.core.exceptions import ChannelSendError
from commhub.workflow.infrastructure import (
    CircuitBreaker,
    CircuitState,
    InMemoryEventPublisher,
    LoggingChannelAdapter,
    WebhookChannelAdapter,
    build_channel_adapters,
)
from commhub.workflow.application import OutboundMessage


def _adapter(handler, channel=Channel.SMS, max_retries=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookChannelAdapter(
        channel, "https://provider.example.com/send", client=client,
        max_retries=max_retries, retry_base_delay=0
    )


@pytest.mark.asyncio
async def test_webhook_send_success():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "msg-1", "status": "QUEUED"})

    adapter = _adapter(handler, channel=Channel.EMAIL)
    result = await adapter.send(
        "ops@example.com", OutboundMessage(body="Body", subject="Subject", metadata={"node_id": "n1"})
    )

    assert result.external_id == "msg-1"
    assert result.status == "QUEUED"
    assert requests == [{
        "channel": "EMAIL",
        "to": "ops@example.com",
        "body": "Body",
        "subject": "Subject",
        "metadata": {"node_id": "n1"},
    }]


@pytest.mark.asyncio
async def test_webhook_retries_then_succeeds():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(202)

    adapter = _adapter(handler)
    result = await adapter.send("+911234567890", OutboundMessage(body="Hi"))

    assert calls["n"] == 3
    assert result.status == "SENT"
    assert result.external_id is None
    assert adapter.circuit_state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_webhook_gives_up_after_max_retries():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    adapter = _adapter(handler, max_retries=2)
    with pytest.raises(ChannelSendError) as exc:
        await adapter.send("+911234567890", OutboundMessage(body="Hi"))

    assert calls["n"] == 2
    assert "after 2 attempts" in str(exc.value)


@pytest.mark.asyncio
async def test_zero_retries_means_a_single_attempt():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(503)

    adapter = _adapter(handler, max_retries=0)
    with pytest.raises(ChannelSendError) as exc:
        await adapter.send("+911234567890", OutboundMessage(body="Hi"))

    assert calls["n"] == 1
    assert "after 1 attempts: HTTP 503" in str(exc.value)


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling_provider():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(500)

    adapter = _adapter(handler, max_retries=1)
    adapter._circuit_breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, name="SMS")

    with pytest.raises(ChannelSendError):
        await adapter.send("+91", OutboundMessage(body="Hi"))
    assert adapter.circuit_state == CircuitState.OPEN

    with pytest.raises(ChannelSendError):
        await adapter.send("+91", OutboundMessage(body="Hi"))
    assert calls["n"] == 1


def test_circuit_half_open_failure_reopens():
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60, name="EMAIL")
    breaker._state = CircuitState.HALF_OPEN

    breaker.record_failure()

    assert breaker._state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_logging_adapter_used_without_webhook():
    adapters = build_channel_adapters({"email": "https://provider.example.com/email"})

    assert isinstance(adapters[Channel.EMAIL], WebhookChannelAdapter)
    assert isinstance(adapters[Channel.CALL], LoggingChannelAdapter)

    result = await adapters[Channel.CALL].send("+91", OutboundMessage(body=""))
    assert result.status == "LOGGED"
    await adapters[Channel.EMAIL].close()


@pytest.mark.asyncio
async def test_event_publisher_isolates_handler_failures():
    publisher = InMemoryEventPublisher()
    received = []

    async def failing(event_type, payload):
        raise RuntimeError("boom")

    async def recording(event_type, payload):
        received.append((event_type, payload["instance_id"]))

    await publisher.subscribe("workflow.*", failing)
    await publisher.subscribe("workflow.completed", recording)

    await publisher.publish("workflow.completed", {"instance_id": "i-1"})
    await publisher.publish("tat.status.updated", {"instance_id": "i-2"})

    assert received == [("workflow.completed", "i-1")]
    assert [t for t, _ in publisher.events] == ["workflow.completed", "tat.status.updated"]
