import pytest

from commhub.config import Channel
from commhub.workflow.application import NotificationFanOut, OutboundMessage


@pytest.mark.asyncio
async def test_every_recipient_on_every_channel(adapters, recipients):
    fan_out = NotificationFanOut(adapters, recipients)

    summary = await fan_out.notify(
        ["ops_manager", "supervisor"], [Channel.EMAIL, Channel.WHATSAPP], OutboundMessage(body="Heads up")
    )

    assert (summary.sent, summary.failed, summary.skipped) == (4, 0, 0)
    assert sorted(r for r, _ in adapters[Channel.EMAIL].sent) == ["ops@example.com", "sup@example.com"]
    assert sorted(r for r, _ in adapters[Channel.WHATSAPP].sent) == ["+911111111111", "+912222222222"]


@pytest.mark.asyncio
async def test_failed_channel_does_not_block_others(adapters, recipients):
    adapters[Channel.EMAIL].fail = True
    fan_out = NotificationFanOut(adapters, recipients)

    summary = await fan_out.notify(["ops_manager"], ["EMAIL", "SMS", "CALL"], OutboundMessage(body="Late"))

    assert (summary.sent, summary.failed) == (2, 1)
    assert {d["channel"] for d in summary.deliveries} == {"SMS", "CALL"}


@pytest.mark.asyncio
async def test_unknown_recipients_and_missing_adapters_are_skipped(recipients):
    fan_out = NotificationFanOut({}, recipients)

    summary = await fan_out.notify(["ghost", "ops_manager"], [Channel.EMAIL], OutboundMessage(body="x"))

    assert (summary.sent, summary.failed, summary.skipped) == (0, 0, 1)


@pytest.mark.asyncio
async def test_message_factory_tailors_content(adapters, recipients):
    fan_out = NotificationFanOut(adapters, recipients)

    def build(channel, recipient):
        return OutboundMessage(body=f"{channel.value} for {recipient.full_name}")

    await fan_out.notify(["supervisor"], [Channel.EMAIL, Channel.SMS], build)

    assert adapters[Channel.EMAIL].sent[0][1].body == "EMAIL for Lee Park"
    assert adapters[Channel.SMS].sent[0][1].body == "SMS for Lee Park"
