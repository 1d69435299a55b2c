"""
Notification Fan-out
====================

Sends one message to every (recipient × channel) pair as independent tasks.

A failing channel or recipient is logged and counted but never stops the
remaining deliveries. Used by ESCALATE nodes and by the TAT escalation
dispatcher.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from commhub.config import Channel
from commhub.shared.infrastructure.logging import get_logger
from commhub.workflow.application.ports import (
    ChannelSendResult, IChannelAdapter, IRecipientDirectory, OutboundMessage
)
from commhub.workflow.domain import Recipient

logger = get_logger(__name__)

MessageFactory = Callable[[Channel, Recipient], OutboundMessage]


@dataclass
class FanOutSummary:
    """Counts for one fan-out run."""
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    deliveries: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "deliveries": list(self.deliveries),
        }


class NotificationFanOut:
    """
    Deliver a message to recipients over several channels concurrently.

    Example:
        >>> fan_out = NotificationFanOut({Channel.EMAIL: email_adapter}, directory)
        >>> summary = await fan_out.notify(["ops_manager"], [Channel.EMAIL], message)
        >>> summary.sent
        1
    """

    def __init__(
        self,
        channels: Mapping[Channel, IChannelAdapter],
        recipients: IRecipientDirectory
    ):
        self._channels = dict(channels)
        self._recipients = recipients

    async def resolve_recipients(self, recipient_ids: Iterable[str]) -> List[Recipient]:
        """Look up recipients, skipping unknown ids with a warning."""
        resolved = []
        for recipient_id in recipient_ids:
            recipient = await self._recipients.get(recipient_id)
            if recipient is None:
                logger.warning(
                    "Unknown notification recipient, skipping",
                    extra={"recipient_id": recipient_id}
                )
                continue
            resolved.append(recipient)
        return resolved

    async def notify(
        self,
        recipient_ids: Iterable[str],
        channels: Iterable[Channel],
        message: Union[OutboundMessage, MessageFactory],
        log_extra: Optional[Dict[str, object]] = None
    ) -> FanOutSummary:
        """
        Send `message` on every channel to every known recipient.

        `message` may be a factory called per (channel, recipient) so content
        can be tailored to the channel.
        """
        log_extra = dict(log_extra or {})
        recipients = await self.resolve_recipients(recipient_ids)
        summary = FanOutSummary()

        sends = []
        for channel in channels:
            adapter = self._channels.get(Channel(channel))
            for recipient in recipients:
                address = recipient.address_for(Channel(channel))
                if adapter is None or not address:
                    summary.skipped += 1
                    logger.warning(
                        "Cannot reach recipient on channel",
                        extra={
                            **log_extra,
                            "recipient_id": recipient.id,
                            "channel": Channel(channel).value,
                            "reason": "no adapter" if adapter is None else "no address",
                        }
                    )
                    continue
                sends.append((Channel(channel), recipient, address, adapter))

        async def safe_send(
            channel: Channel,
            recipient: Recipient,
            address: str,
            adapter: IChannelAdapter
        ) -> Optional[ChannelSendResult]:
            try:
                outbound = message(channel, recipient) if callable(message) else message
                return await adapter.send(address, outbound)
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    extra={
                        **log_extra,
                        "recipient_id": recipient.id,
                        "channel": channel.value,
                        "error": str(e),
                    }
                )
                return None

        results = await asyncio.gather(
            *[safe_send(*send) for send in sends],
            return_exceptions=True
        )

        for (channel, recipient, _, _), result in zip(sends, results):
            if isinstance(result, ChannelSendResult):
                summary.sent += 1
                summary.deliveries.append({
                    "recipient_id": recipient.id,
                    "channel": channel.value,
                    **result.to_dict(),
                })
            else:
                summary.failed += 1

        return summary
