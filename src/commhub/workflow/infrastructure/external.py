"""
Workflow External Service Integrations
======================================

Adapters for the side-effect ports of the workflow engine:
- Webhook channel adapter (httpx) with circuit breaker and retry
- Logging channel adapter for environments without a provider
- Logging and in-memory event publishers
- APScheduler-backed resume scheduler for DELAY nodes
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from commhub.config import Channel, settings
from commhub.core.exceptions import ChannelSendError
from commhub.shared.infrastructure.logging import get_logger
from commhub.workflow.application.ports import (
    ChannelSendResult,
    IChannelAdapter,
    IEventPublisher,
    IResumeScheduler,
    OutboundMessage,
)

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for a single channel provider.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N consecutive failures, reject requests for M seconds
    - HALF_OPEN: After timeout, allow a trial request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "channel"
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "circuit": self.name,
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookChannelAdapter(IChannelAdapter):
    """
    Channel adapter that posts messages to a provider webhook.

    Handles:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    The provider answers 2xx with an optional JSON body carrying `id`
    (or `external_id`) and `status`.
    """

    def __init__(
        self,
        channel: Channel,
        webhook_url: str,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: float = 1.0
    ):
        self.channel = Channel(channel)
        self._webhook_url = webhook_url
        self._http_client = client
        self._owns_client = client is None
        attempts = settings.channel_max_retries if max_retries is None else max_retries
        self._max_retries = max(1, attempts)
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=settings.channel_failure_threshold,
            recovery_timeout=settings.channel_recovery_timeout_seconds,
            name=self.channel.value
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.channel_timeout_seconds)
        return self._http_client

    def _build_payload(self, recipient: str, message: OutboundMessage) -> Dict[str, Any]:
        payload = {
            "channel": self.channel.value,
            "to": recipient,
            "body": message.body,
            "metadata": message.metadata,
        }
        if message.subject:
            payload["subject"] = message.subject
        if message.cc:
            payload["cc"] = message.cc
        if message.sender:
            payload["from"] = message.sender
        return payload

    async def send(self, recipient: str, message: OutboundMessage) -> ChannelSendResult:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping send",
                extra={"channel": self.channel.value}
            )
            raise ChannelSendError(self.channel.value, "circuit breaker open")

        payload = self._build_payload(recipient, message)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    body = self._parse_body(response)
                    result = ChannelSendResult(
                        external_id=body.get("id") or body.get("external_id"),
                        status=str(body.get("status") or "SENT"),
                    )
                    logger.info(
                        "Channel message sent",
                        extra={
                            "channel": self.channel.value,
                            "external_id": result.external_id,
                            "attempt": attempt + 1
                        }
                    )
                    return result

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Channel webhook returned error status",
                    extra={
                        "channel": self.channel.value,
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    "Channel send failed",
                    extra={
                        "channel": self.channel.value,
                        "error": last_error,
                        "attempt": attempt + 1
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        self._circuit_breaker.record_failure()
        raise ChannelSendError(
            self.channel.value,
            f"delivery failed after {self._max_retries} attempts: {last_error}",
            {"recipient": recipient}
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @property
    def circuit_state(self) -> str:
        return self._circuit_breaker.state

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None


class LoggingChannelAdapter(IChannelAdapter):
    """Channel adapter that only logs; used when no provider is configured."""

    def __init__(self, channel: Channel):
        self.channel = Channel(channel)

    async def send(self, recipient: str, message: OutboundMessage) -> ChannelSendResult:
        external_id = f"log-{uuid4().hex[:12]}"
        logger.info(
            "Channel message (not delivered, no provider configured)",
            extra={
                "channel": self.channel.value,
                "to": recipient,
                "subject": message.subject,
                "external_id": external_id,
            }
        )
        return ChannelSendResult(external_id=external_id, status="LOGGED")

    async def close(self) -> None:
        return None


def build_channel_adapters(webhook_urls: Optional[Dict[str, str]] = None) -> Dict[Channel, IChannelAdapter]:
    """Webhook adapter for every configured channel, logging adapter for the rest."""
    webhook_urls = {k.upper(): v for k, v in (webhook_urls or settings.channel_webhook_urls).items()}
    adapters: Dict[Channel, IChannelAdapter] = {}
    for channel in Channel:
        url = webhook_urls.get(channel.value)
        if url:
            adapters[channel] = WebhookChannelAdapter(channel, url)
        else:
            adapters[channel] = LoggingChannelAdapter(channel)
    return adapters


# ========== Event Publishers ==========

EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class LoggingEventPublisher(IEventPublisher):
    """Writes every event to the structured log."""

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info("Event published", extra={"event_type": event_type, "payload": payload})


class InMemoryEventPublisher(IEventPublisher):
    """
    In-process publisher.

    Keeps every event for inspection and calls subscribed handlers
    concurrently; a failing handler is logged and does not stop delivery.
    """

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self._handlers: List[Tuple[str, EventHandler]] = []
        self._lock = asyncio.Lock()

    async def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe to an exact event type, a `prefix.*` pattern or `*`."""
        async with self._lock:
            self._handlers.append((pattern, handler))

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            self.events.append((event_type, dict(payload)))
            handlers = [h for p, h in self._handlers if self._matches(p, event_type)]

        if not handlers:
            return

        async def safe_call(handler: EventHandler) -> None:
            try:
                await handler(event_type, payload)
            except Exception as e:
                logger.warning(
                    "Event handler failed",
                    extra={"event_type": event_type, "error": str(e)}
                )

        await asyncio.gather(*[safe_call(h) for h in handlers], return_exceptions=True)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [p for t, p in self.events if t == event_type]

    @staticmethod
    def _matches(pattern: str, event_type: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return event_type.startswith(pattern[:-1])
        return pattern == event_type


# ========== Resume Scheduling ==========

class APSchedulerResumeScheduler(IResumeScheduler):
    """
    Schedules DELAY resumption as one-shot APScheduler `date` jobs.

    Jobs live in memory; after a restart `WorkflowEngine.resume_due_workflows`
    picks up instances whose resume time has passed.
    """

    def __init__(
        self,
        resume_callback: Callable[[str], Awaitable[Any]],
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self._resume_callback = resume_callback
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None

    async def start(self) -> None:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Resume scheduler started")

    async def stop(self) -> None:
        if self._scheduler is not None and self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Resume scheduler stopped")

    async def schedule_resume(self, instance_id: str, run_at: datetime) -> None:
        if self._scheduler is None:
            await self.start()

        self._scheduler.add_job(
            self._resume,
            "date",
            run_date=run_at,
            args=[instance_id],
            id=f"workflow_resume:{instance_id}",
            name=f"Resume workflow {instance_id}",
            misfire_grace_time=None,
            replace_existing=True
        )
        logger.info(
            "Workflow resume scheduled",
            extra={"instance_id": instance_id, "run_at": run_at.isoformat()}
        )

    async def _resume(self, instance_id: str) -> None:
        try:
            await self._resume_callback(instance_id)
        except Exception as e:
            logger.error(
                "Scheduled workflow resume failed",
                extra={"instance_id": instance_id, "error": str(e)}
            )

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
