"""
TAT Services
============

Periodic TAT check that coordinates the deadline monitor and the
escalation dispatcher.

Run by TATScheduler on an interval; each run is an independent pass.
"""

from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from commhub.shared.infrastructure.logging import get_context_logger, get_logger, log_latency
from commhub.tat.application.services import DeadlineMonitor, EscalationDispatcher
from commhub.workflow.application import IEventPublisher

logger = get_logger(__name__)

SLA_CHECK_COMPLETED = "sla.check.completed"


class SLACheckWorker:
    """
    Evaluates TAT deadlines for all active workflow instances.

    This service:
    1. Queries instances approaching their deadline
    2. Queries instances past their deadline
    3. Dispatches warnings and escalations, one item at a time
    4. Publishes a summary event

    A failure while dispatching one item is counted and logged; the
    remaining items are still processed. A failure while querying aborts
    the pass.
    """

    def __init__(
        self,
        monitor: DeadlineMonitor,
        dispatcher: EscalationDispatcher,
        event_publisher: Optional[IEventPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._monitor = monitor
        self._dispatcher = dispatcher
        self._event_publisher = event_publisher
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def check_deadlines(self, now: Optional[datetime] = None) -> dict:
        """
        Run one TAT check pass.

        Returns:
            Summary with checked, warnings, escalations and failures counts
        """
        now = now or self._clock()
        log = get_context_logger(__name__, f"tat-check-{uuid4().hex[:12]}")
        log.info("Starting TAT deadline check", extra={"checked_at": now.isoformat()})

        approaching = await self._monitor.get_approaching_deadlines(now)
        breached = await self._monitor.get_breached_deadlines(now)

        warnings = 0
        escalations = 0
        failures = 0

        for item in approaching:
            try:
                result = await self._dispatcher.dispatch_approaching(item, now)
                if not result.skipped:
                    warnings += 1
            except Exception as e:
                failures += 1
                log.error(
                    "Failed to dispatch TAT warning",
                    extra={"instance_id": item.instance_id, "error": str(e)}
                )

        for item in breached:
            try:
                result = await self._dispatcher.dispatch_breached(item, now)
                if not result.skipped:
                    escalations += 1
            except Exception as e:
                failures += 1
                log.error(
                    "Failed to dispatch TAT escalation",
                    extra={"instance_id": item.instance_id, "error": str(e)}
                )

        summary = {
            "checked": len(approaching) + len(breached),
            "warnings": warnings,
            "escalations": escalations,
            "failures": failures,
        }
        log.info("TAT deadline check completed", extra=summary)

        if self._event_publisher is not None:
            try:
                await self._event_publisher.publish(
                    SLA_CHECK_COMPLETED, {**summary, "timestamp": now.isoformat()}
                )
            except Exception as e:
                log.error("Failed to publish check summary", extra={"error": str(e)})

        return summary

    async def run(self) -> None:
        """Scheduler job entry point; a failed pass is logged and retried next interval."""
        try:
            with log_latency(logger, "tat_deadline_check"):
                await self.check_deadlines()
        except Exception as e:
            logger.error("TAT deadline check failed", extra={"error": str(e)})
