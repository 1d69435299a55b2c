"""
TAT Application Services
========================

Application services for deadline monitoring and escalation.

- DeadlineMonitor: finds active instances approaching or past their TAT
- EscalationDispatcher: reacts to those findings (status, in-app
  notification, channel fan-out, escalation workflow) and handles manual
  deadline extensions

Following SOLID principles:
- Single Responsibility: monitoring never notifies, dispatching never scans
- Dependency Inversion: depend on abstractions (repositories), not concrete implementations
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from commhub.config import (
    ACTIVE_STATUSES,
    Channel,
    NotificationPriority,
    NotificationType,
    TATStatus,
    settings,
)
from commhub.core.exceptions import InvalidExtension, TrackedEntityNotFound
from commhub.shared.infrastructure.logging import get_logger
from commhub.tat.domain import (
    ApproachingDeadline,
    BreachedDeadline,
    ChannelTemplates,
    DeadlineCalculator,
    Notification,
    TATDeadline,
    TATExtension,
    TATPolicy,
    TrackedEntity,
    render,
    select_escalation_rule,
)
from commhub.workflow.application import (
    IDefinitionRepository,
    IEventPublisher,
    IInstanceRepository,
    NotificationFanOut,
    OutboundMessage,
    WorkflowEngine,
)
from commhub.workflow.domain import EntityRef, Recipient, WorkflowDefinition, WorkflowInstance

logger = get_logger(__name__)


# ========== Event Names ==========

TAT_STATUS_UPDATED = "tat.status.updated"
TAT_DEADLINE_EXTENDED = "tat.deadline.extended"

APPROACHING = "approaching"
BREACHED = "breached"


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITrackedEntityRepository(ABC):
    """Interface for TAT-tracked business records."""

    @abstractmethod
    async def get(self, entity: EntityRef) -> Optional[TrackedEntity]:
        """Get tracked record for an entity."""

    @abstractmethod
    async def save(self, tracked: TrackedEntity) -> TrackedEntity:
        """Insert or update a tracked record."""


class INotificationRepository(ABC):
    """Interface for in-app notifications."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Persist a new notification."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[Notification]:
        """Notifications of a user, newest first."""


class IExtensionRepository(ABC):
    """Interface for TAT extension audit records."""

    @abstractmethod
    async def create(self, extension: TATExtension) -> TATExtension:
        """Persist an extension record."""

    @abstractmethod
    async def list_for_entity(self, entity: EntityRef) -> List[TATExtension]:
        """Extensions of an entity, oldest first."""


class INotificationLedger(ABC):
    """Remembers when an instance was last notified, for repeat suppression."""

    @abstractmethod
    async def last_notified(self, instance_id: str, kind: str) -> Optional[datetime]:
        """Last notification time for (instance, kind), if any."""

    @abstractmethod
    async def mark(self, instance_id: str, kind: str, notified_at: datetime) -> None:
        """Record a notification for (instance, kind)."""


class ITATPolicyProvider(ABC):
    """Interface for TAT message policy access."""

    @abstractmethod
    def get_policy(self) -> TATPolicy:
        """Get current TAT policy."""


class StaticTATPolicyProvider(ITATPolicyProvider):
    """Provider returning a fixed policy (defaults unless given)."""

    def __init__(self, policy: Optional[TATPolicy] = None):
        self._policy = policy or TATPolicy()

    def get_policy(self) -> TATPolicy:
        return self._policy


# ========== Deadline Monitor ==========

class DeadlineMonitor:
    """
    Scans active workflow instances against their TAT deadline.

    Only IN_PROGRESS/PAUSED instances started within the lookback window
    are considered. Each call is an independent pass.
    """

    def __init__(
        self,
        instances: IInstanceRepository,
        definitions: IDefinitionRepository,
        lookback_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._instances = instances
        self._definitions = definitions
        self._lookback = timedelta(days=lookback_days or settings.tat_lookback_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_approaching_deadlines(self, now: Optional[datetime] = None) -> List[ApproachingDeadline]:
        """Instances with `warning_threshold_at ≤ now < deadline_at`."""
        now = now or self._clock()
        approaching = []

        for instance, definition, deadline in await self._scan(now):
            if not (deadline.warning_threshold_at <= now < deadline.deadline_at):
                continue

            remaining_seconds = (deadline.deadline_at - now).total_seconds()
            elapsed = (now - instance.started_at).total_seconds() / 60

            approaching.append(ApproachingDeadline(
                instance_id=instance.id,
                workflow_definition_id=definition.id,
                workflow_name=definition.name or "Unknown Workflow",
                entity=instance.entity,
                priority=instance.priority,
                assigned_to=instance.assigned_to,
                started_at=instance.started_at,
                deadline_at=deadline.deadline_at,
                time_remaining=math.floor(remaining_seconds / 60),
                threshold_percentage=round(remaining_seconds / (deadline.total_minutes * 60) * 100),
                elapsed_minutes=elapsed,
                escalation_rule=select_escalation_rule(definition.sla_config.escalation_rules, elapsed),
            ))

        logger.info("Approaching deadlines found", extra={"count": len(approaching)})
        return approaching

    async def get_breached_deadlines(self, now: Optional[datetime] = None) -> List[BreachedDeadline]:
        """Instances with `now ≥ deadline_at`; overdue minutes are never negative."""
        now = now or self._clock()
        breached = []

        for instance, definition, deadline in await self._scan(now):
            if now < deadline.deadline_at:
                continue

            elapsed = (now - instance.started_at).total_seconds() / 60
            overdue = math.floor((now - deadline.deadline_at).total_seconds() / 60)

            breached.append(BreachedDeadline(
                instance_id=instance.id,
                workflow_definition_id=definition.id,
                workflow_name=definition.name or "Unknown Workflow",
                entity=instance.entity,
                priority=instance.priority,
                assigned_to=instance.assigned_to,
                started_at=instance.started_at,
                deadline_at=deadline.deadline_at,
                overdue_minutes=max(0, overdue),
                elapsed_minutes=elapsed,
                escalation_rule=select_escalation_rule(definition.sla_config.escalation_rules, elapsed),
                escalation_workflow_id=definition.escalation_workflow_id,
            ))

        logger.info("Breached deadlines found", extra={"count": len(breached)})
        return breached

    async def _scan(
        self,
        now: datetime
    ) -> List[Tuple[WorkflowInstance, WorkflowDefinition, TATDeadline]]:
        """Active instances in the window, with their definition and deadline."""
        instances = await self._instances.list_active(
            ACTIVE_STATUSES,
            started_after=now - self._lookback,
            started_before=now,
        )

        definitions: Dict[Tuple[str, int], Optional[WorkflowDefinition]] = {}
        results = []

        for instance in instances:
            if instance.is_terminal or instance.started_at is None:
                continue

            key = (instance.workflow_definition_id, instance.workflow_version)
            if key not in definitions:
                definitions[key] = await self._definitions.get(*key)
            definition = definitions[key]

            if definition is None:
                logger.warning(
                    "Definition of active instance not found, skipping",
                    extra={"instance_id": instance.id, "workflow_definition_id": key[0], "version": key[1]}
                )
                continue
            if definition.sla_config is None or not definition.sla_config.is_valid:
                logger.debug(
                    "Definition without valid SLA config, skipping",
                    extra={"instance_id": instance.id, "workflow_definition_id": definition.id}
                )
                continue

            deadline = DeadlineCalculator.calculate_deadline(
                instance.started_at, definition.sla_config, instance.priority
            )
            results.append((instance, definition, deadline))

        return results


# ========== Escalation Dispatcher ==========

@dataclass
class DispatchResult:
    """What the dispatcher did for one monitor finding."""
    instance_id: str
    kind: str
    skipped: bool = False
    status_updated: bool = False
    notification_id: Optional[str] = None
    sent: int = 0
    failed: int = 0
    escalation_instance_id: Optional[str] = None


class EscalationDispatcher:
    """
    Acts on approaching and breached deadlines.

    Channel delivery failures are logged and counted; they never abort the
    dispatch of the item.
    """

    def __init__(
        self,
        tracked_entities: ITrackedEntityRepository,
        notifications: INotificationRepository,
        extensions: IExtensionRepository,
        fan_out: NotificationFanOut,
        engine: Optional[WorkflowEngine] = None,
        policy_provider: Optional[ITATPolicyProvider] = None,
        event_publisher: Optional[IEventPublisher] = None,
        ledger: Optional[INotificationLedger] = None,
        cooldown_minutes: Optional[int] = None,
        frontend_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._tracked = tracked_entities
        self._notifications = notifications
        self._extensions = extensions
        self._fan_out = fan_out
        self._engine = engine
        self._policy_provider = policy_provider or StaticTATPolicyProvider()
        self._event_publisher = event_publisher
        self._ledger = ledger
        self._cooldown_minutes = (
            cooldown_minutes if cooldown_minutes is not None
            else settings.tat_notification_cooldown_minutes
        )
        self._frontend_url = frontend_url or settings.frontend_url
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ========== Monitor Findings ==========

    async def dispatch_approaching(
        self,
        item: ApproachingDeadline,
        now: Optional[datetime] = None
    ) -> DispatchResult:
        """AT_RISK status, SLA_WARNING notification and reminder fan-out."""
        now = now or self._clock()
        result = DispatchResult(instance_id=item.instance_id, kind=APPROACHING)

        if await self._recently_notified(item.instance_id, APPROACHING, now):
            result.skipped = True
            return result

        policy = self._policy_provider.get_policy()
        fields = self._template_fields(item, policy, now)
        fields.update(time_remaining=item.time_remaining, threshold_percentage=item.threshold_percentage)

        result.status_updated = await self._try_update_status(item.entity, TATStatus.AT_RISK)

        if item.assigned_to:
            notification = await self._notifications.create(Notification(
                user_id=item.assigned_to,
                type=NotificationType.SLA_WARNING,
                title=render(policy.reminder.title, **fields),
                message=render(policy.reminder.notification, **fields),
                entity=item.entity,
                priority=NotificationPriority.HIGH,
                action_url=fields["action_url"],
                created_at=now,
            ))
            result.notification_id = notification.id

        if item.escalation_rule and item.escalation_rule.notify_via:
            summary = await self._fan_out.notify(
                item.escalation_rule.escalate_to,
                item.escalation_rule.notify_via,
                self._message_factory(policy.reminder, fields, item.instance_id, APPROACHING),
                log_extra={"instance_id": item.instance_id, "kind": APPROACHING},
            )
            result.sent, result.failed = summary.sent, summary.failed

        await self._mark_notified(item.instance_id, APPROACHING, now)

        logger.info(
            "TAT warning dispatched",
            extra={
                "instance_id": item.instance_id,
                "time_remaining": item.time_remaining,
                "sent": result.sent,
                "failed": result.failed,
            }
        )
        return result

    async def dispatch_breached(
        self,
        item: BreachedDeadline,
        now: Optional[datetime] = None
    ) -> DispatchResult:
        """BREACHED status, SLA_BREACH notification, escalation fan-out and workflow."""
        now = now or self._clock()
        result = DispatchResult(instance_id=item.instance_id, kind=BREACHED)

        if await self._recently_notified(item.instance_id, BREACHED, now):
            result.skipped = True
            return result

        policy = self._policy_provider.get_policy()
        fields = self._template_fields(item, policy, now)
        fields.update(overdue_minutes=item.overdue_minutes)

        result.status_updated = await self._try_update_status(item.entity, TATStatus.BREACHED)

        if item.assigned_to:
            notification = await self._notifications.create(Notification(
                user_id=item.assigned_to,
                type=NotificationType.SLA_BREACH,
                title=render(policy.escalation.title, **fields),
                message=render(policy.escalation.notification, **fields),
                entity=item.entity,
                priority=NotificationPriority.CRITICAL,
                action_url=fields["action_url"],
                created_at=now,
            ))
            result.notification_id = notification.id

        if item.escalation_rule and item.escalation_rule.notify_via:
            summary = await self._fan_out.notify(
                item.escalation_rule.escalate_to,
                item.escalation_rule.notify_via,
                self._message_factory(policy.escalation, fields, item.instance_id, BREACHED),
                log_extra={"instance_id": item.instance_id, "kind": BREACHED},
            )
            result.sent, result.failed = summary.sent, summary.failed

        if item.escalation_workflow_id:
            result.escalation_instance_id = await self._start_escalation_workflow(item, now)

        await self._mark_notified(item.instance_id, BREACHED, now)

        logger.info(
            "TAT breach dispatched",
            extra={
                "instance_id": item.instance_id,
                "overdue_minutes": item.overdue_minutes,
                "sent": result.sent,
                "failed": result.failed,
                "escalation_instance_id": result.escalation_instance_id,
            }
        )
        return result

    # ========== TAT Status ==========

    async def update_tat_status(self, entity: EntityRef, status: TATStatus) -> TrackedEntity:
        """
        Set the TAT status of a tracked entity.

        Raises:
            TrackedEntityNotFound: If the entity is not tracked
        """
        tracked = await self._tracked.get(entity)
        if tracked is None:
            raise TrackedEntityNotFound(entity.entity_type.value, entity.entity_id)

        tracked.set_tat_status(status, timestamp=self._clock())
        await self._tracked.save(tracked)

        logger.info("TAT status updated", extra={"entity": str(entity), "status": tracked.tat_status.value})
        await self._publish(TAT_STATUS_UPDATED, {
            "entity_type": entity.entity_type.value,
            "entity_id": entity.entity_id,
            "status": tracked.tat_status.value,
            "updated_at": tracked.updated_at.isoformat(),
        })
        return tracked

    async def extend_tat_deadline(
        self,
        entity: EntityRef,
        extension_minutes: float,
        reason: str
    ) -> TATExtension:
        """
        Push back an entity's SLA deadline and reset it to ON_TRACK.

        Raises:
            InvalidExtension: If extension_minutes is not positive
            TrackedEntityNotFound: If the entity is not tracked
        """
        if extension_minutes is None or extension_minutes <= 0:
            raise InvalidExtension("Extension minutes must be positive", {"extension_minutes": extension_minutes})

        tracked = await self._tracked.get(entity)
        if tracked is None:
            raise TrackedEntityNotFound(entity.entity_type.value, entity.entity_id)

        extension = tracked.extend_deadline(extension_minutes, timestamp=self._clock())
        extension.reason = reason
        await self._tracked.save(tracked)
        await self._extensions.create(extension)

        logger.info(
            "TAT deadline extended",
            extra={
                "entity": str(entity),
                "extension_minutes": extension_minutes,
                "old_deadline": extension.old_deadline.isoformat(),
                "new_deadline": extension.new_deadline.isoformat(),
                "reason": reason,
            }
        )
        await self._publish(TAT_DEADLINE_EXTENDED, extension.to_dict())
        return extension

    # ========== Helpers ==========

    async def _try_update_status(self, entity: EntityRef, status: TATStatus) -> bool:
        """Status update for monitor findings; untracked entities are not an error."""
        try:
            await self.update_tat_status(entity, status)
            return True
        except TrackedEntityNotFound:
            logger.debug("Entity has no TAT record, status not updated", extra={"entity": str(entity)})
            return False

    async def _start_escalation_workflow(self, item: BreachedDeadline, now: datetime) -> Optional[str]:
        if self._engine is None:
            logger.warning(
                "Escalation workflow configured but no engine available",
                extra={"instance_id": item.instance_id}
            )
            return None
        try:
            instance = await self._engine.start_workflow(
                item.escalation_workflow_id,
                item.entity,
                initial_context={
                    "original_instance_id": item.instance_id,
                    "breach_time": now.isoformat(),
                    "overdue_minutes": item.overdue_minutes,
                },
                priority=item.priority.value,
                assigned_to=item.assigned_to,
            )
        except Exception as e:
            logger.error(
                "Failed to start escalation workflow",
                extra={
                    "instance_id": item.instance_id,
                    "escalation_workflow_id": item.escalation_workflow_id,
                    "error": str(e),
                }
            )
            return None

        logger.info(
            "Escalation workflow started",
            extra={
                "instance_id": item.instance_id,
                "escalation_workflow_id": item.escalation_workflow_id,
                "escalation_instance_id": instance.id,
            }
        )
        return instance.id

    def _template_fields(self, item: Any, policy: TATPolicy, now: datetime) -> Dict[str, Any]:
        return {
            "workflow_name": item.workflow_name,
            "entity_type": item.entity.entity_type.value,
            "entity_id": item.entity.entity_id,
            "started_at": item.started_at.isoformat(),
            "checked_at": now.isoformat(),
            "action_url": policy.action_url(self._frontend_url, item.instance_id),
        }

    @staticmethod
    def _message_factory(
        templates: ChannelTemplates,
        fields: Dict[str, Any],
        instance_id: str,
        kind: str
    ) -> Callable[[Channel, Recipient], OutboundMessage]:
        def build(channel: Channel, recipient: Recipient) -> OutboundMessage:
            values = {**fields, "recipient_name": recipient.full_name or recipient.id}
            return OutboundMessage(
                subject=render(templates.email_subject, **values) if channel == Channel.EMAIL else None,
                body=render(templates.for_channel(channel), **values),
                metadata={"instance_id": instance_id, "kind": kind},
            )
        return build

    async def _recently_notified(self, instance_id: str, kind: str, now: datetime) -> bool:
        if self._ledger is None or not self._cooldown_minutes:
            return False
        last = await self._ledger.last_notified(instance_id, kind)
        if last is not None and now - last < timedelta(minutes=self._cooldown_minutes):
            logger.info(
                "Notification suppressed by cooldown",
                extra={"instance_id": instance_id, "kind": kind, "last_notified": last.isoformat()}
            )
            return True
        return False

    async def _mark_notified(self, instance_id: str, kind: str, now: datetime) -> None:
        if self._ledger is not None:
            await self._ledger.mark(instance_id, kind, now)

    async def _publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self._event_publisher is None:
            return
        try:
            await self._event_publisher.publish(event_type, payload)
        except Exception as e:
            logger.error("Failed to publish TAT event", extra={"event_type": event_type, "error": str(e)})
