"""
Workflow Event Triggers
=======================

Starts workflows automatically from platform events.

For each incoming event the active triggers of its type are evaluated in
priority order; every trigger whose condition holds starts its workflow
against the event's entity, with the event data as initial context. A
trigger that fails to start is logged and recorded, the others still run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from commhub.shared.infrastructure.logging import get_logger
from commhub.workflow.application.ports import IEventPublisher, IEventTriggerRepository
from commhub.workflow.application.services import WorkflowEngine
from commhub.workflow.domain import ContextView, EntityRef, validate_json_object

logger = get_logger(__name__)

WORKFLOW_TRIGGERED = "workflow.triggered"


@dataclass
class TriggerResult:
    """Outcome of handling one platform event."""
    event_type: str
    started: List[str] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "started": list(self.started),
            "unmatched": list(self.unmatched),
            "failed": list(self.failed),
        }


class WorkflowTriggerService:
    """
    Maps platform events to workflow starts.

    Example:
        >>> result = await triggers.handle_event(
        ...     "DOCUMENT_UPLOADED",
        ...     {"document": {"kind": "INVOICE"}, "shipment_id": "SHP-1042"},
        ...     EntityRef.of("SHIPMENT", "SHP-1042"),
        ... )
        >>> result.started
        ['5f0c...']
    """

    def __init__(
        self,
        triggers: IEventTriggerRepository,
        engine: WorkflowEngine,
        event_publisher: Optional[IEventPublisher] = None
    ):
        self._triggers = triggers
        self._engine = engine
        self._event_publisher = event_publisher

    async def handle_event(
        self,
        event_type: str,
        data: Optional[Dict[str, Any]],
        entity: EntityRef,
        priority: Optional[str] = None
    ) -> TriggerResult:
        """
        Start every workflow whose trigger matches the event.

        Args:
            event_type: Platform event name (e.g. "STATUS_CHANGED")
            data: Event payload; becomes the initial context of started workflows
            entity: Business entity the event concerns
            priority: Priority for the started instances

        Returns:
            TriggerResult with started instance ids, unmatched and failed triggers

        Raises:
            ValidationException: The event data is not a JSON object
        """
        data = validate_json_object(data, name="event data")
        result = TriggerResult(event_type=event_type)

        triggers = await self._triggers.list_active(event_type)
        if not triggers:
            logger.debug("No active triggers for event", extra={"event_type": event_type})
            return result

        view = ContextView(data, {})
        for trigger in triggers:
            if not trigger.matches(view):
                result.unmatched.append(trigger.id)
                continue

            try:
                instance = await self._engine.start_workflow(
                    trigger.workflow_definition_id,
                    entity,
                    initial_context=data,
                    priority=priority,
                )
            except Exception as e:
                result.failed.append({"trigger_id": trigger.id, "error": str(e)})
                logger.error(
                    "Triggered workflow failed to start",
                    extra={
                        "event_type": event_type,
                        "trigger_id": trigger.id,
                        "workflow_definition_id": trigger.workflow_definition_id,
                        "error": str(e),
                    }
                )
                continue

            result.started.append(instance.id)
            logger.info(
                "Workflow triggered by event",
                extra={
                    "event_type": event_type,
                    "trigger_id": trigger.id,
                    "instance_id": instance.id,
                    "entity": str(entity),
                }
            )
            await self._publish(event_type, trigger.id, instance.id, entity)

        return result

    async def _publish(self, event_type: str, trigger_id: str, instance_id: str, entity: EntityRef) -> None:
        if self._event_publisher is None:
            return
        try:
            await self._event_publisher.publish(WORKFLOW_TRIGGERED, {
                "event_type": event_type,
                "trigger_id": trigger_id,
                "instance_id": instance_id,
                "entity_type": entity.entity_type.value,
                "entity_id": entity.entity_id,
            })
        except Exception as e:
            logger.error("Failed to publish trigger event", extra={"trigger_id": trigger_id, "error": str(e)})
