"""
Workflow Application Services
=============================

The workflow engine drives instances through their definition graph.

Following SOLID principles:
- Single Responsibility: node side effects live in executors, the engine
  only applies their results and guards the state machine
- Dependency Inversion: storage, channels, scheduling and events are ports
"""

import asyncio
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from commhub.config import Priority, WorkflowStatus, settings
from commhub.core.exceptions import (
    DefinitionNotFound,
    InstanceNotFound,
    InvalidSlaConfig,
    MissingStartNode,
    NodeExecutionError,
    WorkflowCycleDetected,
)
from commhub.shared.infrastructure.logging import get_context_logger, get_logger
from commhub.workflow.application.executors import (
    ExecutionContext, NodeExecutorRegistry, NodeResult
)
from commhub.workflow.application.ports import (
    IDefinitionRepository,
    IEntityContextProvider,
    IEventPublisher,
    IInstanceRepository,
    IResumeScheduler,
)
from commhub.workflow.domain import (
    EntityRef,
    ExecutionLogEntry,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowNode,
    validate_json_object,
)

logger = get_logger(__name__)


# ========== Event Names ==========

WORKFLOW_STARTED = "workflow.started"
WORKFLOW_PAUSED = "workflow.paused"
WORKFLOW_RESUMED = "workflow.resumed"
WORKFLOW_COMPLETED = "workflow.completed"
WORKFLOW_FAILED = "workflow.failed"
WORKFLOW_CANCELLED = "workflow.cancelled"


class InstanceLockRegistry:
    """
    One asyncio.Lock per workflow instance id.

    Locks are held in a weak-value map so an entry disappears once no
    coroutine is using it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[instance_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class WorkflowEngine:
    """
    Executes workflow instances node by node.

    Execution of a single instance is serialized through a per-instance
    lock; different instances run concurrently.

    Example:
        >>> engine = WorkflowEngine(definitions, instances, registry)
        >>> instance = await engine.start_workflow(
        ...     "shipment_delay_followup", EntityRef.of("SHIPMENT", "SHP-1042")
        ... )
        >>> instance.status
        <WorkflowStatus.COMPLETED: 'COMPLETED'>
    """

    def __init__(
        self,
        definitions: IDefinitionRepository,
        instances: IInstanceRepository,
        registry: NodeExecutorRegistry,
        context_provider: Optional[IEntityContextProvider] = None,
        resume_scheduler: Optional[IResumeScheduler] = None,
        event_publisher: Optional[IEventPublisher] = None,
        max_steps_per_run: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._definitions = definitions
        self._instances = instances
        self._registry = registry
        self._context_provider = context_provider
        self._resume_scheduler = resume_scheduler
        self._event_publisher = event_publisher
        self._max_steps = max_steps_per_run or settings.workflow_max_steps_per_run
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = InstanceLockRegistry()

    def set_resume_scheduler(self, resume_scheduler: IResumeScheduler) -> None:
        """Attach the scheduler after construction (it needs the engine itself)."""
        self._resume_scheduler = resume_scheduler

    # ========== Public Operations ==========

    async def start_workflow(
        self,
        definition_id: str,
        entity: EntityRef,
        initial_context: Optional[Dict[str, Any]] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[str] = None
    ) -> WorkflowInstance:
        """
        Create an instance of the ACTIVE definition and run it.

        Args:
            definition_id: Workflow definition id
            entity: Business entity the workflow runs against
            initial_context: Extra context; its keys win over entity context
            priority: Instance priority (defaults to the configured TAT priority)
            assigned_to: User responsible for the instance

        Returns:
            The instance as left by the first execution run

        Raises:
            DefinitionNotFound: No ACTIVE definition has this id
            MissingStartNode: The definition has no START node
            InvalidSlaConfig: The definition carries an SLA config without a positive resolution time
            ValidationException: The merged context is not a JSON object
        """
        definition = await self._definitions.get_active(definition_id)
        if definition is None:
            raise DefinitionNotFound(definition_id)

        start_node = definition.start_node
        if start_node is None:
            raise MissingStartNode(definition_id)

        if definition.sla_config is not None and not definition.sla_config.is_valid:
            raise InvalidSlaConfig(
                f"Invalid SLA configuration for workflow '{definition_id}': "
                "resolutionTimeMinutes must be positive"
            )

        entity_context: Dict[str, Any] = {}
        if self._context_provider is not None:
            entity_context = await self._context_provider.get_context(entity) or {}
        context = validate_json_object({**entity_context, **(initial_context or {})})

        instance = WorkflowInstance(
            workflow_definition_id=definition.id,
            workflow_version=definition.version,
            entity=entity,
            priority=Priority((priority or settings.tat_default_priority).upper()),
            assigned_to=assigned_to,
            context=context,
            total_steps=len(definition.nodes),
        )
        instance.start(start_node.id, timestamp=self._clock())
        await self._instances.create(instance)

        logger.info(
            "Workflow started",
            extra={
                "instance_id": instance.id,
                "workflow_definition_id": definition.id,
                "workflow_version": definition.version,
                "entity": str(entity),
            }
        )
        await self._publish(WORKFLOW_STARTED, instance)

        return await self.execute_next_node(instance.id)

    async def execute_next_node(self, instance_id: str) -> WorkflowInstance:
        """
        Continue an IN_PROGRESS instance until it pauses or terminates.

        No-op (returns the instance unchanged) for any other status.

        Raises:
            InstanceNotFound: Unknown instance id
        """
        async with self._locks.get(instance_id):
            instance = await self._load(instance_id)
            if instance.status != WorkflowStatus.IN_PROGRESS:
                logger.info(
                    "Instance not in progress, nothing to execute",
                    extra={"instance_id": instance_id, "status": instance.status.value}
                )
                return instance

            await self._run(instance)
            return instance

    async def resume_workflow(self, instance_id: str) -> WorkflowInstance:
        """
        Resume a PAUSED instance and continue execution.

        Status is re-read under the instance lock; anything other than
        PAUSED (e.g. cancelled while waiting) is left untouched.
        """
        async with self._locks.get(instance_id):
            instance = await self._load(instance_id)
            if instance.status != WorkflowStatus.PAUSED:
                logger.info(
                    "Instance not paused, skipping resume",
                    extra={"instance_id": instance_id, "status": instance.status.value}
                )
                return instance

            instance.resume()
            await self._instances.save(instance)
            logger.info("Workflow resumed", extra={"instance_id": instance_id})
            await self._publish(WORKFLOW_RESUMED, instance)

            await self._run(instance)
            return instance

    async def resume_due_workflows(self, now: Optional[datetime] = None) -> List[str]:
        """
        Resume every PAUSED instance whose resume time has passed.

        Covers resume jobs lost with a process restart.

        Returns:
            Ids of the instances that were resumed
        """
        now = now or self._clock()
        paused = await self._instances.list_active([WorkflowStatus.PAUSED])
        due = [i for i in paused if i.resume_at is not None and i.resume_at <= now]

        resumed = []
        for instance in due:
            try:
                await self.resume_workflow(instance.id)
                resumed.append(instance.id)
            except Exception as e:
                logger.error(
                    "Failed to resume due workflow",
                    extra={"instance_id": instance.id, "error": str(e)}
                )

        if resumed:
            logger.info("Resumed due workflows", extra={"count": len(resumed)})
        return resumed

    async def pause_workflow(self, instance_id: str) -> WorkflowInstance:
        """
        Manually pause an IN_PROGRESS instance (no automatic resume).

        Raises:
            InvalidStatusTransition: The instance is not IN_PROGRESS
        """
        async with self._locks.get(instance_id):
            instance = await self._load(instance_id)
            instance.pause(resume_at=None, timestamp=self._clock())
            await self._instances.save(instance)
            logger.info("Workflow paused manually", extra={"instance_id": instance_id})
            await self._publish(WORKFLOW_PAUSED, instance, {"manual": True})
            return instance

    async def cancel_workflow(self, instance_id: str, reason: Optional[str] = None) -> WorkflowInstance:
        """
        Cancel an IN_PROGRESS or PAUSED instance.

        Raises:
            InvalidStatusTransition: The instance is already terminal
        """
        async with self._locks.get(instance_id):
            instance = await self._load(instance_id)
            instance.cancel(timestamp=self._clock())
            if reason:
                instance.variables["cancellation_reason"] = reason
            await self._instances.save(instance)
            logger.info(
                "Workflow cancelled",
                extra={"instance_id": instance_id, "reason": reason}
            )
            await self._publish(WORKFLOW_CANCELLED, instance, {"reason": reason})
            return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        return await self._load(instance_id)

    # ========== Execution Loop ==========

    async def _run(self, instance: WorkflowInstance) -> None:
        """Execute nodes until the instance leaves IN_PROGRESS."""
        log = get_context_logger(__name__, instance.id)
        definition = await self._definitions.get(
            instance.workflow_definition_id, instance.workflow_version
        )
        if definition is None:
            await self._fail(
                instance,
                None,
                f"Workflow definition '{instance.workflow_definition_id}' "
                f"version {instance.workflow_version} not found",
                self._clock(),
                log,
            )
            return

        step_limit = min(len(definition.nodes), self._max_steps)
        visited = set()

        while instance.status == WorkflowStatus.IN_PROGRESS:
            node = definition.get_node(instance.current_node_id)
            started_at = self._clock()

            try:
                if node is None:
                    raise NodeExecutionError(
                        instance.current_node_id or "",
                        f"Node '{instance.current_node_id}' not found in workflow definition"
                    )
                if node.id in visited or len(visited) >= step_limit:
                    raise WorkflowCycleDetected(node.id, len(visited))
                visited.add(node.id)

                log.debug("Executing node", extra={"node_id": node.id, "node_type": node.type})
                result = await self._execute_node(node, instance, definition, log)

                if result.next_node_id is not None and not definition.has_node(result.next_node_id):
                    raise NodeExecutionError(
                        node.id,
                        f"Next node '{result.next_node_id}' not found in workflow definition"
                    )
                output = validate_json_object(result.output, name="node output")
                variables = validate_json_object(result.variables, name="variables")
            except Exception as e:
                await self._fail(instance, node, str(e), started_at, log)
                return

            await self._apply(instance, node, result, output, variables, started_at, log)

    async def _execute_node(
        self,
        node: WorkflowNode,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        log: Any
    ) -> NodeResult:
        executor = self._registry.get(node.type)
        if executor is None:
            log.warning(
                "Unknown node type, passing through",
                extra={"instance_id": instance.id, "node_id": node.id, "node_type": node.type}
            )
            return NodeResult(
                next_node_id=(
                    getattr(node.config, "next_node_id", None) or definition.next_node_id(node.id)
                ),
                output={"skipped": True, "reason": f"No executor for node type {node.type}"},
            )

        ctx = ExecutionContext.for_instance(instance, definition, now=self._clock())
        return await executor.execute(node, ctx)

    async def _apply(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        result: NodeResult,
        output: Dict[str, Any],
        variables: Dict[str, Any],
        started_at: datetime,
        log: Any
    ) -> None:
        """Record the node and move the instance forward."""
        completed_at = self._clock()
        instance.variables.update(variables)
        instance.record_step(ExecutionLogEntry(
            node_id=node.id,
            node_name=node.label,
            node_type=node.type,
            status="SKIPPED" if output.get("skipped") else "COMPLETED",
            started_at=started_at,
            completed_at=completed_at,
            output=output,
        ))

        if result.next_node_id is None:
            instance.complete(timestamp=completed_at)
            await self._instances.save(instance)
            log.info(
                "Workflow completed",
                extra={"instance_id": instance.id, "steps": instance.current_step_number}
            )
            await self._publish(WORKFLOW_COMPLETED, instance)
            return

        instance.current_node_id = result.next_node_id

        if result.pause is not None:
            instance.pause(resume_at=result.pause.resume_at, timestamp=completed_at)
            await self._instances.save(instance)
            log.info(
                "Workflow paused",
                extra={
                    "instance_id": instance.id,
                    "resume_at": result.pause.resume_at.isoformat(),
                    "next_node_id": result.next_node_id,
                }
            )
            await self._publish(
                WORKFLOW_PAUSED, instance, {"resume_at": result.pause.resume_at.isoformat()}
            )
            await self._schedule_resume(instance.id, result.pause.resume_at)
            return

        await self._instances.save(instance)

    async def _fail(
        self,
        instance: WorkflowInstance,
        node: Optional[WorkflowNode],
        message: str,
        started_at: datetime,
        log: Any
    ) -> None:
        """Mark the instance FAILED. No retry is attempted."""
        now = self._clock()
        node_id = node.id if node is not None else (instance.current_node_id or "")

        instance.record_step(ExecutionLogEntry(
            node_id=node_id,
            node_name=node.label if node is not None else None,
            node_type=node.type if node is not None else "",
            status="FAILED",
            started_at=started_at,
            completed_at=now,
            output={"error": message},
        ))
        instance.fail(node_id, message, timestamp=now)
        await self._instances.save(instance)

        log.error(
            "Workflow failed",
            extra={"instance_id": instance.id, "node_id": node_id, "error": message}
        )
        await self._publish(WORKFLOW_FAILED, instance, {"node_id": node_id, "error": message})

    # ========== Helpers ==========

    async def _load(self, instance_id: str) -> WorkflowInstance:
        instance = await self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    async def _schedule_resume(self, instance_id: str, run_at: datetime) -> None:
        if self._resume_scheduler is None:
            logger.warning(
                "No resume scheduler configured; instance stays paused until resumed",
                extra={"instance_id": instance_id}
            )
            return
        try:
            await self._resume_scheduler.schedule_resume(instance_id, run_at)
        except Exception as e:
            # resume_due_workflows picks the instance up later
            logger.error(
                "Failed to schedule workflow resume",
                extra={"instance_id": instance_id, "error": str(e)}
            )

    async def _publish(
        self,
        event_type: str,
        instance: WorkflowInstance,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        if self._event_publisher is None:
            return
        payload = {
            "instance_id": instance.id,
            "workflow_definition_id": instance.workflow_definition_id,
            "workflow_version": instance.workflow_version,
            "entity_type": instance.entity.entity_type.value,
            "entity_id": instance.entity.entity_id,
            "status": instance.status.value,
            **(extra or {}),
        }
        try:
            await self._event_publisher.publish(event_type, payload)
        except Exception as e:
            logger.error(
                "Failed to publish workflow event",
                extra={"event_type": event_type, "instance_id": instance.id, "error": str(e)}
            )
