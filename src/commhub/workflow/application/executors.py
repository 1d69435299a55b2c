"""
Node Executors
==============

One executor per node type. An executor performs the node's side effect
and proposes the next node; it never changes instance status itself. The
engine applies the result (log entry, variables, pause, advance).

The registry maps node type strings to executors so new node types can be
added without touching the engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from commhub.config import Channel, NodeType
from commhub.core.exceptions import ConfigurationException, NodeExecutionError
from commhub.shared.infrastructure.logging import get_logger
from commhub.workflow.application.notifications import NotificationFanOut
from commhub.workflow.application.ports import (
    IChannelAdapter, IRecipientDirectory, ITaskSink, OutboundMessage, TaskRequest
)
from commhub.workflow.domain import (
    ConditionConfig,
    ConditionEvaluator,
    ContextView,
    CreateTaskConfig,
    DelayConfig,
    EndNodeConfig,
    EscalateConfig,
    MakeCallConfig,
    SendEmailConfig,
    SendSmsConfig,
    SendWhatsAppConfig,
    StartNodeConfig,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowNode,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PauseRequest:
    """Ask the engine to pause the instance until `resume_at`."""
    resume_at: datetime


@dataclass
class NodeResult:
    """What an executor produced for one node."""
    next_node_id: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    pause: Optional[PauseRequest] = None


@dataclass
class ExecutionContext:
    """Everything an executor may read while running a node."""
    instance: WorkflowInstance
    definition: WorkflowDefinition
    view: ContextView
    now: datetime

    @classmethod
    def for_instance(
        cls,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        now: Optional[datetime] = None
    ) -> "ExecutionContext":
        return cls(
            instance=instance,
            definition=definition,
            view=ContextView(instance.context, instance.variables),
            now=now or datetime.now(timezone.utc),
        )

    def default_next(self, node: WorkflowNode) -> Optional[str]:
        """Explicit `next_node_id` from the config, else the first outgoing edge."""
        explicit = getattr(node.config, "next_node_id", None)
        return explicit or self.definition.next_node_id(node.id)


class NodeExecutor(ABC):
    """Executes a single node type."""

    node_type: NodeType

    @abstractmethod
    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        """
        Run the node.

        Raises:
            NodeExecutionError: If the side effect cannot be completed
        """


# ========== Control Flow ==========

class StartExecutor(NodeExecutor):
    node_type = NodeType.START

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: StartNodeConfig = node.config
        return NodeResult(
            next_node_id=ctx.definition.next_node_id(node.id),
            output={"trigger": config.trigger},
        )


class EndExecutor(NodeExecutor):
    node_type = NodeType.END

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: EndNodeConfig = node.config
        return NodeResult(next_node_id=None, output={"outcome": config.outcome})


class ConditionExecutor(NodeExecutor):
    node_type = NodeType.CONDITION

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: ConditionConfig = node.config
        result = ConditionEvaluator.evaluate_all(config.conditions, ctx.view)
        next_node_id = config.branches.true if result else config.branches.false

        logger.debug(
            "Condition evaluated",
            extra={"node_id": node.id, "result": result, "next_node_id": next_node_id}
        )
        return NodeResult(next_node_id=next_node_id, output={"result": result})


class DelayExecutor(NodeExecutor):
    """Computes the resume time; the engine pauses the instance."""
    node_type = NodeType.DELAY

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: DelayConfig = node.config

        if config.delay_until is not None:
            resume_at = config.delay_until
            if resume_at.tzinfo is None:
                resume_at = resume_at.replace(tzinfo=timezone.utc)
        else:
            resume_at = ctx.now + timedelta(minutes=config.delay_minutes)

        return NodeResult(
            next_node_id=ctx.default_next(node),
            output={"resume_at": resume_at.isoformat()},
            pause=PauseRequest(resume_at=resume_at),
        )


# ========== Communication ==========

class ChannelNodeExecutor(NodeExecutor):
    """Base for nodes that send one message per resolved recipient."""

    channel: Channel

    def __init__(self, adapter: Optional[IChannelAdapter]):
        self._adapter = adapter

    @abstractmethod
    def build_message(
        self,
        node: WorkflowNode,
        ctx: ExecutionContext
    ) -> Tuple[List[str], OutboundMessage]:
        """Resolve recipients and message content from the node config."""

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        if self._adapter is None:
            raise NodeExecutionError(node.id, f"No {self.channel.value} channel adapter configured")

        recipients, message = self.build_message(node, ctx)
        if not recipients:
            raise NodeExecutionError(node.id, "No recipients resolved for node")

        deliveries = []
        for recipient in recipients:
            result = await self._adapter.send(recipient, message)
            deliveries.append({"recipient": recipient, **result.to_dict()})

        logger.info(
            "Channel node delivered",
            extra={
                "instance_id": ctx.instance.id,
                "node_id": node.id,
                "channel": self.channel.value,
                "recipients": len(recipients),
            }
        )

        return NodeResult(
            next_node_id=ctx.default_next(node),
            output={"channel": self.channel.value, "deliveries": deliveries},
        )

    @staticmethod
    def _metadata(node: WorkflowNode, ctx: ExecutionContext) -> Dict[str, Any]:
        return {"instance_id": ctx.instance.id, "node_id": node.id}


class SendEmailExecutor(ChannelNodeExecutor):
    node_type = NodeType.SEND_EMAIL
    channel = Channel.EMAIL

    def build_message(self, node, ctx):
        config: SendEmailConfig = node.config
        message = OutboundMessage(
            subject=ctx.view.resolve(config.subject),
            body=ctx.view.resolve(config.body) or "",
            cc=ctx.view.resolve_all(config.cc),
            metadata=self._metadata(node, ctx),
        )
        return ctx.view.resolve_all(config.to), message


class SendSmsExecutor(ChannelNodeExecutor):
    node_type = NodeType.SEND_SMS
    channel = Channel.SMS

    def build_message(self, node, ctx):
        config: SendSmsConfig = node.config
        message = OutboundMessage(
            body=ctx.view.resolve(config.message),
            sender=config.from_number,
            metadata=self._metadata(node, ctx),
        )
        return ctx.view.resolve_all(config.to), message


class SendWhatsAppExecutor(ChannelNodeExecutor):
    node_type = NodeType.SEND_WHATSAPP
    channel = Channel.WHATSAPP

    def build_message(self, node, ctx):
        config: SendWhatsAppConfig = node.config
        message = OutboundMessage(
            body=ctx.view.resolve(config.message),
            sender=config.from_number,
            metadata=self._metadata(node, ctx),
        )
        return ctx.view.resolve_all(config.to), message


class MakeCallExecutor(ChannelNodeExecutor):
    node_type = NodeType.MAKE_CALL
    channel = Channel.CALL

    def build_message(self, node, ctx):
        config: MakeCallConfig = node.config
        metadata = self._metadata(node, ctx)
        metadata["record"] = config.record
        if config.max_duration_seconds:
            metadata["max_duration_seconds"] = config.max_duration_seconds
        message = OutboundMessage(body="", sender=config.from_number, metadata=metadata)
        return ctx.view.resolve_all(config.to), message


# ========== Work Items ==========

class CreateTaskExecutor(NodeExecutor):
    node_type = NodeType.CREATE_TASK

    def __init__(self, task_sink: ITaskSink):
        self._task_sink = task_sink

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: CreateTaskConfig = node.config
        due_at = None
        if config.due_in_minutes:
            due_at = ctx.now + timedelta(minutes=config.due_in_minutes)

        task_id = await self._task_sink.create_task(TaskRequest(
            instance_id=ctx.instance.id,
            entity=ctx.instance.entity,
            title=ctx.view.resolve(config.title),
            description=ctx.view.resolve(config.description) or "",
            task_type=config.task_type,
            priority=config.priority,
            assigned_to=ctx.view.resolve_all(config.assign_to),
            due_at=due_at,
        ))

        return NodeResult(
            next_node_id=ctx.default_next(node),
            output={
                "task_id": task_id,
                "due_at": due_at.isoformat() if due_at else None,
            },
        )


class EscalateExecutor(NodeExecutor):
    """Notifies escalation recipients; delivery failures never fail the node."""
    node_type = NodeType.ESCALATE

    def __init__(self, fan_out: NotificationFanOut):
        self._fan_out = fan_out

    async def execute(self, node: WorkflowNode, ctx: ExecutionContext) -> NodeResult:
        config: EscalateConfig = node.config
        reason = ctx.view.resolve(config.reason) or f"Workflow escalated at node {node.id}"

        message = OutboundMessage(
            subject=f"[{config.priority}] Escalation: {ctx.instance.entity}",
            body=reason,
            metadata={"instance_id": ctx.instance.id, "node_id": node.id},
        )
        summary = await self._fan_out.notify(
            config.escalate_to,
            config.notify_via,
            message,
            log_extra={"instance_id": ctx.instance.id, "node_id": node.id},
        )

        logger.info(
            "Workflow escalated",
            extra={
                "instance_id": ctx.instance.id,
                "escalate_to": config.escalate_to,
                "sent": summary.sent,
                "failed": summary.failed,
            }
        )

        return NodeResult(
            next_node_id=ctx.default_next(node),
            output={"escalate_to": list(config.escalate_to), **summary.to_dict()},
            variables={
                "escalated": True,
                "escalated_at": ctx.now.isoformat(),
                "escalation_reason": reason,
                "escalation_priority": config.priority,
            },
        )


# ========== Registry ==========

class NodeExecutorRegistry:
    """
    Maps node types to executors.

    Example:
        >>> registry = NodeExecutorRegistry()
        >>> registry.register(StartExecutor())
        >>> registry.get("START")
        <StartExecutor ...>
    """

    def __init__(self):
        self._executors: Dict[str, NodeExecutor] = {}

    def register(self, executor: NodeExecutor, node_type: Optional[str] = None) -> None:
        key = (node_type or executor.node_type.value).upper()
        if key in self._executors:
            logger.warning("Replacing node executor", extra={"node_type": key})
        self._executors[key] = executor

    def get(self, node_type: str) -> Optional[NodeExecutor]:
        return self._executors.get(node_type.upper())

    def missing(self) -> List[NodeType]:
        """Core node types without an executor."""
        return [t for t in NodeType if t.value not in self._executors]

    def __contains__(self, node_type: str) -> bool:
        return node_type.upper() in self._executors

    def __len__(self) -> int:
        return len(self._executors)


def build_default_registry(
    channels: Mapping[Channel, IChannelAdapter],
    task_sink: ITaskSink,
    recipients: IRecipientDirectory
) -> NodeExecutorRegistry:
    """
    Register an executor for every core node type.

    Raises:
        ConfigurationException: If a core node type is left without an executor
    """
    registry = NodeExecutorRegistry()
    for executor in (
        StartExecutor(),
        EndExecutor(),
        ConditionExecutor(),
        DelayExecutor(),
        SendEmailExecutor(channels.get(Channel.EMAIL)),
        SendSmsExecutor(channels.get(Channel.SMS)),
        SendWhatsAppExecutor(channels.get(Channel.WHATSAPP)),
        MakeCallExecutor(channels.get(Channel.CALL)),
        CreateTaskExecutor(task_sink),
        EscalateExecutor(NotificationFanOut(channels, recipients)),
    ):
        registry.register(executor)

    missing = registry.missing()
    if missing:
        raise ConfigurationException(
            "Node types without executor",
            {"node_types": [t.value for t in missing]}
        )
    return registry
