"""
Workflow Application Layer
==========================

Application services and ports for workflow execution.
"""

from commhub.workflow.application.executors import (
    ChannelNodeExecutor,
    ConditionExecutor,
    CreateTaskExecutor,
    DelayExecutor,
    EndExecutor,
    EscalateExecutor,
    ExecutionContext,
    MakeCallExecutor,
    NodeExecutor,
    NodeExecutorRegistry,
    NodeResult,
    PauseRequest,
    SendEmailExecutor,
    SendSmsExecutor,
    SendWhatsAppExecutor,
    StartExecutor,
    build_default_registry,
)
from commhub.workflow.application.notifications import FanOutSummary, NotificationFanOut
from commhub.workflow.application.ports import (
    ChannelSendResult,
    IChannelAdapter,
    IDefinitionRepository,
    IEntityContextProvider,
    IEventPublisher,
    IEventTriggerRepository,
    IInstanceRepository,
    IRecipientDirectory,
    IResumeScheduler,
    ITaskSink,
    OutboundMessage,
    TaskRequest,
)
from commhub.workflow.application.services import (
    WORKFLOW_CANCELLED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    WORKFLOW_PAUSED,
    WORKFLOW_RESUMED,
    WORKFLOW_STARTED,
    InstanceLockRegistry,
    WorkflowEngine,
)
from commhub.workflow.application.triggers import (
    WORKFLOW_TRIGGERED,
    TriggerResult,
    WorkflowTriggerService,
)

__all__ = [
    # Services
    "WorkflowEngine",
    "InstanceLockRegistry",
    "NotificationFanOut",
    "FanOutSummary",
    "WorkflowTriggerService",
    "TriggerResult",
    # Executors
    "NodeExecutor",
    "NodeExecutorRegistry",
    "NodeResult",
    "PauseRequest",
    "ExecutionContext",
    "StartExecutor",
    "EndExecutor",
    "ConditionExecutor",
    "DelayExecutor",
    "ChannelNodeExecutor",
    "SendEmailExecutor",
    "SendSmsExecutor",
    "SendWhatsAppExecutor",
    "MakeCallExecutor",
    "CreateTaskExecutor",
    "EscalateExecutor",
    "build_default_registry",
    # Ports
    "IDefinitionRepository",
    "IInstanceRepository",
    "IEntityContextProvider",
    "IEventTriggerRepository",
    "IRecipientDirectory",
    "IChannelAdapter",
    "ITaskSink",
    "IResumeScheduler",
    "IEventPublisher",
    "OutboundMessage",
    "ChannelSendResult",
    "TaskRequest",
    # Events
    "WORKFLOW_STARTED",
    "WORKFLOW_PAUSED",
    "WORKFLOW_RESUMED",
    "WORKFLOW_COMPLETED",
    "WORKFLOW_FAILED",
    "WORKFLOW_CANCELLED",
    "WORKFLOW_TRIGGERED",
]
