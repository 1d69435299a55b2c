"""
Workflow Infrastructure Layer
=============================

Persistence, channel adapters, event publishers and scheduling for the
workflow module.
"""

from commhub.workflow.infrastructure.external import (
    APSchedulerResumeScheduler,
    CircuitBreaker,
    CircuitState,
    InMemoryEventPublisher,
    LoggingChannelAdapter,
    LoggingEventPublisher,
    WebhookChannelAdapter,
    build_channel_adapters,
)
from commhub.workflow.infrastructure.repositories import (
    InMemoryDefinitionRepository,
    InMemoryEventTriggerRepository,
    InMemoryInstanceRepository,
    InMemoryRecipientDirectory,
    InMemoryTaskSink,
    SQLAlchemyDefinitionRepository,
    SQLAlchemyEntityContextProvider,
    SQLAlchemyEventTriggerRepository,
    SQLAlchemyInstanceRepository,
    SQLAlchemyRecipientDirectory,
    SQLAlchemyTaskSink,
    StaticEntityContextProvider,
)

__all__ = [
    "APSchedulerResumeScheduler",
    "CircuitBreaker",
    "CircuitState",
    "InMemoryEventPublisher",
    "LoggingChannelAdapter",
    "LoggingEventPublisher",
    "WebhookChannelAdapter",
    "build_channel_adapters",
    "InMemoryDefinitionRepository",
    "InMemoryEventTriggerRepository",
    "InMemoryInstanceRepository",
    "InMemoryRecipientDirectory",
    "InMemoryTaskSink",
    "SQLAlchemyDefinitionRepository",
    "SQLAlchemyEntityContextProvider",
    "SQLAlchemyEventTriggerRepository",
    "SQLAlchemyInstanceRepository",
    "SQLAlchemyRecipientDirectory",
    "SQLAlchemyTaskSink",
    "StaticEntityContextProvider",
]
