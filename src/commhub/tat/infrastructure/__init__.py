"""
TAT Infrastructure Layer
========================

Persistence, policy loading and scheduling for TAT monitoring.
"""

from commhub.tat.infrastructure.external import PolicyFileHandler, TATPolicyManager, TATScheduler
from commhub.tat.infrastructure.models import (
    NotificationMarkModel,
    NotificationModel,
    TATExtensionModel,
    TrackedEntityModel,
)
from commhub.tat.infrastructure.repositories import (
    InMemoryExtensionRepository,
    InMemoryNotificationLedger,
    InMemoryNotificationRepository,
    InMemoryTrackedEntityRepository,
    SQLAlchemyExtensionRepository,
    SQLAlchemyNotificationLedger,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTrackedEntityRepository,
)

__all__ = [
    # Models
    "TrackedEntityModel",
    "NotificationModel",
    "TATExtensionModel",
    "NotificationMarkModel",
    # Repositories
    "SQLAlchemyTrackedEntityRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyExtensionRepository",
    "SQLAlchemyNotificationLedger",
    "InMemoryTrackedEntityRepository",
    "InMemoryNotificationRepository",
    "InMemoryExtensionRepository",
    "InMemoryNotificationLedger",
    # External
    "TATPolicyManager",
    "PolicyFileHandler",
    "TATScheduler",
]
