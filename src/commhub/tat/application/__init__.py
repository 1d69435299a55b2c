"""
TAT Application Layer
=====================

Repository interfaces and the monitoring / escalation services.
"""

from commhub.tat.application.services import (
    APPROACHING,
    BREACHED,
    TAT_DEADLINE_EXTENDED,
    TAT_STATUS_UPDATED,
    DeadlineMonitor,
    DispatchResult,
    EscalationDispatcher,
    IExtensionRepository,
    INotificationLedger,
    INotificationRepository,
    ITATPolicyProvider,
    ITrackedEntityRepository,
    StaticTATPolicyProvider,
)

__all__ = [
    # Interfaces
    "ITrackedEntityRepository",
    "INotificationRepository",
    "IExtensionRepository",
    "INotificationLedger",
    "ITATPolicyProvider",
    "StaticTATPolicyProvider",
    # Services
    "DeadlineMonitor",
    "EscalationDispatcher",
    "DispatchResult",
    # Events
    "TAT_STATUS_UPDATED",
    "TAT_DEADLINE_EXTENDED",
    "APPROACHING",
    "BREACHED",
]
