"""
TAT Domain Layer
================

Domain layer for turn-around-time monitoring.

Contains:
- Entities: ApproachingDeadline, BreachedDeadline, TrackedEntity, TATExtension, Notification
- Value Objects: TATDeadline, TATPolicy
- Domain Services: DeadlineCalculator, select_escalation_rule

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from commhub.tat.domain.entities import (
    ApproachingDeadline,
    BreachedDeadline,
    Notification,
    TATExtension,
    TrackedEntity,
)
from commhub.tat.domain.value_objects import (
    DEFAULT_ESCALATION,
    DEFAULT_REMINDER,
    ChannelTemplates,
    DeadlineCalculator,
    TATDeadline,
    TATPolicy,
    calculate_deadline,
    render,
    select_escalation_rule,
)

__all__ = [
    # Entities
    "ApproachingDeadline",
    "BreachedDeadline",
    "TrackedEntity",
    "TATExtension",
    "Notification",
    # Value Objects
    "TATDeadline",
    "TATPolicy",
    "ChannelTemplates",
    "DEFAULT_REMINDER",
    "DEFAULT_ESCALATION",
    # Domain Services
    "DeadlineCalculator",
    "calculate_deadline",
    "select_escalation_rule",
    "render",
]
