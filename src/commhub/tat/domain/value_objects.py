"""
TAT Value Objects
=================

Turn-around-time deadline computation and the message policy used for
reminders and escalations.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from commhub.config import (
    CRITICAL_THRESHOLD_RATIO,
    PRIORITY_MULTIPLIERS,
    WARNING_THRESHOLD_RATIO,
    Channel,
    Priority,
)
from commhub.core.exceptions import InvalidSlaConfig, ValidationException
from commhub.workflow.domain import EscalationRule, SLAConfig


@dataclass(frozen=True)
class TATDeadline:
    """
    Derived deadline for one workflow instance.

    Never persisted: recomputed from the instance start time, the definition's
    SLA config and the instance priority on every evaluation.
    """
    deadline_at: datetime
    warning_threshold_at: datetime
    critical_threshold_at: datetime
    total_minutes: float

    def to_dict(self) -> dict:
        return {
            "deadline_at": self.deadline_at.isoformat(),
            "warning_threshold_at": self.warning_threshold_at.isoformat(),
            "critical_threshold_at": self.critical_threshold_at.isoformat(),
            "total_minutes": self.total_minutes,
        }


class DeadlineCalculator:
    """
    Pure functions for TAT deadline computation.

    Effective TAT = resolution time × priority multiplier:
    - CRITICAL: 25% of standard
    - HIGH: 50% of standard
    - MEDIUM: 100% of standard
    - LOW: 150% of standard

    Warning and critical thresholds sit at 80% and 90% of the effective TAT.
    """

    @staticmethod
    def coerce_sla_config(sla_config: Union[SLAConfig, Dict[str, Any], None]) -> SLAConfig:
        """
        Accept a parsed SLAConfig or its raw JSON form.

        Raises:
            InvalidSlaConfig: If absent, malformed, or without a positive resolution time
        """
        if sla_config is None:
            raise InvalidSlaConfig()
        if not isinstance(sla_config, SLAConfig):
            try:
                sla_config = SLAConfig.model_validate(sla_config)
            except ValidationError as e:
                raise InvalidSlaConfig(f"Invalid SLA configuration: {e}")
        if not sla_config.is_valid:
            raise InvalidSlaConfig()
        return sla_config

    @staticmethod
    def multiplier_for(priority: Union[Priority, str, None]) -> float:
        """Priority multiplier; None means MEDIUM."""
        if priority is None:
            return PRIORITY_MULTIPLIERS[Priority.MEDIUM]
        if isinstance(priority, Priority):
            return PRIORITY_MULTIPLIERS[priority]
        try:
            return PRIORITY_MULTIPLIERS[Priority(str(priority).upper())]
        except ValueError:
            raise ValidationException(f"Unknown priority: {priority}")

    @classmethod
    def calculate_deadline(
        cls,
        start_time: datetime,
        sla_config: Union[SLAConfig, Dict[str, Any], None],
        priority: Union[Priority, str, None] = Priority.MEDIUM
    ) -> TATDeadline:
        """
        Compute the deadline and its warning/critical thresholds.

        Args:
            start_time: When the workflow instance started
            sla_config: SLA config of the instance's definition
            priority: Instance priority

        Returns:
            TATDeadline with total_minutes == resolution time × multiplier

        Raises:
            InvalidSlaConfig: If resolution_time_minutes is absent or ≤ 0

        Example:
            >>> d = DeadlineCalculator.calculate_deadline(
            ...     datetime(2026, 2, 6, 10, 0, tzinfo=timezone.utc),
            ...     SLAConfig(resolution_time_minutes=1440),
            ...     Priority.HIGH,
            ... )
            >>> d.deadline_at.isoformat()
            '2026-02-06T22:00:00+00:00'
        """
        config = cls.coerce_sla_config(sla_config)
        total_minutes = config.resolution_time_minutes * cls.multiplier_for(priority)

        return TATDeadline(
            deadline_at=start_time + timedelta(minutes=total_minutes),
            warning_threshold_at=start_time + timedelta(minutes=total_minutes * WARNING_THRESHOLD_RATIO),
            critical_threshold_at=start_time + timedelta(minutes=total_minutes * CRITICAL_THRESHOLD_RATIO),
            total_minutes=total_minutes,
        )


def calculate_deadline(
    start_time: datetime,
    sla_config: Union[SLAConfig, Dict[str, Any], None],
    priority: Union[Priority, str, None] = Priority.MEDIUM
) -> TATDeadline:
    """Module-level shortcut for DeadlineCalculator.calculate_deadline."""
    return DeadlineCalculator.calculate_deadline(start_time, sla_config, priority)


def select_escalation_rule(
    rules: Iterable[EscalationRule],
    elapsed_minutes: float
) -> Optional[EscalationRule]:
    """
    The rule most recently crossed by elapsed time.

    Picks the largest `after_minutes` that is ≤ `elapsed_minutes`; None when
    no rule has been crossed yet.
    """
    crossed = [r for r in rules if r.after_minutes <= elapsed_minutes]
    if not crossed:
        return None
    return max(crossed, key=lambda r: r.after_minutes)


# ========== Message Policy ==========

class ChannelTemplates(BaseModel):
    """
    Message templates for one notification kind.

    Templates use `str.format` fields: workflow_name, entity_type, entity_id,
    recipient_name, time_remaining, threshold_percentage, overdue_minutes,
    started_at, action_url.
    """
    model_config = ConfigDict(frozen=True)

    title: str
    notification: str
    email_subject: str
    email_body: str
    sms: str
    whatsapp: str
    call: str = ""

    def for_channel(self, channel: Channel) -> str:
        return {
            Channel.EMAIL: self.email_body,
            Channel.SMS: self.sms,
            Channel.WHATSAPP: self.whatsapp,
            Channel.CALL: self.call,
        }[Channel(channel)]


DEFAULT_REMINDER = ChannelTemplates(
    title="TAT Warning: {workflow_name}",
    notification="{entity_type} approaching deadline in {time_remaining} minutes",
    email_subject="TAT Warning: {workflow_name}",
    email_body=(
        "Hi {recipient_name},\n\n"
        "Reminder: {workflow_name} for {entity_type} {entity_id} is approaching "
        "TAT deadline in {time_remaining} minutes.\n"
        "Time Remaining: {time_remaining} minutes ({threshold_percentage}% of TAT)\n"
        "Please take immediate action to avoid TAT breach.\n\n"
        "View Workflow: {action_url}"
    ),
    sms="TAT Warning: {workflow_name} deadline in {time_remaining}min. Check the dashboard.",
    whatsapp=(
        "*TAT Warning*\n\n"
        "Reminder: {workflow_name} for {entity_type} {entity_id} is approaching "
        "TAT deadline in {time_remaining} minutes.\n\n"
        "Please check the dashboard for details."
    ),
)

DEFAULT_ESCALATION = ChannelTemplates(
    title="TAT BREACH: {workflow_name}",
    notification="{entity_type} overdue by {overdue_minutes} minutes",
    email_subject="TAT BREACH: {workflow_name}",
    email_body=(
        "Hi {recipient_name},\n\n"
        "URGENT: {workflow_name} for {entity_type} {entity_id} has BREACHED TAT "
        "by {overdue_minutes} minutes.\n"
        "Started At: {started_at}\n"
        "This requires immediate escalation and resolution.\n\n"
        "View Workflow Now: {action_url}"
    ),
    sms="URGENT: {workflow_name} BREACHED TAT by {overdue_minutes}min. Immediate action required!",
    whatsapp=(
        "*TAT BREACH - URGENT*\n\n"
        "{workflow_name} for {entity_type} {entity_id} has BREACHED TAT by "
        "{overdue_minutes} minutes.\n\n"
        "*IMMEDIATE ACTION REQUIRED*"
    ),
)


class TATPolicy(BaseModel):
    """TAT notification policy, loaded from YAML and hot-reloadable."""
    model_config = ConfigDict(frozen=True)

    reminder: ChannelTemplates = Field(default=DEFAULT_REMINDER)
    escalation: ChannelTemplates = Field(default=DEFAULT_ESCALATION)
    action_path: str = Field(
        default="/workflows/{instance_id}",
        description="Path appended to frontend_url for notification links"
    )

    def action_url(self, base_url: str, instance_id: str) -> str:
        return base_url.rstrip("/") + self.action_path.format(instance_id=instance_id)


def render(template: str, **fields: Any) -> str:
    """Format a template, leaving unknown fields visible instead of raising."""
    class _Fields(dict):
        def __missing__(self, key: str) -> str:
            return "{" + key + "}"

    return template.format_map(_Fields(fields))
