"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="commhub-workflows", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="sqlite+aiosqlite:///./commhub.db",
        description="SQLAlchemy connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Workflow Engine ==========
    workflow_max_steps_per_run: int = Field(
        default=500,
        description="Hard ceiling on nodes executed by a single execution run",
        ge=1
    )

    # ========== TAT Monitoring ==========
    tat_check_interval_seconds: int = Field(
        default=300,
        description="Seconds between TAT deadline checks",
        ge=10
    )
    tat_lookback_days: int = Field(
        default=7,
        description="Only instances started within this many days are scanned",
        ge=1
    )
    tat_default_priority: str = Field(
        default="MEDIUM",
        description="Priority used when an instance carries none"
    )
    tat_notification_cooldown_minutes: Optional[int] = Field(
        default=None,
        description="Skip repeat reminders for the same instance within this window (None disables)",
        ge=1
    )
    tat_policy_path: Path = Field(
        default=Path("tat_policy.yaml"),
        description="Path to TAT policy YAML (message templates)"
    )

    # ========== Notification Channels ==========
    channel_webhook_urls: Dict[str, str] = Field(
        default_factory=dict,
        description="Webhook endpoint per channel (EMAIL, SMS, WHATSAPP, CALL)"
    )
    channel_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for channel API calls",
        ge=0.1,
        le=30
    )
    channel_max_retries: int = Field(default=3, description="Send attempts per message", ge=1, le=10)
    channel_failure_threshold: int = Field(
        default=5,
        description="Consecutive failures before a channel circuit opens",
        ge=1
    )
    channel_recovery_timeout_seconds: float = Field(
        default=60.0,
        description="Seconds an open channel circuit waits before a trial request",
        ge=1
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for links in notifications"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("tat_default_priority")
    @classmethod
    def validate_default_priority(cls, v: str) -> str:
        """Ensure the default priority is a known priority."""
        v = v.upper()
        if v not in VALID_PRIORITIES:
            raise ValueError(f"tat_default_priority must be one of {VALID_PRIORITIES}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Workflow instance priority levels."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DefinitionStatus(str, Enum):
    """Workflow definition lifecycle statuses."""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle statuses."""
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class NodeType(str, Enum):
    """Node types with a built-in executor."""
    START = "START"
    END = "END"
    SEND_EMAIL = "SEND_EMAIL"
    SEND_WHATSAPP = "SEND_WHATSAPP"
    SEND_SMS = "SEND_SMS"
    MAKE_CALL = "MAKE_CALL"
    CREATE_TASK = "CREATE_TASK"
    CONDITION = "CONDITION"
    DELAY = "DELAY"
    ESCALATE = "ESCALATE"


class EntityType(str, Enum):
    """Business entities a workflow can run against."""
    SHIPMENT = "SHIPMENT"
    THREAD = "THREAD"
    CUSTOMER = "CUSTOMER"
    STANDALONE = "STANDALONE"


class ConditionOperator(str, Enum):
    """Operators accepted by CONDITION predicates."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"


class TATStatus(str, Enum):
    """Turn-around-time status of a tracked entity."""
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    BREACHED = "BREACHED"


class Channel(str, Enum):
    """Notification channels."""
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"
    CALL = "CALL"


class NotificationType(str, Enum):
    """In-app notification types raised by the TAT monitor."""
    SLA_WARNING = "SLA_WARNING"
    SLA_BREACH = "SLA_BREACH"


class NotificationPriority(str, Enum):
    """In-app notification priorities."""
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ========== Lists for validation ==========

VALID_PRIORITIES = [p.value for p in Priority]
ACTIVE_STATUSES = [WorkflowStatus.IN_PROGRESS, WorkflowStatus.PAUSED]
TERMINAL_STATUSES = [
    WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED
]

# Fraction of the standard resolution time granted per priority
PRIORITY_MULTIPLIERS = {
    Priority.CRITICAL: 0.25,
    Priority.HIGH: 0.5,
    Priority.MEDIUM: 1.0,
    Priority.LOW: 1.5,
}

WARNING_THRESHOLD_RATIO = 0.8
CRITICAL_THRESHOLD_RATIO = 0.9


# Global settings instance
settings = get_settings()
