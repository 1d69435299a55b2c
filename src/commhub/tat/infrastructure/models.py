"""
TAT Infrastructure Models
=========================

SQLAlchemy ORM models for the TAT module.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commhub.config import NotificationPriority, NotificationType, TATStatus
from commhub.infrastructure.database import Base


class TrackedEntityModel(Base):
    """
    TAT state of a business record (e.g. a communication thread).

    Maps to the 'tracked_entities' table.
    """
    __tablename__ = "tracked_entities"

    entity_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    tat_status: Mapped[TATStatus] = mapped_column(String(50), nullable=False, default=TATStatus.ON_TRACK)
    sla_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class NotificationModel(Base):
    """
    In-app notification.

    Maps to the 'tat_notifications' table.
    """
    __tablename__ = "tat_notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    type: Mapped[NotificationType] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[NotificationPriority] = mapped_column(String(50), nullable=False)
    action_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class TATExtensionModel(Base):
    """
    Audit trail of deadline extensions.

    Maps to the 'tat_extensions' table.
    """
    __tablename__ = "tat_extensions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    old_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    new_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    extension_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    extended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NotificationMarkModel(Base):
    """
    Last notification time per (instance, kind), for repeat suppression.

    Maps to the 'notification_marks' table.
    """
    __tablename__ = "notification_marks"

    instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(50), primary_key=True)
    notified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
