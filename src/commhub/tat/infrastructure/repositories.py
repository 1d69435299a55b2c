"""
TAT Infrastructure Repositories
===============================

Concrete implementations of the TAT repository interfaces.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commhub.config import NotificationPriority, NotificationType, TATStatus
from commhub.infrastructure.database import as_utc, session_scope
from commhub.tat.application.services import (
    IExtensionRepository,
    INotificationLedger,
    INotificationRepository,
    ITrackedEntityRepository,
)
from commhub.tat.domain import Notification, TATExtension, TrackedEntity
from commhub.tat.infrastructure.models import (
    NotificationMarkModel,
    NotificationModel,
    TATExtensionModel,
    TrackedEntityModel,
)
from commhub.workflow.domain import EntityRef


# ========== SQLAlchemy ==========

class SQLAlchemyTrackedEntityRepository(ITrackedEntityRepository):
    """SQLAlchemy implementation of the tracked entity repository."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, entity: EntityRef) -> Optional[TrackedEntity]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(TrackedEntityModel, (entity.entity_type.value, entity.entity_id))
            if model is None:
                return None
            return TrackedEntity(
                entity=EntityRef.of(model.entity_type, model.entity_id),
                tat_status=TATStatus(model.tat_status),
                sla_status=model.sla_status,
                sla_deadline=as_utc(model.sla_deadline),
                updated_at=as_utc(model.updated_at),
            )

    async def save(self, tracked: TrackedEntity) -> TrackedEntity:
        async with session_scope(self._session_maker) as session:
            await session.merge(TrackedEntityModel(
                entity_type=tracked.entity.entity_type.value,
                entity_id=tracked.entity.entity_id,
                tat_status=tracked.tat_status.value,
                sla_status=tracked.sla_status,
                sla_deadline=tracked.sla_deadline,
                updated_at=tracked.updated_at,
            ))
        return tracked


class SQLAlchemyNotificationRepository(INotificationRepository):
    """Stores in-app notifications in the 'tat_notifications' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def create(self, notification: Notification) -> Notification:
        async with session_scope(self._session_maker) as session:
            session.add(NotificationModel(
                id=notification.id,
                user_id=notification.user_id,
                type=notification.type.value,
                title=notification.title,
                message=notification.message,
                priority=notification.priority.value,
                action_url=notification.action_url,
                entity_type=notification.entity.entity_type.value,
                entity_id=notification.entity.entity_id,
                created_at=notification.created_at,
                read_at=notification.read_at,
            ))
            await session.flush()
        return notification

    async def list_for_user(self, user_id: str) -> List[Notification]:
        async with session_scope(self._session_maker) as session:
            stmt = (
                select(NotificationModel)
                .where(NotificationModel.user_id == user_id)
                .order_by(NotificationModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [
                Notification(
                    id=m.id,
                    user_id=m.user_id,
                    type=NotificationType(m.type),
                    title=m.title,
                    message=m.message,
                    entity=EntityRef.of(m.entity_type, m.entity_id),
                    priority=NotificationPriority(m.priority),
                    action_url=m.action_url,
                    created_at=as_utc(m.created_at),
                    read_at=as_utc(m.read_at),
                )
                for m in result.scalars().all()
            ]


class SQLAlchemyExtensionRepository(IExtensionRepository):
    """Stores deadline extensions in the 'tat_extensions' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def create(self, extension: TATExtension) -> TATExtension:
        async with session_scope(self._session_maker) as session:
            session.add(TATExtensionModel(
                id=extension.id,
                entity_type=extension.entity.entity_type.value,
                entity_id=extension.entity.entity_id,
                old_deadline=extension.old_deadline,
                new_deadline=extension.new_deadline,
                extension_minutes=extension.extension_minutes,
                reason=extension.reason,
                extended_at=extension.extended_at,
            ))
            await session.flush()
        return extension

    async def list_for_entity(self, entity: EntityRef) -> List[TATExtension]:
        async with session_scope(self._session_maker) as session:
            stmt = (
                select(TATExtensionModel)
                .where(TATExtensionModel.entity_type == entity.entity_type.value)
                .where(TATExtensionModel.entity_id == entity.entity_id)
                .order_by(TATExtensionModel.extended_at.asc())
            )
            result = await session.execute(stmt)
            return [
                TATExtension(
                    id=m.id,
                    entity=EntityRef.of(m.entity_type, m.entity_id),
                    old_deadline=as_utc(m.old_deadline),
                    new_deadline=as_utc(m.new_deadline),
                    extension_minutes=m.extension_minutes,
                    reason=m.reason,
                    extended_at=as_utc(m.extended_at),
                )
                for m in result.scalars().all()
            ]


class SQLAlchemyNotificationLedger(INotificationLedger):
    """Notification marks in the 'notification_marks' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def last_notified(self, instance_id: str, kind: str) -> Optional[datetime]:
        async with session_scope(self._session_maker) as session:
            model = await session.get(NotificationMarkModel, (instance_id, kind))
            return as_utc(model.notified_at) if model else None

    async def mark(self, instance_id: str, kind: str, notified_at: datetime) -> None:
        async with session_scope(self._session_maker) as session:
            await session.merge(NotificationMarkModel(
                instance_id=instance_id, kind=kind, notified_at=notified_at
            ))


# ========== In-Memory ==========

class InMemoryTrackedEntityRepository(ITrackedEntityRepository):
    """Tracked entities in local memory, keyed by "TYPE:id"."""

    def __init__(self, tracked: Iterable[TrackedEntity] = ()):
        self._tracked: Dict[str, TrackedEntity] = {}
        for item in tracked:
            self._tracked[str(item.entity)] = item

    async def get(self, entity: EntityRef) -> Optional[TrackedEntity]:
        return self._tracked.get(str(entity))

    async def save(self, tracked: TrackedEntity) -> TrackedEntity:
        self._tracked[str(tracked.entity)] = tracked
        return tracked


class InMemoryNotificationRepository(INotificationRepository):
    """Notifications collected in a list."""

    def __init__(self):
        self.notifications: List[Notification] = []

    async def create(self, notification: Notification) -> Notification:
        self.notifications.append(notification)
        return notification

    async def list_for_user(self, user_id: str) -> List[Notification]:
        found = [n for n in self.notifications if n.user_id == user_id]
        return sorted(found, key=lambda n: n.created_at, reverse=True)


class InMemoryExtensionRepository(IExtensionRepository):
    """Extensions collected in a list."""

    def __init__(self):
        self.extensions: List[TATExtension] = []

    async def create(self, extension: TATExtension) -> TATExtension:
        self.extensions.append(extension)
        return extension

    async def list_for_entity(self, entity: EntityRef) -> List[TATExtension]:
        return [e for e in self.extensions if e.entity == entity]


class InMemoryNotificationLedger(INotificationLedger):
    """Notification marks in local memory."""

    def __init__(self):
        self._marks: Dict[Tuple[str, str], datetime] = {}

    async def last_notified(self, instance_id: str, kind: str) -> Optional[datetime]:
        return self._marks.get((instance_id, kind))

    async def mark(self, instance_id: str, kind: str, notified_at: datetime) -> None:
        self._marks[(instance_id, kind)] = notified_at
