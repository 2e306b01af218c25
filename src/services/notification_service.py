"""In-app notification service.

Notifications move unread -> read -> acknowledged (or straight from unread
to acknowledged). Automation creates at most one notification per KPI score
and notification type.
"""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import Notification, NotificationStatus, NotificationType, User, utc_now
from src.db.session import async_session_maker
from src.services.errors import DuplicateNotificationError, EntityNotFoundError
from src.services.transitions import NOTIFICATION_TRANSITIONS, validate_transition

logger = logging.getLogger(__name__)


class NotificationService:
    """Create notifications and track their read state."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self._session_factory = session_factory

    async def has_notification(self, kpi_score_id: UUID, notification_type: NotificationType) -> bool:
        """Check whether a notification of this type exists for the KPI score."""
        async with self._session_factory() as session:
            existing = await session.scalar(
                select(Notification.id).where(
                    Notification.kpi_score_id == kpi_score_id,
                    Notification.notification_type == notification_type,
                )
            )
        return existing is not None

    async def notify(
        self,
        user_id: UUID,
        notification_type: NotificationType,
        title: str,
        message: str,
        kpi_score_id: UUID | None = None,
    ) -> Notification:
        """Create an unread notification.

        Raises:
            EntityNotFoundError: If the user does not exist.
            DuplicateNotificationError: If the KPI score already has a
                notification of this type.
        """
        notification = Notification(
            user_id=user_id,
            kpi_score_id=kpi_score_id,
            notification_type=notification_type,
            title=title,
            message=message,
            status=NotificationStatus.UNREAD,
        )
        async with self._session_factory() as session:
            if await session.get(User, user_id) is None:
                raise EntityNotFoundError("user", user_id)
            session.add(notification)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateNotificationError(
                    f"KPI score {kpi_score_id} already has a '{notification_type.value}' notification"
                ) from e

        logger.info("Notification %s (%s) created for user %s", notification.id, notification_type.value, user_id)
        return notification

    async def get(self, notification_id: UUID) -> Notification:
        async with self._session_factory() as session:
            notification = await session.get(Notification, notification_id)
        if notification is None:
            raise EntityNotFoundError("notification", notification_id)
        return notification

    async def mark_read(self, notification_id: UUID) -> Notification:
        """Mark an unread notification as read.

        Raises:
            EntityNotFoundError: If the notification does not exist.
            InvalidTransitionError: If it is not unread.
        """
        return await self._transition(notification_id, NotificationStatus.READ)

    async def acknowledge(self, notification_id: UUID) -> Notification:
        """Acknowledge a notification (final state)."""
        return await self._transition(notification_id, NotificationStatus.ACKNOWLEDGED)

    async def list_for_user(
        self,
        user_id: UUID,
        status: NotificationStatus | None = None,
        limit: int = 50,
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if status is not None:
            query = query.where(Notification.status == status)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(Notification.created_at.desc()).limit(limit))
            return list(result.scalars().all())

    async def list_for_kpi_score(self, kpi_score_id: UUID) -> list[Notification]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification).where(Notification.kpi_score_id == kpi_score_id).order_by(Notification.created_at)
            )
            return list(result.scalars().all())

    async def unread_count(self, user_id: UUID) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_id, Notification.status == NotificationStatus.UNREAD)
            )
        return count or 0

    async def _transition(self, notification_id: UUID, target: NotificationStatus) -> Notification:
        async with self._session_factory() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None:
                raise EntityNotFoundError("notification", notification_id)
            validate_transition("notification", NOTIFICATION_TRANSITIONS, notification.status, target)
            now = utc_now()
            notification.status = target
            if target is NotificationStatus.READ:
                notification.read_at = now
            else:
                notification.acknowledged_at = now
                notification.read_at = notification.read_at or now
            await session.commit()
        logger.info("Notification %s marked %s", notification_id, target.value)
        return notification
