"""Lifecycle recorder - append-only user timeline.

Recording is fire-and-forget: each event is written in its own session,
and a failure is logged and swallowed so it never fails or rolls back the
action that produced it. There is no update or delete path.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import LifecycleCategory, LifecycleEvent, LifecycleEventType
from src.db.session import async_session_maker

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: dict[LifecycleEventType, LifecycleCategory] = {
    LifecycleEventType.KPI_RECORDED: LifecycleCategory.MILESTONE,
    LifecycleEventType.KPI_OVERRIDDEN: LifecycleCategory.NEUTRAL,
    LifecycleEventType.TRAINING_ASSIGNED: LifecycleCategory.NEUTRAL,
    LifecycleEventType.TRAINING_COMPLETED: LifecycleCategory.POSITIVE,
    LifecycleEventType.TRAINING_CANCELLED: LifecycleCategory.NEUTRAL,
    LifecycleEventType.AUDIT_SCHEDULED: LifecycleCategory.NEUTRAL,
    LifecycleEventType.AUDIT_COMPLETED: LifecycleCategory.MILESTONE,
    LifecycleEventType.AUDIT_CANCELLED: LifecycleCategory.NEUTRAL,
    LifecycleEventType.EMAIL_SENT: LifecycleCategory.NEUTRAL,
    LifecycleEventType.EMAIL_FAILED: LifecycleCategory.NEGATIVE,
    LifecycleEventType.WARNING_ISSUED: LifecycleCategory.NEGATIVE,
}


class LifecycleRecorder:
    """Write and read lifecycle timeline events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        user_id: UUID,
        event_type: LifecycleEventType,
        title: str,
        description: str | None = None,
        details: dict[str, Any] | None = None,
        kpi_score_id: UUID | None = None,
        triggered_by: UUID | None = None,
        category: LifecycleCategory | None = None,
    ) -> UUID | None:
        """Append an event to the user's timeline.

        Args:
            user_id: User the event is about.
            event_type: What happened.
            title: Short headline.
            description: Optional detail text.
            details: Structured payload referencing the originating entity.
            kpi_score_id: Related KPI score.
            triggered_by: Staff member who caused the event.
            category: Timeline tone; defaults per event type.

        Returns:
            UUID | None: Event id, or None when recording failed.
        """
        event = LifecycleEvent(
            user_id=user_id,
            event_type=event_type,
            category=category or DEFAULT_CATEGORIES[event_type],
            title=title,
            description=description,
            details=details,
            kpi_score_id=kpi_score_id,
            triggered_by_id=triggered_by,
        )
        try:
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
        except Exception:
            logger.exception("Failed to record lifecycle event %s for user %s", event_type.value, user_id)
            return None
        logger.debug("Lifecycle event %s recorded for user %s", event_type.value, user_id)
        return event.id

    async def timeline(
        self,
        user_id: UUID,
        limit: int = 50,
        event_type: LifecycleEventType | None = None,
    ) -> list[LifecycleEvent]:
        """Events for a user, newest first.

        Args:
            user_id: User whose timeline to read.
            limit: Maximum number of events.
            event_type: Optional filter.

        Returns:
            list[LifecycleEvent]: Timeline events.
        """
        query = select(LifecycleEvent).where(LifecycleEvent.user_id == user_id)
        if event_type is not None:
            query = query.where(LifecycleEvent.event_type == event_type)
        query = query.order_by(LifecycleEvent.created_at.desc(), LifecycleEvent.id).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def for_kpi_score(self, kpi_score_id: UUID) -> list[LifecycleEvent]:
        """Events linked to one KPI score, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(LifecycleEvent)
                .where(LifecycleEvent.kpi_score_id == kpi_score_id)
                .order_by(LifecycleEvent.created_at)
            )
            return list(result.scalars().all())
