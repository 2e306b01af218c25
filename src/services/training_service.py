"""Training assignment service.

Owns the training workflow: assigned -> in_progress -> completed, with
cancellation allowed from any open state. At most one open assignment per
user and training type exists; ``assign`` checks first and the partial
unique index on open rows backs the check at the storage boundary.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.db.models import (
    AssignmentSource,
    LifecycleEventType,
    TrainingAssignment,
    TrainingStatus,
    TrainingType,
    User,
    utc_now,
)
from src.db.session import async_session_maker
from src.services.errors import DuplicateAssignmentError, EntityNotFoundError
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.transitions import OPEN_TRAINING_STATUSES, TRAINING_TRANSITIONS, validate_transition

logger = logging.getLogger(__name__)

TRAINING_TITLES: dict[TrainingType, str] = {
    TrainingType.BASIC: "Basic Training",
    TrainingType.NEGATIVITY_HANDLING: "Negativity Handling Training",
    TrainingType.DOS_DONTS: "Do's and Don'ts Training",
    TrainingType.APP_USAGE: "App Usage Training",
}


class TrainingService:
    """Create and move training assignments through their workflow."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        recorder: LifecycleRecorder | None = None,
        due_days: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._recorder = recorder or LifecycleRecorder(session_factory)
        self._due_days = due_days if due_days is not None else settings.TRAINING_DUE_DAYS

    async def find_open_assignment(self, user_id: UUID, training_type: TrainingType) -> TrainingAssignment | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(TrainingAssignment).where(
                    TrainingAssignment.user_id == user_id,
                    TrainingAssignment.training_type == training_type,
                    TrainingAssignment.status.in_(OPEN_TRAINING_STATUSES),
                )
            )

    async def has_open_assignment(self, user_id: UUID, training_type: TrainingType) -> bool:
        """Check whether the user already has an open assignment of this type.

        Args:
            user_id: Trainee.
            training_type: Training module.

        Returns:
            bool: True if an assigned or in-progress assignment exists.
        """
        return await self.find_open_assignment(user_id, training_type) is not None

    async def assign(
        self,
        user_id: UUID,
        training_type: TrainingType,
        *,
        due_date: datetime | None = None,
        source: AssignmentSource = AssignmentSource.MANUAL,
        kpi_score_id: UUID | None = None,
        reason: str | None = None,
        assigned_by_user_id: UUID | None = None,
    ) -> TrainingAssignment:
        """Assign a training to a user.

        Args:
            user_id: Trainee.
            training_type: Training module.
            due_date: Due date; defaults to TRAINING_DUE_DAYS from now.
            source: ``kpi_trigger`` or ``manual``.
            kpi_score_id: Triggering KPI score.
            reason: Why the training is assigned.
            assigned_by_user_id: Staff member for manual assignments.

        Returns:
            TrainingAssignment: The created assignment.

        Raises:
            EntityNotFoundError: If the user does not exist.
            DuplicateAssignmentError: If an open assignment of this type exists.
        """
        assignment = TrainingAssignment(
            user_id=user_id,
            training_type=training_type,
            status=TrainingStatus.ASSIGNED,
            assigned_by=source,
            assigned_by_user_id=assigned_by_user_id,
            kpi_score_id=kpi_score_id,
            due_date=due_date or utc_now() + timedelta(days=self._due_days),
            reason=reason,
        )
        async with self._session_factory() as session:
            if await session.get(User, user_id) is None:
                raise EntityNotFoundError("user", user_id)
            existing = await session.scalar(
                select(TrainingAssignment.id).where(
                    TrainingAssignment.user_id == user_id,
                    TrainingAssignment.training_type == training_type,
                    TrainingAssignment.status.in_(OPEN_TRAINING_STATUSES),
                )
            )
            if existing is not None:
                raise DuplicateAssignmentError(
                    f"User {user_id} already has an open '{training_type.value}' training ({existing})"
                )
            session.add(assignment)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateAssignmentError(
                    f"User {user_id} already has an open '{training_type.value}' training"
                ) from e

        logger.info(
            "Training %s assigned to user %s (%s, kpi=%s)",
            training_type.value,
            user_id,
            source.value,
            kpi_score_id,
        )
        await self._recorder.record(
            user_id,
            LifecycleEventType.TRAINING_ASSIGNED,
            f"{TRAINING_TITLES[training_type]} assigned",
            description=reason,
            details={
                "training_assignment_id": str(assignment.id),
                "training_type": training_type.value,
                "assigned_by": source.value,
                "due_date": assignment.due_date.isoformat(),
            },
            kpi_score_id=kpi_score_id,
            triggered_by=assigned_by_user_id,
        )
        return assignment

    async def get(self, assignment_id: UUID) -> TrainingAssignment:
        """Fetch an assignment.

        Raises:
            EntityNotFoundError: If it does not exist.
        """
        async with self._session_factory() as session:
            assignment = await session.get(TrainingAssignment, assignment_id)
        if assignment is None:
            raise EntityNotFoundError("training assignment", assignment_id)
        return assignment

    async def list_for_user(self, user_id: UUID, status: TrainingStatus | None = None) -> list[TrainingAssignment]:
        query = select(TrainingAssignment).where(TrainingAssignment.user_id == user_id)
        if status is not None:
            query = query.where(TrainingAssignment.status == status)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(TrainingAssignment.created_at.desc()))
            return list(result.scalars().all())

    async def list_for_kpi_score(self, kpi_score_id: UUID) -> list[TrainingAssignment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TrainingAssignment)
                .where(TrainingAssignment.kpi_score_id == kpi_score_id)
                .order_by(TrainingAssignment.created_at)
            )
            return list(result.scalars().all())

    async def start(self, assignment_id: UUID) -> TrainingAssignment:
        """Move an assigned training to in_progress.

        Raises:
            EntityNotFoundError: If the assignment does not exist.
            InvalidTransitionError: If it is not in ``assigned``.
        """
        async with self._session_factory() as session:
            assignment = await self._load(session, assignment_id)
            validate_transition(
                "training assignment", TRAINING_TRANSITIONS, assignment.status, TrainingStatus.IN_PROGRESS
            )
            assignment.status = TrainingStatus.IN_PROGRESS
            assignment.started_at = utc_now()
            await session.commit()
        logger.info("Training assignment %s started", assignment_id)
        return assignment

    async def complete(
        self,
        assignment_id: UUID,
        score: float | None = None,
        notes: str | None = None,
        completed_by: UUID | None = None,
    ) -> TrainingAssignment:
        """Complete an open training.

        Args:
            assignment_id: Assignment to complete.
            score: Score achieved, if assessed.
            notes: Completion notes.
            completed_by: Staff member recording completion.

        Raises:
            EntityNotFoundError: If the assignment does not exist.
            InvalidTransitionError: If it is already completed or cancelled.
        """
        async with self._session_factory() as session:
            assignment = await self._load(session, assignment_id)
            validate_transition(
                "training assignment", TRAINING_TRANSITIONS, assignment.status, TrainingStatus.COMPLETED
            )
            assignment.status = TrainingStatus.COMPLETED
            assignment.completed_at = utc_now()
            assignment.completion_score = score
            assignment.notes = notes
            await session.commit()

        logger.info("Training assignment %s completed (score=%s)", assignment_id, score)
        await self._recorder.record(
            assignment.user_id,
            LifecycleEventType.TRAINING_COMPLETED,
            f"{TRAINING_TITLES[assignment.training_type]} completed",
            description=notes,
            details={"training_assignment_id": str(assignment.id), "score": score},
            kpi_score_id=assignment.kpi_score_id,
            triggered_by=completed_by,
        )
        return assignment

    async def cancel(
        self,
        assignment_id: UUID,
        reason: str | None = None,
        cancelled_by: UUID | None = None,
    ) -> TrainingAssignment:
        """Cancel an open training.

        Raises:
            EntityNotFoundError: If the assignment does not exist.
            InvalidTransitionError: If it is already completed or cancelled.
        """
        async with self._session_factory() as session:
            assignment = await self._load(session, assignment_id)
            validate_transition(
                "training assignment", TRAINING_TRANSITIONS, assignment.status, TrainingStatus.CANCELLED
            )
            assignment.status = TrainingStatus.CANCELLED
            assignment.cancelled_at = utc_now()
            assignment.notes = reason
            await session.commit()

        logger.info("Training assignment %s cancelled: %s", assignment_id, reason)
        await self._recorder.record(
            assignment.user_id,
            LifecycleEventType.TRAINING_CANCELLED,
            f"{TRAINING_TITLES[assignment.training_type]} cancelled",
            description=reason,
            details={"training_assignment_id": str(assignment.id)},
            kpi_score_id=assignment.kpi_score_id,
            triggered_by=cancelled_by,
        )
        return assignment

    @staticmethod
    async def _load(session: AsyncSession, assignment_id: UUID) -> TrainingAssignment:
        assignment = await session.get(TrainingAssignment, assignment_id)
        if assignment is None:
            raise EntityNotFoundError("training assignment", assignment_id)
        return assignment
