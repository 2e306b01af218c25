"""Audit scheduling service.

Owns the audit workflow: scheduled -> in_progress -> completed, with
cancellation allowed from any open state. At most one open audit per user
and audit type exists.
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
    AuditSchedule,
    AuditStatus,
    AuditType,
    ComplianceStatus,
    LifecycleEventType,
    RiskLevel,
    User,
    utc_now,
)
from src.db.session import async_session_maker
from src.services.errors import DuplicateAssignmentError, EntityNotFoundError
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.transitions import AUDIT_TRANSITIONS, OPEN_AUDIT_STATUSES, validate_transition

logger = logging.getLogger(__name__)

AUDIT_TITLES: dict[AuditType, str] = {
    AuditType.AUDIT_CALL: "Audit Call",
    AuditType.CROSS_CHECK: "Cross Check",
    AuditType.DUMMY_AUDIT: "Dummy Audit",
    AuditType.CROSS_VERIFY_INSUFF: "Insufficiency Cross Verification",
}

AUDIT_METHODS: dict[AuditType, str] = {
    AuditType.AUDIT_CALL: "Phone call audit with performance review",
    AuditType.CROSS_CHECK: "Cross-verification of last 3 months data",
    AuditType.DUMMY_AUDIT: "Dummy case audit to test performance",
    AuditType.CROSS_VERIFY_INSUFF: "Cross-verification of insufficient cases by another FE",
}


class AuditService:
    """Schedule audits and move them through their workflow."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        recorder: LifecycleRecorder | None = None,
        lead_days: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._recorder = recorder or LifecycleRecorder(session_factory)
        self._lead_days = lead_days if lead_days is not None else settings.AUDIT_LEAD_DAYS

    async def find_open_audit(self, user_id: UUID, audit_type: AuditType) -> AuditSchedule | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(AuditSchedule).where(
                    AuditSchedule.user_id == user_id,
                    AuditSchedule.audit_type == audit_type,
                    AuditSchedule.status.in_(OPEN_AUDIT_STATUSES),
                )
            )

    async def has_open_audit(self, user_id: UUID, audit_type: AuditType) -> bool:
        """Check whether the user already has an open audit of this type."""
        return await self.find_open_audit(user_id, audit_type) is not None

    async def schedule(
        self,
        user_id: UUID,
        audit_type: AuditType,
        *,
        scheduled_date: datetime | None = None,
        source: AssignmentSource = AssignmentSource.MANUAL,
        kpi_score_id: UUID | None = None,
        audit_scope: str | None = None,
        scheduled_by_user_id: UUID | None = None,
    ) -> AuditSchedule:
        """Schedule an audit for a user.

        Args:
            user_id: Audited employee.
            audit_type: Kind of audit.
            scheduled_date: When the audit takes place; defaults to
                AUDIT_LEAD_DAYS from now.
            source: ``kpi_trigger`` or ``manual``.
            kpi_score_id: Triggering KPI score.
            audit_scope: Why the audit is scheduled.
            scheduled_by_user_id: Staff member for manual schedules.

        Returns:
            AuditSchedule: The created audit.

        Raises:
            EntityNotFoundError: If the user does not exist.
            DuplicateAssignmentError: If an open audit of this type exists.
        """
        audit = AuditSchedule(
            user_id=user_id,
            audit_type=audit_type,
            status=AuditStatus.SCHEDULED,
            scheduled_by=source,
            scheduled_by_user_id=scheduled_by_user_id,
            kpi_score_id=kpi_score_id,
            scheduled_date=scheduled_date or utc_now() + timedelta(days=self._lead_days),
            audit_scope=audit_scope,
            audit_method=AUDIT_METHODS[audit_type],
        )
        async with self._session_factory() as session:
            if await session.get(User, user_id) is None:
                raise EntityNotFoundError("user", user_id)
            existing = await session.scalar(
                select(AuditSchedule.id).where(
                    AuditSchedule.user_id == user_id,
                    AuditSchedule.audit_type == audit_type,
                    AuditSchedule.status.in_(OPEN_AUDIT_STATUSES),
                )
            )
            if existing is not None:
                raise DuplicateAssignmentError(
                    f"User {user_id} already has an open '{audit_type.value}' audit ({existing})"
                )
            session.add(audit)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateAssignmentError(f"User {user_id} already has an open '{audit_type.value}' audit") from e

        logger.info(
            "Audit %s scheduled for user %s (%s, kpi=%s)", audit_type.value, user_id, source.value, kpi_score_id
        )
        await self._recorder.record(
            user_id,
            LifecycleEventType.AUDIT_SCHEDULED,
            f"{AUDIT_TITLES[audit_type]} scheduled",
            description=audit_scope,
            details={
                "audit_id": str(audit.id),
                "audit_type": audit_type.value,
                "scheduled_by": source.value,
                "scheduled_date": audit.scheduled_date.isoformat(),
            },
            kpi_score_id=kpi_score_id,
            triggered_by=scheduled_by_user_id,
        )
        return audit

    async def get(self, audit_id: UUID) -> AuditSchedule:
        async with self._session_factory() as session:
            audit = await session.get(AuditSchedule, audit_id)
        if audit is None:
            raise EntityNotFoundError("audit", audit_id)
        return audit

    async def list_for_user(self, user_id: UUID, status: AuditStatus | None = None) -> list[AuditSchedule]:
        query = select(AuditSchedule).where(AuditSchedule.user_id == user_id)
        if status is not None:
            query = query.where(AuditSchedule.status == status)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(AuditSchedule.scheduled_date))
            return list(result.scalars().all())

    async def list_for_kpi_score(self, kpi_score_id: UUID) -> list[AuditSchedule]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditSchedule)
                .where(AuditSchedule.kpi_score_id == kpi_score_id)
                .order_by(AuditSchedule.created_at)
            )
            return list(result.scalars().all())

    async def start(self, audit_id: UUID) -> AuditSchedule:
        async with self._session_factory() as session:
            audit = await self._load(session, audit_id)
            validate_transition("audit", AUDIT_TRANSITIONS, audit.status, AuditStatus.IN_PROGRESS)
            audit.status = AuditStatus.IN_PROGRESS
            audit.started_at = utc_now()
            await session.commit()
        logger.info("Audit %s started", audit_id)
        return audit

    async def complete(
        self,
        audit_id: UUID,
        findings: str | None = None,
        risk_level: RiskLevel | None = None,
        compliance_status: ComplianceStatus | None = None,
        completed_by: UUID | None = None,
    ) -> AuditSchedule:
        """Record the outcome of an open audit.

        Args:
            audit_id: Audit to complete.
            findings: Audit findings.
            risk_level: Assessed risk.
            compliance_status: Compliance outcome.
            completed_by: Auditor.

        Raises:
            EntityNotFoundError: If the audit does not exist.
            InvalidTransitionError: If it is already completed or cancelled.
        """
        async with self._session_factory() as session:
            audit = await self._load(session, audit_id)
            validate_transition("audit", AUDIT_TRANSITIONS, audit.status, AuditStatus.COMPLETED)
            audit.status = AuditStatus.COMPLETED
            audit.completed_at = utc_now()
            audit.findings = findings
            audit.risk_level = risk_level
            audit.compliance_status = compliance_status
            await session.commit()

        logger.info(
            "Audit %s completed (risk=%s, compliance=%s)",
            audit_id,
            risk_level.value if risk_level else None,
            compliance_status.value if compliance_status else None,
        )
        await self._recorder.record(
            audit.user_id,
            LifecycleEventType.AUDIT_COMPLETED,
            f"{AUDIT_TITLES[audit.audit_type]} completed",
            description=findings,
            details={
                "audit_id": str(audit.id),
                "risk_level": risk_level.value if risk_level else None,
                "compliance_status": compliance_status.value if compliance_status else None,
            },
            kpi_score_id=audit.kpi_score_id,
            triggered_by=completed_by,
        )
        return audit

    async def cancel(
        self, audit_id: UUID, reason: str | None = None, cancelled_by: UUID | None = None
    ) -> AuditSchedule:
        async with self._session_factory() as session:
            audit = await self._load(session, audit_id)
            validate_transition("audit", AUDIT_TRANSITIONS, audit.status, AuditStatus.CANCELLED)
            audit.status = AuditStatus.CANCELLED
            audit.cancelled_at = utc_now()
            audit.notes = reason
            await session.commit()

        logger.info("Audit %s cancelled: %s", audit_id, reason)
        await self._recorder.record(
            audit.user_id,
            LifecycleEventType.AUDIT_CANCELLED,
            f"{AUDIT_TITLES[audit.audit_type]} cancelled",
            description=reason,
            details={"audit_id": str(audit.id)},
            kpi_score_id=audit.kpi_score_id,
            triggered_by=cancelled_by,
        )
        return audit

    @staticmethod
    async def _load(session: AsyncSession, audit_id: UUID) -> AuditSchedule:
        audit = await session.get(AuditSchedule, audit_id)
        if audit is None:
            raise EntityNotFoundError("audit", audit_id)
        return audit
