"""Email service - recipient resolution, rendering, delivery and attempt log.

Every dispatch attempt writes one EmailLog row, ``sent`` or ``failed``.
Rows are never modified afterwards: a retry appends a new row with the
next ``attempt_number`` and ``retry_of_id`` pointing at the attempt it
retries, so the failure history stays intact.

Recipients are resolved by role per template. ``employee`` is the scored
user; every other role resolves to all active users holding it.
Addresses are de-duplicated in resolution order.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from src.config import settings
from src.db.models import (
    EmailLog,
    EmailStatus,
    EmailTemplate,
    KPIScore,
    LifecycleCategory,
    LifecycleEventType,
    User,
    UserRole,
)
from src.db.session import async_session_maker
from src.services.email_transport import EmailMessage, EmailTransport, LoggingEmailTransport
from src.services.errors import EmailDeliveryError, EntityNotFoundError, InvalidTransitionError, KPIScoreNotFoundError
from src.services.lifecycle_recorder import LifecycleRecorder

logger = logging.getLogger(__name__)

TEMPLATE_RECIPIENT_ROLES: dict[EmailTemplate, tuple[UserRole, ...]] = {
    EmailTemplate.KPI_NOTIFICATION: (UserRole.EMPLOYEE, UserRole.COORDINATOR, UserRole.MANAGER),
    EmailTemplate.TRAINING_ASSIGNMENT: (UserRole.EMPLOYEE, UserRole.COORDINATOR, UserRole.MANAGER, UserRole.HOD),
    EmailTemplate.AUDIT_NOTIFICATION: (UserRole.COMPLIANCE, UserRole.HOD),
    EmailTemplate.PERFORMANCE_WARNING: (
        UserRole.EMPLOYEE,
        UserRole.COORDINATOR,
        UserRole.MANAGER,
        UserRole.COMPLIANCE,
        UserRole.HOD,
    ),
}

TEMPLATE_SUBJECTS: dict[EmailTemplate, str] = {
    EmailTemplate.KPI_NOTIFICATION: "KPI Score for {period}: {rating} ({score})",
    EmailTemplate.TRAINING_ASSIGNMENT: "Training assigned to {name} for {period}",
    EmailTemplate.AUDIT_NOTIFICATION: "Audit scheduled for {name} ({period})",
    EmailTemplate.PERFORMANCE_WARNING: "Performance warning: {name} ({period})",
}

TEMPLATE_BODIES: dict[EmailTemplate, str] = {
    EmailTemplate.KPI_NOTIFICATION: (
        "Hello {name},\n\nYour KPI score for {period} is {score}, rated {rating}.\n"
    ),
    EmailTemplate.TRAINING_ASSIGNMENT: (
        "Hello {name},\n\nBased on the KPI score for {period} ({score}, {rating}) "
        "the following trainings were assigned: {trainings}.\n"
    ),
    EmailTemplate.AUDIT_NOTIFICATION: (
        "The KPI score of {name} for {period} ({score}, {rating}) requires "
        "the following audits: {audits}.\n"
    ),
    EmailTemplate.PERFORMANCE_WARNING: (
        "{name} scored {score} ({rating}) for {period}. This is a formal performance "
        "warning; trainings and audits have been arranged.\n"
    ),
}


class EmailService:
    """Resolve, render, deliver and log automation email."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        transport: EmailTransport | None = None,
        recorder: LifecycleRecorder | None = None,
        sender: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._transport = transport or LoggingEmailTransport()
        self._recorder = recorder or LifecycleRecorder(session_factory)
        self._sender = sender or settings.EMAIL_FROM

    # =========================================================================
    # Queries
    # =========================================================================

    async def latest_attempt(self, kpi_score_id: UUID, template: EmailTemplate) -> EmailLog | None:
        """Most recent attempt for the (KPI score, template) attempt key."""
        async with self._session_factory() as session:
            return await session.scalar(
                select(EmailLog)
                .where(EmailLog.kpi_score_id == kpi_score_id, EmailLog.template == template)
                .order_by(EmailLog.attempt_number.desc(), EmailLog.created_at.desc())
                .limit(1)
            )

    async def get(self, log_id: UUID) -> EmailLog:
        async with self._session_factory() as session:
            log = await session.get(EmailLog, log_id)
        if log is None:
            raise EntityNotFoundError("email log", log_id)
        return log

    async def list_logs(
        self,
        kpi_score_id: UUID | None = None,
        user_id: UUID | None = None,
        status: EmailStatus | None = None,
        template: EmailTemplate | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EmailLog]:
        query = select(EmailLog)
        if kpi_score_id is not None:
            query = query.where(EmailLog.kpi_score_id == kpi_score_id)
        if user_id is not None:
            query = query.where(EmailLog.user_id == user_id)
        if status is not None:
            query = query.where(EmailLog.status == status)
        if template is not None:
            query = query.where(EmailLog.template == template)
        query = query.order_by(EmailLog.created_at.desc()).limit(limit).offset(offset)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def resolve_recipients(self, session: AsyncSession, template: EmailTemplate, employee: User) -> list[str]:
        """Resolve recipient addresses for a template.

        Args:
            session: Open session.
            template: Email template.
            employee: Scored user.

        Returns:
            list[str]: De-duplicated addresses, employee first.
        """
        roles = TEMPLATE_RECIPIENT_ROLES[template]
        addresses: list[str] = []
        if UserRole.EMPLOYEE in roles and employee.is_active:
            addresses.append(employee.email)

        staff_roles = [role for role in roles if role is not UserRole.EMPLOYEE]
        if staff_roles:
            result = await session.execute(
                select(User.email)
                .where(User.role.in_(staff_roles), User.is_active.is_(True))
                .order_by(User.role, User.email)
            )
            addresses.extend(result.scalars().all())
        return list(dict.fromkeys(addresses))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(
        self,
        kpi_score_id: UUID,
        template: EmailTemplate,
        context: dict[str, Any] | None = None,
        retry_of: EmailLog | None = None,
    ) -> EmailLog:
        """Send one template for a KPI score and log the attempt.

        Delivery failures do not raise; they produce a ``failed`` row.

        Args:
            kpi_score_id: Triggering KPI score.
            template: Email template.
            context: Extra values for rendering (e.g. trainings, audits).
            retry_of: Attempt this dispatch retries.

        Returns:
            EmailLog: The attempt row.

        Raises:
            KPIScoreNotFoundError: If the KPI score does not exist.
        """
        async with self._session_factory() as session:
            kpi_score = await session.scalar(
                select(KPIScore).options(joinedload(KPIScore.user)).where(KPIScore.id == kpi_score_id)
            )
            if kpi_score is None:
                raise KPIScoreNotFoundError(kpi_score_id)
            employee = kpi_score.user
            recipients = await self.resolve_recipients(session, template, employee)

            values = {
                "name": employee.name,
                "period": kpi_score.period,
                "score": f"{kpi_score.effective_score:.2f}",
                "rating": kpi_score.effective_rating.label,
                "trainings": "none",
                "audits": "none",
            }
            values.update(context or {})
            subject = TEMPLATE_SUBJECTS[template].format(**values)

            error: str | None = None
            if not recipients:
                error = f"No active recipients for template '{template.value}'"
            else:
                message = EmailMessage(
                    sender=self._sender,
                    recipients=tuple(recipients),
                    subject=subject,
                    body=TEMPLATE_BODIES[template].format(**values),
                    headers={"X-KPI-Score-Id": str(kpi_score_id), "X-Email-Template": template.value},
                )
                try:
                    await self._transport.send(message)
                except EmailDeliveryError as e:
                    error = e.message

            log = EmailLog(
                kpi_score_id=kpi_score_id,
                user_id=employee.id,
                template=template,
                recipients=recipients,
                subject=subject,
                status=EmailStatus.FAILED if error else EmailStatus.SENT,
                error_message=error,
                attempt_number=retry_of.attempt_number + 1 if retry_of else 1,
                retry_of_id=retry_of.id if retry_of else None,
            )
            session.add(log)
            await session.commit()

        if error:
            logger.warning(
                "Email %s for KPI score %s failed (attempt %d): %s",
                template.value,
                kpi_score_id,
                log.attempt_number,
                error,
            )
        else:
            logger.info(
                "Email %s for KPI score %s sent to %d recipients (attempt %d)",
                template.value,
                kpi_score_id,
                len(recipients),
                log.attempt_number,
            )
        await self._record(log, employee.id)
        return log

    async def retry(self, log_id: UUID) -> EmailLog:
        """Manually retry a failed attempt, appending a new attempt row.

        The retry points at the latest attempt for the same attempt key.

        Raises:
            EntityNotFoundError: If the log does not exist.
            InvalidTransitionError: If the latest attempt already succeeded.
        """
        log = await self.get(log_id)
        if log.kpi_score_id is None:
            raise InvalidTransitionError("email log", log.status.value, "retry")
        latest = await self.latest_attempt(log.kpi_score_id, log.template) or log
        if latest.status is EmailStatus.SENT:
            raise InvalidTransitionError("email log", latest.status.value, "retry")
        return await self.dispatch(log.kpi_score_id, log.template, retry_of=latest)

    async def _record(self, log: EmailLog, user_id: UUID) -> None:
        details = {
            "email_log_id": str(log.id),
            "template": log.template.value,
            "attempt_number": log.attempt_number,
            "recipients": log.recipients,
        }
        if log.status is EmailStatus.FAILED:
            await self._recorder.record(
                user_id,
                LifecycleEventType.EMAIL_FAILED,
                f"Email '{log.template.value}' failed",
                description=log.error_message,
                details=details,
                kpi_score_id=log.kpi_score_id,
            )
            return

        await self._recorder.record(
            user_id,
            LifecycleEventType.EMAIL_SENT,
            f"Email '{log.template.value}' sent",
            details=details,
            kpi_score_id=log.kpi_score_id,
        )
        if log.template is EmailTemplate.PERFORMANCE_WARNING:
            await self._recorder.record(
                user_id,
                LifecycleEventType.WARNING_ISSUED,
                "Performance warning issued",
                description=log.subject,
                details=details,
                kpi_score_id=log.kpi_score_id,
                category=LifecycleCategory.NEGATIVE,
            )
