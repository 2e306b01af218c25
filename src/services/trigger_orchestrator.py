"""Trigger orchestrator - runs KPI automation for one KPI score.

Processing flow:
1. Claim the record with one conditional UPDATE (pending -> processing, or
   any settled state when reprocessing, or a stale processing claim). A
   failed claim is reported as a benign skip.
2. Evaluate the required actions against the active configuration.
3. Dispatch each action in its own session: trainings, audits, emails
   (when requested) and notifications. A failing action never blocks or
   rolls back its siblings.
4. Aggregate the per-action outcomes into the final automation status and
   store them on the KPI score.

Re-running is safe. Trainings and audits already linked to the KPI score,
or already open for the user, are skipped. Emails are keyed by (KPI score,
template): a sent template is skipped unless a resend is requested, and a
failed one is retried as a new attempt.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.db.models import (
    AssignmentSource,
    AuditType,
    AutomationStatus,
    EmailStatus,
    EmailTemplate,
    KPIScore,
    NotificationType,
    TrainingType,
    utc_now,
)
from src.db.session import async_session_maker
from src.schemas.kpi import RawKPIInputs
from src.services.audit_service import AUDIT_TITLES, AuditService
from src.services.configuration_store import ConfigurationStore
from src.services.email_service import EmailService
from src.services.errors import DuplicateAssignmentError, DuplicateNotificationError, KPIScoreNotFoundError
from src.services.notification_service import NotificationService
from src.services.rule_evaluator import RequiredActions, evaluate
from src.services.training_service import TRAINING_TITLES, TrainingService

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (
    AutomationStatus.COMPLETED,
    AutomationStatus.FAILED,
    AutomationStatus.PARTIALLY_FAILED,
)


class ActionKind(str, enum.Enum):
    """Downstream subsystem an action is dispatched to."""

    TRAINING = "training"
    AUDIT = "audit"
    EMAIL = "email"
    NOTIFICATION = "notification"


class ActionOutcome(str, enum.Enum):
    """Result of one dispatched action."""

    CREATED = "created"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


class SkipReason(str, enum.Enum):
    """Why a process request did nothing (all benign)."""

    ALREADY_COMPLETED = "already_completed"
    ALREADY_PROCESSING = "already_processing"
    REQUIRES_REPROCESS = "requires_reprocess"


@dataclass(frozen=True)
class ProcessOptions:
    """Options for one process request.

    Attributes:
        send_email: Dispatch the required email templates.
        reprocess: Allow processing a record that already settled.
        resend_emails: Send templates again even if already sent.
    """

    send_email: bool = True
    reprocess: bool = False
    resend_emails: bool = False


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one action."""

    kind: ActionKind
    action: str
    outcome: ActionOutcome
    entity_id: UUID | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action": self.action,
            "outcome": self.outcome.value,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class AutomationResult:
    """Structured result of a process request.

    Attributes:
        kpi_score_id: Processed KPI score.
        status: Automation status after the request.
        skipped: Set when the request was a benign no-op.
        actions: Per-action outcomes, in dispatch order.
        required: Evaluated action set.
        config_version: Configuration version whose rules were evaluated.
        error: Pre-dispatch failure message.
        processed_at: When processing finished.
    """

    kpi_score_id: UUID
    status: AutomationStatus
    skipped: SkipReason | None = None
    actions: tuple[ActionResult, ...] = ()
    required: RequiredActions | None = None
    config_version: int | None = None
    error: str | None = None
    processed_at: datetime | None = None
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def processed(self) -> bool:
        return self.skipped is None

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form stored on the KPI score."""
        return {
            "status": self.status.value,
            "config_version": self.config_version,
            "required": self.required.to_dict() if self.required else None,
            "actions": [action.to_dict() for action in self.actions],
            "counts": self.counts,
            "error": self.error,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


def aggregate_status(actions: tuple[ActionResult, ...] | list[ActionResult]) -> AutomationStatus:
    """Fold per-action outcomes into an automation status.

    Returns:
        AutomationStatus: ``failed`` if every action failed,
            ``partially_failed`` if some failed, otherwise ``completed``
            (including when there were no actions).
    """
    failed = sum(1 for action in actions if action.outcome is ActionOutcome.FAILED)
    if failed == 0:
        return AutomationStatus.COMPLETED
    if failed == len(actions):
        return AutomationStatus.FAILED
    return AutomationStatus.PARTIALLY_FAILED


def count_outcomes(actions: tuple[ActionResult, ...] | list[ActionResult]) -> dict[str, int]:
    counts = {outcome.value: 0 for outcome in ActionOutcome}
    for action in actions:
        counts[action.outcome.value] += 1
    return counts


NOTIFICATION_TITLES: dict[NotificationType, str] = {
    NotificationType.KPI_SCORE: "KPI score for {period}",
    NotificationType.TRAINING: "New training assigned",
    NotificationType.AUDIT: "Audit scheduled",
    NotificationType.WARNING: "Performance warning",
}


class TriggerOrchestrator:
    """Run automation for KPI scores.

    Args:
        session_factory: Factory for per-step sessions.
        config_store: Source of the active configuration.
        training_service: Training subsystem.
        audit_service: Audit subsystem.
        notification_service: Notification subsystem.
        email_service: Email subsystem.
        stale_after_seconds: Age after which a processing claim is stale.

    Example:
        >>> orchestrator = TriggerOrchestrator()
        >>> result = await orchestrator.process(kpi_score_id, ProcessOptions(send_email=False))
        >>> result.status
        <AutomationStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        config_store: ConfigurationStore | None = None,
        training_service: TrainingService | None = None,
        audit_service: AuditService | None = None,
        notification_service: NotificationService | None = None,
        email_service: EmailService | None = None,
        stale_after_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_store = config_store or ConfigurationStore(session_factory)
        self._training = training_service or TrainingService(session_factory)
        self._audits = audit_service or AuditService(session_factory)
        self._notifications = notification_service or NotificationService(session_factory)
        self._email = email_service or EmailService(session_factory)
        self._stale_after = timedelta(
            seconds=stale_after_seconds if stale_after_seconds is not None else settings.AUTOMATION_STALE_AFTER_SECONDS
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def process(self, kpi_score_id: UUID, options: ProcessOptions | None = None) -> AutomationResult:
        """Run automation for one KPI score.

        Args:
            kpi_score_id: KPI score to process.
            options: Process options; defaults send email, no reprocess.

        Returns:
            AutomationResult: Per-action outcomes and final status, or a
                benign skip when the record could not be claimed.

        Raises:
            KPIScoreNotFoundError: If the KPI score does not exist.
        """
        options = options or ProcessOptions()
        claimed_at = await self._claim(kpi_score_id, options.reprocess)
        if claimed_at is None:
            return await self._skip_result(kpi_score_id, options.reprocess)

        logger.info("Claimed KPI score %s for automation (reprocess=%s)", kpi_score_id, options.reprocess)
        try:
            kpi_score = await self._load(kpi_score_id)
            active = await self._config_store.get_active()
            required = evaluate(
                kpi_score.overall_score,
                kpi_score.rating,
                RawKPIInputs.from_record(kpi_score),
                active.document,
            )
        except Exception as e:
            logger.exception("Automation for KPI score %s failed before dispatch", kpi_score_id)
            result = AutomationResult(
                kpi_score_id=kpi_score_id,
                status=AutomationStatus.FAILED,
                error=str(e),
                processed_at=utc_now(),
            )
            await self._finalize(result, claimed_at)
            return result

        actions = await self._dispatch(kpi_score, required, options)
        result = AutomationResult(
            kpi_score_id=kpi_score_id,
            status=aggregate_status(actions),
            actions=tuple(actions),
            required=required,
            config_version=active.version,
            processed_at=utc_now(),
            counts=count_outcomes(actions),
        )
        await self._finalize(result, claimed_at)
        logger.info(
            "Automation for KPI score %s finished: %s (%s)",
            kpi_score_id,
            result.status.value,
            ", ".join(f"{key}={value}" for key, value in result.counts.items()),
        )
        return result

    async def process_pending(self, limit: int = 50, options: ProcessOptions | None = None) -> list[AutomationResult]:
        """Process pending and stale records one at a time, oldest first.

        Args:
            limit: Maximum number of records.
            options: Process options applied to every record.

        Returns:
            list[AutomationResult]: One result per attempted record.
        """
        options = options or ProcessOptions()
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIScore.id)
                .where(or_(KPIScore.automation_status == AutomationStatus.PENDING, self._stale_clause(utc_now())))
                .order_by(KPIScore.created_at)
                .limit(limit)
            )
            ids = list(result.scalars().all())

        results = []
        for kpi_score_id in ids:
            try:
                results.append(await self.process(kpi_score_id, options))
            except KPIScoreNotFoundError:
                logger.warning("KPI score %s disappeared before processing", kpi_score_id)
        logger.info("Processed %d pending KPI scores", len(results))
        return results

    async def find_stale(self) -> list[KPIScore]:
        """KPI scores stuck in processing beyond the staleness timeout."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIScore).where(self._stale_clause(utc_now())).order_by(KPIScore.claimed_at)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Claim and finalize
    # =========================================================================

    def _stale_clause(self, now: datetime):
        return and_(
            KPIScore.automation_status == AutomationStatus.PROCESSING,
            or_(KPIScore.claimed_at.is_(None), KPIScore.claimed_at < now - self._stale_after),
        )

    async def _claim(self, kpi_score_id: UUID, reprocess: bool) -> datetime | None:
        """Atomically move the record to processing.

        Returns:
            datetime | None: Claim timestamp, or None if not claimed.
        """
        now = utc_now()
        claimable = [AutomationStatus.PENDING, *SETTLED_STATUSES] if reprocess else [AutomationStatus.PENDING]
        async with self._session_factory() as session:
            result = await session.execute(
                update(KPIScore)
                .where(
                    KPIScore.id == kpi_score_id,
                    or_(KPIScore.automation_status.in_(claimable), self._stale_clause(now)),
                )
                .values(automation_status=AutomationStatus.PROCESSING, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1
            await session.commit()
        return now if claimed else None

    async def _skip_result(self, kpi_score_id: UUID, reprocess: bool) -> AutomationResult:
        async with self._session_factory() as session:
            status = await session.scalar(select(KPIScore.automation_status).where(KPIScore.id == kpi_score_id))
        if status is None:
            raise KPIScoreNotFoundError(kpi_score_id)

        if status is AutomationStatus.COMPLETED and not reprocess:
            reason = SkipReason.ALREADY_COMPLETED
        elif status in SETTLED_STATUSES and not reprocess:
            reason = SkipReason.REQUIRES_REPROCESS
        else:
            reason = SkipReason.ALREADY_PROCESSING
        logger.info("Skipping KPI score %s: %s", kpi_score_id, reason.value)
        return AutomationResult(kpi_score_id=kpi_score_id, status=status, skipped=reason)

    async def _finalize(self, result: AutomationResult, claimed_at: datetime) -> None:
        async with self._session_factory() as session:
            values: dict[str, Any] = {
                "automation_status": result.status,
                "processed_at": result.processed_at,
                "automation_result": result.to_dict(),
            }
            outcome = await session.execute(
                update(KPIScore)
                .where(KPIScore.id == result.kpi_score_id, KPIScore.claimed_at == claimed_at)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            stored = outcome.rowcount == 1
            await session.commit()
        if not stored:
            logger.warning("Claim on KPI score %s was taken over; result not stored", result.kpi_score_id)

    async def _load(self, kpi_score_id: UUID) -> KPIScore:
        async with self._session_factory() as session:
            kpi_score = await session.get(KPIScore, kpi_score_id)
        if kpi_score is None:
            raise KPIScoreNotFoundError(kpi_score_id)
        return kpi_score

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _dispatch(
        self,
        kpi_score: KPIScore,
        required: RequiredActions,
        options: ProcessOptions,
    ) -> list[ActionResult]:
        reason = "; ".join(required.reasons)
        actions: list[ActionResult] = []

        trainings = await self._safe_list(self._training.list_for_kpi_score, kpi_score.id)
        linked_trainings = {a.training_type: a for a in trainings}
        for training_type in required.trainings:
            actions.append(await self._run_training(kpi_score, training_type, linked_trainings, reason))

        audits = await self._safe_list(self._audits.list_for_kpi_score, kpi_score.id)
        linked_audits = {a.audit_type: a for a in audits}
        for audit_type in required.audits:
            actions.append(await self._run_audit(kpi_score, audit_type, linked_audits, reason))

        if options.send_email:
            context = {
                "trainings": ", ".join(TRAINING_TITLES[t] for t in required.trainings) or "none",
                "audits": ", ".join(AUDIT_TITLES[a] for a in required.audits) or "none",
            }
            for template in required.emails:
                actions.append(await self._run_email(kpi_score, template, context, options.resend_emails))

        for notification_type in required.notifications:
            actions.append(await self._run_notification(kpi_score, notification_type, required))
        return actions

    @staticmethod
    async def _safe_list(loader, kpi_score_id: UUID) -> list:
        try:
            return await loader(kpi_score_id)
        except Exception:
            logger.exception("Could not load linked records for KPI score %s", kpi_score_id)
            return []

    async def _run_training(
        self,
        kpi_score: KPIScore,
        training_type: TrainingType,
        linked: dict,
        reason: str,
    ) -> ActionResult:
        kind, name = ActionKind.TRAINING, training_type.value
        try:
            if training_type in linked:
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE, entity_id=linked[training_type].id)
            existing = await self._training.find_open_assignment(kpi_score.user_id, training_type)
            if existing is not None:
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE, entity_id=existing.id)
            assignment = await self._training.assign(
                kpi_score.user_id,
                training_type,
                source=AssignmentSource.KPI_TRIGGER,
                kpi_score_id=kpi_score.id,
                reason=reason,
            )
            return ActionResult(kind, name, ActionOutcome.CREATED, entity_id=assignment.id)
        except DuplicateAssignmentError:
            return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE)
        except Exception as e:
            logger.exception("Training %s for KPI score %s failed", name, kpi_score.id)
            return ActionResult(kind, name, ActionOutcome.FAILED, error=str(e))

    async def _run_audit(
        self,
        kpi_score: KPIScore,
        audit_type: AuditType,
        linked: dict,
        reason: str,
    ) -> ActionResult:
        kind, name = ActionKind.AUDIT, audit_type.value
        try:
            if audit_type in linked:
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE, entity_id=linked[audit_type].id)
            existing = await self._audits.find_open_audit(kpi_score.user_id, audit_type)
            if existing is not None:
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE, entity_id=existing.id)
            audit = await self._audits.schedule(
                kpi_score.user_id,
                audit_type,
                source=AssignmentSource.KPI_TRIGGER,
                kpi_score_id=kpi_score.id,
                audit_scope=reason,
            )
            return ActionResult(kind, name, ActionOutcome.CREATED, entity_id=audit.id)
        except DuplicateAssignmentError:
            return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE)
        except Exception as e:
            logger.exception("Audit %s for KPI score %s failed", name, kpi_score.id)
            return ActionResult(kind, name, ActionOutcome.FAILED, error=str(e))

    async def _run_email(
        self,
        kpi_score: KPIScore,
        template: EmailTemplate,
        context: dict[str, Any],
        resend: bool,
    ) -> ActionResult:
        kind, name = ActionKind.EMAIL, template.value
        try:
            latest = await self._email.latest_attempt(kpi_score.id, template)
            if latest is not None and latest.status is EmailStatus.SENT and not resend:
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE, entity_id=latest.id)
            log = await self._email.dispatch(kpi_score.id, template, context=context, retry_of=latest)
            if log.status is EmailStatus.FAILED:
                return ActionResult(kind, name, ActionOutcome.FAILED, entity_id=log.id, error=log.error_message)
            return ActionResult(kind, name, ActionOutcome.CREATED, entity_id=log.id)
        except Exception as e:
            logger.exception("Email %s for KPI score %s failed", name, kpi_score.id)
            return ActionResult(kind, name, ActionOutcome.FAILED, error=str(e))

    async def _run_notification(
        self,
        kpi_score: KPIScore,
        notification_type: NotificationType,
        required: RequiredActions,
    ) -> ActionResult:
        kind, name = ActionKind.NOTIFICATION, notification_type.value
        try:
            if await self._notifications.has_notification(kpi_score.id, notification_type):
                return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE)
            notification = await self._notifications.notify(
                kpi_score.user_id,
                notification_type,
                NOTIFICATION_TITLES[notification_type].format(period=kpi_score.period),
                self._notification_message(kpi_score, notification_type, required),
                kpi_score_id=kpi_score.id,
            )
            return ActionResult(kind, name, ActionOutcome.CREATED, entity_id=notification.id)
        except DuplicateNotificationError:
            return ActionResult(kind, name, ActionOutcome.SKIPPED_DUPLICATE)
        except Exception as e:
            logger.exception("Notification %s for KPI score %s failed", name, kpi_score.id)
            return ActionResult(kind, name, ActionOutcome.FAILED, error=str(e))

    @staticmethod
    def _notification_message(
        kpi_score: KPIScore,
        notification_type: NotificationType,
        required: RequiredActions,
    ) -> str:
        summary = f"Your KPI score for {kpi_score.period} is {kpi_score.overall_score:.2f} ({kpi_score.rating.label})."
        if notification_type is NotificationType.TRAINING:
            return f"{summary} Assigned trainings: {', '.join(TRAINING_TITLES[t] for t in required.trainings)}."
        if notification_type is NotificationType.AUDIT:
            return f"{summary} Scheduled audits: {', '.join(AUDIT_TITLES[a] for a in required.audits)}."
        if notification_type is NotificationType.WARNING:
            return f"{summary} This is a formal performance warning."
        return summary
