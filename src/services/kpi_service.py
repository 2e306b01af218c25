"""KPI submission and record service.

Validates and scores submissions, persists them as ``pending`` KPI scores,
and answers automation status and listing queries. Submission always
returns a definitive score and rating; automation is run separately by the
trigger orchestrator.
"""

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import (
    AuditSchedule,
    AutomationStatus,
    EmailLog,
    KPISource,
    KPIScore,
    LifecycleCategory,
    LifecycleEventType,
    Notification,
    Rating,
    TrainingAssignment,
    User,
    utc_now,
)
from src.db.session import async_session_maker
from src.schemas.kpi import USER_IDENTIFIERS, BulkRowOutcome, RawKPIInputs
from src.services.configuration_store import ConfigurationStore
from src.services.errors import (
    DuplicateKPIScoreError,
    EntityNotFoundError,
    InvalidKPIInputError,
    KPIEngineError,
    KPIScoreNotFoundError,
)
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.rule_evaluator import RequiredActions, evaluate
from src.services.scorer import ScoreResult, score
from src.services.trigger_orchestrator import ProcessOptions, TriggerOrchestrator

logger = logging.getLogger(__name__)

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Records shown in the pending-automation work list.
ACTIONABLE_STATUSES = (AutomationStatus.PENDING, AutomationStatus.FAILED, AutomationStatus.PARTIALLY_FAILED)


def validate_period(period: str) -> str:
    """Validate a ``YYYY-MM`` period.

    Raises:
        InvalidKPIInputError: If the period is malformed.
    """
    if not isinstance(period, str) or not PERIOD_PATTERN.match(period):
        raise InvalidKPIInputError(f"Invalid period '{period}', expected YYYY-MM")
    return period


def parse_inputs(raw_inputs: RawKPIInputs | Mapping[str, Any]) -> RawKPIInputs:
    """Validate raw metric values.

    Raises:
        InvalidKPIInputError: If a metric is missing, unknown or out of range.
    """
    if isinstance(raw_inputs, RawKPIInputs):
        return raw_inputs
    try:
        return RawKPIInputs.model_validate(raw_inputs)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InvalidKPIInputError(f"Invalid KPI inputs: {problems}") from e


def _identifier(row: Mapping[str, Any], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    return str(value).strip() or None


class KPIService:
    """Submit, score, override and query KPI scores."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        config_store: ConfigurationStore | None = None,
        recorder: LifecycleRecorder | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_store = config_store or ConfigurationStore(session_factory)
        self._recorder = recorder or LifecycleRecorder(session_factory)

    # =========================================================================
    # Submission
    # =========================================================================

    async def preview(self, raw_inputs: RawKPIInputs | Mapping[str, Any]) -> tuple[ScoreResult, RequiredActions, int]:
        """Score inputs and derive actions without persisting anything.

        Returns:
            tuple: Score result, required actions and the configuration version used.
        """
        inputs = parse_inputs(raw_inputs)
        active = await self._config_store.get_active()
        result = score(inputs, active.document)
        required = evaluate(result.overall_score, result.rating, inputs, active.document)
        return result, required, active.version

    async def submit(
        self,
        user_id: UUID,
        period: str,
        raw_inputs: RawKPIInputs | Mapping[str, Any],
        submitted_by: UUID | None = None,
        source: KPISource = KPISource.MANUAL,
        comments: str | None = None,
    ) -> KPIScore:
        """Validate, score and persist a KPI submission.

        Args:
            user_id: Scored employee.
            period: Year-month, ``YYYY-MM``.
            raw_inputs: Raw metric values.
            submitted_by: Staff member submitting.
            source: Origin of the submission.
            comments: Free-form comments.

        Returns:
            KPIScore: Persisted record in ``pending`` automation status.

        Raises:
            InvalidKPIInputError: If the period or inputs are invalid.
            EntityNotFoundError: If the user does not exist.
            DuplicateKPIScoreError: If the user already has a score for the period.
            ConfigurationError: If the active configuration cannot score.
        """
        validate_period(period)
        inputs = parse_inputs(raw_inputs)
        active = await self._config_store.get_active()
        result = score(inputs, active.document)

        kpi_score = KPIScore(
            user_id=user_id,
            period=period,
            source=source,
            submitted_by_id=submitted_by,
            **inputs.model_dump(),
            overall_score=result.overall_score,
            rating=result.rating,
            config_version=active.version,
            automation_status=AutomationStatus.PENDING,
            comments=comments,
        )
        async with self._session_factory() as session:
            if await session.get(User, user_id) is None:
                raise EntityNotFoundError("user", user_id)
            existing = await session.scalar(
                select(KPIScore.id).where(KPIScore.user_id == user_id, KPIScore.period == period)
            )
            if existing is not None:
                raise DuplicateKPIScoreError(user_id, period)
            session.add(kpi_score)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateKPIScoreError(user_id, period) from e

        logger.info(
            "KPI score %s recorded for user %s period %s: %.2f (%s, config v%d)",
            kpi_score.id,
            user_id,
            period,
            result.overall_score,
            result.rating.value,
            active.version,
        )
        await self._recorder.record(
            user_id,
            LifecycleEventType.KPI_RECORDED,
            f"KPI score recorded for {period}",
            description=f"Score {result.overall_score:.2f} rated {result.rating.label}",
            details={
                "kpi_score_id": str(kpi_score.id),
                "overall_score": result.overall_score,
                "rating": result.rating.value,
                "source": source.value,
                "config_version": active.version,
            },
            kpi_score_id=kpi_score.id,
            triggered_by=submitted_by,
            category=LifecycleCategory.POSITIVE
            if result.rating in (Rating.EXCELLENT, Rating.GOOD)
            else LifecycleCategory.MILESTONE,
        )
        return kpi_score

    async def match_user(self, row: Mapping[str, Any]) -> tuple[UUID, str] | None:
        """Find the user a bulk row refers to.

        Identifiers are tried in order: ``user_id``, ``employee_id``,
        ``email`` (case-insensitive), then ``name`` (case-insensitive, only
        when exactly one user has it).

        Args:
            row: Bulk row with any of the identifier keys.

        Returns:
            tuple[UUID, str] | None: Matched user id and the identifier that
                matched, or None when nothing matches.

        Raises:
            ValueError: If ``user_id`` is present but not a UUID.
        """
        user_id = _identifier(row, "user_id")
        employee_id = _identifier(row, "employee_id")
        email = _identifier(row, "email")
        name = _identifier(row, "name")

        async with self._session_factory() as session:
            if user_id is not None:
                found = await session.scalar(select(User.id).where(User.id == UUID(user_id)))
                if found is not None:
                    return found, "user_id"
            if employee_id is not None:
                found = await session.scalar(select(User.id).where(User.employee_id == employee_id).limit(1))
                if found is not None:
                    return found, "employee_id"
            if email is not None:
                found = await session.scalar(select(User.id).where(func.lower(User.email) == email.lower()))
                if found is not None:
                    return found, "email"
            if name is not None:
                result = await session.execute(select(User.id).where(func.lower(User.name) == name.lower()).limit(2))
                candidates = list(result.scalars().all())
                if len(candidates) == 1:
                    return candidates[0], "name"
        return None

    async def bulk_submit(
        self,
        rows: Iterable[Mapping[str, Any]],
        submitted_by: UUID | None = None,
        source: KPISource = KPISource.BULK_UPLOAD,
        orchestrator: TriggerOrchestrator | None = None,
        options: ProcessOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Submit many rows one at a time.

        Each row is matched to a user first (see ``match_user``); rows with
        no matching user are reported as ``unmatched`` and not stored. A
        failing row is reported and does not stop the rest. When an
        orchestrator is given, each created record is processed right away.

        Args:
            rows: Mappings with a user identifier, ``period``, ``inputs`` and optional ``comments``.
            submitted_by: Staff member uploading.
            source: Origin recorded on every created score.
            orchestrator: Processes each created record when given.
            options: Process options for the orchestrator.

        Returns:
            list[dict]: Per-row ``row``, ``outcome``, ``user_id``, ``matched_by``,
                ``period``, ``kpi_score_id``, ``automation_status`` and ``error``.
        """
        results: list[dict[str, Any]] = []
        for index, row in enumerate(rows, start=1):
            outcome: dict[str, Any] = {
                "row": index,
                "outcome": BulkRowOutcome.FAILED,
                "user_id": None,
                "matched_by": None,
                "period": row.get("period"),
                "kpi_score_id": None,
                "automation_status": None,
                "error": None,
            }
            try:
                if not any(_identifier(row, key) for key in USER_IDENTIFIERS):
                    raise ValueError("no user_id, employee_id, email or name")
                match = await self.match_user(row)
                if match is None:
                    outcome["outcome"] = BulkRowOutcome.UNMATCHED
                    outcome["error"] = "No user matches " + ", ".join(
                        f"{key}={_identifier(row, key)!r}" for key in USER_IDENTIFIERS if _identifier(row, key)
                    )
                    results.append(outcome)
                    continue
                outcome["user_id"], outcome["matched_by"] = match

                kpi_score = await self.submit(
                    outcome["user_id"],
                    str(row["period"]),
                    row.get("inputs") or {},
                    submitted_by=submitted_by,
                    source=source,
                    comments=row.get("comments"),
                )
                outcome["outcome"] = BulkRowOutcome.CREATED
                outcome["kpi_score_id"] = kpi_score.id
                outcome["automation_status"] = kpi_score.automation_status
                if orchestrator is not None:
                    processed = await orchestrator.process(kpi_score.id, options)
                    outcome["automation_status"] = processed.status
            except KPIEngineError as e:
                outcome["error"] = e.message
            except (KeyError, ValueError) as e:
                outcome["error"] = f"Malformed row: {e}"
            results.append(outcome)

        counts = Counter(outcome["outcome"] for outcome in results)
        logger.info(
            "Bulk upload: %d rows, %d created, %d failed, %d unmatched",
            len(results),
            counts[BulkRowOutcome.CREATED],
            counts[BulkRowOutcome.FAILED],
            counts[BulkRowOutcome.UNMATCHED],
        )
        return results

    # =========================================================================
    # Override
    # =========================================================================

    async def override(
        self,
        kpi_score_id: UUID,
        reason: str,
        override_score: float | None = None,
        override_rating: Rating | None = None,
        overridden_by: UUID | None = None,
    ) -> KPIScore:
        """Override the displayed score and/or rating.

        Automation fields are left untouched and automation is not re-run.

        Raises:
            InvalidKPIInputError: If neither value is given or the score is out of range.
            KPIScoreNotFoundError: If the KPI score does not exist.
        """
        if override_score is None and override_rating is None:
            raise InvalidKPIInputError("Override needs a score, a rating, or both")
        if override_score is not None and not 0 <= override_score <= 100:
            raise InvalidKPIInputError(f"Override score {override_score} is outside [0, 100]")
        if not reason or not reason.strip():
            raise InvalidKPIInputError("Override needs a reason")

        async with self._session_factory() as session:
            kpi_score = await session.get(KPIScore, kpi_score_id)
            if kpi_score is None:
                raise KPIScoreNotFoundError(kpi_score_id)
            previous = {"score": kpi_score.effective_score, "rating": kpi_score.effective_rating.value}
            kpi_score.override_score = override_score
            kpi_score.override_rating = override_rating
            kpi_score.override_reason = reason
            kpi_score.overridden_by_id = overridden_by
            kpi_score.overridden_at = utc_now()
            await session.commit()

        logger.info(
            "KPI score %s overridden by %s: score=%s rating=%s",
            kpi_score_id,
            overridden_by or "system",
            override_score,
            override_rating.value if override_rating else None,
        )
        await self._recorder.record(
            kpi_score.user_id,
            LifecycleEventType.KPI_OVERRIDDEN,
            f"KPI score for {kpi_score.period} overridden",
            description=reason,
            details={
                "kpi_score_id": str(kpi_score_id),
                "previous": previous,
                "override_score": override_score,
                "override_rating": override_rating.value if override_rating else None,
            },
            kpi_score_id=kpi_score_id,
            triggered_by=overridden_by,
        )
        return kpi_score

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, kpi_score_id: UUID) -> KPIScore:
        async with self._session_factory() as session:
            kpi_score = await session.get(KPIScore, kpi_score_id)
        if kpi_score is None:
            raise KPIScoreNotFoundError(kpi_score_id)
        return kpi_score

    async def list_for_user(self, user_id: UUID, limit: int = 24) -> list[KPIScore]:
        """KPI scores for a user, newest period first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIScore).where(KPIScore.user_id == user_id).order_by(KPIScore.period.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def list_pending_automation(self, limit: int = 100) -> list[KPIScore]:
        """KPI scores whose automation is pending or did not fully succeed."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIScore)
                .where(KPIScore.automation_status.in_(ACTIONABLE_STATUSES))
                .order_by(KPIScore.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def automation_status(self, kpi_score_id: UUID) -> dict[str, Any]:
        """Automation status with the stored result and linked record counts.

        Returns:
            dict: ``kpi_score_id``, ``automation_status``, ``processed_at``,
                ``config_version`` (scoring), ``rules_config_version`` (last
                rule evaluation), ``automation_result`` and ``linked`` counts
                of trainings, audits, emails and notifications.

        Raises:
            KPIScoreNotFoundError: If the KPI score does not exist.
        """
        async with self._session_factory() as session:
            kpi_score = await session.get(KPIScore, kpi_score_id)
            if kpi_score is None:
                raise KPIScoreNotFoundError(kpi_score_id)
            linked = {}
            for name, model in (
                ("trainings", TrainingAssignment),
                ("audits", AuditSchedule),
                ("emails", EmailLog),
                ("notifications", Notification),
            ):
                linked[name] = (
                    await session.scalar(
                        select(func.count()).select_from(model).where(model.kpi_score_id == kpi_score_id)
                    )
                    or 0
                )
        return {
            "kpi_score_id": kpi_score.id,
            "automation_status": kpi_score.automation_status,
            "processed_at": kpi_score.processed_at,
            "config_version": kpi_score.config_version,
            "rules_config_version": (kpi_score.automation_result or {}).get("config_version"),
            "automation_result": kpi_score.automation_result,
            "linked": linked,
        }

    async def automation_stats(self) -> dict[str, int]:
        """Count of KPI scores per automation status (every status present)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KPIScore.automation_status, func.count()).group_by(KPIScore.automation_status)
            )
            counts = {status.value: 0 for status in AutomationStatus}
            for status, count in result.all():
                counts[AutomationStatus(status).value] = count
        counts["total"] = sum(counts.values())
        return counts
