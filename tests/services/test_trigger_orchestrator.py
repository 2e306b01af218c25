"""Tests for the trigger orchestrator.

Covers the claim protocol, per-action isolation, status aggregation and
idempotent reprocessing against a scratch database.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from src.db.models import (
    AutomationStatus,
    EmailStatus,
    EmailTemplate,
    KPIScore,
    TrainingType,
    TrainingAssignment,
    User,
    utc_now,
)
from src.services.configuration_store import ConfigurationStore
from src.services.email_service import EmailService
from src.services.errors import ConfigurationError, KPIScoreNotFoundError
from src.services.trigger_orchestrator import (
    ActionKind,
    ActionOutcome,
    ActionResult,
    ProcessOptions,
    SkipReason,
    TriggerOrchestrator,
    aggregate_status,
)

pytestmark = pytest.mark.tier1


def _outcomes(result) -> dict[tuple[str, str], str]:
    return {(a.kind.value, a.action): a.outcome.value for a in result.actions}


async def _set_status(session_factory, kpi_score_id, status: AutomationStatus, claimed_at=None) -> None:
    async with session_factory() as session:
        await session.execute(
            update(KPIScore)
            .where(KPIScore.id == kpi_score_id)
            .values(automation_status=status, claimed_at=claimed_at)
        )
        await session.commit()


# =============================================================================
# Status aggregation
# =============================================================================


class TestAggregateStatus:
    def _action(self, outcome: ActionOutcome) -> ActionResult:
        return ActionResult(ActionKind.TRAINING, "basic", outcome)

    def test_no_actions_is_completed(self) -> None:
        assert aggregate_status([]) is AutomationStatus.COMPLETED

    def test_duplicates_count_as_success(self) -> None:
        actions = [self._action(ActionOutcome.CREATED), self._action(ActionOutcome.SKIPPED_DUPLICATE)]
        assert aggregate_status(actions) is AutomationStatus.COMPLETED

    def test_some_failed(self) -> None:
        actions = [self._action(ActionOutcome.CREATED), self._action(ActionOutcome.FAILED)]
        assert aggregate_status(actions) is AutomationStatus.PARTIALLY_FAILED

    def test_all_failed(self) -> None:
        assert aggregate_status([self._action(ActionOutcome.FAILED)]) is AutomationStatus.FAILED


# =============================================================================
# Processing
# =============================================================================


class TestProcess:
    @pytest.mark.asyncio
    async def test_scenario_a(self, orchestrator: TriggerOrchestrator, submit_kpi, scenario_a: dict) -> None:
        kpi_score = await submit_kpi(scenario_a)

        result = await orchestrator.process(kpi_score.id)

        assert result.status is AutomationStatus.COMPLETED
        assert _outcomes(result) == {
            ("email", "kpi_notification"): "created",
            ("notification", "kpi_score"): "created",
        }

    @pytest.mark.asyncio
    async def test_scenario_b(
        self,
        orchestrator: TriggerOrchestrator,
        training_service,
        audit_service,
        recording_transport,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)

        result = await orchestrator.process(kpi_score.id)

        assert result.status is AutomationStatus.COMPLETED
        assert result.config_version == 1
        assert result.counts == {"created": 11, "skipped_duplicate": 0, "failed": 0}
        assert [a.action for a in result.actions if a.kind is ActionKind.TRAINING] == [
            "basic",
            "negativity_handling",
            "app_usage",
        ]
        assert [a.action for a in result.actions if a.kind is ActionKind.AUDIT] == ["audit_call", "cross_check"]
        assert len(recording_transport.sent) == 3
        assert len(await training_service.list_for_kpi_score(kpi_score.id)) == 3
        assert len(await audit_service.list_for_kpi_score(kpi_score.id)) == 2

    @pytest.mark.asyncio
    async def test_result_stored_on_record(
        self,
        orchestrator: TriggerOrchestrator,
        kpi_service,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)
        await orchestrator.process(kpi_score.id)

        stored = await kpi_service.get(kpi_score.id)

        assert stored.automation_status is AutomationStatus.COMPLETED
        assert stored.processed_at is not None
        assert stored.automation_result["status"] == "completed"
        assert len(stored.automation_result["actions"]) == 11

    @pytest.mark.asyncio
    async def test_without_email_still_notifies(
        self,
        orchestrator: TriggerOrchestrator,
        recording_transport,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)

        result = await orchestrator.process(kpi_score.id, ProcessOptions(send_email=False))

        kinds = {a.kind for a in result.actions}
        assert ActionKind.EMAIL not in kinds
        assert ActionKind.NOTIFICATION in kinds
        assert recording_transport.sent == []
        assert result.counts["created"] == 8

    @pytest.mark.asyncio
    async def test_missing_record(self, orchestrator: TriggerOrchestrator) -> None:
        with pytest.raises(KPIScoreNotFoundError):
            await orchestrator.process(uuid4())

    @pytest.mark.asyncio
    async def test_open_manual_training_is_duplicate(
        self,
        orchestrator: TriggerOrchestrator,
        training_service,
        employee: User,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        manual = await training_service.assign(employee.id, TrainingType.BASIC)
        kpi_score = await submit_kpi(scenario_b)

        result = await orchestrator.process(kpi_score.id)

        basic = next(a for a in result.actions if a.action == "basic")
        assert basic.outcome is ActionOutcome.SKIPPED_DUPLICATE
        assert basic.entity_id == manual.id
        assert result.status is AutomationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_open_training_created_after_checks_is_duplicate(
        self,
        session_factory,
        orchestrator: TriggerOrchestrator,
        training_service,
        employee: User,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        # A concurrent assignment lands between the open checks and the insert,
        # so only the partial unique index catches it.
        await training_service.assign(employee.id, TrainingType.BASIC)
        kpi_score = await submit_kpi(scenario_b)

        with (
            patch.object(orchestrator._training, "find_open_assignment", AsyncMock(return_value=None)),
            patch("src.services.training_service.OPEN_TRAINING_STATUSES", ()),
        ):
            result = await orchestrator.process(kpi_score.id)

        basic = next(a for a in result.actions if a.action == "basic")
        assert basic.outcome is ActionOutcome.SKIPPED_DUPLICATE
        assert basic.entity_id is None
        assert result.status is AutomationStatus.COMPLETED
        async with session_factory() as session:
            basic_count = await session.scalar(
                select(func.count())
                .select_from(TrainingAssignment)
                .where(
                    TrainingAssignment.user_id == employee.id,
                    TrainingAssignment.training_type == TrainingType.BASIC,
                )
            )
        assert basic_count == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_email_failure_is_partial(
        self,
        session_factory,
        config_store: ConfigurationStore,
        failing_transport,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        orchestrator = TriggerOrchestrator(
            session_factory,
            config_store=config_store,
            email_service=EmailService(session_factory, transport=failing_transport),
        )
        kpi_score = await submit_kpi(scenario_b)

        result = await orchestrator.process(kpi_score.id)

        assert result.status is AutomationStatus.PARTIALLY_FAILED
        assert result.counts == {"created": 8, "skipped_duplicate": 0, "failed": 3}
        failed = [a for a in result.actions if a.outcome is ActionOutcome.FAILED]
        assert {a.kind for a in failed} == {ActionKind.EMAIL}
        assert all(a.error == "Mail relay unreachable: connection refused" for a in failed)

    @pytest.mark.asyncio
    async def test_failure_before_dispatch(
        self,
        session_factory,
        kpi_service,
        email_service: EmailService,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        store = AsyncMock(spec=ConfigurationStore)
        store.get_active.side_effect = ConfigurationError("No rating band contains score 96.55")
        orchestrator = TriggerOrchestrator(session_factory, config_store=store, email_service=email_service)

        result = await orchestrator.process(kpi_score.id)

        assert result.status is AutomationStatus.FAILED
        assert result.actions == ()
        assert "No rating band" in result.error
        assert (await kpi_service.get(kpi_score.id)).automation_status is AutomationStatus.FAILED


# =============================================================================
# Claim protocol
# =============================================================================


class TestClaim:
    @pytest.mark.asyncio
    async def test_completed_record_is_skipped(
        self,
        orchestrator: TriggerOrchestrator,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        await orchestrator.process(kpi_score.id)

        again = await orchestrator.process(kpi_score.id)

        assert again.skipped is SkipReason.ALREADY_COMPLETED
        assert again.status is AutomationStatus.COMPLETED
        assert not again.processed

    @pytest.mark.asyncio
    async def test_failed_record_requires_reprocess(
        self,
        orchestrator: TriggerOrchestrator,
        session_factory,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        await _set_status(session_factory, kpi_score.id, AutomationStatus.PARTIALLY_FAILED)

        result = await orchestrator.process(kpi_score.id)

        assert result.skipped is SkipReason.REQUIRES_REPROCESS

    @pytest.mark.asyncio
    async def test_processing_record_is_skipped(
        self,
        orchestrator: TriggerOrchestrator,
        session_factory,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        await _set_status(session_factory, kpi_score.id, AutomationStatus.PROCESSING, claimed_at=utc_now())

        result = await orchestrator.process(kpi_score.id, ProcessOptions(reprocess=True))

        assert result.skipped is SkipReason.ALREADY_PROCESSING
        assert result.status is AutomationStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stale_claim_is_reclaimed(
        self,
        session_factory,
        config_store: ConfigurationStore,
        email_service: EmailService,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        orchestrator = TriggerOrchestrator(
            session_factory,
            config_store=config_store,
            email_service=email_service,
            stale_after_seconds=60,
        )
        kpi_score = await submit_kpi(scenario_a)
        await _set_status(
            session_factory,
            kpi_score.id,
            AutomationStatus.PROCESSING,
            claimed_at=utc_now() - timedelta(minutes=10),
        )

        assert [k.id for k in await orchestrator.find_stale()] == [kpi_score.id]

        result = await orchestrator.process(kpi_score.id)

        assert result.processed
        assert result.status is AutomationStatus.COMPLETED
        assert await orchestrator.find_stale() == []

    @pytest.mark.asyncio
    async def test_concurrent_requests_dispatch_once(
        self,
        orchestrator: TriggerOrchestrator,
        recording_transport,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)

        results = await asyncio.gather(
            orchestrator.process(kpi_score.id),
            orchestrator.process(kpi_score.id),
        )

        assert sum(1 for r in results if r.processed) == 1
        skipped = next(r for r in results if not r.processed)
        assert skipped.skipped in (SkipReason.ALREADY_PROCESSING, SkipReason.ALREADY_COMPLETED)
        assert len(recording_transport.sent) == 3

    @pytest.mark.asyncio
    async def test_process_pending(
        self,
        orchestrator: TriggerOrchestrator,
        submit_kpi,
        scenario_a: dict,
        scenario_b: dict,
    ) -> None:
        await submit_kpi(scenario_a, period="2024-05")
        await submit_kpi(scenario_b, period="2024-06")

        results = await orchestrator.process_pending(limit=10, options=ProcessOptions(send_email=False))

        assert len(results) == 2
        assert all(r.status is AutomationStatus.COMPLETED for r in results)
        assert await orchestrator.process_pending() == []


# =============================================================================
# Reprocessing
# =============================================================================


class TestReprocess:
    @pytest.mark.asyncio
    async def test_reprocess_creates_nothing_new(
        self,
        orchestrator: TriggerOrchestrator,
        kpi_service,
        recording_transport,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)
        await orchestrator.process(kpi_score.id)

        result = await orchestrator.process(kpi_score.id, ProcessOptions(reprocess=True))

        assert result.status is AutomationStatus.COMPLETED
        assert result.counts == {"created": 0, "skipped_duplicate": 11, "failed": 0}
        assert len(recording_transport.sent) == 3
        status = await kpi_service.automation_status(kpi_score.id)
        assert status["linked"] == {"trainings": 3, "audits": 2, "emails": 3, "notifications": 3}

    @pytest.mark.asyncio
    async def test_resend_emails(
        self,
        orchestrator: TriggerOrchestrator,
        email_service: EmailService,
        recording_transport,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        await orchestrator.process(kpi_score.id)

        result = await orchestrator.process(kpi_score.id, ProcessOptions(reprocess=True, resend_emails=True))

        assert _outcomes(result)[("email", "kpi_notification")] == "created"
        assert len(recording_transport.sent) == 2
        latest = await email_service.latest_attempt(kpi_score.id, EmailTemplate.KPI_NOTIFICATION)
        assert latest.attempt_number == 2

    @pytest.mark.asyncio
    async def test_reprocess_retries_failed_email(
        self,
        session_factory,
        config_store: ConfigurationStore,
        failing_transport,
        orchestrator: TriggerOrchestrator,
        email_service: EmailService,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        failing = TriggerOrchestrator(
            session_factory,
            config_store=config_store,
            email_service=EmailService(session_factory, transport=failing_transport),
        )
        kpi_score = await submit_kpi(scenario_a)
        first = await failing.process(kpi_score.id)
        assert first.status is AutomationStatus.PARTIALLY_FAILED

        result = await orchestrator.process(kpi_score.id, ProcessOptions(reprocess=True))

        assert result.status is AutomationStatus.COMPLETED
        assert _outcomes(result) == {
            ("email", "kpi_notification"): "created",
            ("notification", "kpi_score"): "skipped_duplicate",
        }
        latest = await email_service.latest_attempt(kpi_score.id, EmailTemplate.KPI_NOTIFICATION)
        assert latest.status is EmailStatus.SENT
        assert latest.attempt_number == 2
        assert latest.retry_of_id is not None

    @pytest.mark.asyncio
    async def test_reprocess_uses_latest_configuration(
        self,
        session_factory,
        orchestrator: TriggerOrchestrator,
        config_store: ConfigurationStore,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        await orchestrator.process(kpi_score.id, ProcessOptions(send_email=False))
        current = await config_store.get_active()
        rules = [
            rule.model_copy(update={"trainings": [TrainingType.DOS_DONTS]})
            if rule.rating.value == "excellent"
            else rule
            for rule in current.document.rating_rules
        ]
        await config_store.update_triggers(current.document.triggers.model_copy(update={"rating_rules": rules}))

        result = await orchestrator.process(kpi_score.id, ProcessOptions(reprocess=True, send_email=False))

        assert result.config_version == 2
        assert _outcomes(result)[("training", "dos_donts")] == "created"
        assert _outcomes(result)[("notification", "kpi_score")] == "skipped_duplicate"
        async with session_factory() as session:
            stored = await session.get(KPIScore, kpi_score.id)
        # The stored score was computed under version 1 and is not recomputed.
        assert stored.config_version == 1
        assert stored.automation_result["config_version"] == 2
