"""KPI API router - Submission, scoring preview, overrides and automation.

This module provides REST endpoints for submitting KPI scores, running and
re-running trigger automation, and inspecting automation outcomes.
"""

from collections import Counter
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from src.dependencies import KPIServiceDep, OrchestratorDep
from src.http_errors import to_http_exception
from src.schemas.automation import (
    ActionResultResponse,
    AutomationResultResponse,
    AutomationStatusResponse,
    PreviewResponse,
    ProcessRequest,
    RequiredActionsResponse,
)
from src.schemas.kpi import (
    BulkKPISubmitRequest,
    BulkKPISubmitResponse,
    BulkRowOutcome,
    BulkRowResult,
    KPIOverrideRequest,
    KPIPreviewRequest,
    KPIScoreResponse,
    KPISubmitRequest,
)
from src.services.errors import KPIEngineError
from src.services.rule_evaluator import RequiredActions
from src.services.trigger_orchestrator import AutomationResult, ProcessOptions

router = APIRouter(prefix="/kpi", tags=["kpi"])

LimitQuery = Annotated[int, Query(ge=1, le=500, description="Maximum results")]


class KPISubmitResponse(BaseModel):
    """Created KPI score plus the automation result when processed."""

    kpi_score: KPIScoreResponse
    automation: AutomationResultResponse | None = None


# =============================================================================
# Response Helpers
# =============================================================================


def _required_to_response(required: RequiredActions) -> RequiredActionsResponse:
    return RequiredActionsResponse(
        trainings=list(required.trainings),
        audits=list(required.audits),
        emails=list(required.emails),
        notifications=list(required.notifications),
        reasons=list(required.reasons),
    )


def _automation_to_response(result: AutomationResult) -> AutomationResultResponse:
    """Convert an AutomationResult dataclass to its response schema."""
    return AutomationResultResponse(
        kpi_score_id=result.kpi_score_id,
        status=result.status,
        skipped=result.skipped.value if result.skipped else None,
        actions=[
            ActionResultResponse(
                kind=action.kind.value,
                action=action.action,
                outcome=action.outcome.value,
                entity_id=action.entity_id,
                error=action.error,
            )
            for action in result.actions
        ],
        required=_required_to_response(result.required) if result.required else None,
        config_version=result.config_version,
        error=result.error,
        processed_at=result.processed_at,
        counts=result.counts,
    )


# =============================================================================
# Submission
# =============================================================================


@router.post("", response_model=KPISubmitResponse, status_code=201)
async def submit_kpi(
    request: KPISubmitRequest,
    service: KPIServiceDep,
    orchestrator: OrchestratorDep,
) -> KPISubmitResponse:
    """Submit a KPI score and, by default, run automation right away.

    The score and rating are always returned; automation outcome is reported
    separately and never turns a successful submission into an error.

    Raises:
        HTTPException: 404 if the user does not exist.
        HTTPException: 409 if a score already exists for the user and period.
        HTTPException: 422 if the period or inputs are invalid.
    """
    try:
        kpi_score = await service.submit(
            request.user_id,
            request.period,
            request.inputs,
            submitted_by=request.submitted_by,
            source=request.source,
            comments=request.comments,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e

    automation = None
    if request.process:
        automation = _automation_to_response(
            await orchestrator.process(kpi_score.id, ProcessOptions(send_email=request.send_email))
        )
        kpi_score = await service.get(kpi_score.id)
    return KPISubmitResponse(kpi_score=KPIScoreResponse.model_validate(kpi_score), automation=automation)


@router.post("/preview", response_model=PreviewResponse)
async def preview_kpi(request: KPIPreviewRequest, service: KPIServiceDep) -> PreviewResponse:
    """Score inputs and list the actions they would trigger, without saving."""
    try:
        result, required, version = await service.preview(request.inputs)
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return PreviewResponse(
        overall_score=result.overall_score,
        rating=result.rating,
        config_version=version,
        contributions={metric.value: value for metric, value in result.contributions.items()},
        required=_required_to_response(required),
    )


@router.post("/bulk", response_model=BulkKPISubmitResponse)
async def bulk_submit_kpi(
    request: BulkKPISubmitRequest,
    service: KPIServiceDep,
    orchestrator: OrchestratorDep,
) -> BulkKPISubmitResponse:
    """Submit many KPI rows; each row is matched to a user and succeeds or fails on its own."""
    rows = await service.bulk_submit(
        [row.model_dump() for row in request.rows],
        submitted_by=request.submitted_by,
        orchestrator=orchestrator if request.process else None,
        options=ProcessOptions(send_email=request.send_email),
    )
    results = [BulkRowResult(**row) for row in rows]
    counts = Counter(row.outcome for row in results)
    return BulkKPISubmitResponse(
        created=counts[BulkRowOutcome.CREATED],
        failed=counts[BulkRowOutcome.FAILED],
        unmatched=counts[BulkRowOutcome.UNMATCHED],
        results=results,
    )


# =============================================================================
# Listings
# =============================================================================


@router.get("/pending-automation", response_model=list[KPIScoreResponse])
async def list_pending_automation(service: KPIServiceDep, limit: LimitQuery = 100) -> list[KPIScoreResponse]:
    """KPI scores whose automation is pending, failed or partially failed."""
    return [KPIScoreResponse.model_validate(k) for k in await service.list_pending_automation(limit)]


@router.get("/automation-stats")
async def automation_stats(service: KPIServiceDep) -> dict[str, int]:
    """Count of KPI scores per automation status."""
    return await service.automation_stats()


@router.get("/stale", response_model=list[KPIScoreResponse])
async def list_stale(orchestrator: OrchestratorDep) -> list[KPIScoreResponse]:
    """KPI scores stuck in processing beyond the staleness timeout."""
    return [KPIScoreResponse.model_validate(k) for k in await orchestrator.find_stale()]


@router.post("/process-pending", response_model=list[AutomationResultResponse])
async def process_pending(
    orchestrator: OrchestratorDep,
    limit: LimitQuery = 50,
    send_email: bool = True,
) -> list[AutomationResultResponse]:
    """Process pending and stale KPI scores, oldest first."""
    results = await orchestrator.process_pending(limit, ProcessOptions(send_email=send_email))
    return [_automation_to_response(result) for result in results]


@router.get("/user/{user_id}", response_model=list[KPIScoreResponse])
async def list_user_scores(user_id: UUID, service: KPIServiceDep, limit: LimitQuery = 24) -> list[KPIScoreResponse]:
    """KPI scores for a user, newest period first."""
    return [KPIScoreResponse.model_validate(k) for k in await service.list_for_user(user_id, limit)]


# =============================================================================
# Single record
# =============================================================================


@router.get("/{kpi_score_id}", response_model=KPIScoreResponse)
async def get_kpi_score(kpi_score_id: UUID, service: KPIServiceDep) -> KPIScoreResponse:
    """Fetch a KPI score.

    Raises:
        HTTPException: 404 if not found.
    """
    try:
        return KPIScoreResponse.model_validate(await service.get(kpi_score_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


async def _process(
    orchestrator: OrchestratorDep,
    kpi_score_id: UUID,
    request: ProcessRequest,
    reprocess: bool,
) -> AutomationResultResponse:
    options = ProcessOptions(send_email=request.send_email, reprocess=reprocess, resend_emails=request.resend_emails)
    try:
        return _automation_to_response(await orchestrator.process(kpi_score_id, options))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{kpi_score_id}/process", response_model=AutomationResultResponse)
async def process_kpi(
    kpi_score_id: UUID,
    orchestrator: OrchestratorDep,
    request: ProcessRequest | None = None,
) -> AutomationResultResponse:
    """Run automation for a pending KPI score.

    A record that is already processing or settled yields a benign skip.
    """
    return await _process(orchestrator, kpi_score_id, request or ProcessRequest(), reprocess=False)


@router.post("/{kpi_score_id}/reprocess", response_model=AutomationResultResponse)
async def reprocess_kpi(
    kpi_score_id: UUID,
    orchestrator: OrchestratorDep,
    request: ProcessRequest | None = None,
) -> AutomationResultResponse:
    """Re-run automation with the current configuration.

    Only actions that failed or were never attempted run again; existing
    trainings, audits and sent emails are skipped as duplicates.
    """
    return await _process(orchestrator, kpi_score_id, request or ProcessRequest(), reprocess=True)


@router.get("/{kpi_score_id}/automation-status", response_model=AutomationStatusResponse)
async def get_automation_status(kpi_score_id: UUID, service: KPIServiceDep) -> AutomationStatusResponse:
    """Stored automation status, last result and linked record counts."""
    try:
        return AutomationStatusResponse(**await service.automation_status(kpi_score_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.patch("/{kpi_score_id}/override", response_model=KPIScoreResponse)
async def override_kpi(
    kpi_score_id: UUID,
    request: KPIOverrideRequest,
    service: KPIServiceDep,
) -> KPIScoreResponse:
    """Override the displayed score and/or rating without re-running automation."""
    if request.override_score is None and request.override_rating is None:
        raise HTTPException(status_code=422, detail="Provide override_score, override_rating, or both")
    try:
        kpi_score = await service.override(
            kpi_score_id,
            request.reason,
            override_score=request.override_score,
            override_rating=request.override_rating,
            overridden_by=request.overridden_by,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return KPIScoreResponse.model_validate(kpi_score)
