"""Audits API router - Manual scheduling and audit workflow transitions."""

from uuid import UUID

from fastapi import APIRouter

from src.db.models import AssignmentSource, AuditStatus
from src.dependencies import AuditServiceDep
from src.http_errors import to_http_exception
from src.schemas.workflow import AuditCompleteRequest, AuditResponse, AuditScheduleRequest, CancelRequest
from src.services.errors import KPIEngineError

router = APIRouter(prefix="/audits", tags=["audits"])


@router.post("", response_model=AuditResponse, status_code=201)
async def schedule_audit(request: AuditScheduleRequest, service: AuditServiceDep) -> AuditResponse:
    """Manually schedule an audit.

    Raises:
        HTTPException: 404 if the user does not exist.
        HTTPException: 409 if an open audit of this type exists.
    """
    try:
        audit = await service.schedule(
            request.user_id,
            request.audit_type,
            scheduled_date=request.scheduled_date,
            source=AssignmentSource.MANUAL,
            audit_scope=request.audit_scope,
            scheduled_by_user_id=request.scheduled_by,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return AuditResponse.model_validate(audit)


@router.get("/user/{user_id}", response_model=list[AuditResponse])
async def list_user_audits(
    user_id: UUID,
    service: AuditServiceDep,
    status: AuditStatus | None = None,
) -> list[AuditResponse]:
    """Audits for a user, by scheduled date."""
    return [AuditResponse.model_validate(a) for a in await service.list_for_user(user_id, status)]


@router.get("/{audit_id}", response_model=AuditResponse)
async def get_audit(audit_id: UUID, service: AuditServiceDep) -> AuditResponse:
    try:
        return AuditResponse.model_validate(await service.get(audit_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{audit_id}/start", response_model=AuditResponse)
async def start_audit(audit_id: UUID, service: AuditServiceDep) -> AuditResponse:
    try:
        return AuditResponse.model_validate(await service.start(audit_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{audit_id}/complete", response_model=AuditResponse)
async def complete_audit(audit_id: UUID, request: AuditCompleteRequest, service: AuditServiceDep) -> AuditResponse:
    """Record findings, risk level and compliance status.

    Raises:
        HTTPException: 400 if the audit is already completed or cancelled.
    """
    try:
        audit = await service.complete(
            audit_id,
            findings=request.findings,
            risk_level=request.risk_level,
            compliance_status=request.compliance_status,
            completed_by=request.completed_by,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return AuditResponse.model_validate(audit)


@router.post("/{audit_id}/cancel", response_model=AuditResponse)
async def cancel_audit(audit_id: UUID, request: CancelRequest, service: AuditServiceDep) -> AuditResponse:
    try:
        audit = await service.cancel(audit_id, reason=request.reason, cancelled_by=request.cancelled_by)
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return AuditResponse.model_validate(audit)
