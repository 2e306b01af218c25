"""Email logs API router - Dispatch attempt history and manual retry.

Retrying never edits the failed attempt; it appends a new attempt row.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from src.db.models import EmailStatus, EmailTemplate
from src.dependencies import EmailServiceDep
from src.http_errors import to_http_exception
from src.schemas.workflow import EmailLogResponse
from src.services.errors import KPIEngineError

router = APIRouter(prefix="/email-logs", tags=["email"])


@router.get("", response_model=list[EmailLogResponse])
async def list_email_logs(
    service: EmailServiceDep,
    kpi_score_id: UUID | None = None,
    user_id: UUID | None = None,
    status: EmailStatus | None = None,
    template: EmailTemplate | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[EmailLogResponse]:
    """List email attempts, newest first."""
    logs = await service.list_logs(
        kpi_score_id=kpi_score_id,
        user_id=user_id,
        status=status,
        template=template,
        limit=limit,
        offset=offset,
    )
    return [EmailLogResponse.model_validate(log) for log in logs]


@router.get("/{log_id}", response_model=EmailLogResponse)
async def get_email_log(log_id: UUID, service: EmailServiceDep) -> EmailLogResponse:
    try:
        return EmailLogResponse.model_validate(await service.get(log_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{log_id}/retry", response_model=EmailLogResponse, status_code=201)
async def retry_email(log_id: UUID, service: EmailServiceDep) -> EmailLogResponse:
    """Retry a failed email as a new attempt.

    Raises:
        HTTPException: 404 if the log does not exist.
        HTTPException: 400 if the latest attempt for the template already succeeded.
    """
    try:
        return EmailLogResponse.model_validate(await service.retry(log_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e
