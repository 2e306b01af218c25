"""Training assignments API router - Manual assignment and workflow transitions."""

from uuid import UUID

from fastapi import APIRouter

from src.db.models import AssignmentSource, TrainingStatus
from src.dependencies import TrainingServiceDep
from src.http_errors import to_http_exception
from src.schemas.workflow import (
    CancelRequest,
    TrainingAssignmentResponse,
    TrainingAssignRequest,
    TrainingCompleteRequest,
)
from src.services.errors import KPIEngineError

router = APIRouter(prefix="/training-assignments", tags=["training"])


@router.post("", response_model=TrainingAssignmentResponse, status_code=201)
async def assign_training(request: TrainingAssignRequest, service: TrainingServiceDep) -> TrainingAssignmentResponse:
    """Manually assign a training.

    Raises:
        HTTPException: 404 if the user does not exist.
        HTTPException: 409 if an open assignment of this type exists.
    """
    try:
        assignment = await service.assign(
            request.user_id,
            request.training_type,
            due_date=request.due_date,
            source=AssignmentSource.MANUAL,
            reason=request.reason,
            assigned_by_user_id=request.assigned_by,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return TrainingAssignmentResponse.model_validate(assignment)


@router.get("/user/{user_id}", response_model=list[TrainingAssignmentResponse])
async def list_user_trainings(
    user_id: UUID,
    service: TrainingServiceDep,
    status: TrainingStatus | None = None,
) -> list[TrainingAssignmentResponse]:
    """Training assignments for a user, newest first."""
    return [TrainingAssignmentResponse.model_validate(a) for a in await service.list_for_user(user_id, status)]


@router.get("/{assignment_id}", response_model=TrainingAssignmentResponse)
async def get_training(assignment_id: UUID, service: TrainingServiceDep) -> TrainingAssignmentResponse:
    try:
        return TrainingAssignmentResponse.model_validate(await service.get(assignment_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{assignment_id}/start", response_model=TrainingAssignmentResponse)
async def start_training(assignment_id: UUID, service: TrainingServiceDep) -> TrainingAssignmentResponse:
    """Move an assigned training to in_progress."""
    try:
        return TrainingAssignmentResponse.model_validate(await service.start(assignment_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{assignment_id}/complete", response_model=TrainingAssignmentResponse)
async def complete_training(
    assignment_id: UUID,
    request: TrainingCompleteRequest,
    service: TrainingServiceDep,
) -> TrainingAssignmentResponse:
    """Complete an open training.

    Raises:
        HTTPException: 400 if the training is already completed or cancelled.
    """
    try:
        assignment = await service.complete(
            assignment_id,
            score=request.score,
            notes=request.notes,
            completed_by=request.completed_by,
        )
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return TrainingAssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/cancel", response_model=TrainingAssignmentResponse)
async def cancel_training(
    assignment_id: UUID,
    request: CancelRequest,
    service: TrainingServiceDep,
) -> TrainingAssignmentResponse:
    try:
        assignment = await service.cancel(assignment_id, reason=request.reason, cancelled_by=request.cancelled_by)
    except KPIEngineError as e:
        raise to_http_exception(e) from e
    return TrainingAssignmentResponse.model_validate(assignment)
