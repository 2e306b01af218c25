"""Lifecycle API router - Read-only user timeline."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from src.db.models import LifecycleEventType
from src.dependencies import LifecycleRecorderDep
from src.schemas.workflow import LifecycleEventResponse

router = APIRouter(prefix="/lifecycle", tags=["lifecycle"])


@router.get("/user/{user_id}", response_model=list[LifecycleEventResponse])
async def user_timeline(
    user_id: UUID,
    recorder: LifecycleRecorderDep,
    event_type: LifecycleEventType | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[LifecycleEventResponse]:
    """Timeline events for a user, newest first."""
    events = await recorder.timeline(user_id, limit=limit, event_type=event_type)
    return [LifecycleEventResponse.model_validate(event) for event in events]


@router.get("/kpi/{kpi_score_id}", response_model=list[LifecycleEventResponse])
async def kpi_score_events(kpi_score_id: UUID, recorder: LifecycleRecorderDep) -> list[LifecycleEventResponse]:
    """Events linked to one KPI score, oldest first."""
    return [LifecycleEventResponse.model_validate(event) for event in await recorder.for_kpi_score(kpi_score_id)]
