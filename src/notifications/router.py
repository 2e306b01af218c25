"""Notifications API router - In-app notifications and read state."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from src.db.models import NotificationStatus
from src.dependencies import NotificationServiceDep
from src.http_errors import to_http_exception
from src.schemas.workflow import NotificationResponse
from src.services.errors import KPIEngineError

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/user/{user_id}", response_model=list[NotificationResponse])
async def list_user_notifications(
    user_id: UUID,
    service: NotificationServiceDep,
    status: NotificationStatus | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[NotificationResponse]:
    """Notifications for a user, newest first."""
    return [NotificationResponse.model_validate(n) for n in await service.list_for_user(user_id, status, limit)]


@router.get("/user/{user_id}/unread-count")
async def unread_count(user_id: UUID, service: NotificationServiceDep) -> dict[str, int]:
    return {"unread": await service.unread_count(user_id)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: UUID, service: NotificationServiceDep) -> NotificationResponse:
    """Mark an unread notification as read.

    Raises:
        HTTPException: 400 if the notification is not unread.
    """
    try:
        return NotificationResponse.model_validate(await service.mark_read(notification_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/{notification_id}/acknowledge", response_model=NotificationResponse)
async def acknowledge(notification_id: UUID, service: NotificationServiceDep) -> NotificationResponse:
    try:
        return NotificationResponse.model_validate(await service.acknowledge(notification_id))
    except KPIEngineError as e:
        raise to_http_exception(e) from e
