"""Pydantic schemas for automation requests and results."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from src.db.models import AuditType, AutomationStatus, EmailTemplate, NotificationType, Rating, TrainingType


class ProcessRequest(BaseModel):
    """Options for processing or reprocessing a KPI score."""

    send_email: bool = Field(default=True, description="Dispatch the required email templates")
    resend_emails: bool = Field(default=False, description="Send templates again even if already sent")


class RequiredActionsResponse(BaseModel):
    """Evaluated action set."""

    trainings: list[TrainingType]
    audits: list[AuditType]
    emails: list[EmailTemplate]
    notifications: list[NotificationType]
    reasons: list[str] = Field(default_factory=list)


class ActionResultResponse(BaseModel):
    """Outcome of one dispatched action."""

    kind: str
    action: str
    outcome: str
    entity_id: UUID | None = None
    error: str | None = None


class AutomationResultResponse(BaseModel):
    """Result of a process request.

    Attributes:
        kpi_score_id: Processed KPI score.
        status: Automation status after the request.
        skipped: Benign skip reason, when nothing was done.
        actions: Per-action outcomes.
        required: Evaluated actions.
        config_version: Configuration version whose rules were evaluated.
        error: Pre-dispatch failure message.
    """

    kpi_score_id: UUID
    status: AutomationStatus
    skipped: str | None = None
    actions: list[ActionResultResponse] = Field(default_factory=list)
    required: RequiredActionsResponse | None = None
    config_version: int | None = None
    error: str | None = None
    processed_at: datetime | None = None
    counts: dict[str, int] = Field(default_factory=dict)


class AutomationStatusResponse(BaseModel):
    """Stored automation status of a KPI score."""

    kpi_score_id: UUID
    automation_status: AutomationStatus
    processed_at: datetime | None = None
    config_version: int
    rules_config_version: int | None = None
    automation_result: dict[str, Any] | None = None
    linked: dict[str, int]


class PreviewResponse(BaseModel):
    """Score and required actions for inputs that were not persisted."""

    overall_score: float
    rating: Rating
    config_version: int
    contributions: dict[str, float]
    required: RequiredActionsResponse
