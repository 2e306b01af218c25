"""Pydantic schemas for training, audit, notification, email log and lifecycle endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.db.models import (
    AssignmentSource,
    AuditStatus,
    AuditType,
    ComplianceStatus,
    EmailStatus,
    EmailTemplate,
    LifecycleCategory,
    LifecycleEventType,
    NotificationStatus,
    NotificationType,
    RiskLevel,
    TrainingStatus,
    TrainingType,
)

# =============================================================================
# Training
# =============================================================================


class TrainingAssignRequest(BaseModel):
    """Manual training assignment."""

    user_id: UUID
    training_type: TrainingType
    due_date: datetime | None = Field(default=None, description="Defaults to TRAINING_DUE_DAYS from now")
    reason: str | None = None
    assigned_by: UUID | None = None


class TrainingCompleteRequest(BaseModel):
    score: float | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    completed_by: UUID | None = None


class CancelRequest(BaseModel):
    reason: str | None = None
    cancelled_by: UUID | None = None


class TrainingAssignmentResponse(BaseModel):
    """Training assignment as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    training_type: TrainingType
    status: TrainingStatus
    assigned_by: AssignmentSource
    kpi_score_id: UUID | None = None
    due_date: datetime
    reason: str | None = None
    notes: str | None = None
    completion_score: float | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime


# =============================================================================
# Audit
# =============================================================================


class AuditScheduleRequest(BaseModel):
    """Manual audit schedule."""

    user_id: UUID
    audit_type: AuditType
    scheduled_date: datetime | None = Field(default=None, description="Defaults to AUDIT_LEAD_DAYS from now")
    audit_scope: str | None = None
    scheduled_by: UUID | None = None


class AuditCompleteRequest(BaseModel):
    findings: str | None = None
    risk_level: RiskLevel | None = None
    compliance_status: ComplianceStatus | None = None
    completed_by: UUID | None = None


class AuditResponse(BaseModel):
    """Audit as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    audit_type: AuditType
    status: AuditStatus
    scheduled_by: AssignmentSource
    kpi_score_id: UUID | None = None
    scheduled_date: datetime
    audit_scope: str | None = None
    audit_method: str | None = None
    findings: str | None = None
    risk_level: RiskLevel | None = None
    compliance_status: ComplianceStatus | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime


# =============================================================================
# Notifications, email logs and lifecycle
# =============================================================================


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    kpi_score_id: UUID | None = None
    notification_type: NotificationType
    title: str
    message: str
    status: NotificationStatus
    read_at: datetime | None = None
    acknowledged_at: datetime | None = None
    created_at: datetime


class EmailLogResponse(BaseModel):
    """One email dispatch attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kpi_score_id: UUID | None = None
    user_id: UUID
    template: EmailTemplate
    recipients: list[str]
    subject: str
    status: EmailStatus
    error_message: str | None = None
    attempt_number: int
    retry_of_id: UUID | None = None
    created_at: datetime


class LifecycleEventResponse(BaseModel):
    """Timeline entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    event_type: LifecycleEventType
    category: LifecycleCategory
    title: str
    description: str | None = None
    details: dict[str, Any] | None = None
    kpi_score_id: UUID | None = None
    triggered_by_id: UUID | None = None
    created_at: datetime
