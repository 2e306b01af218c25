"""Pydantic schemas for KPI submissions and KPI score responses."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.db.models import AutomationStatus, KPIMetric, KPISource, Rating

if TYPE_CHECKING:
    from src.db.models import KPIScore

# Upper bound for event counts; anything larger is a data-entry error.
MAX_EVENT_COUNT = 1000

# Sources a client may declare when submitting.
CALLER_SOURCES = (KPISource.MANUAL, KPISource.BULK_UPLOAD)

# Keys a bulk row may use to identify the employee, in match order.
USER_IDENTIFIERS = ("user_id", "employee_id", "email", "name")


class RawKPIInputs(BaseModel):
    """Raw per-metric values for one period.

    Rates are percentages in [0, 100]; counts are non-negative integers.

    Example:
        >>> RawKPIInputs(
        ...     tat=95, major_negativity=0, quality=95, neighbor_check=90,
        ...     general_negativity=5, app_usage=98, insufficiency=0,
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tat: float = Field(ge=0, le=100, description="Turn-around-time compliance rate")
    major_negativity: int = Field(ge=0, le=MAX_EVENT_COUNT, description="Major negativity case count")
    quality: float = Field(ge=0, le=100, description="Quality rate")
    neighbor_check: float = Field(ge=0, le=100, description="Neighbor check completion rate")
    general_negativity: float = Field(ge=0, le=100, description="General negativity rate (lower is better)")
    app_usage: float = Field(ge=0, le=100, description="App usage rate")
    insufficiency: int = Field(ge=0, le=MAX_EVENT_COUNT, description="Insufficient case count")

    def value(self, metric: KPIMetric) -> float:
        """Raw value for ``metric``."""
        return getattr(self, metric.value)

    @classmethod
    def from_record(cls, kpi_score: "KPIScore") -> "RawKPIInputs":
        """Rebuild raw inputs from a persisted KPI score."""
        return cls(**{metric.value: getattr(kpi_score, metric.value) for metric in KPIMetric})


class KPISubmitRequest(BaseModel):
    """Request body for submitting a KPI score.

    Attributes:
        user_id: Scored employee.
        period: Year-month, ``YYYY-MM``.
        inputs: Raw metric values.
        source: Origin of the submission; ``computed`` is reserved for
            scores produced by the engine itself.
        submitted_by: Staff member submitting.
        comments: Optional free-form comments.
        process: Run automation immediately after persisting.
        send_email: Dispatch emails when processing.
    """

    user_id: UUID
    period: str = Field(description="Year-month, e.g. '2024-06'")
    inputs: RawKPIInputs
    source: KPISource = KPISource.MANUAL
    submitted_by: UUID | None = None
    comments: str | None = None
    process: bool = Field(default=True, description="Run automation right after submission")
    send_email: bool = Field(default=True, description="Dispatch emails when processing")

    @field_validator("source")
    @classmethod
    def _caller_source(cls, source: KPISource) -> KPISource:
        if source not in CALLER_SOURCES:
            raise ValueError(f"source '{source.value}' cannot be set by a caller")
        return source


class KPIPreviewRequest(BaseModel):
    """Raw inputs to score without persisting anything."""

    inputs: RawKPIInputs


class KPIOverrideRequest(BaseModel):
    """Admin override of the displayed score and rating."""

    override_score: float | None = Field(default=None, ge=0, le=100)
    override_rating: Rating | None = None
    reason: str = Field(min_length=1, description="Why the derived values are overridden")
    overridden_by: UUID | None = None


class BulkRowOutcome(str, enum.Enum):
    """Outcome of one bulk upload row.

    Attributes:
        CREATED: KPI score stored.
        FAILED: Row matched a user but was rejected.
        UNMATCHED: No user matches the row's identifiers.
    """

    CREATED = "created"
    FAILED = "failed"
    UNMATCHED = "unmatched"


class BulkKPIRow(BaseModel):
    """One row of a bulk upload.

    The employee is identified by ``user_id``, ``employee_id``, ``email``
    or ``name``, tried in that order.
    """

    user_id: UUID | None = None
    employee_id: str | None = None
    email: str | None = None
    name: str | None = None
    period: str
    inputs: dict[str, Any]
    comments: str | None = None

    @model_validator(mode="after")
    def _has_identifier(self) -> "BulkKPIRow":
        if not any((self.user_id, self.employee_id, self.email, self.name)):
            raise ValueError("row needs user_id, employee_id, email or name")
        return self


class BulkKPISubmitRequest(BaseModel):
    """Bulk upload request."""

    rows: list[BulkKPIRow] = Field(min_length=1)
    submitted_by: UUID | None = None
    process: bool = False
    send_email: bool = True


class BulkRowResult(BaseModel):
    """Per-row outcome of a bulk upload."""

    row: int
    outcome: BulkRowOutcome
    user_id: UUID | None = None
    matched_by: str | None = None
    period: str | None = None
    kpi_score_id: UUID | None = None
    automation_status: AutomationStatus | None = None
    error: str | None = None


class BulkKPISubmitResponse(BaseModel):
    """Bulk upload outcome."""

    created: int
    failed: int
    unmatched: int
    results: list[BulkRowResult]


class KPIScoreResponse(BaseModel):
    """KPI score as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    period: str
    source: KPISource
    tat: float
    major_negativity: int
    quality: float
    neighbor_check: float
    general_negativity: float
    app_usage: float
    insufficiency: int
    overall_score: float
    rating: Rating
    effective_score: float
    effective_rating: Rating
    config_version: int
    automation_status: AutomationStatus
    processed_at: datetime | None = None
    override_score: float | None = None
    override_rating: Rating | None = None
    override_reason: str | None = None
    overridden_at: datetime | None = None
    comments: str | None = None
    created_at: datetime
