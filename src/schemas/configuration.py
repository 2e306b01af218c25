"""Pydantic schemas for the KPI scoring and trigger configuration document.

The configuration is versioned as a whole document: metric definitions
(kind, weight, penalty curve), rating bands, rating rules and metric rules.
These models parse the stored JSON document and the configuration API
payloads; cross-field checks live in ``src.services.configuration_validation``.
"""

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.db.models import (
    AuditType,
    ConfigChangeKind,
    EmailTemplate,
    KPIMetric,
    MetricKind,
    Rating,
    TrainingType,
)


class RuleOperator(str, enum.Enum):
    """Comparison applied by a metric rule: ``value <op> threshold``."""

    GTE = "gte"
    GT = "gt"
    LTE = "lte"
    LT = "lt"

    def compare(self, value: float, threshold: float) -> bool:
        if self is RuleOperator.GTE:
            return value >= threshold
        if self is RuleOperator.GT:
            return value > threshold
        if self is RuleOperator.LTE:
            return value <= threshold
        return value < threshold


class MetricDefinition(BaseModel):
    """Scoring definition for one raw metric.

    Attributes:
        metric: Metric being defined.
        kind: Normalization applied before weighting.
        weight: Relative weight in the composite score.
        penalty_per_event: Points subtracted per event (count metrics only).
        label: Display label.

    Example:
        >>> MetricDefinition(
        ...     metric=KPIMetric.MAJOR_NEGATIVITY, kind=MetricKind.COUNT, weight=0.25, penalty_per_event=25
        ... )
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    metric: KPIMetric
    kind: MetricKind
    weight: float = Field(ge=0, description="Relative weight; renormalized when weights do not sum to 1")
    penalty_per_event: float | None = Field(
        default=None,
        gt=0,
        description="Points subtracted per event for count metrics",
    )
    label: str | None = None


class RatingBand(BaseModel):
    """Score range mapped to a rating.

    Bands are half-open ``[min_score, max_score)``; the band ending at 100
    also includes 100.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    rating: Rating
    min_score: float = Field(ge=0, le=100)
    max_score: float = Field(ge=0, le=100)


class ActionSet(BaseModel):
    """Downstream actions attached to a rule."""

    model_config = ConfigDict(frozen=True)

    trainings: list[TrainingType] = Field(default_factory=list)
    audits: list[AuditType] = Field(default_factory=list)
    emails: list[EmailTemplate] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.trainings or self.audits or self.emails)


class RatingRule(ActionSet):
    """Primary rule: actions required for every score with this rating."""

    rating: Rating


class MetricRule(ActionSet):
    """Secondary rule: actions required when a raw metric crosses a threshold.

    Example:
        >>> MetricRule(
        ...     metric=KPIMetric.MAJOR_NEGATIVITY,
        ...     operator=RuleOperator.GTE,
        ...     threshold=3,
        ...     trainings=[TrainingType.NEGATIVITY_HANDLING],
        ... )
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    metric: KPIMetric
    operator: RuleOperator
    threshold: float
    description: str | None = None

    def matches(self, value: float) -> bool:
        return self.operator.compare(value, self.threshold)


class TriggerRules(BaseModel):
    """Rating rules plus metric rules, replaced together by a trigger update."""

    model_config = ConfigDict(frozen=True)

    rating_rules: list[RatingRule]
    metric_rules: list[MetricRule] = Field(default_factory=list)


class KPIConfigDocument(BaseModel):
    """Complete configuration document as stored per version."""

    model_config = ConfigDict(frozen=True)

    metrics: list[MetricDefinition]
    bands: list[RatingBand]
    rating_rules: list[RatingRule]
    metric_rules: list[MetricRule] = Field(default_factory=list)

    @property
    def triggers(self) -> TriggerRules:
        return TriggerRules(rating_rules=self.rating_rules, metric_rules=self.metric_rules)


class ActiveConfiguration(BaseModel):
    """Configuration document together with its version number.

    Attributes:
        version: Version the document was stored under.
        document: Validated configuration document.
        change_kind: Why this version was written.
        created_at: When the version was written.
    """

    model_config = ConfigDict(frozen=True)

    version: int
    document: KPIConfigDocument
    change_kind: ConfigChangeKind
    created_at: datetime | None = None


# =============================================================================
# API payloads
# =============================================================================


class MetricsUpdate(BaseModel):
    """Request body replacing the metric definitions and, optionally, the bands."""

    metrics: list[MetricDefinition] = Field(min_length=1)
    bands: list[RatingBand] | None = Field(default=None, description="Replacement rating bands")


class ConfigurationVersionResponse(BaseModel):
    """One entry of the configuration history."""

    model_config = ConfigDict(from_attributes=True)

    version: int
    change_kind: ConfigChangeKind
    is_active: bool
    created_at: datetime
