"""Built-in default KPI configuration.

``reset_to_defaults`` restores exactly this document. Weights sum to 1.0 and
the bands cover [0, 100] without gaps.
"""

from src.db.models import AuditType, EmailTemplate, KPIMetric, MetricKind, Rating, TrainingType
from src.schemas.configuration import (
    KPIConfigDocument,
    MetricDefinition,
    MetricRule,
    RatingBand,
    RatingRule,
    RuleOperator,
)

_CORE_TRAININGS = [TrainingType.BASIC, TrainingType.NEGATIVITY_HANDLING, TrainingType.APP_USAGE]

DEFAULT_METRICS: tuple[MetricDefinition, ...] = (
    MetricDefinition(metric=KPIMetric.TAT, kind=MetricKind.RATE_HIGHER_IS_BETTER, weight=0.15, label="TAT"),
    MetricDefinition(
        metric=KPIMetric.MAJOR_NEGATIVITY,
        kind=MetricKind.COUNT,
        weight=0.25,
        penalty_per_event=25,
        label="Major Negativity",
    ),
    MetricDefinition(metric=KPIMetric.QUALITY, kind=MetricKind.RATE_HIGHER_IS_BETTER, weight=0.20, label="Quality"),
    MetricDefinition(
        metric=KPIMetric.NEIGHBOR_CHECK,
        kind=MetricKind.RATE_HIGHER_IS_BETTER,
        weight=0.10,
        label="Neighbor Check",
    ),
    MetricDefinition(
        metric=KPIMetric.GENERAL_NEGATIVITY,
        kind=MetricKind.RATE_LOWER_IS_BETTER,
        weight=0.10,
        label="General Negativity",
    ),
    MetricDefinition(metric=KPIMetric.APP_USAGE, kind=MetricKind.RATE_HIGHER_IS_BETTER, weight=0.10, label="App Usage"),
    MetricDefinition(
        metric=KPIMetric.INSUFFICIENCY,
        kind=MetricKind.COUNT,
        weight=0.10,
        penalty_per_event=30,
        label="Insufficiency",
    ),
)

DEFAULT_BANDS: tuple[RatingBand, ...] = (
    RatingBand(rating=Rating.POOR, min_score=0, max_score=40),
    RatingBand(rating=Rating.BELOW_AVERAGE, min_score=40, max_score=55),
    RatingBand(rating=Rating.AVERAGE, min_score=55, max_score=70),
    RatingBand(rating=Rating.GOOD, min_score=70, max_score=85),
    RatingBand(rating=Rating.EXCELLENT, min_score=85, max_score=100),
)

DEFAULT_RATING_RULES: tuple[RatingRule, ...] = (
    RatingRule(rating=Rating.EXCELLENT, emails=[EmailTemplate.KPI_NOTIFICATION]),
    RatingRule(
        rating=Rating.GOOD,
        audits=[AuditType.AUDIT_CALL],
        emails=[EmailTemplate.KPI_NOTIFICATION],
    ),
    RatingRule(
        rating=Rating.AVERAGE,
        audits=[AuditType.AUDIT_CALL, AuditType.CROSS_CHECK],
        emails=[EmailTemplate.KPI_NOTIFICATION],
    ),
    RatingRule(
        rating=Rating.BELOW_AVERAGE,
        trainings=_CORE_TRAININGS,
        audits=[AuditType.AUDIT_CALL, AuditType.CROSS_CHECK],
        emails=[EmailTemplate.KPI_NOTIFICATION],
    ),
    RatingRule(
        rating=Rating.POOR,
        trainings=_CORE_TRAININGS,
        audits=[AuditType.AUDIT_CALL, AuditType.CROSS_CHECK, AuditType.DUMMY_AUDIT],
        emails=[EmailTemplate.KPI_NOTIFICATION, EmailTemplate.PERFORMANCE_WARNING],
    ),
)

DEFAULT_METRIC_RULES: tuple[MetricRule, ...] = (
    MetricRule(
        metric=KPIMetric.MAJOR_NEGATIVITY,
        operator=RuleOperator.GTE,
        threshold=3,
        trainings=[TrainingType.NEGATIVITY_HANDLING],
        audits=[AuditType.AUDIT_CALL],
        description="Repeated major negativity",
    ),
    MetricRule(
        metric=KPIMetric.QUALITY,
        operator=RuleOperator.LT,
        threshold=60,
        trainings=[TrainingType.DOS_DONTS],
        audits=[AuditType.AUDIT_CALL],
        description="Quality below 60%",
    ),
    MetricRule(
        metric=KPIMetric.APP_USAGE,
        operator=RuleOperator.LT,
        threshold=80,
        trainings=[TrainingType.APP_USAGE],
        description="App usage below 80%",
    ),
    MetricRule(
        metric=KPIMetric.INSUFFICIENCY,
        operator=RuleOperator.GTE,
        threshold=5,
        audits=[AuditType.CROSS_VERIFY_INSUFF],
        description="Five or more insufficient cases",
    ),
)


def default_document() -> KPIConfigDocument:
    """Build the built-in configuration document.

    Returns:
        KPIConfigDocument: Fresh copy of the defaults.
    """
    return KPIConfigDocument(
        metrics=list(DEFAULT_METRICS),
        bands=list(DEFAULT_BANDS),
        rating_rules=list(DEFAULT_RATING_RULES),
        metric_rules=list(DEFAULT_METRIC_RULES),
    )
