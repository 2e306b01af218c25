"""KPI scorer - raw inputs and configuration to composite score and rating.

Pure and deterministic: no I/O, no clock, no global configuration. The
caller passes the configuration document it wants used.

Scoring steps:
1. Normalize each raw metric to [0, 100] according to its kind
   (rates as-is, inverted rates as ``100 - value``, counts through the
   configured penalty per event, floored at 0).
2. Combine with the configured weights, renormalized to sum to 1.
3. Round to two decimals and clamp to [0, 100].
4. Pick the rating band containing the score.
"""

import math
from dataclasses import dataclass, field

from src.db.models import KPIMetric, MetricKind, Rating
from src.schemas.configuration import KPIConfigDocument, MetricDefinition
from src.schemas.kpi import RawKPIInputs
from src.services.configuration_validation import SCORE_MAX, SCORE_MIN, find_rating, normalized_weights
from src.services.errors import ConfigurationError


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one set of raw inputs.

    Attributes:
        overall_score: Composite score in [0, 100], two decimals.
        rating: Rating band containing the score.
        contributions: Normalized (pre-weight) value per metric.
    """

    overall_score: float
    rating: Rating
    contributions: dict[KPIMetric, float] = field(default_factory=dict)


def normalize_metric(definition: MetricDefinition, value: float) -> float:
    """Map a raw metric value to the 0-100 scale.

    Args:
        definition: Metric definition with kind and penalty.
        value: Raw value.

    Returns:
        float: Normalized value in [0, 100].

    Example:
        >>> normalize_metric(MetricDefinition(metric=KPIMetric.INSUFFICIENCY,
        ...     kind=MetricKind.COUNT, weight=0.1, penalty_per_event=30), 3)
        10.0
    """
    if definition.kind is MetricKind.RATE_HIGHER_IS_BETTER:
        normalized = float(value)
    elif definition.kind is MetricKind.RATE_LOWER_IS_BETTER:
        normalized = SCORE_MAX - float(value)
    else:
        if definition.penalty_per_event is None:
            raise ConfigurationError(f"metric '{definition.metric.value}' needs penalty_per_event")
        normalized = SCORE_MAX - definition.penalty_per_event * value
    if not math.isfinite(normalized):
        raise ConfigurationError(f"metric '{definition.metric.value}' normalized to a non-finite value")
    return min(SCORE_MAX, max(SCORE_MIN, normalized))


def score(raw_inputs: RawKPIInputs, config: KPIConfigDocument) -> ScoreResult:
    """Compute the composite score and rating.

    Args:
        raw_inputs: Validated raw metric values.
        config: Configuration document to score with.

    Returns:
        ScoreResult: Score, rating and per-metric normalized values.

    Raises:
        ConfigurationError: If the weights or the weighted total are not
            usable, or if no band contains the score.
    """
    weights = normalized_weights(config.metrics)
    contributions = {
        definition.metric: normalize_metric(definition, raw_inputs.value(definition.metric))
        for definition in config.metrics
    }
    total = sum(contributions[metric] * weights[metric] for metric in KPIMetric if metric in contributions)
    if not math.isfinite(total):
        raise ConfigurationError(f"weighted score is not finite ({total})")
    overall = min(SCORE_MAX, max(SCORE_MIN, round(total, 2)))
    return ScoreResult(
        overall_score=overall,
        rating=find_rating(config.bands, overall),
        contributions=contributions,
    )
