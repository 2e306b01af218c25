"""Whole-document validation for the KPI configuration.

Every update builds a candidate document and runs it through
``validate_document`` before anything is written; an invalid candidate is
rejected wholesale with a ``ConfigurationError`` describing every problem
found.
"""

import math
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from src.db.models import KPIMetric, MetricKind, Rating
from src.schemas.configuration import KPIConfigDocument, MetricDefinition, MetricRule, RatingBand, RatingRule
from src.schemas.kpi import MAX_EVENT_COUNT
from src.services.errors import ConfigurationError

SCORE_MIN = 0.0
SCORE_MAX = 100.0

COUNT_METRICS = frozenset({KPIMetric.MAJOR_NEGATIVITY, KPIMetric.INSUFFICIENCY})


def metric_domain(metric: KPIMetric) -> tuple[float, float]:
    """Inclusive value range of a raw metric.

    Args:
        metric: Metric to look up.

    Returns:
        tuple[float, float]: ``(low, high)``.
    """
    if metric in COUNT_METRICS:
        return 0.0, float(MAX_EVENT_COUNT)
    return SCORE_MIN, SCORE_MAX


def _duplicates(values: Iterable[Any]) -> list[Any]:
    return [value for value, count in Counter(values).items() if count > 1]


def _metric_errors(metrics: list[MetricDefinition]) -> list[str]:
    errors: list[str] = []
    names = [definition.metric for definition in metrics]
    for metric in _duplicates(names):
        errors.append(f"metric '{metric.value}' is defined more than once")
    for metric in KPIMetric:
        if metric not in names:
            errors.append(f"metric '{metric.value}' is missing")

    for definition in metrics:
        is_count = definition.metric in COUNT_METRICS
        if is_count and definition.kind is not MetricKind.COUNT:
            errors.append(f"metric '{definition.metric.value}' is a count and must use kind 'count'")
        if not is_count and definition.kind is MetricKind.COUNT:
            errors.append(f"metric '{definition.metric.value}' is a rate and cannot use kind 'count'")
        if definition.kind is MetricKind.COUNT and definition.penalty_per_event is None:
            errors.append(f"metric '{definition.metric.value}' needs penalty_per_event")
        if not math.isfinite(definition.weight):
            errors.append(f"metric '{definition.metric.value}' weight must be finite")
        if definition.penalty_per_event is not None and not math.isfinite(definition.penalty_per_event):
            errors.append(f"metric '{definition.metric.value}' penalty_per_event must be finite")

    total = math.fsum(definition.weight for definition in metrics)
    if not math.isfinite(total):
        errors.append("metric weights must sum to a finite number")
    elif not total > 0:
        errors.append("metric weights sum to 0")
    return errors


def _band_errors(bands: list[RatingBand]) -> list[str]:
    errors: list[str] = []
    ratings = [band.rating for band in bands]
    for rating in _duplicates(ratings):
        errors.append(f"rating '{rating.value}' has more than one band")
    for rating in Rating:
        if rating not in ratings:
            errors.append(f"rating '{rating.value}' has no band")

    ordered = sorted(bands, key=lambda band: (band.min_score, band.max_score))
    for band in ordered:
        if not band.min_score < band.max_score:
            errors.append(f"band '{band.rating.value}' is empty ({band.min_score} >= {band.max_score})")
    if ordered:
        if not math.isclose(ordered[0].min_score, SCORE_MIN):
            errors.append(f"bands must start at {SCORE_MIN:g}, first band starts at {ordered[0].min_score:g}")
        if not math.isclose(ordered[-1].max_score, SCORE_MAX):
            errors.append(f"bands must end at {SCORE_MAX:g}, last band ends at {ordered[-1].max_score:g}")
    for previous, current in zip(ordered, ordered[1:], strict=False):
        if current.min_score > previous.max_score and not math.isclose(current.min_score, previous.max_score):
            errors.append(
                f"gap between '{previous.rating.value}' ending at {previous.max_score:g} "
                f"and '{current.rating.value}' starting at {current.min_score:g}"
            )
        elif current.min_score < previous.max_score and not math.isclose(current.min_score, previous.max_score):
            errors.append(f"bands '{previous.rating.value}' and '{current.rating.value}' overlap")
    return errors


def _rule_errors(rating_rules: list[RatingRule], metric_rules: list[MetricRule]) -> list[str]:
    errors: list[str] = []
    ratings = [rule.rating for rule in rating_rules]
    for rating in _duplicates(ratings):
        errors.append(f"rating '{rating.value}' has more than one rule")
    for rating in Rating:
        if rating not in ratings:
            errors.append(f"rating '{rating.value}' has no rule")

    for index, rule in enumerate(metric_rules):
        low, high = metric_domain(rule.metric)
        if not low <= rule.threshold <= high:
            errors.append(
                f"metric rule {index} threshold {rule.threshold:g} is outside "
                f"'{rule.metric.value}' range [{low:g}, {high:g}]"
            )
        if rule.is_empty():
            errors.append(f"metric rule {index} on '{rule.metric.value}' requires no action")
    return errors


def validate_document(document: KPIConfigDocument) -> KPIConfigDocument:
    """Validate a candidate configuration document.

    Checks that every metric is defined once with a kind matching its
    domain and that weights sum to more than zero. Bands must give each
    rating exactly one non-empty range, starting at 0, ending at 100,
    with no gap and no overlap. Every rating needs exactly one rating
    rule. Metric rule thresholds must lie in the metric's domain.

    Args:
        document: Candidate document.

    Returns:
        KPIConfigDocument: The same document, when valid.

    Raises:
        ConfigurationError: With every problem found, joined by ``; ``.
    """
    errors = [
        *_metric_errors(document.metrics),
        *_band_errors(document.bands),
        *_rule_errors(document.rating_rules, document.metric_rules),
    ]
    if errors:
        raise ConfigurationError("Invalid KPI configuration: " + "; ".join(errors))
    return document


def parse_document(raw: Mapping[str, Any]) -> KPIConfigDocument:
    """Parse and validate a stored or imported configuration document.

    Args:
        raw: JSON-compatible document.

    Returns:
        KPIConfigDocument: Validated document.

    Raises:
        ConfigurationError: If the document is malformed or invalid.
    """
    try:
        document = KPIConfigDocument.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Malformed KPI configuration: {e}") from e
    return validate_document(document)


def normalized_weights(metrics: Iterable[MetricDefinition]) -> dict[KPIMetric, float]:
    """Weights rescaled proportionally so they sum to 1.

    Args:
        metrics: Metric definitions.

    Returns:
        dict[KPIMetric, float]: Normalized weight per metric.

    Raises:
        ConfigurationError: If the weights sum to zero or are not finite.
    """
    weights = {definition.metric: definition.weight for definition in metrics}
    total = math.fsum(weights.values())
    if not math.isfinite(total):
        raise ConfigurationError("metric weights must sum to a finite number")
    if not total > 0:
        raise ConfigurationError("metric weights sum to 0")
    if math.isclose(total, 1.0):
        return weights
    return {metric: weight / total for metric, weight in weights.items()}


def find_rating(bands: Iterable[RatingBand], score: float) -> Rating:
    """Locate the band containing ``score``.

    Args:
        bands: Validated rating bands.
        score: Composite score in [0, 100].

    Returns:
        Rating: Rating of the band whose ``[min, max)`` contains the score;
            the band ending at 100 also contains 100.

    Raises:
        ConfigurationError: If no band contains the score.
    """
    for band in sorted(bands, key=lambda band: band.min_score):
        if band.min_score <= score < band.max_score:
            return band.rating
        if score == band.max_score == SCORE_MAX:
            return band.rating
    raise ConfigurationError(f"No rating band contains score {score:g}")
