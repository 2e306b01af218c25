"""Unit tests for the KPI scorer.

Tests cover:
- Default-configuration scenarios (excellent and below average)
- Per-kind normalization and floors
- Weight renormalization
- Band boundaries, including the closed upper end at 100
"""

import pytest

from src.db.models import KPIMetric, MetricKind, Rating
from src.schemas.configuration import MetricDefinition
from src.schemas.kpi import RawKPIInputs
from src.services.configuration_defaults import default_document
from src.services.configuration_validation import find_rating
from src.services.errors import ConfigurationError
from src.services.scorer import normalize_metric, score

pytestmark = pytest.mark.tier1


def _inputs(**overrides: float) -> RawKPIInputs:
    values = {
        "tat": 100,
        "major_negativity": 0,
        "quality": 100,
        "neighbor_check": 100,
        "general_negativity": 0,
        "app_usage": 100,
        "insufficiency": 0,
    }
    values.update(overrides)
    return RawKPIInputs(**values)


class TestDefaultScenarios:
    """Scores produced by the built-in configuration."""

    def test_scenario_a_is_excellent(self, scenario_a: dict) -> None:
        result = score(RawKPIInputs(**scenario_a), default_document())

        assert result.overall_score == pytest.approx(96.55)
        assert result.rating is Rating.EXCELLENT

    def test_scenario_b_is_below_average(self, scenario_b: dict) -> None:
        result = score(RawKPIInputs(**scenario_b), default_document())

        assert result.overall_score == pytest.approx(45.0)
        assert result.rating is Rating.BELOW_AVERAGE

    def test_scenario_b_contributions(self, scenario_b: dict) -> None:
        """Count metrics are floored at zero, inverted rates flip."""
        result = score(RawKPIInputs(**scenario_b), default_document())

        assert result.contributions[KPIMetric.MAJOR_NEGATIVITY] == 0.0
        assert result.contributions[KPIMetric.INSUFFICIENCY] == pytest.approx(10.0)
        assert result.contributions[KPIMetric.GENERAL_NEGATIVITY] == pytest.approx(65.0)

    def test_perfect_inputs_score_100(self) -> None:
        result = score(_inputs(), default_document())

        assert result.overall_score == 100.0
        assert result.rating is Rating.EXCELLENT

    def test_worst_inputs_score_0(self) -> None:
        worst = _inputs(
            tat=0, major_negativity=1000, quality=0, neighbor_check=0, general_negativity=100, app_usage=0,
            insufficiency=1000,
        )
        result = score(worst, default_document())

        assert result.overall_score == 0.0
        assert result.rating is Rating.POOR

    def test_scoring_is_deterministic(self, scenario_b: dict) -> None:
        config = default_document()
        results = [score(RawKPIInputs(**scenario_b), config) for _ in range(5)]

        assert all(result == results[0] for result in results)


class TestNormalizeMetric:
    """Tests for normalize_metric."""

    def test_rate_higher_is_better_passes_through(self) -> None:
        definition = MetricDefinition(metric=KPIMetric.TAT, kind=MetricKind.RATE_HIGHER_IS_BETTER, weight=1)
        assert normalize_metric(definition, 72.5) == 72.5

    def test_rate_lower_is_better_inverts(self) -> None:
        definition = MetricDefinition(
            metric=KPIMetric.GENERAL_NEGATIVITY, kind=MetricKind.RATE_LOWER_IS_BETTER, weight=1
        )
        assert normalize_metric(definition, 20) == 80.0

    def test_count_applies_penalty_and_floors(self) -> None:
        definition = MetricDefinition(
            metric=KPIMetric.MAJOR_NEGATIVITY, kind=MetricKind.COUNT, weight=1, penalty_per_event=25
        )
        assert normalize_metric(definition, 2) == 50.0
        assert normalize_metric(definition, 9) == 0.0

    def test_count_without_penalty_raises(self) -> None:
        definition = MetricDefinition(metric=KPIMetric.INSUFFICIENCY, kind=MetricKind.COUNT, weight=1)
        with pytest.raises(ConfigurationError, match="penalty_per_event"):
            normalize_metric(definition, 1)


class TestWeights:
    """Weights that do not sum to 1 are rescaled proportionally."""

    def test_doubled_weights_give_same_score(self, scenario_a: dict) -> None:
        config = default_document()
        doubled = config.model_copy(
            update={"metrics": [m.model_copy(update={"weight": m.weight * 2}) for m in config.metrics]}
        )

        assert score(RawKPIInputs(**scenario_a), doubled).overall_score == pytest.approx(
            score(RawKPIInputs(**scenario_a), config).overall_score
        )

    def test_zero_weights_raise(self, scenario_a: dict) -> None:
        config = default_document()
        zeroed = config.model_copy(
            update={"metrics": [m.model_copy(update={"weight": 0}) for m in config.metrics]}
        )

        with pytest.raises(ConfigurationError, match="sum to 0"):
            score(RawKPIInputs(**scenario_a), zeroed)

    def test_infinite_weight_raises_instead_of_scoring(self, scenario_a: dict) -> None:
        config = default_document()
        broken = config.model_copy(
            update={
                "metrics": [
                    m.model_copy(update={"weight": float("inf")}) if m.metric is KPIMetric.TAT else m
                    for m in config.metrics
                ]
            }
        )

        with pytest.raises(ConfigurationError, match="finite"):
            score(RawKPIInputs(**scenario_a), broken)

    def test_infinite_penalty_raises_instead_of_flooring(self, scenario_a: dict) -> None:
        config = default_document()
        broken = config.model_copy(
            update={
                "metrics": [
                    m.model_copy(update={"penalty_per_event": float("inf")})
                    if m.metric is KPIMetric.MAJOR_NEGATIVITY
                    else m
                    for m in config.metrics
                ]
            }
        )

        with pytest.raises(ConfigurationError, match="non-finite"):
            score(RawKPIInputs(**scenario_a), broken)

    def test_single_metric_weight(self) -> None:
        """Only quality weighted: the score equals the quality rate."""
        config = default_document()
        only_quality = config.model_copy(
            update={
                "metrics": [
                    m.model_copy(update={"weight": 1.0 if m.metric is KPIMetric.QUALITY else 0.0})
                    for m in config.metrics
                ]
            }
        )

        assert score(_inputs(quality=63.25), only_quality).overall_score == 63.25


class TestFindRating:
    """Band lookup is half-open, with the top band closed at 100."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0.0, Rating.POOR),
            (39.99, Rating.POOR),
            (40.0, Rating.BELOW_AVERAGE),
            (54.99, Rating.BELOW_AVERAGE),
            (55.0, Rating.AVERAGE),
            (70.0, Rating.GOOD),
            (84.99, Rating.GOOD),
            (85.0, Rating.EXCELLENT),
            (100.0, Rating.EXCELLENT),
        ],
    )
    def test_boundaries(self, value: float, expected: Rating) -> None:
        assert find_rating(default_document().bands, value) is expected

    def test_score_outside_bands_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="No rating band"):
            find_rating(default_document().bands, 100.5)
