"""Unit tests for the rule evaluator.

Tests cover:
- Rating rules for the default scenarios
- Metric rules adding to the rating rule
- Derived emails and notifications
- Deterministic ordering
"""

import pytest

from src.db.models import AuditType, EmailTemplate, KPIMetric, NotificationType, Rating, TrainingType
from src.schemas.configuration import MetricRule, RuleOperator
from src.schemas.kpi import RawKPIInputs
from src.services.configuration_defaults import default_document
from src.services.errors import ConfigurationError
from src.services.rule_evaluator import evaluate
from src.services.scorer import score

pytestmark = pytest.mark.tier1


def _evaluate(inputs: dict):
    raw = RawKPIInputs(**inputs)
    config = default_document()
    result = score(raw, config)
    return evaluate(result.overall_score, result.rating, raw, config)


class TestScenarios:
    """Required actions for the default scenarios."""

    def test_scenario_a_only_notifies(self, scenario_a: dict) -> None:
        actions = _evaluate(scenario_a)

        assert actions.trainings == ()
        assert actions.audits == ()
        assert actions.emails == (EmailTemplate.KPI_NOTIFICATION,)
        assert actions.notifications == (NotificationType.KPI_SCORE,)

    def test_scenario_b_actions(self, scenario_b: dict) -> None:
        actions = _evaluate(scenario_b)

        assert actions.trainings == (
            TrainingType.BASIC,
            TrainingType.NEGATIVITY_HANDLING,
            TrainingType.APP_USAGE,
        )
        assert actions.audits == (AuditType.AUDIT_CALL, AuditType.CROSS_CHECK)
        assert actions.emails == (
            EmailTemplate.KPI_NOTIFICATION,
            EmailTemplate.TRAINING_ASSIGNMENT,
            EmailTemplate.AUDIT_NOTIFICATION,
        )
        assert actions.notifications == (
            NotificationType.KPI_SCORE,
            NotificationType.TRAINING,
            NotificationType.AUDIT,
        )
        assert actions.total == 11

    def test_scenario_b_reasons_name_the_metric_rule(self, scenario_b: dict) -> None:
        actions = _evaluate(scenario_b)

        assert actions.reasons[0].startswith("rating below_average")
        assert any(reason.startswith("major_negativity gte 3") for reason in actions.reasons)

    def test_evaluation_is_repeatable(self, scenario_b: dict) -> None:
        assert _evaluate(scenario_b) == _evaluate(scenario_b)


class TestMetricRules:
    """Secondary rules fire independently of the rating."""

    def test_low_app_usage_on_excellent_score_adds_training(self, scenario_a: dict) -> None:
        actions = _evaluate({**scenario_a, "app_usage": 79})

        assert actions.trainings == (TrainingType.APP_USAGE,)
        assert EmailTemplate.TRAINING_ASSIGNMENT in actions.emails
        assert NotificationType.TRAINING in actions.notifications

    def test_insufficiency_rule_adds_cross_verification(self, scenario_a: dict) -> None:
        raw = RawKPIInputs(**{**scenario_a, "insufficiency": 5})
        actions = evaluate(90.0, Rating.EXCELLENT, raw, default_document())

        assert actions.audits == (AuditType.CROSS_VERIFY_INSUFF,)
        assert EmailTemplate.AUDIT_NOTIFICATION in actions.emails

    def test_union_does_not_duplicate(self, scenario_b: dict) -> None:
        """negativity_handling comes from both the rating and a metric rule."""
        actions = _evaluate(scenario_b)

        assert actions.trainings.count(TrainingType.NEGATIVITY_HANDLING) == 1
        assert actions.audits.count(AuditType.AUDIT_CALL) == 1

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            (RuleOperator.GTE, 3, True),
            (RuleOperator.GT, 3, False),
            (RuleOperator.LTE, 3, True),
            (RuleOperator.LT, 3, False),
        ],
    )
    def test_operator_boundaries(self, operator: RuleOperator, value: float, expected: bool) -> None:
        rule = MetricRule(
            metric=KPIMetric.MAJOR_NEGATIVITY, operator=operator, threshold=3, audits=[AuditType.AUDIT_CALL]
        )
        assert rule.matches(value) is expected


class TestPoorRating:
    def test_poor_rating_issues_warning(self, scenario_b: dict) -> None:
        raw = RawKPIInputs(**scenario_b)
        actions = evaluate(20.0, Rating.POOR, raw, default_document())

        assert EmailTemplate.PERFORMANCE_WARNING in actions.emails
        assert NotificationType.WARNING in actions.notifications
        assert AuditType.DUMMY_AUDIT in actions.audits


def test_missing_rating_rule_raises(scenario_a: dict) -> None:
    config = default_document()
    config = config.model_copy(
        update={"rating_rules": [rule for rule in config.rating_rules if rule.rating is not Rating.GOOD]}
    )

    with pytest.raises(ConfigurationError, match="No rule configured for rating 'good'"):
        evaluate(75.0, Rating.GOOD, RawKPIInputs(**scenario_a), config)
