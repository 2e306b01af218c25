"""Rule evaluator - score, rating and raw metrics to required downstream actions.

Primary actions come from the rule for the rating; metric rules add to them
when a raw metric crosses its threshold. Derived emails follow from the
result (``training_assignment`` when any training is required,
``audit_notification`` when any audit is required) and every email template
maps to exactly one in-app notification type.

The result only depends on its arguments, and every action set is returned
as a tuple sorted in enum declaration order, so repeated evaluation of the
same inputs yields identical output.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from src.db.models import AuditType, EmailTemplate, NotificationType, Rating, TrainingType
from src.schemas.configuration import KPIConfigDocument
from src.schemas.kpi import RawKPIInputs
from src.services.errors import ConfigurationError

E = TypeVar("E", bound=enum.Enum)

EMAIL_NOTIFICATION_TYPES: dict[EmailTemplate, NotificationType] = {
    EmailTemplate.KPI_NOTIFICATION: NotificationType.KPI_SCORE,
    EmailTemplate.TRAINING_ASSIGNMENT: NotificationType.TRAINING,
    EmailTemplate.AUDIT_NOTIFICATION: NotificationType.AUDIT,
    EmailTemplate.PERFORMANCE_WARNING: NotificationType.WARNING,
}


def _ordered(members: Iterable[E], enum_cls: type[E]) -> tuple[E, ...]:
    chosen = set(members)
    return tuple(member for member in enum_cls if member in chosen)


@dataclass(frozen=True)
class RequiredActions:
    """Deterministic set of actions required for one KPI score.

    Attributes:
        trainings: Training types to assign.
        audits: Audit types to schedule.
        emails: Email templates to send.
        notifications: In-app notification types to create.
        reasons: Rules that contributed, in evaluation order.
    """

    trainings: tuple[TrainingType, ...] = ()
    audits: tuple[AuditType, ...] = ()
    emails: tuple[EmailTemplate, ...] = ()
    notifications: tuple[NotificationType, ...] = ()
    reasons: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.trainings) + len(self.audits) + len(self.emails) + len(self.notifications)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form stored in the automation result."""
        return {
            "trainings": [training.value for training in self.trainings],
            "audits": [audit.value for audit in self.audits],
            "emails": [email.value for email in self.emails],
            "notifications": [notification.value for notification in self.notifications],
            "reasons": list(self.reasons),
        }


def evaluate(
    score: float,
    rating: Rating,
    raw_inputs: RawKPIInputs,
    config: KPIConfigDocument,
) -> RequiredActions:
    """Derive the required actions for a scored KPI submission.

    Args:
        score: Composite score.
        rating: Rating derived from the score.
        raw_inputs: Raw metric values.
        config: Configuration document to evaluate against.

    Returns:
        RequiredActions: Union of the rating rule and every matching metric rule,
            plus derived emails and notifications.

    Raises:
        ConfigurationError: If the configuration has no rule for ``rating``.

    Example:
        >>> actions = evaluate(45.0, Rating.BELOW_AVERAGE, inputs, default_document())
        >>> actions.audits
        (<AuditType.AUDIT_CALL: 'audit_call'>, <AuditType.CROSS_CHECK: 'cross_check'>)
    """
    rating_rule = next((rule for rule in config.rating_rules if rule.rating is rating), None)
    if rating_rule is None:
        raise ConfigurationError(f"No rule configured for rating '{rating.value}'")

    trainings: set[TrainingType] = set(rating_rule.trainings)
    audits: set[AuditType] = set(rating_rule.audits)
    emails: set[EmailTemplate] = set(rating_rule.emails)
    reasons = [f"rating {rating.value} (score {score:.2f})"]

    for rule in config.metric_rules:
        value = raw_inputs.value(rule.metric)
        if rule.matches(value):
            trainings.update(rule.trainings)
            audits.update(rule.audits)
            emails.update(rule.emails)
            reasons.append(f"{rule.metric.value} {rule.operator.value} {rule.threshold:g} (value {value:g})")

    if trainings:
        emails.add(EmailTemplate.TRAINING_ASSIGNMENT)
    if audits:
        emails.add(EmailTemplate.AUDIT_NOTIFICATION)

    ordered_emails = _ordered(emails, EmailTemplate)
    return RequiredActions(
        trainings=_ordered(trainings, TrainingType),
        audits=_ordered(audits, AuditType),
        emails=ordered_emails,
        notifications=_ordered((EMAIL_NOTIFICATION_TYPES[email] for email in ordered_emails), NotificationType),
        reasons=tuple(reasons),
    )
