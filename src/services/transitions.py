"""Workflow status transition tables shared by the downstream services."""

import enum
from collections.abc import Mapping, Set
from typing import TypeVar

from src.db.models import AuditStatus, NotificationStatus, TrainingStatus
from src.services.errors import InvalidTransitionError

S = TypeVar("S", bound=enum.Enum)

# Valid status transitions: from_status -> allowed to_statuses
TRAINING_TRANSITIONS: dict[TrainingStatus, frozenset[TrainingStatus]] = {
    TrainingStatus.ASSIGNED: frozenset(
        {TrainingStatus.IN_PROGRESS, TrainingStatus.COMPLETED, TrainingStatus.CANCELLED}
    ),
    TrainingStatus.IN_PROGRESS: frozenset({TrainingStatus.COMPLETED, TrainingStatus.CANCELLED}),
    TrainingStatus.COMPLETED: frozenset(),
    TrainingStatus.CANCELLED: frozenset(),
}

AUDIT_TRANSITIONS: dict[AuditStatus, frozenset[AuditStatus]] = {
    AuditStatus.SCHEDULED: frozenset({AuditStatus.IN_PROGRESS, AuditStatus.COMPLETED, AuditStatus.CANCELLED}),
    AuditStatus.IN_PROGRESS: frozenset({AuditStatus.COMPLETED, AuditStatus.CANCELLED}),
    AuditStatus.COMPLETED: frozenset(),
    AuditStatus.CANCELLED: frozenset(),
}

NOTIFICATION_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.UNREAD: frozenset({NotificationStatus.READ, NotificationStatus.ACKNOWLEDGED}),
    NotificationStatus.READ: frozenset({NotificationStatus.ACKNOWLEDGED}),
    NotificationStatus.ACKNOWLEDGED: frozenset(),
}

OPEN_TRAINING_STATUSES = (TrainingStatus.ASSIGNED, TrainingStatus.IN_PROGRESS)
OPEN_AUDIT_STATUSES = (AuditStatus.SCHEDULED, AuditStatus.IN_PROGRESS)


def validate_transition(entity: str, transitions: Mapping[S, Set[S]], current: S, target: S) -> None:
    """Validate that a status transition is allowed.

    Args:
        entity: Entity name used in the error message.
        transitions: Transition table for the entity.
        current: Current status.
        target: Requested status.

    Raises:
        InvalidTransitionError: If ``target`` is not reachable from ``current``.
    """
    if target not in transitions.get(current, frozenset()):
        raise InvalidTransitionError(entity, current.value, target.value)
