"""Unit tests for workflow transition tables."""

import pytest

from src.db.models import AuditStatus, NotificationStatus, TrainingStatus
from src.services.errors import InvalidTransitionError
from src.services.transitions import (
    AUDIT_TRANSITIONS,
    NOTIFICATION_TRANSITIONS,
    TRAINING_TRANSITIONS,
    validate_transition,
)

pytestmark = pytest.mark.tier1


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (TrainingStatus.ASSIGNED, TrainingStatus.IN_PROGRESS),
        (TrainingStatus.ASSIGNED, TrainingStatus.COMPLETED),
        (TrainingStatus.IN_PROGRESS, TrainingStatus.CANCELLED),
    ],
)
def test_allowed_training_transitions(current: TrainingStatus, target: TrainingStatus) -> None:
    validate_transition("training assignment", TRAINING_TRANSITIONS, current, target)


@pytest.mark.parametrize("final", [TrainingStatus.COMPLETED, TrainingStatus.CANCELLED])
def test_final_training_states(final: TrainingStatus) -> None:
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition("training assignment", TRAINING_TRANSITIONS, final, TrainingStatus.IN_PROGRESS)
    assert exc_info.value.current == final.value


def test_audit_cannot_restart() -> None:
    with pytest.raises(InvalidTransitionError, match="from 'in_progress' to 'scheduled'"):
        validate_transition("audit", AUDIT_TRANSITIONS, AuditStatus.IN_PROGRESS, AuditStatus.SCHEDULED)


def test_notification_can_skip_read() -> None:
    validate_transition(
        "notification", NOTIFICATION_TRANSITIONS, NotificationStatus.UNREAD, NotificationStatus.ACKNOWLEDGED
    )


def test_notification_cannot_become_unread() -> None:
    with pytest.raises(InvalidTransitionError):
        validate_transition(
            "notification", NOTIFICATION_TRANSITIONS, NotificationStatus.READ, NotificationStatus.UNREAD
        )


def test_every_status_has_an_entry() -> None:
    assert set(TRAINING_TRANSITIONS) == set(TrainingStatus)
    assert set(AUDIT_TRANSITIONS) == set(AuditStatus)
    assert set(NOTIFICATION_TRANSITIONS) == set(NotificationStatus)
