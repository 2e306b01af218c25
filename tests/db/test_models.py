"""Tests for SQLAlchemy database models."""

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError

from src.db.models import (
    AssignmentSource,
    EmailLog,
    KPIScore,
    TrainingAssignment,
    TrainingStatus,
    TrainingType,
    User,
    utc_now,
)

pytestmark = pytest.mark.tier1


def test_json_columns_use_jsonb_on_postgresql() -> None:
    """KPIScore.automation_result is JSONB on PostgreSQL."""
    column = KPIScore.__table__.columns.get("automation_result")
    assert column is not None
    assert isinstance(column.type.dialect_impl(postgresql.dialect()), JSONB)


def test_email_recipients_column_is_not_nullable() -> None:
    assert EmailLog.__table__.columns["recipients"].nullable is False


def test_kpi_scores_unique_per_user_and_period() -> None:
    names = {constraint.name for constraint in KPIScore.__table__.constraints}
    assert "uq_kpi_scores_user_period" in names


@pytest.mark.asyncio
async def test_enums_are_stored_as_values(session_factory, employee: User) -> None:
    async with session_factory() as session:
        role = await session.scalar(text("SELECT role FROM users WHERE email = 'employee@example.com'"))
    assert role == "employee"


@pytest.mark.asyncio
async def test_one_open_training_per_type_at_storage_level(session_factory, employee: User) -> None:
    """The partial unique index rejects a second open row even without the service check."""

    def _assignment(status: TrainingStatus) -> TrainingAssignment:
        return TrainingAssignment(
            user_id=employee.id,
            training_type=TrainingType.BASIC,
            status=status,
            assigned_by=AssignmentSource.MANUAL,
            due_date=utc_now(),
        )

    async with session_factory() as session:
        session.add_all([_assignment(TrainingStatus.COMPLETED), _assignment(TrainingStatus.ASSIGNED)])
        await session.commit()

    async with session_factory() as session:
        session.add(_assignment(TrainingStatus.IN_PROGRESS))
        with pytest.raises(IntegrityError):
            await session.commit()
