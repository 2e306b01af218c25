"""Demo seed data for the KPI trigger engine.

Creates one staff member per role plus two monthly KPI submissions for the
employee: a strong month rated excellent and a weak month rated below
average, so the automation paths for both ends of the scale can be shown
end to end.

Usage:
    # As a script
    python -m src.db.seeds.demo_data [--force] [--process]

    # Or import and call
    from src.db.seeds.demo_data import seed_demo_data
    await seed_demo_data(async_session_maker)
"""

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.db.models import (
    AuditSchedule,
    EmailLog,
    KPIScore,
    KPISource,
    LifecycleEvent,
    Notification,
    TrainingAssignment,
    User,
    UserRole,
)
from src.services.configuration_store import ConfigurationStore
from src.services.kpi_service import KPIService
from src.services.trigger_orchestrator import ProcessOptions, TriggerOrchestrator

logger = logging.getLogger(__name__)

# Child tables first so foreign keys hold on PostgreSQL.
_DEMO_TABLES = (
    ("events", LifecycleEvent),
    ("notifications", Notification),
    ("emails", EmailLog),
    ("audits", AuditSchedule),
    ("trainings", TrainingAssignment),
    ("kpi_scores", KPIScore),
    ("users", User),
)


# =============================================================================
# Demo Users
# =============================================================================


def create_demo_users() -> list[User]:
    """Create one demo staff member per role.

    The employee is the one scored; the others receive the escalation and
    audit emails.

    Returns:
        list[User]: Unsaved user records, ordered by role.
    """
    return [
        User(email="priya.sharma@example.com", name="Priya Sharma", role=UserRole.EMPLOYEE),
        User(email="daniel.okafor@example.com", name="Daniel Okafor", role=UserRole.COORDINATOR),
        User(email="maria.lopez@example.com", name="Maria Lopez", role=UserRole.MANAGER),
        User(email="arjun.mehta@example.com", name="Arjun Mehta", role=UserRole.HOD),
        User(email="grace.kim@example.com", name="Grace Kim", role=UserRole.COMPLIANCE),
        User(email="admin@example.com", name="System Admin", role=UserRole.ADMIN),
    ]


# =============================================================================
# Demo KPI Submissions
# =============================================================================


def demo_kpi_rows() -> list[dict[str, Any]]:
    """Monthly KPI inputs for the demo employee.

    Returns:
        list[dict[str, Any]]: ``period``, ``inputs`` and ``comments`` per row.
    """
    return [
        {
            "period": "2024-05",
            "inputs": {
                "tat": 95,
                "major_negativity": 0,
                "quality": 95,
                "neighbor_check": 90,
                "general_negativity": 5,
                "app_usage": 98,
                "insufficiency": 0,
            },
            "comments": "Strong month across every metric",
        },
        {
            "period": "2024-06",
            "inputs": {
                "tat": 60,
                "major_negativity": 5,
                "quality": 70,
                "neighbor_check": 65,
                "general_negativity": 35,
                "app_usage": 80,
                "insufficiency": 3,
            },
            "comments": "Turnaround slipped and negativity rose",
        },
    ]


# =============================================================================
# Seed Function
# =============================================================================


async def seed_demo_data(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    force: bool = False,
    process: bool = False,
) -> dict[str, int]:
    """Seed the database with demo users and KPI scores.

    Args:
        session_factory: Factory for async database sessions.
        force: If True, delete existing demo data before seeding.
        process: If True, run trigger automation for each KPI score
            without sending email.

    Returns:
        dict[str, int]: Counts of created records, e.g.
            {"users": 6, "kpi_scores": 2, "processed": 0}

    Raises:
        RuntimeError: If DEBUG is off, or data exists and force=False.

    Example:
        >>> result = await seed_demo_data(async_session_maker, force=True)
        >>> result["kpi_scores"]
        2
    """
    if not settings.DEBUG:
        raise RuntimeError("Demo data seeding is only allowed in DEBUG mode. Set DEBUG=true to enable it.")

    async with session_factory() as session:
        existing = await session.scalar(select(User.id).limit(1))
        if existing is not None:
            if not force:
                raise RuntimeError("Database already contains data. Use force=True to overwrite.")
            await _delete_demo_tables(session)

        users = create_demo_users()
        session.add_all(users)
        await session.commit()

    employee = next(user for user in users if user.role == UserRole.EMPLOYEE)
    admin = next(user for user in users if user.role == UserRole.ADMIN)

    store = ConfigurationStore(session_factory)
    service = KPIService(session_factory, config_store=store)
    orchestrator = TriggerOrchestrator(session_factory, config_store=store) if process else None

    kpi_scores = []
    processed = 0
    for row in demo_kpi_rows():
        kpi_score = await service.submit(
            employee.id,
            row["period"],
            row["inputs"],
            submitted_by=admin.id,
            source=KPISource.MANUAL,
            comments=row["comments"],
        )
        kpi_scores.append(kpi_score)
        if orchestrator is not None:
            await orchestrator.process(kpi_score.id, ProcessOptions(send_email=False))
            processed += 1

    logger.info("Seeded %d demo users and %d KPI scores", len(users), len(kpi_scores))
    return {"users": len(users), "kpi_scores": len(kpi_scores), "processed": processed}


async def clear_demo_data(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    """Clear users, KPI scores and every automation record.

    Configuration versions are kept.

    Returns:
        dict[str, int]: Counts of deleted records per table.
    """
    async with session_factory() as session:
        return await _delete_demo_tables(session)


async def _delete_demo_tables(session: AsyncSession) -> dict[str, int]:
    counts = {}
    for name, model in _DEMO_TABLES:
        counts[name] = await session.scalar(select(func.count()).select_from(model)) or 0
        await session.execute(delete(model))
    await session.commit()
    return counts


# =============================================================================
# CLI Entry Point
# =============================================================================


if __name__ == "__main__":
    import asyncio
    import sys

    from src.db.session import async_session_maker

    async def main() -> None:
        """Run the seed script from command line.

        Raises:
            SystemExit: If seeding fails.
        """
        force = "--force" in sys.argv
        process = "--process" in sys.argv

        print("Seeding demo data...")
        try:
            result = await seed_demo_data(async_session_maker, force=force, process=process)
        except RuntimeError as e:
            print(f"Error: {e}")
            print("Use --force to overwrite existing data")
            sys.exit(1)
        print(f"Created {result['users']} users")
        print(f"Created {result['kpi_scores']} KPI scores")
        if process:
            print(f"Processed {result['processed']} KPI scores")
        print("Done!")

    asyncio.run(main())
