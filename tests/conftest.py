"""Pytest configuration and fixtures for backend tests.

Database-backed tests run against a scratch SQLite file per test (aiosqlite);
the same models run on PostgreSQL in production.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.db.base import Base
from src.db.models import KPIScore, User, UserRole
from src.db.session import create_engine_for_url, create_session_factory, get_async_db_session
from src.dependencies import (
    get_configuration_cache,
    get_email_transport,
    get_session_factory,
)
from src.main import app
from src.schemas.kpi import RawKPIInputs
from src.services.audit_service import AuditService
from src.services.cache import TaggedCache
from src.services.configuration_store import ConfigurationStore, configuration_cache
from src.services.email_service import EmailService
from src.services.email_transport import EmailMessage, EmailTransport
from src.services.errors import EmailDeliveryError
from src.services.kpi_service import KPIService
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.notification_service import NotificationService
from src.services.training_service import TrainingService
from src.services.trigger_orchestrator import TriggerOrchestrator

# Scenario A: strong month, rated excellent (96.55 with the defaults)
SCENARIO_A = {
    "tat": 95,
    "major_negativity": 0,
    "quality": 95,
    "neighbor_check": 90,
    "general_negativity": 5,
    "app_usage": 98,
    "insufficiency": 0,
}

# Scenario B: weak month, rated below_average (45.00 with the defaults)
SCENARIO_B = {
    "tat": 60,
    "major_negativity": 5,
    "quality": 70,
    "neighbor_check": 65,
    "general_negativity": 35,
    "app_usage": 80,
    "insufficiency": 3,
}


class RecordingTransport(EmailTransport):
    """Transport that keeps every message in memory."""

    name = "recording"

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)


class FailingTransport(EmailTransport):
    """Transport whose relay is always down."""

    name = "failing"

    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, message: EmailMessage) -> None:
        self.attempts += 1
        raise EmailDeliveryError("Mail relay unreachable: connection refused")


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True)
def clear_configuration_cache() -> None:
    """The active-configuration cache is process wide; start every test cold."""
    configuration_cache.clear()


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Scratch SQLite database with every table created."""
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'kpi_test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def users(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, User]:
    """One active user per role, keyed by role value.

    Yields:
        dict[str, User]: ``employee``, ``coordinator``, ``manager``, ``hod``,
            ``compliance`` and ``admin``.
    """
    created = {
        role.value: User(
            email=f"{role.value}@example.com",
            name=f"{role.value.replace('_', ' ').title()} User",
            role=role,
        )
        for role in UserRole
    }
    async with session_factory() as session:
        session.add_all(created.values())
        await session.commit()
    return created


@pytest.fixture
def employee(users: dict[str, User]) -> User:
    return users["employee"]


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def config_store(session_factory: async_sessionmaker[AsyncSession]) -> ConfigurationStore:
    return ConfigurationStore(session_factory, cache=TaggedCache())


@pytest.fixture
def recorder(session_factory: async_sessionmaker[AsyncSession]) -> LifecycleRecorder:
    return LifecycleRecorder(session_factory)


@pytest.fixture
def training_service(session_factory: async_sessionmaker[AsyncSession]) -> TrainingService:
    return TrainingService(session_factory)


@pytest.fixture
def audit_service(session_factory: async_sessionmaker[AsyncSession]) -> AuditService:
    return AuditService(session_factory)


@pytest.fixture
def notification_service(session_factory: async_sessionmaker[AsyncSession]) -> NotificationService:
    return NotificationService(session_factory)


@pytest.fixture
def email_service(
    session_factory: async_sessionmaker[AsyncSession],
    recording_transport: RecordingTransport,
) -> EmailService:
    return EmailService(session_factory, transport=recording_transport)


@pytest.fixture
def kpi_service(
    session_factory: async_sessionmaker[AsyncSession],
    config_store: ConfigurationStore,
) -> KPIService:
    return KPIService(session_factory, config_store=config_store)


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    config_store: ConfigurationStore,
    email_service: EmailService,
) -> TriggerOrchestrator:
    return TriggerOrchestrator(session_factory, config_store=config_store, email_service=email_service)


@pytest.fixture
def submit_kpi(kpi_service: KPIService, employee: User):
    """Factory submitting a KPI score for the employee.

    Example:
        >>> kpi_score = await submit_kpi(SCENARIO_B)
    """

    async def _submit(inputs: dict, period: str = "2024-06", user_id: UUID | None = None) -> KPIScore:
        return await kpi_service.submit(user_id or employee.id, period, RawKPIInputs(**inputs))

    return _submit


# =============================================================================
# HTTP client
# =============================================================================


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    recording_transport: RecordingTransport,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for the FastAPI app.

    Every service the routers build points at the scratch database and the
    in-memory email transport.

    Yields:
        AsyncClient: HTTP client for testing endpoints.

    Example:
        >>> async def test_health(client: AsyncClient):
        ...     response = await client.get("/health")
        ...     assert response.status_code == 200
    """
    cache = TaggedCache()

    async def _db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_email_transport] = lambda: recording_transport
    app.dependency_overrides[get_configuration_cache] = lambda: cache
    app.dependency_overrides[get_async_db_session] = _db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Scenario data
# =============================================================================


@pytest.fixture
def scenario_a() -> dict[str, float]:
    return dict(SCENARIO_A)


@pytest.fixture
def scenario_b() -> dict[str, float]:
    return dict(SCENARIO_B)


@pytest.fixture
def failing_transport() -> FailingTransport:
    return FailingTransport()
