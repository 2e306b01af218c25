"""Shared FastAPI dependencies.

Provides type aliases and service providers for route handlers. Services
commit per operation, so they receive the session factory rather than a
request-scoped session; tests override ``get_session_factory`` and
``get_email_transport`` to point the whole API at a scratch database.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.session import async_session_maker, get_async_db_session
from src.services.audit_service import AuditService
from src.services.cache import TaggedCache
from src.services.configuration_store import ConfigurationStore, configuration_cache
from src.services.email_service import EmailService
from src.services.email_transport import EmailTransport, build_transport
from src.services.kpi_service import KPIService
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.notification_service import NotificationService
from src.services.training_service import TrainingService
from src.services.trigger_orchestrator import TriggerOrchestrator

# Type alias for cleaner route signatures
DbSession = Annotated[AsyncSession, Depends(get_async_db_session)]
"""Database session dependency type alias.

Use this in route handlers for automatic session injection:

    @router.get("/items")
    async def list_items(db: DbSession) -> list[Item]:
        ...
"""


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_maker


def get_configuration_cache() -> TaggedCache:
    return configuration_cache


@lru_cache
def get_email_transport() -> EmailTransport:
    return build_transport()


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
ConfigCache = Annotated[TaggedCache, Depends(get_configuration_cache)]
Transport = Annotated[EmailTransport, Depends(get_email_transport)]


def get_configuration_store(factory: SessionFactory, cache: ConfigCache) -> ConfigurationStore:
    return ConfigurationStore(factory, cache=cache)


def get_lifecycle_recorder(factory: SessionFactory) -> LifecycleRecorder:
    return LifecycleRecorder(factory)


def get_training_service(factory: SessionFactory) -> TrainingService:
    return TrainingService(factory)


def get_audit_service(factory: SessionFactory) -> AuditService:
    return AuditService(factory)


def get_notification_service(factory: SessionFactory) -> NotificationService:
    return NotificationService(factory)


def get_email_service(factory: SessionFactory, transport: Transport) -> EmailService:
    return EmailService(factory, transport=transport)


Store = Annotated[ConfigurationStore, Depends(get_configuration_store)]
EmailSvc = Annotated[EmailService, Depends(get_email_service)]


def get_kpi_service(factory: SessionFactory, store: Store) -> KPIService:
    return KPIService(factory, config_store=store)


def get_trigger_orchestrator(factory: SessionFactory, store: Store, email_service: EmailSvc) -> TriggerOrchestrator:
    """Build an orchestrator wired to the request's session factory.

    Returns:
        TriggerOrchestrator: Orchestrator sharing the configuration store and
            email transport of the request.
    """
    return TriggerOrchestrator(factory, config_store=store, email_service=email_service)


KPIServiceDep = Annotated[KPIService, Depends(get_kpi_service)]
OrchestratorDep = Annotated[TriggerOrchestrator, Depends(get_trigger_orchestrator)]
TrainingServiceDep = Annotated[TrainingService, Depends(get_training_service)]
AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
EmailServiceDep = EmailSvc
LifecycleRecorderDep = Annotated[LifecycleRecorder, Depends(get_lifecycle_recorder)]
ConfigurationStoreDep = Store
