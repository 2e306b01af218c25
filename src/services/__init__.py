"""Backend services for KPI scoring and trigger automation."""

from src.services.audit_service import AuditService
from src.services.configuration_store import ConfigurationStore
from src.services.email_service import EmailService
from src.services.kpi_service import KPIService
from src.services.lifecycle_recorder import LifecycleRecorder
from src.services.notification_service import NotificationService
from src.services.training_service import TrainingService
from src.services.trigger_orchestrator import ProcessOptions, TriggerOrchestrator

__all__ = [
    "AuditService",
    "ConfigurationStore",
    "EmailService",
    "KPIService",
    "LifecycleRecorder",
    "NotificationService",
    "ProcessOptions",
    "TrainingService",
    "TriggerOrchestrator",
]
