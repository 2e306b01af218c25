"""Domain exceptions raised by the KPI trigger engine services.

Services raise these; routers translate them to HTTP responses and the CLI
prints their ``message``.
"""

from uuid import UUID


class KPIEngineError(Exception):
    """Base exception for KPI engine errors.

    Attributes:
        message: Error description.

    Example:
        >>> raise KPIEngineError("Something went wrong")
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidKPIInputError(KPIEngineError):
    """Raw KPI inputs or period failed validation before persistence."""


class ConfigurationError(KPIEngineError):
    """Configuration document is invalid or cannot be used for scoring."""


class EntityNotFoundError(KPIEngineError):
    """A referenced entity does not exist.

    Attributes:
        entity: Entity kind, e.g. ``training assignment``.
        entity_id: Identifier that was looked up.
    """

    def __init__(self, entity: str, entity_id: UUID | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class KPIScoreNotFoundError(EntityNotFoundError):
    """KPI score does not exist."""

    def __init__(self, kpi_score_id: UUID | str) -> None:
        super().__init__("KPI score", kpi_score_id)


class DuplicateKPIScoreError(KPIEngineError):
    """A KPI score already exists for the user and period."""

    def __init__(self, user_id: UUID, period: str) -> None:
        self.user_id = user_id
        self.period = period
        super().__init__(f"KPI score already exists for user {user_id} and period {period}")


class DuplicateAssignmentError(KPIEngineError):
    """An open training assignment or audit of the same type already exists."""


class InvalidTransitionError(KPIEngineError):
    """Requested workflow transition is not allowed from the current state.

    Attributes:
        current: Current state value.
        target: Requested state value.
    """

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class EmailDeliveryError(KPIEngineError):
    """Transport failed to deliver an email."""


class DuplicateNotificationError(KPIEngineError):
    """A notification of the same type already exists for the KPI score."""
