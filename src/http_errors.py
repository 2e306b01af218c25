"""Translation of domain exceptions into HTTP errors for the routers."""

from fastapi import HTTPException

from src.services.errors import (
    ConfigurationError,
    DuplicateAssignmentError,
    DuplicateKPIScoreError,
    DuplicateNotificationError,
    EmailDeliveryError,
    EntityNotFoundError,
    InvalidKPIInputError,
    InvalidTransitionError,
    KPIEngineError,
)

_STATUS_CODES: tuple[tuple[type[KPIEngineError], int], ...] = (
    (EntityNotFoundError, 404),
    (DuplicateKPIScoreError, 409),
    (DuplicateAssignmentError, 409),
    (DuplicateNotificationError, 409),
    (InvalidKPIInputError, 422),
    (InvalidTransitionError, 400),
    (ConfigurationError, 400),
    (EmailDeliveryError, 502),
)


def to_http_exception(error: KPIEngineError) -> HTTPException:
    """Map a domain error to an HTTPException.

    Args:
        error: Domain error raised by a service.

    Returns:
        HTTPException: 404 for missing entities, 409 for duplicates, 422 for
            invalid KPI input, 400 for invalid transitions and configuration.

    Example:
        >>> try:
        ...     await service.get(kpi_score_id)
        ... except KPIEngineError as e:
        ...     raise to_http_exception(e) from e
    """
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=400, detail=error.message)
