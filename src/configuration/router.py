"""KPI configuration API router - Read, update and reset scoring configuration.

Every change writes a new configuration version; invalid documents are
rejected wholesale with HTTP 400.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from src.dependencies import ConfigurationStoreDep
from src.http_errors import to_http_exception
from src.schemas.configuration import (
    ActiveConfiguration,
    ConfigurationVersionResponse,
    MetricsUpdate,
    TriggerRules,
)
from src.services.errors import KPIEngineError

router = APIRouter(prefix="/kpi-configuration", tags=["configuration"])

ChangedBy = Annotated[UUID | None, Query(description="Staff member making the change")]


@router.get("", response_model=ActiveConfiguration)
async def get_configuration(store: ConfigurationStoreDep) -> ActiveConfiguration:
    """Return the active configuration document and its version."""
    try:
        return await store.get_active()
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.put("/metrics", response_model=ActiveConfiguration)
async def update_metrics(
    request: MetricsUpdate,
    store: ConfigurationStoreDep,
    changed_by: ChangedBy = None,
) -> ActiveConfiguration:
    """Replace metric definitions (and optionally rating bands).

    Raises:
        HTTPException: 400 if the resulting configuration is invalid.
    """
    try:
        return await store.update_metrics(request.metrics, bands=request.bands, changed_by=changed_by)
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.put("/triggers", response_model=ActiveConfiguration)
async def update_triggers(
    request: TriggerRules,
    store: ConfigurationStoreDep,
    changed_by: ChangedBy = None,
) -> ActiveConfiguration:
    """Replace rating rules and metric rules.

    Raises:
        HTTPException: 400 if the resulting configuration is invalid.
    """
    try:
        return await store.update_triggers(request, changed_by=changed_by)
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.post("/reset", response_model=ActiveConfiguration)
async def reset_configuration(store: ConfigurationStoreDep, changed_by: ChangedBy = None) -> ActiveConfiguration:
    """Restore the built-in defaults (no new version if already at defaults)."""
    try:
        return await store.reset_to_defaults(changed_by=changed_by)
    except KPIEngineError as e:
        raise to_http_exception(e) from e


@router.get("/history", response_model=list[ConfigurationVersionResponse])
async def configuration_history(
    store: ConfigurationStoreDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[ConfigurationVersionResponse]:
    """List configuration versions, newest first."""
    return [ConfigurationVersionResponse.model_validate(row) for row in await store.history(limit)]


@router.get("/versions/{version}", response_model=ActiveConfiguration)
async def get_configuration_version(version: int, store: ConfigurationStoreDep) -> ActiveConfiguration:
    """Return a stored configuration version.

    Raises:
        HTTPException: 404 if the version does not exist.
    """
    try:
        return await store.get_version(version)
    except KPIEngineError as e:
        raise to_http_exception(e) from e
