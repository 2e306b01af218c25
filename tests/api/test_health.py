"""Tests for the health check endpoint and router registration."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.tier1


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test that health endpoint returns healthy status and version."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_routers_registered(client: AsyncClient) -> None:
    """Every API router is mounted under /api."""
    response = await client.get("/openapi.json")
    paths = response.json()["paths"]

    for path in (
        "/api/kpi",
        "/api/kpi/{kpi_score_id}/reprocess",
        "/api/kpi-configuration",
        "/api/training-assignments",
        "/api/audits",
        "/api/notifications/user/{user_id}",
        "/api/email-logs",
        "/api/lifecycle/user/{user_id}",
        "/api/users",
    ):
        assert path in paths
