"""Tests for the training, audit, notification, email log and lifecycle endpoints."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from src.db.models import EmailTemplate, User
from src.services.email_service import EmailService

pytestmark = pytest.mark.tier1


class TestTrainingAssignments:
    @pytest.mark.asyncio
    async def test_manual_assignment_flow(self, client: AsyncClient, employee: User) -> None:
        created = await client.post(
            "/api/training-assignments",
            json={"user_id": str(employee.id), "training_type": "dos_donts", "reason": "coaching"},
        )
        assert created.status_code == 201
        assignment_id = created.json()["id"]
        assert created.json()["assigned_by"] == "manual"

        started = await client.post(f"/api/training-assignments/{assignment_id}/start")
        completed = await client.post(
            f"/api/training-assignments/{assignment_id}/complete", json={"score": 90, "notes": "done"}
        )
        cancelled = await client.post(f"/api/training-assignments/{assignment_id}/cancel", json={})

        assert started.json()["status"] == "in_progress"
        assert completed.json()["status"] == "completed"
        assert cancelled.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_open_assignment(self, client: AsyncClient, employee: User) -> None:
        body = {"user_id": str(employee.id), "training_type": "basic"}
        await client.post("/api/training-assignments", json=body)

        response = await client.post("/api/training-assignments", json=body)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_list_for_user(self, client: AsyncClient, employee: User) -> None:
        await client.post("/api/training-assignments", json={"user_id": str(employee.id), "training_type": "basic"})

        response = await client.get(f"/api/training-assignments/user/{employee.id}", params={"status": "assigned"})

        assert [a["training_type"] for a in response.json()] == ["basic"]

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, client: AsyncClient) -> None:
        assert (await client.get(f"/api/training-assignments/{uuid4()}")).status_code == 404


class TestAudits:
    @pytest.mark.asyncio
    async def test_schedule_and_complete(self, client: AsyncClient, employee: User) -> None:
        created = await client.post("/api/audits", json={"user_id": str(employee.id), "audit_type": "cross_check"})
        audit_id = created.json()["id"]

        completed = await client.post(
            f"/api/audits/{audit_id}/complete",
            json={"findings": "clean", "risk_level": "low", "compliance_status": "compliant"},
        )

        assert created.status_code == 201
        assert completed.json()["status"] == "completed"
        assert completed.json()["compliance_status"] == "compliant"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient, users) -> None:
        response = await client.post("/api/audits", json={"user_id": str(uuid4()), "audit_type": "audit_call"})

        assert response.status_code == 404


class TestNotifications:
    @pytest.mark.asyncio
    async def test_read_and_acknowledge(
        self,
        client: AsyncClient,
        employee: User,
        submit_kpi,
        scenario_b: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_b)
        await client.post(f"/api/kpi/{kpi_score.id}/process", json={"send_email": False})

        listed = await client.get(f"/api/notifications/user/{employee.id}")
        count = await client.get(f"/api/notifications/user/{employee.id}/unread-count")
        first_id = listed.json()[0]["id"]
        read = await client.post(f"/api/notifications/{first_id}/read")
        acknowledged = await client.post(f"/api/notifications/{first_id}/acknowledge")
        read_again = await client.post(f"/api/notifications/{first_id}/read")

        assert {n["notification_type"] for n in listed.json()} == {"kpi_score", "training", "audit"}
        assert count.json() == {"unread": 3}
        assert read.json()["status"] == "read"
        assert acknowledged.json()["status"] == "acknowledged"
        assert read_again.status_code == 400


class TestEmailLogs:
    @pytest.mark.asyncio
    async def test_list_and_retry(
        self,
        client: AsyncClient,
        session_factory,
        failing_transport,
        submit_kpi,
        scenario_a: dict,
    ) -> None:
        kpi_score = await submit_kpi(scenario_a)
        failed = await EmailService(session_factory, transport=failing_transport).dispatch(
            kpi_score.id, EmailTemplate.KPI_NOTIFICATION
        )

        listed = await client.get("/api/email-logs", params={"kpi_score_id": str(kpi_score.id), "status": "failed"})
        retried = await client.post(f"/api/email-logs/{failed.id}/retry")
        retried_again = await client.post(f"/api/email-logs/{failed.id}/retry")

        assert [log["id"] for log in listed.json()] == [str(failed.id)]
        assert retried.status_code == 201
        assert retried.json()["attempt_number"] == 2
        assert retried.json()["retry_of_id"] == str(failed.id)
        assert retried_again.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_log(self, client: AsyncClient) -> None:
        assert (await client.get(f"/api/email-logs/{uuid4()}")).status_code == 404


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_timeline(self, client: AsyncClient, employee: User, submit_kpi, scenario_b: dict) -> None:
        kpi_score = await submit_kpi(scenario_b)
        await client.post(f"/api/kpi/{kpi_score.id}/process")

        timeline = await client.get(f"/api/lifecycle/user/{employee.id}")
        filtered = await client.get(
            f"/api/lifecycle/user/{employee.id}", params={"event_type": "training_assigned"}
        )
        by_kpi = await client.get(f"/api/lifecycle/kpi/{kpi_score.id}")

        types = {event["event_type"] for event in timeline.json()}
        assert {"kpi_recorded", "training_assigned", "audit_scheduled", "email_sent"} <= types
        assert len(filtered.json()) == 3
        assert by_kpi.json()[0]["event_type"] == "kpi_recorded"


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client: AsyncClient) -> None:
        created = await client.post(
            "/api/users",
            json={"email": "new.hire@example.com", "name": "New Hire", "employee_id": "E-1042"},
        )

        assert created.status_code == 201
        assert created.json()["role"] == "employee"
        fetched = await client.get(f"/api/users/{created.json()['id']}")
        assert fetched.json()["email"] == "new.hire@example.com"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, client: AsyncClient, users) -> None:
        response = await client.post("/api/users", json={"email": "employee@example.com", "name": "Clash"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_filter_by_role(self, client: AsyncClient, users) -> None:
        response = await client.get("/api/users", params={"role": "compliance"})

        assert [u["email"] for u in response.json()] == ["compliance@example.com"]

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient) -> None:
        assert (await client.get(f"/api/users/{uuid4()}")).status_code == 404
