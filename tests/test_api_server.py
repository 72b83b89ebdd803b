"""
Tests for the admin API.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import text_response
from forgeagent import __version__
from forgeagent.api.server import create_app
from forgeagent.config.container import setup_container
from forgeagent.storage.models import ExecutionStatus


@pytest.fixture
def container(settings, scripted_model, source_control, ticket_store, execution_store, knowledge_base):
    container = setup_container(settings)
    container.register_singleton("gateway", scripted_model.gateway(settings.model))
    container.register_singleton("source_control", source_control)
    container.register_singleton("ticket_store", ticket_store)
    container.register_singleton("execution_store", execution_store)
    container.register_singleton("knowledge_base", knowledge_base)
    return container


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["components"]["model_api_key"] == "configured"
        assert data["uptime_seconds"] >= 0


class TestProtocols:
    def test_list(self, client):
        protocols = client.get("/forge/agents/protocols").json()["protocols"]
        assert len(protocols) == 8
        assert {p["id"] for p in protocols} >= {"opus_planning", "haiku_docs"}

    def test_details(self, client):
        data = client.get("/forge/agents/protocols/opus_planning").json()
        assert data["can_create_branch"] is False

    def test_unknown(self, client):
        response = client.get("/forge/agents/protocols/unknown")
        assert response.status_code == 404
        assert response.json() == {"error": "Unknown agent protocol: unknown"}

    def test_suggest_from_attributes(self, client):
        response = client.post("/forge/agents/suggest", json={"type": "bug"})
        assert response.json()["protocol"] == "sonnet_bug_fix"

        response = client.post("/forge/agents/suggest", json={"estimate": 8})
        assert response.json()["protocol"] == "opus_full_feature"

    def test_suggest_from_ticket(self, client):
        response = client.post("/forge/agents/suggest", json={"ticket_id": "ticket-1"})
        assert response.status_code == 200
        assert response.json()["protocol"] == "sonnet_implementation"
        assert response.json()["details"]["model"]

    def test_suggest_unknown_ticket(self, client):
        assert client.post("/forge/agents/suggest", json={"ticket_id": "nope"}).status_code == 404


class TestExecutions:
    def test_execute_and_fetch(self, client, scripted_model):
        scripted_model.queue(text_response("Finished"))

        response = client.post(
            "/forge/agents/execute", json={"ticket_id": "ticket-1", "protocol": "haiku_quick_edit"}
        )

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["status"] == "completed"
        assert result["protocol"] == "haiku_quick_edit"

        execution = client.get(f"/forge/agents/executions/{result['execution_id']}").json()
        assert execution["status"] == "completed"
        assert execution["ticket_id"] == "ticket-1"
        assert execution["has_checkpoint"] is False
        assert "checkpoint_data" not in execution

    def test_execute_suggests_protocol(self, client, scripted_model):
        scripted_model.queue(text_response())
        result = client.post("/forge/agents/execute", json={"ticket_id": "ticket-1"}).json()
        assert result["protocol"] == "sonnet_implementation"
        assert result["success"] is True

    def test_execute_unknown_protocol(self, client):
        response = client.post(
            "/forge/agents/execute", json={"ticket_id": "ticket-1", "protocol": "nope"}
        )
        assert response.status_code == 404

    def test_execute_validation(self, client):
        response = client.post("/forge/agents/execute", json={"ticket_id": "", "protocol": "haiku_docs"})
        assert response.status_code == 422

    def test_unknown_execution(self, client):
        assert client.get("/forge/agents/executions/nope").status_code == 404
        assert client.post("/forge/agents/executions/nope/pause").status_code == 404

    def test_lifecycle_conflicts_and_cancel(self, client, scripted_model):
        scripted_model.queue(text_response())
        execution_id = client.post(
            "/forge/agents/execute", json={"ticket_id": "ticket-1", "protocol": "haiku_docs"}
        ).json()["execution_id"]

        response = client.post(f"/forge/agents/executions/{execution_id}/pause")
        assert response.status_code == 409
        assert "completed -> pause" in response.json()["error"]

        assert client.post(f"/forge/agents/executions/{execution_id}/resume").status_code == 409

        response = client.post(f"/forge/agents/executions/{execution_id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "failed"

    def test_resume_without_checkpoint(self, client, execution_store):
        execution = asyncio.run(
            execution_store.insert(
                {"ticket_id": "ticket-1", "protocol": "haiku_docs", "status": ExecutionStatus.PAUSED}
            )
        )
        response = client.post(f"/forge/agents/executions/{execution.id}/resume", json={})
        assert response.status_code == 409
        assert "No checkpoint" in response.json()["error"]


class TestConflictsAndBudget:
    def test_conflicts(self, client, container, ticket_store):
        detector = container.get("conflict_detector")
        assert asyncio.run(detector.acquire_file_locks("ticket-1", ["src/a.ts"]))

        response = client.get("/forge/agents/conflicts/ticket-2", params={"files": ["src/a.ts", "src/b.ts"]})

        assert response.status_code == 200
        data = response.json()
        assert data["has_conflict"] is True
        assert data["conflicting_tickets"] == [
            {"ticket_id": "ticket-1", "identifier": "AXO-123", "files": ["src/a.ts"]}
        ]

    def test_no_conflicts(self, client):
        data = client.get("/forge/agents/conflicts/ticket-1").json()
        assert data == {"has_conflict": False, "conflicting_tickets": []}

    def test_budget_today(self, client, scripted_model):
        scripted_model.queue(text_response("ok", 1_000, 500))
        client.post("/forge/agents/execute", json={"ticket_id": "ticket-1", "protocol": "haiku_docs"})

        data = client.get("/forge/budget/today").json()
        assert data["used_tokens"] == 1_500
        assert data["daily_limit_tokens"] == 500_000
        assert data["remaining_tokens"] == 498_500
