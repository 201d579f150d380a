"""
Tests for the HTTP gateway
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from stepflow.config import OrchestratorConfig
from stepflow.gateway.app import create_app
from stepflow.llm.providers import MockLLMProvider
from stepflow.registry.llm import LLMFunctionRegistry, ProviderLLMFunction
from stepflow.registry.tools import FunctionTool, ToolRegistry
from stepflow.storage.memory import InMemoryStateStore


async def echo(**kwargs):
    return kwargs


@pytest.fixture
def client():
    tools = ToolRegistry()
    tools.register(FunctionTool("echo", echo, "Echo the arguments"))
    llm_functions = LLMFunctionRegistry()
    llm_functions.register(ProviderLLMFunction("chat", MockLLMProvider("pong"), "Chat"))

    app = create_app(
        config=OrchestratorConfig(),
        tools=tools,
        llm_functions=llm_functions,
        state_store=InMemoryStateStore()
    )
    with TestClient(app) as test_client:
        yield test_client


PLAN = {
    "name": "gateway plan",
    "steps": [
        {"kind": "tool_call", "input": {"tool": "echo", "arguments": {"n": 1}}, "output_variable": "first"},
        {"kind": "llm_call", "input": {"prompt": "ping {{first.n}}"}, "depends_on": [1]}
    ]
}


class TestGateway:
    """Test gateway endpoints"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "state_store": "memory", "state_store_healthy": True}

    def test_registry(self, client):
        data = client.get("/registry").json()
        assert [tool["name"] for tool in data["tools"]] == ["echo"]
        assert data["llm_functions"][0]["name"] == "chat"
        assert data["default_llm_function"] == "chat"

    def test_execute_plan_and_read_session(self, client):
        response = client.post("/plans/execute", json={"plan": PLAN, "session_id": "session_http"})
        assert response.status_code == 200
        result = response.json()
        assert result["status"] == "completed"
        assert result["completed_steps"] == 2
        assert result["final_output"] == "pong"

        session = client.get("/sessions/session_http")
        assert session.status_code == 200
        data = session.json()
        assert data["status"] == "completed"
        assert sorted(data["completed"]) == ["step_0001", "step_0002"]
        assert data["variables"]["first"] == {"n": 1}

    def test_invalid_plan(self, client):
        plan = {"steps": [
            {"kind": "tool_call", "input": {"tool": "echo"}, "depends_on": [2]},
            {"kind": "tool_call", "input": {"tool": "echo"}, "depends_on": [1]}
        ]}
        response = client.post("/plans/execute", json={"plan": plan})
        assert response.status_code == 400
        assert "cycle" in response.json()["detail"]["error"]

    def test_failed_plan_is_reported(self, client):
        plan = {"steps": [{"kind": "tool_call", "input": {"tool": "missing"}}]}
        response = client.post("/plans/execute", json={"plan": plan})
        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error_message"] == "target not resolved: tool 'missing'"

    def test_planner_output(self, client):
        output = '```json\n{"goal": "demo", "actions": [{"name": "echo", "parameters": {"x": 2}}]}\n```'
        response = client.post("/plans/planner/execute", json={"output": output, "plan_id": "planned"})
        assert response.status_code == 200
        assert response.json()["plan_id"] == "planned"
        assert response.json()["final_output"] == {"x": 2}

    def test_planner_output_unknown_action(self, client):
        response = client.post("/plans/planner/execute", json={"output": {"actions": [{"name": "teleport"}]}})
        assert response.status_code == 400

    def test_unknown_session(self, client):
        assert client.get("/sessions/unknown").status_code == 404

    def test_resume_unknown_session(self, client):
        response = client.post("/sessions/unknown/resume", json={"plan": PLAN})
        assert response.status_code == 404

    def test_resume_completed_session(self, client):
        client.post("/plans/execute", json={"plan": dict(PLAN, id="resumable"), "session_id": "session_again"})
        response = client.post("/sessions/session_again/resume", json={"plan": dict(PLAN, id="resumable")})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_resume_without_plan_id_uses_session_plan(self, client):
        first = client.post("/plans/execute", json={"plan": PLAN, "session_id": "session_anonymous"})
        response = client.post("/sessions/session_anonymous/resume", json={"plan": PLAN})
        assert response.status_code == 200
        assert response.json()["plan_id"] == first.json()["plan_id"]
        assert response.json()["status"] == "completed"

    def test_request_id_header(self, client):
        response = client.get("/registry", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics(self, client):
        client.post("/plans/execute", json={"plan": PLAN})
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "stepflow_step_executions_total" in response.text


def test_health_reports_degraded_store():
    store = InMemoryStateStore()
    store.is_healthy = AsyncMock(return_value=False)
    app = create_app(config=OrchestratorConfig(), tools=ToolRegistry(), state_store=store)

    with TestClient(app) as test_client:
        data = test_client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["state_store_healthy"] is False
    store.is_healthy.assert_awaited()
