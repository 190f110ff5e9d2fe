"""HTTP API tests against an isolated orchestrator."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from taskmesh import main
from taskmesh.agents.base import ExecutionStrategy, StrategyRegistry
from taskmesh.api.routes import router as agents_router
from taskmesh.api.system import router as system_router
from taskmesh.api.tasks import router as tasks_router
from taskmesh.config import config
from taskmesh.core.models import AgentConfig, Task
from taskmesh.main import app as main_app
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.resources.manager import ResourceManager
from taskmesh.runtime import get_orchestrator


class ScriptedStrategy(ExecutionStrategy):
    def __init__(self) -> None:
        self.error: Optional[Exception] = None

    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {"type": f"{task.type.value}_result", "output": "done"}


@pytest.fixture
def strategy() -> ScriptedStrategy:
    return ScriptedStrategy()


@pytest.fixture
def orchestrator(strategy: ScriptedStrategy, tmp_path: Path) -> Orchestrator:
    return Orchestrator(
        strategies=StrategyRegistry(fallback=strategy),
        resources=ResourceManager(tmp_path),
    )


@pytest.fixture
def client(orchestrator: Orchestrator) -> Iterator[TestClient]:
    app = FastAPI()
    app.include_router(agents_router)
    app.include_router(tasks_router)
    app.include_router(system_router)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client


def agent_payload(agent_id: str = "a1", **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": agent_id,
        "name": f"Agent {agent_id}",
        "role": "Developer",
        "capabilities": ["coding"],
        "system_prompt": "You write code.",
    }
    payload.update(overrides)
    return payload


def test_health() -> None:
    response = TestClient(main_app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_run_serves_app_with_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: List[Dict[str, Any]] = []
    monkeypatch.setattr(
        main.uvicorn, "run", lambda app, **options: calls.append({"app": app, **options})
    )

    main.run()

    assert calls == [
        {
            "app": main_app,
            "host": config.host,
            "port": config.port,
            "log_level": config.log_level.lower(),
        }
    ]


def test_agent_lifecycle(client: TestClient) -> None:
    response = client.post("/agents", json=agent_payload(capabilities=["coding", "research"]))
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "idle"
    assert body["specializations"] == ["software_development", "information_gathering"]

    assert client.post("/agents", json=agent_payload()).status_code == 409
    assert [agent["id"] for agent in client.get("/agents").json()] == ["a1"]
    assert client.get("/agents/a1").json()["name"] == "Agent a1"

    assert client.delete("/agents/a1").status_code == 204
    assert client.get("/agents/a1").status_code == 404
    assert client.delete("/agents/a1").status_code == 404


def test_invalid_agent_is_422(client: TestClient) -> None:
    response = client.post("/agents", json=agent_payload(capabilities=[]))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ValidationError"


def test_sub_agent_endpoint(client: TestClient) -> None:
    client.post("/agents", json=agent_payload("lead"))

    response = client.post("/agents/lead/sub-agents", json={"role": "Reviewer"})

    assert response.status_code == 201
    body = response.json()
    assert body["parent_agent_id"] == "lead"
    assert body["role"] == "Reviewer"
    assert client.post("/agents/ghost/sub-agents", json={}).status_code == 404


def test_task_flow(client: TestClient) -> None:
    task = client.post("/tasks", json={"description": "Build it", "type": "coding"}).json()
    assert task["status"] == "pending"

    assert client.post(f"/tasks/{task['id']}/assign").status_code == 503

    client.post("/agents", json=agent_payload())
    assigned = client.post(f"/tasks/{task['id']}/assign", json={})
    assert assigned.status_code == 200
    assert assigned.json()["assigned_agent_id"] == "a1"

    executed = client.post(f"/tasks/{task['id']}/execute")
    assert executed.status_code == 200
    assert executed.json()["status"] == "completed"
    assert executed.json()["result"] == {"type": "coding_result", "output": "done"}

    assert client.post(f"/tasks/{task['id']}/execute").status_code == 409
    assert [t["id"] for t in client.get("/tasks", params={"status": "completed"}).json()] == [
        task["id"]
    ]


def test_unmet_dependencies_are_reported(client: TestClient) -> None:
    client.post("/agents", json=agent_payload())
    first = client.post("/tasks", json={}).json()
    second = client.post("/tasks", json={"dependencies": [first["id"]]}).json()

    response = client.post(f"/tasks/{second['id']}/assign")

    assert response.status_code == 409
    assert response.json()["detail"]["unmet_dependencies"] == [first["id"]]
    unmet = client.get(f"/tasks/{second['id']}/dependencies").json()
    assert unmet == {"unmet_dependencies": [first["id"]]}


def test_strategy_failure_is_502(client: TestClient, strategy: ScriptedStrategy) -> None:
    strategy.error = RuntimeError("model offline")
    client.post("/agents", json=agent_payload())
    task = client.post("/tasks", json={}).json()
    client.post(f"/tasks/{task['id']}/assign")

    response = client.post(f"/tasks/{task['id']}/execute")

    assert response.status_code == 502
    assert response.json()["detail"]["message"] == "model offline"
    assert client.get(f"/tasks/{task['id']}").json()["status"] == "failed"


def test_cancel_and_missing_tasks(client: TestClient) -> None:
    task = client.post("/tasks", json={}).json()

    response = client.post(f"/tasks/{task['id']}/cancel", json={"reason": "not needed"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["error"] == "not needed"

    assert client.post("/tasks/task_missing/cancel").status_code == 404
    assert client.get("/tasks/task_missing").status_code == 404


def test_task_tree(client: TestClient) -> None:
    response = client.post(
        "/tasks/tree",
        json={"task": {"description": "Release"}, "subtasks": [{"description": "Changelog"}]},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["task"]["subtasks"] == [body["subtasks"][0]["id"]]
    assert body["subtasks"][0]["parent_task_id"] == body["task"]["id"]


def test_collaborations_and_messages(client: TestClient) -> None:
    client.post("/agents", json=agent_payload("a1"))
    client.post("/agents", json=agent_payload("a2"))

    created = client.post("/collaborations", json={"agent_ids": ["a1", "a2"]})
    assert created.status_code == 201
    assert created.json()["collaboration_id"].startswith("collab_")
    assert client.get("/collaborations").json() == {"a1": ["a2"], "a2": ["a1"]}
    assert client.post("/collaborations", json={"agent_ids": ["a1", "ghost"]}).status_code == 404

    task = client.post("/tasks", json={}).json()
    sent = client.post(
        "/messages",
        json={
            "from_agent_id": "a1",
            "to_agent_id": "a2",
            "type": "task_assignment",
            "content": {"task_id": task["id"]},
        },
    )
    assert sent.status_code == 202
    assert sent.json()["message_id"].startswith("msg_")
    assert client.get(f"/tasks/{task['id']}").json()["assigned_agent_id"] == "a2"


def test_system_endpoints(client: TestClient) -> None:
    client.post("/agents", json=agent_payload())

    metrics = client.get("/system/metrics").json()
    assert metrics["agents"]["total"] == 1
    assert metrics["assignment_paused"] is False

    resources = client.get("/system/resources").json()
    assert resources["thresholds"]["ram_critical"] == 95.0
    assert resources["pressure"] in {"normal", "warning", "critical"}

    updated = client.patch("/system/resources/thresholds", json={"ram_warning": 70})
    assert updated.json()["ram_warning"] == 70

    assert client.get("/system/dumps/latest").status_code == 404
    assert client.get("/system/dumps").json() == {"emergency_dumps": [], "checkpoints": []}


def test_resources_disabled() -> None:
    orchestrator = Orchestrator(strategies=StrategyRegistry(fallback=ScriptedStrategy()))
    app = FastAPI()
    app.include_router(system_router)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with TestClient(app) as test_client:
        assert test_client.get("/system/resources").status_code == 503
