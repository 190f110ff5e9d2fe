"""Tests for LLM-backed execution strategies and the client pool."""
from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from taskmesh.agents.base import ExecutionStrategy, StrategyRegistry
from taskmesh.agents.llm_agent import LLMTaskStrategy, build_llm_strategies
from taskmesh.core.errors import ExecutionError
from taskmesh.core.models import AgentConfig, AgentStatus, Task, TaskStatus, TaskType
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.services.llm_pool import LLMPool


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeCompletions:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **request: Any) -> SimpleNamespace:
        self.requests.append(request)
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeClient:
    def __init__(self, reply: str = "def add(a, b):\n    return a + b\n") -> None:
        self.completions = FakeCompletions(reply)
        self.chat = SimpleNamespace(completions=self.completions)


def coder(**overrides: Any) -> AgentConfig:
    fields: Dict[str, Any] = {
        "id": "a1",
        "name": "Coder",
        "role": "Developer",
        "capabilities": ["coding", "programming"],
        "system_prompt": "You are a senior Python developer.",
    }
    fields.update(overrides)
    return AgentConfig(**fields)


@pytest.mark.anyio
async def test_coding_task_runs_through_llm() -> None:
    client = FakeClient()
    pool = LLMPool()
    pool.register_client("default", client, model_id="deepseek-coder:6.7b")
    orchestrator = Orchestrator(strategies=build_llm_strategies(pool))
    await orchestrator.create_agent(coder(max_tokens=256))
    task_id = await orchestrator.create_task("Add two numbers", type=TaskType.CODING)

    assert await orchestrator.assign_task(task_id) == "a1"
    result = await orchestrator.execute_task(task_id)

    assert result["type"] == "coding_result"
    assert result["output"].startswith("def add")
    assert result["model"] == "deepseek-coder:6.7b"
    assert result["executed_by"] == "a1"
    assert orchestrator.get_task_status(task_id).status is TaskStatus.COMPLETED
    assert orchestrator.get_agent_status("a1").status is AgentStatus.IDLE
    assert orchestrator.get_agent_status("a1").performance.tasks_completed == 1

    request = client.completions.requests[0]
    assert request["model"] == "deepseek-coder:6.7b"
    assert request["max_tokens"] == 256
    assert request["temperature"] == 0.7
    assert request["messages"][0] == {
        "role": "system",
        "content": "You are a senior Python developer.",
    }
    assert "Add two numbers" in request["messages"][1]["content"]


@pytest.mark.anyio
async def test_unregistered_model_fails_the_task() -> None:
    orchestrator = Orchestrator(strategies=build_llm_strategies(LLMPool()))
    await orchestrator.create_agent(coder(model="missing"))
    task_id = await orchestrator.create_task(type=TaskType.CODING)
    await orchestrator.assign_task(task_id)

    with pytest.raises(ExecutionError) as excinfo:
        await orchestrator.execute_task(task_id)

    assert isinstance(excinfo.value.__cause__, KeyError)
    assert orchestrator.get_task_status(task_id).status is TaskStatus.FAILED
    assert orchestrator.get_agent_status("a1").status is AgentStatus.IDLE


def test_prompt_carries_type_instruction() -> None:
    strategy = LLMTaskStrategy(LLMPool(), TaskType.PLANNING)
    task = Task(id="task_1", description="Launch v2", type=TaskType.PLANNING)

    messages = strategy.build_messages(task, coder())

    assert messages[1]["content"].startswith("Produce a plan")
    assert messages[1]["content"].endswith("Task: Launch v2")


class Marker(ExecutionStrategy):
    def __init__(self, name: str) -> None:
        self.name = name

    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        return {"strategy": self.name}


def test_strategy_registry_falls_back() -> None:
    custom, research = Marker("custom"), Marker("research")
    registry = StrategyRegistry({TaskType.CUSTOM: custom, TaskType.RESEARCH: research})

    assert registry.resolve(TaskType.RESEARCH) is research
    assert registry.resolve(TaskType.CODING) is custom

    with pytest.raises(KeyError):
        StrategyRegistry().resolve(TaskType.CODING)


def test_pool_model_ids() -> None:
    pool = LLMPool()
    pool.register_client("default", FakeClient(), model_id="qwen2.5-coder:7b")

    assert pool.models() == ["default"]
    assert pool.model_id("default") == "qwen2.5-coder:7b"
    assert pool.model_id("other") == "other"
