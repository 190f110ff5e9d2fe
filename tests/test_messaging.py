"""Tests for the message bus, message routing and collaborations."""
from __future__ import annotations

from typing import Any, Dict, List

import pytest

from taskmesh.agents.base import ExecutionStrategy, StrategyRegistry
from taskmesh.core.errors import NotFoundError
from taskmesh.core.events import EventType
from taskmesh.core.message_bus import MessageBus
from taskmesh.core.models import (
    AgentConfig,
    AgentMessage,
    AgentStatus,
    MessageType,
    Task,
    TaskStatus,
)
from taskmesh.orchestration.orchestrator import Orchestrator


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class NoopStrategy(ExecutionStrategy):
    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        return {}


async def make_orchestrator(*agent_ids: str) -> Orchestrator:
    orchestrator = Orchestrator(strategies=StrategyRegistry(fallback=NoopStrategy()))
    for agent_id in agent_ids:
        await orchestrator.create_agent(
            AgentConfig(
                id=agent_id,
                name=agent_id,
                role="Analyst",
                capabilities=["analysis"],
                system_prompt="You analyse data.",
            )
        )
    return orchestrator


@pytest.mark.anyio
async def test_bus_dispatches_immediately_once() -> None:
    received: List[AgentMessage] = []

    async def handler(message: AgentMessage) -> None:
        received.append(message)

    bus = MessageBus(lambda agent_id: agent_id == "a2")
    bus.register(MessageType.STATUS_UPDATE, handler)

    message_id = await bus.send(AgentMessage("a1", "a2", MessageType.STATUS_UPDATE))

    assert message_id.startswith("msg_")
    assert [message.id for message in received] == [message_id]
    assert received[0].timestamp is not None
    assert len(bus) == 0
    assert await bus.drain() == 0


@pytest.mark.anyio
async def test_bus_deferred_messages_wait_for_drain() -> None:
    received: List[str] = []

    async def handler(message: AgentMessage) -> None:
        received.append(message.content["n"])

    bus = MessageBus(lambda agent_id: True)
    bus.register(MessageType.STATUS_UPDATE, handler)

    for n in ("one", "two"):
        await bus.send(
            AgentMessage("a1", "a2", MessageType.STATUS_UPDATE, {"n": n}), immediate=False
        )
    assert received == []
    assert len(bus.pending()) == 2

    assert await bus.drain() == 2
    assert received == ["one", "two"]
    assert await bus.drain() == 0


@pytest.mark.anyio
async def test_bus_drain_survives_failing_handler() -> None:
    received: List[str] = []

    async def handler(message: AgentMessage) -> None:
        if message.content.get("fail"):
            raise RuntimeError("handler exploded")
        received.append(message.id)

    bus = MessageBus(lambda agent_id: True)
    bus.register(MessageType.ERROR_REPORT, handler)
    await bus.send(
        AgentMessage("a1", "a2", MessageType.ERROR_REPORT, {"fail": True}), immediate=False
    )
    ok_id = await bus.send(AgentMessage("a1", "a2", MessageType.ERROR_REPORT), immediate=False)

    assert await bus.drain() == 1
    assert received == [ok_id]
    assert len(bus) == 0


@pytest.mark.anyio
async def test_immediate_dispatch_errors_reach_sender() -> None:
    async def handler(message: AgentMessage) -> None:
        raise RuntimeError("handler exploded")

    bus = MessageBus(lambda agent_id: True)
    bus.register(MessageType.TASK_RESULT, handler)

    with pytest.raises(RuntimeError):
        await bus.send(AgentMessage("a1", "a2", MessageType.TASK_RESULT))
    assert len(bus) == 0


@pytest.mark.anyio
async def test_message_to_unknown_agent_is_dropped() -> None:
    orchestrator = await make_orchestrator("a1")
    task_id = await orchestrator.create_task()

    await orchestrator.send_message(
        AgentMessage("a1", "ghost", MessageType.TASK_ASSIGNMENT, {"task_id": task_id})
    )

    assert orchestrator.get_task_status(task_id).status is TaskStatus.PENDING


@pytest.mark.anyio
async def test_task_assignment_message_assigns_to_recipient() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    task_id = await orchestrator.create_task()

    await orchestrator.send_message(
        AgentMessage("a1", "a2", MessageType.TASK_ASSIGNMENT, {"task_id": task_id})
    )

    task = orchestrator.get_task_status(task_id)
    assert task.status is TaskStatus.ASSIGNED
    assert task.assigned_agent_id == "a2"


@pytest.mark.anyio
async def test_task_result_message_completes_task() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    task_id = await orchestrator.create_task()
    await orchestrator.assign_task(task_id, "a2")

    await orchestrator.send_message(
        AgentMessage(
            "a2", "a1", MessageType.TASK_RESULT, {"task_id": task_id, "result": {"answer": 42}}
        )
    )

    task = orchestrator.get_task_status(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.result == {"answer": 42}
    assert task.completed_at is not None
    state = orchestrator.get_agent_status("a2")
    assert state.task_queue == []
    assert state.status is AgentStatus.IDLE


@pytest.mark.anyio
async def test_error_report_message_fails_task() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    task_id = await orchestrator.create_task()
    await orchestrator.assign_task(task_id, "a2")

    await orchestrator.send_message(
        AgentMessage(
            "a2", "a1", MessageType.ERROR_REPORT, {"task_id": task_id, "error": "disk full"}
        )
    )

    task = orchestrator.get_task_status(task_id)
    assert task.status is TaskStatus.FAILED
    assert task.error == "disk full"
    assert orchestrator.get_agent_status("a2").task_queue == []


@pytest.mark.anyio
async def test_collaboration_request_links_both_agents() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    started: List[Dict[str, Any]] = []
    orchestrator.events.subscribe(
        EventType.COLLABORATION_STARTED, lambda **payload: started.append(payload)
    )

    await orchestrator.send_message(
        AgentMessage("a1", "a2", MessageType.COLLABORATION_REQUEST, {"request_type": "review"})
    )

    assert orchestrator.get_collaboration_graph() == {"a1": ["a2"], "a2": ["a1"]}
    assert started[0]["collaboration_type"] == "review"
    assert started[0]["collaboration_id"].startswith("collab_")


@pytest.mark.anyio
async def test_status_update_refreshes_sender() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    before = orchestrator.get_agent_status("a1").performance.last_active_at

    await orchestrator.send_message(AgentMessage("a1", "a2", MessageType.STATUS_UPDATE))

    assert orchestrator.get_agent_status("a1").performance.last_active_at >= before


@pytest.mark.anyio
async def test_deferred_message_is_processed_on_tick() -> None:
    orchestrator = await make_orchestrator("a1", "a2")
    orchestrator.pause_assignment()
    task_id = await orchestrator.create_task()

    await orchestrator.send_message(
        AgentMessage("a1", "a2", MessageType.TASK_ASSIGNMENT, {"task_id": task_id}),
        immediate=False,
    )
    assert orchestrator.get_task_status(task_id).status is TaskStatus.PENDING

    await orchestrator.process_message_queue()
    assert orchestrator.get_task_status(task_id).assigned_agent_id == "a2"


@pytest.mark.anyio
async def test_collaboration_is_symmetric_and_deduplicated() -> None:
    orchestrator = await make_orchestrator("a1", "a2", "a3")

    first = await orchestrator.create_collaboration(["a1", "a2", "a3"])
    second = await orchestrator.create_collaboration(["a1", "a2"])

    assert first != second
    assert orchestrator.get_collaboration_graph() == {
        "a1": ["a2", "a3"],
        "a2": ["a1", "a3"],
        "a3": ["a1", "a2"],
    }


@pytest.mark.anyio
async def test_collaboration_with_unknown_agent_fails() -> None:
    orchestrator = await make_orchestrator("a1")

    with pytest.raises(NotFoundError):
        await orchestrator.create_collaboration(["a1", "ghost"])
    assert orchestrator.get_collaboration_graph() == {}
