"""Tests for agent scoring, selection tie-breaks and rebalance planning."""
from __future__ import annotations

from typing import Any, List, Tuple

import pytest

from taskmesh.agents.base import ExecutionStrategy, StrategyRegistry
from taskmesh.core.models import (
    AgentConfig,
    AgentPerformance,
    AgentState,
    AgentStatus,
    Priority,
    Task,
    TaskType,
)
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.orchestration.scheduler import find_best_agent, plan_rebalance, score_agent


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class NoopStrategy(ExecutionStrategy):
    async def execute(self, task: Task, agent: AgentConfig) -> Any:
        return {}


def candidate(
    agent_id: str,
    capabilities: List[str],
    *,
    specializations: Tuple[str, ...] = (),
    priority: Priority = Priority.LOW,
    queue: int = 0,
    completed: int = 0,
    successful: int = 0,
) -> Tuple[AgentConfig, AgentState]:
    config = AgentConfig(
        id=agent_id,
        name=agent_id,
        role="Worker",
        capabilities=capabilities,
        system_prompt="You work.",
        priority=priority,
    )
    state = AgentState(
        agent_id=agent_id,
        capabilities=capabilities,
        specializations=list(specializations),
        task_queue=[f"task_{agent_id}_{n}" for n in range(queue)],
        performance=AgentPerformance(tasks_completed=completed, tasks_successful=successful),
    )
    return config, state


def coding_task() -> Task:
    return Task(id="task_1", description="Build it", type=TaskType.CODING, priority=Priority.MEDIUM)


@pytest.mark.parametrize(
    ("profile", "expected"),
    [
        ({"capabilities": ["coding"]}, 10),
        ({"capabilities": ["coding", "programming", "writing"]}, 20),
        ({"capabilities": ["coding"], "specializations": ("software_development",)}, 25),
        (
            {
                "capabilities": ["coding"],
                "specializations": ("software_development", "programming"),
            },
            40,
        ),
        ({"capabilities": ["writing"], "priority": Priority.MEDIUM}, 5),
        ({"capabilities": ["coding"], "queue": 3}, 4),
        ({"capabilities": ["coding"], "completed": 4, "successful": 3}, 13.75),
        ({"capabilities": ["coding"], "completed": 2, "successful": 0}, 10),
        ({"capabilities": ["writing"], "queue": 1}, -2),
    ],
)
def test_score_agent_weights(profile: Any, expected: float) -> None:
    config, state = candidate("a1", **profile)

    assert score_agent(coding_task(), config, state) == pytest.approx(expected)


def test_custom_tasks_score_only_priority_and_queue() -> None:
    task = Task(id="task_1", description="Anything", priority=Priority.HIGH)
    config, state = candidate("a1", ["coding"], priority=Priority.HIGH, queue=1)

    assert score_agent(task, config, state) == pytest.approx(3)


def test_highest_score_wins() -> None:
    candidates = [
        candidate("a", ["writing"]),
        candidate("z", ["coding", "programming"]),
    ]

    assert find_best_agent(coding_task(), candidates) == "z"


def test_equal_scores_prefer_shorter_queue() -> None:
    # 10 + 5 * 0.4 - 2 * 1 ties with a plain 10
    candidates = [
        candidate("a", ["coding"], queue=1, completed=5, successful=2),
        candidate("b", ["coding"]),
    ]

    assert find_best_agent(coding_task(), candidates) == "b"


def test_equal_scores_and_queues_prefer_lowest_id() -> None:
    candidates = [candidate("b", ["coding"]), candidate("a", ["coding"])]

    assert find_best_agent(coding_task(), candidates) == "a"


def test_only_idle_agents_are_considered() -> None:
    busy = candidate("a", ["coding", "programming"])
    busy[1].status = AgentStatus.BUSY

    assert find_best_agent(coding_task(), [busy, candidate("b", ["writing"])]) == "b"
    assert find_best_agent(coding_task(), [busy]) is None


@pytest.mark.anyio
async def test_orchestrator_tie_break_ignores_creation_order() -> None:
    orchestrator = Orchestrator(strategies=StrategyRegistry(fallback=NoopStrategy()))
    for agent_id in ("b", "a"):
        await orchestrator.create_agent(
            AgentConfig(
                id=agent_id,
                name="Twin",
                role="Developer",
                capabilities=["coding"],
                system_prompt="You write code.",
            )
        )
    task_id = await orchestrator.create_task(type=TaskType.CODING)

    assert await orchestrator.assign_task(task_id) == "a"


def test_rebalance_needs_gap_above_threshold() -> None:
    _, heavy = candidate("a", ["coding"], queue=4)
    _, light = candidate("b", ["coding"], queue=1)

    assert plan_rebalance([heavy, light], 3, lambda task_id: True) is None

    heavy.task_queue.append("task_extra")
    move = plan_rebalance([heavy, light], 3, lambda task_id: True)
    assert (move.task_id, move.from_agent_id, move.to_agent_id) == ("task_extra", "a", "b")


def test_rebalance_skips_offline_and_unmovable() -> None:
    _, heavy = candidate("a", ["coding"], queue=5)
    _, offline = candidate("b", ["coding"])
    offline.status = AgentStatus.OFFLINE

    assert plan_rebalance([heavy, offline], 3, lambda task_id: True) is None

    _, light = candidate("c", ["coding"])
    assert plan_rebalance([heavy, light], 3, lambda task_id: False) is None
    move = plan_rebalance([heavy, light], 3, lambda task_id: task_id != "task_a_4")
    assert move.task_id == "task_a_3"
