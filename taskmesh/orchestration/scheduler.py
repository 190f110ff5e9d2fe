"""Agent selection and load balancing."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from taskmesh.core.models import AgentConfig, AgentState, AgentStatus, Task, TaskType

CAPABILITY_WEIGHT = 10
SPECIALIZATION_WEIGHT = 15
SUCCESS_RATE_WEIGHT = 5
PRIORITY_MATCH_BONUS = 5
QUEUE_PENALTY = 2

REQUIRED_CAPABILITIES: Dict[TaskType, FrozenSet[str]] = {
    TaskType.RESEARCH: frozenset({"research", "web_browsing", "data_collection"}),
    TaskType.ANALYSIS: frozenset({"analysis", "data_processing", "reasoning"}),
    TaskType.CODING: frozenset({"coding", "programming", "software_development"}),
    TaskType.TESTING: frozenset({"testing", "quality_assurance", "debugging"}),
    TaskType.DOCUMENTATION: frozenset({"documentation", "writing", "technical_writing"}),
    TaskType.PLANNING: frozenset({"planning", "project_management", "strategy"}),
    TaskType.CUSTOM: frozenset(),
}

REQUIRED_SPECIALIZATIONS: Dict[TaskType, FrozenSet[str]] = {
    TaskType.RESEARCH: frozenset({"information_gathering", "data_analysis"}),
    TaskType.ANALYSIS: frozenset({"data_analysis", "statistical_analysis"}),
    TaskType.CODING: frozenset({"software_development", "programming"}),
    TaskType.TESTING: frozenset({"quality_assurance", "test_automation"}),
    TaskType.DOCUMENTATION: frozenset({"technical_writing", "documentation"}),
    TaskType.PLANNING: frozenset({"project_management", "strategic_planning"}),
    TaskType.CUSTOM: frozenset(),
}


def score_agent(task: Task, config: AgentConfig, state: AgentState) -> float:
    capabilities = REQUIRED_CAPABILITIES[task.type]
    specializations = REQUIRED_SPECIALIZATIONS[task.type]

    score: float = CAPABILITY_WEIGHT * len(capabilities.intersection(config.capabilities))
    score += SPECIALIZATION_WEIGHT * len(specializations.intersection(state.specializations))
    if state.performance.tasks_successful > 0:
        score += SUCCESS_RATE_WEIGHT * state.performance.success_rate
    if config.priority is task.priority:
        score += PRIORITY_MATCH_BONUS
    score -= QUEUE_PENALTY * len(state.task_queue)
    return score


def find_best_agent(
    task: Task, candidates: Iterable[Tuple[AgentConfig, AgentState]]
) -> Optional[str]:
    """Pick the highest scoring idle agent.

    Ties go to the shorter queue, then to the lexicographically lowest id.
    """
    ranked = [
        (-score_agent(task, config, state), len(state.task_queue), config.id)
        for config, state in candidates
        if state.status is AgentStatus.IDLE
    ]
    if not ranked:
        return None
    return min(ranked)[2]


@dataclass(frozen=True, slots=True)
class Rebalance:
    task_id: str
    from_agent_id: str
    to_agent_id: str


def plan_rebalance(
    states: Iterable[AgentState], threshold: int, movable: Callable[[str], bool]
) -> Optional[Rebalance]:
    """Move the last movable task of the longest queue to the shortest queue.

    Nothing moves unless the two queue lengths differ by more than ``threshold``.
    """
    loads: List[AgentState] = sorted(
        (state for state in states if state.status is not AgentStatus.OFFLINE),
        key=lambda state: (len(state.task_queue), state.agent_id),
    )
    if len(loads) < 2:
        return None

    lightest, heaviest = loads[0], loads[-1]
    if len(heaviest.task_queue) - len(lightest.task_queue) <= threshold:
        return None
    candidates = [task_id for task_id in heaviest.task_queue if movable(task_id)]
    if not candidates:
        return None
    return Rebalance(
        task_id=candidates[-1],
        from_agent_id=heaviest.agent_id,
        to_agent_id=lightest.agent_id,
    )
