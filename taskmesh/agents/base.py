"""Execution strategy contract and type-based dispatch."""
from __future__ import annotations

import abc
from typing import Any, Dict, Mapping, Optional

from taskmesh.core.models import AgentConfig, Task, TaskType


class ExecutionStrategy(abc.ABC):
    """Produces the actual work for one task on behalf of one agent."""

    @abc.abstractmethod
    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        """Return a result payload or raise; the orchestrator records either outcome."""


class StrategyRegistry:
    """Maps task types to strategies, falling back to the custom strategy."""

    def __init__(
        self,
        strategies: Optional[Mapping[TaskType, ExecutionStrategy]] = None,
        *,
        fallback: Optional[ExecutionStrategy] = None,
    ) -> None:
        self._strategies: Dict[TaskType, ExecutionStrategy] = dict(strategies or {})
        self._fallback = fallback

    def register(self, task_type: TaskType, strategy: ExecutionStrategy) -> None:
        self._strategies[task_type] = strategy

    def resolve(self, task_type: TaskType) -> ExecutionStrategy:
        strategy = self._strategies.get(task_type) or self._strategies.get(TaskType.CUSTOM)
        strategy = strategy or self._fallback
        if strategy is None:
            raise KeyError(f"No execution strategy registered for task type '{task_type.value}'")
        return strategy

    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        return await self.resolve(task.type).execute(task, agent)
