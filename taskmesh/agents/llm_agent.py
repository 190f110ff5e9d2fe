"""LLM-backed execution strategies, one instruction set per task type."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from taskmesh.agents.base import ExecutionStrategy, StrategyRegistry
from taskmesh.core.models import AgentConfig, Task, TaskType, utcnow

if TYPE_CHECKING:
    from taskmesh.services.llm_pool import LLMPool

TASK_INSTRUCTIONS: Dict[TaskType, str] = {
    TaskType.RESEARCH: (
        "Research the topic below. List your key findings and the sources or "
        "references that support each one."
    ),
    TaskType.ANALYSIS: (
        "Analyse the subject below. Report the key insights and finish with "
        "concrete recommendations."
    ),
    TaskType.CODING: (
        "Implement the request below. Reply with the complete code and name the "
        "files it belongs in."
    ),
    TaskType.TESTING: (
        "Write tests for the target below, covering edge cases and error paths, "
        "and list any issues you notice."
    ),
    TaskType.DOCUMENTATION: (
        "Write clear technical documentation for the subject below, organised "
        "into sections with headings."
    ),
    TaskType.PLANNING: (
        "Produce a plan for the goal below: phases, milestones, required "
        "resources and risks."
    ),
    TaskType.CUSTOM: "Complete the task below and describe the outcome.",
}


class LLMTaskStrategy(ExecutionStrategy):
    """Runs a task by prompting the agent's model through the shared pool."""

    def __init__(self, llm_pool: LLMPool, task_type: TaskType) -> None:
        self._llm_pool = llm_pool
        self.task_type = task_type
        self.instruction = TASK_INSTRUCTIONS[task_type]

    def build_messages(self, task: Task, agent: AgentConfig) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": agent.system_prompt},
            {"role": "user", "content": f"{self.instruction}\n\nTask: {task.description}"},
        ]

    async def execute(self, task: Task, agent: AgentConfig) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self._llm_pool.model_id(agent.model),
            "messages": self.build_messages(task, agent),
            "temperature": agent.temperature if agent.temperature is not None else 0.7,
        }
        if agent.max_tokens:
            request["max_tokens"] = agent.max_tokens

        async with self._llm_pool.acquire(agent.model) as client:
            response = await client.chat.completions.create(**request)

        return {
            "type": f"{task.type.value}_result",
            "output": response.choices[0].message.content,
            "model": request["model"],
            "executed_by": agent.id,
            "execution_time": utcnow().isoformat(),
        }


def build_llm_strategies(llm_pool: LLMPool) -> StrategyRegistry:
    return StrategyRegistry(
        {task_type: LLMTaskStrategy(llm_pool, task_type) for task_type in TaskType}
    )
