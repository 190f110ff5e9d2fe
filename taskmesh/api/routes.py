"""HTTP API exposing agent management."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from taskmesh.api.errors import http_error
from taskmesh.core.errors import OrchestratorError
from taskmesh.core.models import (
    DEFAULT_AGENT_TIMEOUT_MS,
    AgentConfig,
    AgentState,
    AgentStatus,
    Priority,
)
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.runtime import get_orchestrator

router = APIRouter(prefix="/agents", tags=["agents"])


class AgentCreateRequest(BaseModel):
    id: str = Field(..., description="Unique agent identifier")
    name: str = Field(..., description="Human readable agent name")
    role: str = Field(..., description="Role used for specialization and prompting")
    capabilities: List[str] = Field(default_factory=list)
    system_prompt: str = Field(..., description="System prompt sent with every task")
    priority: Priority = Priority.MEDIUM
    parent_agent_id: Optional[str] = None
    timeout_ms: int = Field(DEFAULT_AGENT_TIMEOUT_MS, gt=0)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: List[str] = Field(default_factory=list)
    model: str = "default"

    def to_config(self) -> AgentConfig:
        return AgentConfig(**self.model_dump())


class SubAgentCreateRequest(BaseModel):
    """Every field left unset is inherited from the parent agent."""

    id: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    capabilities: Optional[List[str]] = None
    system_prompt: Optional[str] = None
    priority: Optional[Priority] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: Optional[List[str]] = None
    model: Optional[str] = None


class AgentResponse(BaseModel):
    id: str
    name: str
    role: str
    capabilities: List[str]
    specializations: List[str]
    priority: Priority
    parent_agent_id: Optional[str]
    model: str
    status: AgentStatus
    current_task: Optional[str]
    task_queue: List[str]
    performance: Dict[str, Any]
    resources: Dict[str, Any]

    @classmethod
    def from_agent(cls, config: AgentConfig, state: AgentState) -> "AgentResponse":
        return cls(
            id=config.id,
            name=config.name,
            role=config.role,
            capabilities=list(config.capabilities),
            specializations=list(state.specializations),
            priority=config.priority,
            parent_agent_id=config.parent_agent_id,
            model=config.model,
            status=state.status,
            current_task=state.current_task,
            task_queue=list(state.task_queue),
            performance={
                "tasks_completed": state.performance.tasks_completed,
                "tasks_successful": state.performance.tasks_successful,
                "success_rate": state.performance.success_rate,
                "average_task_duration": state.performance.average_task_duration,
                "last_active_at": state.performance.last_active_at,
            },
            resources={
                "memory_usage": state.resources.memory_usage,
                "cpu_usage": state.resources.cpu_usage,
                "active_connections": state.resources.active_connections,
            },
        )


def _agent_response(orchestrator: Orchestrator, agent_id: str) -> AgentResponse:
    config = orchestrator.get_agent(agent_id)
    state = orchestrator.get_agent_status(agent_id)
    if config is None or state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown agent")
    return AgentResponse.from_agent(config, state)


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: AgentCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    try:
        agent_id = await orchestrator.create_agent(request.to_config())
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return _agent_response(orchestrator, agent_id)


@router.get("", response_model=List[AgentResponse])
async def list_agents(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[AgentResponse]:
    return [
        _agent_response(orchestrator, config.id) for config in orchestrator.get_all_agents()
    ]


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> AgentResponse:
    return _agent_response(orchestrator, agent_id)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(agent_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> None:
    if not await orchestrator.remove_agent(agent_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown agent")


@router.post(
    "/{agent_id}/sub-agents", response_model=AgentResponse, status_code=status.HTTP_201_CREATED
)
async def create_sub_agent(
    agent_id: str,
    request: SubAgentCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    try:
        sub_agent_id = await orchestrator.create_sub_agent(
            agent_id, **request.model_dump(exclude_none=True)
        )
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return _agent_response(orchestrator, sub_agent_id)
