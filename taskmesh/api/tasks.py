"""HTTP API exposing task creation, assignment and execution."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from taskmesh.api.errors import http_error
from taskmesh.core.errors import OrchestratorError
from taskmesh.core.models import Priority, Task, TaskStatus, TaskType
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.runtime import get_orchestrator

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskCreateRequest(BaseModel):
    description: str = "Unnamed task"
    type: TaskType = TaskType.CUSTOM
    priority: Priority = Priority.MEDIUM
    dependencies: List[str] = Field(default_factory=list)
    estimated_duration: Optional[int] = Field(None, ge=0, description="Milliseconds")


class TaskTreeRequest(BaseModel):
    task: TaskCreateRequest
    subtasks: List[TaskCreateRequest] = Field(default_factory=list)


class AssignRequest(BaseModel):
    agent_id: Optional[str] = Field(None, description="Leave empty to pick the best idle agent")


class ExecuteRequest(BaseModel):
    sub_agents: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Sub-agent overrides; when given the task runs with helper sub-agents",
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class TaskResponse(BaseModel):
    id: str
    description: str
    type: TaskType
    priority: Priority
    status: TaskStatus
    dependencies: List[str]
    assigned_agent_id: Optional[str]
    result: Any = None
    error: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    estimated_duration: Optional[int]
    actual_duration: Optional[int]
    parent_task_id: Optional[str]
    subtasks: List[str]

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            description=task.description,
            type=task.type,
            priority=task.priority,
            status=task.status,
            dependencies=list(task.dependencies),
            assigned_agent_id=task.assigned_agent_id,
            result=task.result,
            error=task.error,
            created_at=task.created_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
            estimated_duration=task.estimated_duration,
            actual_duration=task.actual_duration,
            parent_task_id=task.parent_task_id,
            subtasks=list(task.subtasks),
        )


class TaskTreeResponse(BaseModel):
    task: TaskResponse
    subtasks: List[TaskResponse]


def _task_response(orchestrator: Orchestrator, task_id: str) -> TaskResponse:
    task = orchestrator.get_task_status(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown task")
    return TaskResponse.from_task(task)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: TaskCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    task_id = await orchestrator.create_task(**request.model_dump())
    return _task_response(orchestrator, task_id)


@router.post("/tree", response_model=TaskTreeResponse, status_code=status.HTTP_201_CREATED)
async def create_task_tree(
    request: TaskTreeRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskTreeResponse:
    main_id, subtask_ids = await orchestrator.create_task_with_subtasks(
        request.task.model_dump(), [subtask.model_dump() for subtask in request.subtasks]
    )
    return TaskTreeResponse(
        task=_task_response(orchestrator, main_id),
        subtasks=[_task_response(orchestrator, subtask_id) for subtask_id in subtask_ids],
    )


@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[TaskResponse]:
    return [
        TaskResponse.from_task(task)
        for task in orchestrator.get_all_tasks()
        if status_filter is None or task.status is status_filter
    ]


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> TaskResponse:
    return _task_response(orchestrator, task_id)


@router.get("/{task_id}/dependencies")
async def get_unmet_dependencies(
    task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> Dict[str, List[str]]:
    try:
        unmet = orchestrator.check_task_dependencies(task_id)
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return {"unmet_dependencies": unmet}


@router.post("/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    task_id: str,
    request: Optional[AssignRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    try:
        await orchestrator.assign_task(task_id, request.agent_id if request else None)
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return _task_response(orchestrator, task_id)


@router.post("/{task_id}/execute", response_model=TaskResponse)
async def execute_task(
    task_id: str,
    request: Optional[ExecuteRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    try:
        if request and request.sub_agents:
            await orchestrator.execute_task_with_sub_agents(task_id, request.sub_agents)
        else:
            await orchestrator.execute_task(task_id)
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return _task_response(orchestrator, task_id)


@router.post("/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: str,
    request: Optional[CancelRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    reason = request.reason if request else None
    if not await orchestrator.cancel_task(task_id, reason):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown task")
    return _task_response(orchestrator, task_id)
