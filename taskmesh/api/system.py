"""HTTP API for collaborations, agent messages and system telemetry."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from taskmesh.api.errors import http_error
from taskmesh.core.errors import OrchestratorError
from taskmesh.core.models import AgentMessage, MessageType, Priority
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.resources.checkpoints import SystemState
from taskmesh.resources.manager import ResourceManager
from taskmesh.runtime import get_orchestrator

router = APIRouter(tags=["system"])


class CollaborationRequest(BaseModel):
    agent_ids: List[str] = Field(..., min_length=2)
    collaboration_type: str = "general"


class CollaborationResponse(BaseModel):
    collaboration_id: str
    agent_ids: List[str]
    collaboration_type: str


class MessageRequest(BaseModel):
    from_agent_id: str = Field(..., description="Identifier of the sender")
    to_agent_id: str = Field(..., description="Identifier of the recipient agent")
    type: MessageType
    content: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    immediate: bool = Field(True, description="Dispatch now instead of on the next tick")


class MessageResponse(BaseModel):
    message_id: str


class ThresholdsRequest(BaseModel):
    ram_warning: Optional[float] = Field(None, ge=0, le=100)
    ram_critical: Optional[float] = Field(None, ge=0, le=100)
    vram_warning: Optional[float] = Field(None, ge=0, le=100)
    vram_critical: Optional[float] = Field(None, ge=0, le=100)


def _require_resources(orchestrator: Orchestrator) -> ResourceManager:
    if orchestrator.resources is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Resource manager disabled"
        )
    return orchestrator.resources


@router.post(
    "/collaborations",
    response_model=CollaborationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_collaboration(
    request: CollaborationRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> CollaborationResponse:
    try:
        collaboration_id = await orchestrator.create_collaboration(
            request.agent_ids, request.collaboration_type
        )
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return CollaborationResponse(
        collaboration_id=collaboration_id,
        agent_ids=request.agent_ids,
        collaboration_type=request.collaboration_type,
    )


@router.get("/collaborations")
async def collaboration_graph(
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> Dict[str, List[str]]:
    return orchestrator.get_collaboration_graph()


@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    request: MessageRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    message = AgentMessage(
        from_agent_id=request.from_agent_id,
        to_agent_id=request.to_agent_id,
        type=request.type,
        content=request.content,
        priority=request.priority,
    )
    try:
        message_id = await orchestrator.send_message(message, immediate=request.immediate)
    except OrchestratorError as exc:
        raise http_error(exc) from exc
    return MessageResponse(message_id=message_id)


@router.get("/system/metrics")
async def system_metrics(orchestrator: Orchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    return orchestrator.get_system_metrics()


@router.get("/system/resources")
async def system_resources(orchestrator: Orchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    resources = _require_resources(orchestrator)
    metrics = await resources.get_resource_metrics()
    return {
        "metrics": asdict(metrics),
        "pressure": resources.monitor.classify(metrics).value,
        "thresholds": resources.get_thresholds(),
        "loaded_models": resources.monitor.loaded_models(),
        "monitoring": resources.monitor.is_monitoring,
        "assignment_paused": orchestrator.assignment_paused,
    }


@router.patch("/system/resources/thresholds")
async def update_thresholds(
    request: ThresholdsRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> Dict[str, float]:
    resources = _require_resources(orchestrator)
    resources.set_thresholds(**request.model_dump(exclude_none=True))
    return resources.get_thresholds()


@router.get("/system/dumps")
async def list_dumps(orchestrator: Orchestrator = Depends(get_orchestrator)) -> Dict[str, List[str]]:
    resources = _require_resources(orchestrator)
    return {
        "emergency_dumps": resources.list_emergency_dumps(),
        "checkpoints": resources.list_checkpoints(),
    }


@router.get("/system/dumps/latest", response_model=SystemState)
async def latest_dump(orchestrator: Orchestrator = Depends(get_orchestrator)) -> SystemState:
    return await _recover(orchestrator, None)


@router.get("/system/dumps/{dump_id}", response_model=SystemState)
async def get_dump(dump_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> SystemState:
    return await _recover(orchestrator, dump_id)


async def _recover(orchestrator: Orchestrator, dump_id: Optional[str]) -> SystemState:
    state = await _require_resources(orchestrator).recover_from_dump(dump_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such emergency dump")
    return state
