"""Core data models shared across orchestrator components."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_AGENT_TIMEOUT_MS = 300_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class AgentStatus(str, Enum):
    """Runtime status of an agent managed by the orchestrator."""

    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"
    OFFLINE = "offline"


class TaskType(str, Enum):
    RESEARCH = "research"
    ANALYSIS = "analysis"
    CODING = "coding"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    PLANNING = "planning"
    CUSTOM = "custom"


class TaskStatus(str, Enum):
    """Task lifecycle. Terminal states never change again."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class MessageType(str, Enum):
    TASK_ASSIGNMENT = "task_assignment"
    TASK_RESULT = "task_result"
    COLLABORATION_REQUEST = "collaboration_request"
    STATUS_UPDATE = "status_update"
    ERROR_REPORT = "error_report"


@dataclass(slots=True)
class AgentConfig:
    """Static identity and capability descriptor of an agent."""

    id: str
    name: str
    role: str
    capabilities: List[str]
    system_prompt: str
    priority: Priority = Priority.MEDIUM
    parent_agent_id: Optional[str] = None
    timeout_ms: int = DEFAULT_AGENT_TIMEOUT_MS
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: List[str] = field(default_factory=list)
    model: str = "default"


@dataclass(slots=True)
class AgentPerformance:
    tasks_completed: int = 0
    tasks_successful: int = 0
    average_task_duration: float = 0.0
    last_active_at: datetime = field(default_factory=utcnow)

    @property
    def success_rate(self) -> float:
        if self.tasks_completed == 0:
            return 0.0
        return self.tasks_successful / self.tasks_completed


@dataclass(slots=True)
class AgentResources:
    memory_usage: float = 0.0
    cpu_usage: float = 0.0
    active_connections: int = 0


@dataclass(slots=True)
class AgentState:
    """Mutable runtime projection of an agent, one per AgentConfig."""

    agent_id: str
    capabilities: List[str]
    specializations: List[str]
    status: AgentStatus = AgentStatus.IDLE
    current_task: Optional[str] = None
    task_queue: List[str] = field(default_factory=list)
    performance: AgentPerformance = field(default_factory=AgentPerformance)
    resources: AgentResources = field(default_factory=AgentResources)

    def dequeue(self, task_id: str) -> bool:
        if task_id in self.task_queue:
            self.task_queue.remove(task_id)
            return True
        return False

    def release(self, task_id: str) -> None:
        """Return to idle if the agent was working on ``task_id``."""
        if self.current_task == task_id:
            self.current_task = None
            self.status = AgentStatus.IDLE


@dataclass(slots=True)
class Task:
    id: str
    description: str
    type: TaskType = TaskType.CUSTOM
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    dependencies: List[str] = field(default_factory=list)
    assigned_agent_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration: Optional[int] = None
    actual_duration: Optional[int] = None
    parent_task_id: Optional[str] = None
    subtasks: List[str] = field(default_factory=list)
    sequence: int = 0


@dataclass(slots=True)
class AgentMessage:
    """Typed envelope exchanged between agents over the bus."""

    from_agent_id: str
    to_agent_id: str
    type: MessageType
    content: Dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ResourceMetrics:
    """Point-in-time resource snapshot. Byte counts, percentages 0-100."""

    total_ram: int
    used_ram: int
    free_ram: int
    ram_utilization: float
    total_vram: int
    used_vram: int
    free_vram: int
    vram_utilization: float
    cpu_usage: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ResourceThresholds:
    ram_warning: float = 85.0
    ram_critical: float = 95.0
    vram_warning: float = 90.0
    vram_critical: float = 95.0


def generate_id(prefix: str, suffix_length: int = 6) -> str:
    """Return ``<prefix>_<epoch ms>_<random suffix>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:suffix_length]}"
