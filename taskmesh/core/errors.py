"""Error kinds surfaced by the orchestrator API."""
from __future__ import annotations

from typing import Iterable, List, Optional


class OrchestratorError(Exception):
    """Base class for every error the orchestrator raises to callers."""


class ValidationError(OrchestratorError):
    """Malformed agent configuration."""


class DuplicateIdError(OrchestratorError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent with ID {agent_id} already exists")
        self.agent_id = agent_id


class NotFoundError(OrchestratorError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind.capitalize()} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class InvalidStateError(OrchestratorError):
    """Operation attempted from the wrong task status."""


class DependencyError(OrchestratorError):
    def __init__(self, task_id: str, unmet: Iterable[str]) -> None:
        self.task_id = task_id
        self.unmet: List[str] = list(unmet)
        super().__init__(f"Task {task_id} has unmet dependencies: {', '.join(self.unmet)}")


class NoAgentAvailableError(OrchestratorError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"No suitable agent found for task {task_id}")
        self.task_id = task_id


class TaskTimeoutError(OrchestratorError):
    """Recorded on a task cancelled by the timeout sweep; never raised to callers."""

    def __init__(self, task_id: str, timeout_ms: int) -> None:
        super().__init__(f"Task {task_id} exceeded timeout of {timeout_ms}ms")
        self.task_id = task_id
        self.timeout_ms = timeout_ms


class ExecutionError(OrchestratorError):
    """Wraps a failure raised by an execution strategy.

    The underlying exception is kept as ``__cause__``.
    """

    def __init__(self, task_id: str, message: str, *, agent_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.agent_id = agent_id
