"""Task records and their status machine."""
from __future__ import annotations

import itertools
from typing import Any, Dict, Iterable, List, Optional

from taskmesh.core.errors import InvalidStateError, NotFoundError
from taskmesh.core.models import Priority, Task, TaskStatus, TaskType, generate_id, utcnow

_STATUS_ORDER = {
    TaskStatus.PENDING: 0,
    TaskStatus.ASSIGNED: 1,
    TaskStatus.IN_PROGRESS: 2,
    TaskStatus.COMPLETED: 3,
    TaskStatus.FAILED: 3,
    TaskStatus.CANCELLED: 3,
}


class TaskStore:
    """Owns every Task. Tasks are never deleted, only driven to a terminal status."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._sequence = itertools.count()

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def create(
        self,
        description: str = "Unnamed task",
        *,
        type: TaskType | str = TaskType.CUSTOM,  # noqa: A002
        priority: Priority | str = Priority.MEDIUM,
        dependencies: Optional[Iterable[str]] = None,
        parent_task_id: Optional[str] = None,
        estimated_duration: Optional[int] = None,
    ) -> Task:
        task = Task(
            id=generate_id("task", 9),
            description=description or "Unnamed task",
            type=TaskType(type),
            priority=Priority(priority),
            dependencies=list(dependencies or ()),
            parent_task_id=parent_task_id,
            estimated_duration=estimated_duration,
            sequence=next(self._sequence),
        )
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def all(self) -> List[Task]:
        return list(self._tasks.values())

    def with_status(self, status: TaskStatus) -> List[Task]:
        return [task for task in self._tasks.values() if task.status is status]

    def pending_by_priority(self) -> List[Task]:
        """Pending tasks, critical first; equal priorities keep creation order."""
        return sorted(
            self.with_status(TaskStatus.PENDING),
            key=lambda task: (-task.priority.rank, task.sequence),
        )

    def unmet_dependencies(self, task: Task) -> List[str]:
        unmet = []
        for dependency_id in task.dependencies:
            dependency = self._tasks.get(dependency_id)
            if dependency is None or dependency.status is not TaskStatus.COMPLETED:
                unmet.append(dependency_id)
        return unmet

    def transition(self, task: Task, status: TaskStatus) -> None:
        """Move ``task`` forward; terminal tasks and backwards moves are rejected."""
        if task.status.is_terminal:
            raise InvalidStateError(f"Task {task.id} is already {task.status.value}")
        if _STATUS_ORDER[status] <= _STATUS_ORDER[task.status]:
            raise InvalidStateError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}"
            )
        task.status = status
        if status is TaskStatus.IN_PROGRESS:
            task.started_at = utcnow()
        elif status.is_terminal:
            task.completed_at = utcnow()

    def complete(self, task: Task, result: Any) -> None:
        self.transition(task, TaskStatus.COMPLETED)
        task.result = result
        if task.started_at is not None:
            elapsed = task.completed_at - task.started_at
            task.actual_duration = int(elapsed.total_seconds() * 1000)

    def fail(self, task: Task, error: str) -> None:
        self.transition(task, TaskStatus.FAILED)
        task.error = error

    def cancel(self, task: Task, reason: Optional[str] = None) -> bool:
        """Cancel a non-terminal task. Returns False when it was already terminal."""
        if task.status.is_terminal:
            return False
        self.transition(task, TaskStatus.CANCELLED)
        if reason:
            task.error = reason
        return True
