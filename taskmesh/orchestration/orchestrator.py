"""Orchestrator coordinating agents, tasks, messages and the control loop."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from taskmesh.agents.base import StrategyRegistry
from taskmesh.config import SchedulerConfig
from taskmesh.core.errors import (
    DependencyError,
    ExecutionError,
    InvalidStateError,
    NoAgentAvailableError,
    TaskTimeoutError,
)
from taskmesh.core.events import EventHub, EventType
from taskmesh.core.message_bus import MessageBus
from taskmesh.core.models import (
    AgentConfig,
    AgentMessage,
    AgentState,
    AgentStatus,
    MessageType,
    Task,
    TaskStatus,
    utcnow,
)
from taskmesh.orchestration.collaboration import CollaborationGraph
from taskmesh.orchestration.registry import AgentRegistry
from taskmesh.orchestration.scheduler import Rebalance, find_best_agent, plan_rebalance
from taskmesh.orchestration.tasks import TaskStore
from taskmesh.resources.manager import ResourceManager

logger = logging.getLogger(__name__)

TaskSpec = Mapping[str, Any]


class Orchestrator:
    """Coordinate agents, tasks, collaborations and messages around a periodic tick.

    Every public mutation runs on the event loop. Methods that never await
    are atomic with respect to each other; the periodic passes that do
    await take ``_lock`` so a manual ``tick`` cannot interleave with one
    started by the background loop.
    """

    def __init__(
        self,
        *,
        strategies: StrategyRegistry,
        resources: Optional[ResourceManager] = None,
        scheduler: Optional[SchedulerConfig] = None,
    ) -> None:
        self._strategies = strategies
        self._scheduler = scheduler or SchedulerConfig()
        self.registry = AgentRegistry()
        self.tasks = TaskStore()
        self.collaborations = CollaborationGraph(self.registry.__contains__)
        self.events = EventHub()
        self.bus = MessageBus(self.registry.__contains__)
        self.bus.register(MessageType.TASK_ASSIGNMENT, self._on_task_assignment)
        self.bus.register(MessageType.TASK_RESULT, self._on_task_result)
        self.bus.register(MessageType.COLLABORATION_REQUEST, self._on_collaboration_request)
        self.bus.register(MessageType.STATUS_UPDATE, self._on_status_update)
        self.bus.register(MessageType.ERROR_REPORT, self._on_error_report)

        self._lock = asyncio.Lock()
        self._runner: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._ticking = False
        self._assignment_paused = False
        self._executions: Set[asyncio.Task[Any]] = set()

        self.resources: Optional[ResourceManager] = None
        if resources is not None:
            self.attach_resources(resources)

    def attach_resources(self, resources: ResourceManager) -> None:
        """Gate assignment on resource pressure and let dumps capture our state."""
        self.resources = resources
        resources.on_pause(self.pause_assignment)
        resources.on_resume(self.resume_assignment)
        resources.on_emergency(self._on_resource_emergency)
        resources.attach_state_provider(self.snapshot_state)

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def assignment_paused(self) -> bool:
        return self._assignment_paused

    # Agents

    async def create_agent(self, config: AgentConfig) -> str:
        self.registry.add(config)
        if config.parent_agent_id and config.parent_agent_id in self.registry:
            self.collaborations.add_link(config.parent_agent_id, config.id)
        logger.info("Agent created: %s (%s)", config.id, config.role)
        self.events.emit(EventType.AGENT_CREATED, agent_id=config.id, config=config)
        return config.id

    async def create_sub_agent(self, parent_agent_id: str, **overrides: Any) -> str:
        config = self.registry.build_sub_agent_config(parent_agent_id, **overrides)
        return await self.create_agent(config)

    async def remove_agent(self, agent_id: str) -> bool:
        state = self.registry.get_state(agent_id)
        if state is None:
            return False

        orphaned = list(state.task_queue)
        if state.current_task and state.current_task not in orphaned:
            orphaned.insert(0, state.current_task)
        for task_id in orphaned:
            await self.cancel_task(task_id, reason=f"Agent {agent_id} removed")

        self.collaborations.remove_agent(agent_id)
        self.registry.remove(agent_id)
        logger.info("Agent removed: %s", agent_id)
        self.events.emit(EventType.AGENT_REMOVED, agent_id=agent_id)
        return True

    # Tasks

    async def create_task(self, description: str = "Unnamed task", **fields: Any) -> str:
        task = self.tasks.create(description, **fields)
        logger.info("Task created: %s (%s, %s)", task.id, task.type.value, task.priority.value)
        return task.id

    async def create_task_with_subtasks(
        self, main_task: TaskSpec, subtasks: Sequence[TaskSpec]
    ) -> Tuple[str, List[str]]:
        """Create a parent task and its children, linked both ways."""
        main_id = await self.create_task(**main_task)
        parent = self.tasks.require(main_id)
        subtask_ids = []
        for spec in subtasks:
            subtask_id = await self.create_task(**{**spec, "parent_task_id": main_id})
            parent.subtasks.append(subtask_id)
            subtask_ids.append(subtask_id)
        return main_id, subtask_ids

    def check_task_dependencies(self, task_id: str) -> List[str]:
        """Ids of dependencies that are missing or not yet completed."""
        return self.tasks.unmet_dependencies(self.tasks.require(task_id))

    def find_best_agent(self, task: Task) -> Optional[str]:
        candidates = (
            (self.registry.config(state.agent_id), state) for state in self.registry.idle()
        )
        return find_best_agent(task, candidates)

    async def assign_task(self, task_id: str, agent_id: Optional[str] = None) -> str:
        """Queue a pending task on ``agent_id`` or on the best idle agent."""
        task = self.tasks.require(task_id)
        if task.status is not TaskStatus.PENDING:
            raise InvalidStateError(f"Task {task_id} is {task.status.value}, not pending")
        unmet = self.tasks.unmet_dependencies(task)
        if unmet:
            raise DependencyError(task_id, unmet)

        if agent_id is None:
            agent_id = self.find_best_agent(task)
            if agent_id is None:
                raise NoAgentAvailableError(task_id)
        state = self.registry.state(agent_id)

        self.tasks.transition(task, TaskStatus.ASSIGNED)
        task.assigned_agent_id = agent_id
        state.task_queue.append(task_id)
        logger.info("Task %s assigned to agent %s", task_id, agent_id)
        self.events.emit(EventType.TASK_ASSIGNED, task_id=task_id, agent_id=agent_id)
        return agent_id

    async def execute_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Run an assigned task through its strategy and record the outcome.

        Returns None when the task was cancelled (or finished through a
        message) while the strategy ran; the late outcome is discarded.
        """
        task, config, state = self._begin_execution(task_id)
        return await self._run_execution(task, config, state)

    def _begin_execution(self, task_id: str) -> Tuple[Task, AgentConfig, AgentState]:
        task = self.tasks.require(task_id)
        if task.assigned_agent_id is None or task.status is not TaskStatus.ASSIGNED:
            raise InvalidStateError(f"Task {task_id} is not assigned to an agent")
        config = self.registry.config(task.assigned_agent_id)
        state = self.registry.state(task.assigned_agent_id)
        if state.status is AgentStatus.BUSY or state.current_task is not None:
            raise InvalidStateError(
                f"Agent {config.id} is already running task {state.current_task}"
            )

        self.tasks.transition(task, TaskStatus.IN_PROGRESS)
        state.status = AgentStatus.BUSY
        state.current_task = task.id
        state.performance.last_active_at = utcnow()
        logger.info("Executing task %s with agent %s", task.id, config.id)
        return task, config, state

    async def _run_execution(
        self, task: Task, config: AgentConfig, state: AgentState
    ) -> Optional[Dict[str, Any]]:
        try:
            result = await self._strategies.execute(task, config)
        except asyncio.CancelledError:
            await self.cancel_task(task.id, reason="Execution interrupted")
            raise
        except Exception as exc:
            if task.status.is_terminal:
                logger.info("Discarding failure of finished task %s: %s", task.id, exc)
                return None
            message = str(exc) or type(exc).__name__
            self.tasks.fail(task, message)
            state.performance.tasks_completed += 1
            state.dequeue(task.id)
            state.release(task.id)
            logger.error("Task %s failed on agent %s: %s", task.id, config.id, message)
            self.events.emit(
                EventType.TASK_FAILED, task_id=task.id, agent_id=config.id, error=message
            )
            raise ExecutionError(task.id, message, agent_id=config.id) from exc

        if task.status.is_terminal:
            logger.info("Discarding late result of %s task %s", task.status.value, task.id)
            return None

        self.tasks.complete(task, result)
        self._record_success(state, task.actual_duration or 0)
        state.dequeue(task.id)
        state.release(task.id)
        logger.info("Task %s completed by agent %s", task.id, config.id)
        self.events.emit(
            EventType.TASK_COMPLETED, task_id=task.id, agent_id=config.id, result=result
        )
        return result

    @staticmethod
    def _record_success(state: AgentState, duration_ms: int) -> None:
        performance = state.performance
        performance.tasks_completed += 1
        performance.tasks_successful += 1
        performance.average_task_duration += (
            duration_ms - performance.average_task_duration
        ) / performance.tasks_successful
        performance.last_active_at = utcnow()

    async def execute_task_with_sub_agents(
        self, task_id: str, sub_agent_configs: Sequence[Mapping[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Execute a task with helper sub-agents of its assignee.

        The sub-agents form a hierarchical collaboration with the assignee for
        the duration of the run and are removed afterwards, whatever the outcome.
        """
        task = self.tasks.require(task_id)
        if task.assigned_agent_id is None:
            raise InvalidStateError(f"Task {task_id} must be assigned before execution")
        parent_id = task.assigned_agent_id

        sub_agent_ids: List[str] = []
        try:
            for overrides in sub_agent_configs:
                sub_agent_ids.append(await self.create_sub_agent(parent_id, **overrides))
            if sub_agent_ids:
                await self.create_collaboration([parent_id, *sub_agent_ids], "hierarchical")

            result = await self.execute_task(task_id)
            if result is None:
                return None
            return {
                **result,
                "sub_agents_used": list(sub_agent_ids),
                "collaboration_type": "hierarchical",
            }
        finally:
            for sub_agent_id in sub_agent_ids:
                await self.remove_agent(sub_agent_id)

    async def cancel_task(self, task_id: str, reason: Optional[str] = None) -> bool:
        """Cancel a task; terminal tasks are left untouched. False if unknown."""
        task = self.tasks.get(task_id)
        if task is None:
            return False
        if not self.tasks.cancel(task, reason):
            return True

        if task.assigned_agent_id is not None:
            state = self.registry.get_state(task.assigned_agent_id)
            if state is not None:
                state.dequeue(task_id)
                state.release(task_id)
        logger.info("Task cancelled: %s%s", task_id, f" ({reason})" if reason else "")
        self.events.emit(EventType.TASK_CANCELLED, task_id=task_id, reason=reason)
        return True

    # Collaboration and messaging

    async def create_collaboration(
        self, agent_ids: Sequence[str], collaboration_type: str = "general"
    ) -> str:
        collaboration_id = self.collaborations.create(agent_ids)
        logger.info(
            "Collaboration %s created (%s): %s",
            collaboration_id,
            collaboration_type,
            ", ".join(agent_ids),
        )
        self.events.emit(
            EventType.COLLABORATION_STARTED,
            collaboration_id=collaboration_id,
            agent_ids=list(agent_ids),
            collaboration_type=collaboration_type,
        )
        return collaboration_id

    async def send_message(self, message: AgentMessage, *, immediate: bool = True) -> str:
        return await self.bus.send(message, immediate=immediate)

    async def _on_task_assignment(self, message: AgentMessage) -> None:
        task_id = message.content.get("task_id")
        if task_id in self.tasks:
            await self.assign_task(task_id, message.to_agent_id)

    async def _on_task_result(self, message: AgentMessage) -> None:
        task = self.tasks.get(message.content.get("task_id", ""))
        if task is None or task.status.is_terminal:
            return
        self.tasks.complete(task, message.content.get("result"))
        self._free_agent(task)
        self.events.emit(
            EventType.TASK_COMPLETED,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
            result=task.result,
        )

    async def _on_collaboration_request(self, message: AgentMessage) -> None:
        await self.create_collaboration(
            [message.from_agent_id, message.to_agent_id],
            message.content.get("request_type", "general"),
        )

    async def _on_status_update(self, message: AgentMessage) -> None:
        state = self.registry.get_state(message.from_agent_id)
        if state is not None:
            state.performance.last_active_at = utcnow()

    async def _on_error_report(self, message: AgentMessage) -> None:
        error = message.content.get("error", "Unknown error")
        logger.error("Agent %s reported an error: %s", message.from_agent_id, error)
        task = self.tasks.get(message.content.get("task_id", ""))
        if task is None or task.status.is_terminal:
            return
        self.tasks.fail(task, str(error))
        self._free_agent(task)
        self.events.emit(
            EventType.TASK_FAILED,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
            error=task.error,
        )

    def _free_agent(self, task: Task) -> None:
        if task.assigned_agent_id is None:
            return
        state = self.registry.get_state(task.assigned_agent_id)
        if state is not None:
            state.dequeue(task.id)
            state.release(task.id)

    # Control loop

    async def start_orchestrator(self) -> None:
        async with self._lock:
            if self._runner is not None:
                return
            self._stop_event.clear()
            self._runner = asyncio.create_task(self._run())
        logger.info("Orchestrator started (tick: %sms)", self._scheduler.tick_interval_ms)

    async def stop_orchestrator(self) -> None:
        if self._runner is None:
            return
        self._stop_event.set()
        await self._runner
        self._runner = None

        executions = list(self._executions)
        for execution in executions:
            execution.cancel()
        await asyncio.gather(*executions, return_exceptions=True)
        logger.info("Orchestrator stopped")

    async def _run(self) -> None:
        interval = self._scheduler.tick_interval_ms / 1000
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def tick(self) -> bool:
        """Run one control pass. Returns False when another pass is still running."""
        if self._ticking:
            logger.debug("Tick skipped, previous tick still running")
            return False

        self._ticking = True
        try:
            for step in (
                self.process_pending_tasks,
                self.process_message_queue,
                self.update_agent_states,
                self.handle_timeouts,
                self.optimize_task_distribution,
            ):
                try:
                    await step()
                except Exception:  # noqa: BLE001
                    logger.exception("Tick step %s failed", step.__name__)
        finally:
            self._ticking = False
        return True

    async def process_pending_tasks(self) -> int:
        """Assign every ready pending task, highest priority first."""
        if self._assignment_paused:
            waiting = len(self.tasks.with_status(TaskStatus.PENDING))
            logger.debug("Assignment paused, %d tasks waiting", waiting)
            return 0

        assigned = 0
        async with self._lock:
            for task in self.tasks.pending_by_priority():
                if task.status is not TaskStatus.PENDING or self.tasks.unmet_dependencies(task):
                    continue
                try:
                    await self.assign_task(task.id)
                except NoAgentAvailableError:
                    logger.debug("No idle agent for task %s yet", task.id)
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to assign task %s", task.id)
                else:
                    assigned += 1
        return assigned

    async def process_message_queue(self) -> int:
        return await self.bus.drain()

    async def update_agent_states(self) -> int:
        """Refresh resource snapshots and start the queue head of each idle agent."""
        metrics = self.resources.monitor.last_metrics if self.resources else None
        started = 0
        for state in self.registry.states():
            state.resources.active_connections = 1 if state.status is AgentStatus.BUSY else 0
            if metrics is not None:
                state.resources.memory_usage = metrics.ram_utilization
                state.resources.cpu_usage = metrics.cpu_usage

            if state.status is not AgentStatus.IDLE or not state.task_queue:
                continue
            head = self.tasks.get(state.task_queue[0])
            if head is None or head.status is not TaskStatus.ASSIGNED:
                continue
            try:
                self._spawn_execution(head.id)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to start task %s", head.id)
            else:
                started += 1
        return started

    def _spawn_execution(self, task_id: str) -> None:
        task, config, state = self._begin_execution(task_id)
        execution = asyncio.create_task(self._execute_in_background(task, config, state))
        self._executions.add(execution)
        execution.add_done_callback(self._executions.discard)

    async def _execute_in_background(
        self, task: Task, config: AgentConfig, state: AgentState
    ) -> None:
        try:
            await self._run_execution(task, config, state)
        except ExecutionError as exc:
            logger.warning("Background execution of task %s failed: %s", task.id, exc)

    async def handle_timeouts(self) -> int:
        """Cancel in-progress tasks that ran longer than their agent's timeout."""
        now = utcnow()
        expired = 0
        async with self._lock:
            for task in self.tasks.with_status(TaskStatus.IN_PROGRESS):
                if task.started_at is None:
                    continue
                config = self.registry.get_config(task.assigned_agent_id or "")
                timeout_ms = (
                    config.timeout_ms if config else self._scheduler.default_agent_timeout_ms
                )
                elapsed_ms = (now - task.started_at).total_seconds() * 1000
                if elapsed_ms <= timeout_ms:
                    continue
                error = TaskTimeoutError(task.id, timeout_ms)
                logger.warning("%s, cancelling", error)
                await self.cancel_task(task.id, reason=str(error))
                expired += 1
        return expired

    async def optimize_task_distribution(self) -> Optional[Rebalance]:
        """Move one queued task from the busiest agent to the least loaded one."""
        async with self._lock:
            plan = plan_rebalance(
                self.registry.states(),
                self._scheduler.rebalance_threshold,
                movable=self._is_movable,
            )
            if plan is None:
                return None

            task = self.tasks.require(plan.task_id)
            self.registry.state(plan.from_agent_id).dequeue(plan.task_id)
            self.registry.state(plan.to_agent_id).task_queue.append(plan.task_id)
            task.assigned_agent_id = plan.to_agent_id
        logger.info(
            "Rebalanced task %s from %s to %s", plan.task_id, plan.from_agent_id, plan.to_agent_id
        )
        self.events.emit(
            EventType.TASK_REBALANCED,
            task_id=plan.task_id,
            from_agent_id=plan.from_agent_id,
            to_agent_id=plan.to_agent_id,
        )
        return plan

    def _is_movable(self, task_id: str) -> bool:
        task = self.tasks.get(task_id)
        return task is not None and task.status is TaskStatus.ASSIGNED

    # Resource pressure

    def pause_assignment(self) -> None:
        if self._assignment_paused:
            return
        self._assignment_paused = True
        logger.warning("Task assignment paused due to resource pressure")
        self.events.emit(EventType.ASSIGNMENT_PAUSED)

    def resume_assignment(self) -> None:
        if not self._assignment_paused:
            return
        self._assignment_paused = False
        logger.info("Task assignment resumed")
        self.events.emit(EventType.ASSIGNMENT_RESUMED)

    def _on_resource_emergency(self) -> None:
        logger.critical("Resource emergency, halting new task assignment")
        self.pause_assignment()

    # Queries

    def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        return self.registry.get_config(agent_id)

    def get_agent_status(self, agent_id: str) -> Optional[AgentState]:
        return self.registry.get_state(agent_id)

    def get_task_status(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def get_all_agents(self) -> List[AgentConfig]:
        return self.registry.configs()

    def get_all_tasks(self) -> List[Task]:
        return self.tasks.all()

    def get_collaboration_graph(self) -> Dict[str, List[str]]:
        return self.collaborations.snapshot()

    def get_system_metrics(self) -> Dict[str, Any]:
        states = self.registry.states()
        tasks = self.tasks.all()
        completed = [task for task in tasks if task.status is TaskStatus.COMPLETED]
        failed = [task for task in tasks if task.status is TaskStatus.FAILED]
        durations = [task.actual_duration for task in completed if task.actual_duration is not None]
        finished = len(completed) + len(failed)

        return {
            "agents": {
                "total": len(states),
                **{status.value: _count(states, status) for status in AgentStatus},
            },
            "tasks": {
                "total": len(tasks),
                **{status.value: _count(tasks, status) for status in TaskStatus},
            },
            "performance": {
                "total_tasks_completed": len(completed),
                "average_task_duration": sum(durations) / len(durations) if durations else 0.0,
                "success_rate": len(completed) / finished if finished else 0.0,
                "collaborations": sum(
                    len(collaborators) for collaborators in self.collaborations.snapshot().values()
                ),
            },
            "orchestrator": {
                "is_running": self.is_running,
                "message_queue_length": len(self.bus),
            },
            "assignment_paused": self._assignment_paused,
        }

    def snapshot_state(self) -> Dict[str, Any]:
        """JSON-friendly view of live agents and unfinished tasks for emergency dumps."""
        return {
            "active_agents": [
                {"config": asdict(config), "state": asdict(self.registry.state(config.id))}
                for config in self.registry.configs()
            ],
            "running_tasks": [
                asdict(task) for task in self.tasks.all() if not task.status.is_terminal
            ],
            "collaborations": self.collaborations.snapshot(),
        }


def _count(items: Iterable[Any], status: Any) -> int:
    return sum(1 for item in items if item.status is status)
